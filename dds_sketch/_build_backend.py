"""In-tree PEP 517 / PEP 660 backend for dds-sketch; needs nothing beyond the stdlib."""
from __future__ import annotations

import base64
import shutil
import tempfile
from hashlib import sha256
from pathlib import Path
from typing import Iterable, List, Mapping
from zipfile import ZipFile, ZIP_DEFLATED
import tarfile

from ._metadata import PROJECT_METADATA

PROJECT_ROOT = Path(__file__).resolve().parent.parent
PACKAGE_NAME = PROJECT_METADATA["name"]  # type: ignore[index]
IMPORT_NAME = "dds_sketch"
_VERSION = PROJECT_METADATA["version"]  # type: ignore[index]
_NORMALIZED_NAME = PACKAGE_NAME.replace("-", "_")
_DIST_INFO = f"{_NORMALIZED_NAME}-{_VERSION}.dist-info"
_WHEEL_NAME = f"{_NORMALIZED_NAME}-{_VERSION}-py3-none-any.whl"
_IGNORED = shutil.ignore_patterns("__pycache__", "*.pyc", "*.pyo", "*.swp")


def _build_metadata_text() -> str:
    readme_info = PROJECT_METADATA["readme"]  # type: ignore[index]
    readme_path = Path(readme_info["path"])  # type: ignore[index]
    authors = PROJECT_METADATA.get("authors", [])
    license_info = PROJECT_METADATA.get("license", {})
    optional = PROJECT_METADATA.get("optional-dependencies", {})

    lines: List[str] = [
        "Metadata-Version: 2.1",
        f"Name: {PACKAGE_NAME}",
        f"Version: {_VERSION}",
    ]
    summary = PROJECT_METADATA.get("summary")
    if summary:
        lines.append(f"Summary: {summary}")
    if authors:
        lines.append(f"Author: {authors[0].name}")  # type: ignore[index]
        if authors[0].email:  # type: ignore[index]
            lines.append(f"Author-email: {authors[0].name} <{authors[0].email}>")  # type: ignore[index]
    if isinstance(license_info, dict) and license_info.get("text"):
        lines.append(f"License: {license_info['text']}")
    requires_python = PROJECT_METADATA.get("requires_python")
    if requires_python:
        lines.append(f"Requires-Python: {requires_python}")
    keywords = PROJECT_METADATA.get("keywords", [])
    if keywords:
        lines.append(f"Keywords: {','.join(keywords)}")
    for classifier in PROJECT_METADATA.get("classifiers", []):
        lines.append(f"Classifier: {classifier}")
    for label, url in PROJECT_METADATA.get("urls", {}).items():
        lines.append(f"Project-URL: {label}, {url}")

    for extra, requirements in optional.items():
        lines.append(f"Provides-Extra: {extra}")
        for requirement in requirements:
            lines.append(f"Requires-Dist: {requirement}; extra == '{extra}'")

    lines.append(f"Description-Content-Type: {readme_info['content_type']}")  # type: ignore[index]
    lines.append("")
    description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""
    return "\n".join(lines) + "\n" + description


def _write_metadata(dist_info: Path) -> None:
    dist_info.mkdir(parents=True, exist_ok=True)
    (dist_info / "METADATA").write_text(_build_metadata_text(), encoding="utf-8")
    (dist_info / "WHEEL").write_text(
        "\n".join(
            [
                "Wheel-Version: 1.0",
                "Generator: dds-sketch in-tree backend",
                "Root-Is-Purelib: true",
                "Tag: py3-none-any",
                "",
            ]
        ),
        encoding="utf-8",
    )
    license_info = PROJECT_METADATA.get("license", {})
    if isinstance(license_info, dict):
        for rel_path in license_info.get("files", []):
            source = PROJECT_ROOT / rel_path
            if source.exists():
                (dist_info / Path(rel_path).name).write_bytes(source.read_bytes())


def _iter_files(directory: Path) -> Iterable[Path]:
    for path in sorted(directory.rglob("*")):
        if path.is_file():
            yield path


def _record_for(path: Path, root: Path) -> str:
    relative = path.relative_to(root).as_posix()
    digest = base64.urlsafe_b64encode(sha256(path.read_bytes()).digest()).decode().rstrip("=")
    return f"{relative},sha256={digest},{path.stat().st_size}"


def _write_record(dist_info: Path, wheel_root: Path) -> None:
    record_lines = [
        _record_for(path, wheel_root)
        for path in _iter_files(wheel_root)
        if path != dist_info / "RECORD"
    ]
    record_lines.append(f"{_DIST_INFO}/RECORD,,")
    (dist_info / "RECORD").write_text("\n".join(record_lines) + "\n", encoding="utf-8")


def _pack_wheel(wheel_root: Path, wheel_directory: str) -> str:
    dist_info = wheel_root / _DIST_INFO
    _write_metadata(dist_info)
    _write_record(dist_info, wheel_root)
    wheel_path = Path(wheel_directory) / _WHEEL_NAME
    with ZipFile(wheel_path, "w", ZIP_DEFLATED) as zf:
        for file in _iter_files(wheel_root):
            zf.write(file, file.relative_to(wheel_root).as_posix())
    return wheel_path.name


def build_wheel(wheel_directory: str, config_settings: Mapping[str, object] | None = None, metadata_directory: str | None = None) -> str:
    with tempfile.TemporaryDirectory() as tmpdir:
        wheel_root = Path(tmpdir)
        shutil.copytree(PROJECT_ROOT / IMPORT_NAME, wheel_root / IMPORT_NAME, ignore=_IGNORED)
        return _pack_wheel(wheel_root, wheel_directory)


def build_editable(wheel_directory: str, config_settings: Mapping[str, object] | None = None, metadata_directory: str | None = None) -> str:
    # The editable wheel only carries a .pth entry pointing at the source tree.
    with tempfile.TemporaryDirectory() as tmpdir:
        wheel_root = Path(tmpdir)
        (wheel_root / f"{_NORMALIZED_NAME}.pth").write_text(f"{PROJECT_ROOT}\n", encoding="utf-8")
        return _pack_wheel(wheel_root, wheel_directory)


def prepare_metadata_for_build_wheel(metadata_directory: str, config_settings: Mapping[str, object] | None = None) -> str:
    dist_info = Path(metadata_directory) / _DIST_INFO
    _write_metadata(dist_info)
    # RECORD is regenerated by build_wheel / build_editable
    return dist_info.name


prepare_metadata_for_build_editable = prepare_metadata_for_build_wheel


def get_requires_for_build_wheel(config_settings: Mapping[str, object] | None = None) -> List[str]:
    return []


get_requires_for_build_editable = get_requires_for_build_wheel
get_requires_for_build_sdist = get_requires_for_build_wheel


def build_sdist(sdist_directory: str, config_settings: Mapping[str, object] | None = None) -> str:
    with tempfile.TemporaryDirectory() as tmpdir:
        sdist_root = Path(tmpdir) / f"{_NORMALIZED_NAME}-{_VERSION}"
        sdist_root.mkdir()
        for item in ["README.md", "DESIGN.md", "pyproject.toml"]:
            source = PROJECT_ROOT / item
            if source.exists():
                shutil.copy2(source, sdist_root / source.name)
        for directory in [IMPORT_NAME, "benchmarks", "tests"]:
            source_dir = PROJECT_ROOT / directory
            if source_dir.exists():
                shutil.copytree(source_dir, sdist_root / directory, ignore=_IGNORED)
        # sdist metadata is the same document the wheel ships.
        (sdist_root / "PKG-INFO").write_text(_build_metadata_text(), encoding="utf-8")
        archive_path = Path(sdist_directory) / f"{sdist_root.name}.tar.gz"
        with tarfile.open(archive_path, "w:gz") as tf:
            tf.add(sdist_root, arcname=sdist_root.name)
        return archive_path.name
