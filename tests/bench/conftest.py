"""Opt-in benchmark suite: collected always, run only under ``-m benchmark``."""
from __future__ import annotations

from pathlib import Path

import pytest

BENCH_OUTPUT = Path("bench_out/pytest")


def pytest_configure(config: pytest.Config) -> None:
    # ``--benchmark-json=bench_out/pytest/results.json`` needs the directory.
    BENCH_OUTPUT.mkdir(parents=True, exist_ok=True)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("-m"):
        return
    skip_marker = pytest.mark.skip(reason="decode/merge benchmarks are opt-in; run with -m benchmark")
    for item in items:
        if "benchmark" in item.keywords:
            item.add_marker(skip_marker)
