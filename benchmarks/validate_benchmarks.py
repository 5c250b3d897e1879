#!/usr/bin/env python3
"""Validate benchmark outputs against regression thresholds.

This script is intended to run in CI after ``benchmarks/bench_dds.py``. It reads
CSV outputs from ``bench_out`` (or a supplied directory) and enforces
accuracy and performance floors so regressions surface early.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List, Tuple

import pandas as pd


# Bucket midpoints guarantee a relative error of at most alpha; the slack only
# absorbs float32 rounding of gamma.
ACCURACY_SLACK = 1e-6
DECODES_MIN_PER_SEC = 500
LATENCY_P95_MAX_US = 2_000.0
MERGE_TIME_MAX_S = 2.0


def _load_csv(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Expected benchmark artifact missing: {path}")
    return pd.read_csv(path)


def _check_accuracy(df: pd.DataFrame) -> Tuple[bool, Dict[str, float]]:
    if df.empty:
        return True, {"overall": 0.0}
    excess = df["rel_error"] - df["alpha"]
    worst = df.assign(excess=excess).groupby(["mode"])["excess"].max().to_dict()
    overall = float(excess.max())
    worst.setdefault("overall", overall)
    return overall <= ACCURACY_SLACK, worst


def _check_decode_throughput(df: pd.DataFrame) -> Tuple[bool, float]:
    minimum = float(df["decodes_per_sec"].min()) if not df.empty else float("inf")
    return minimum >= DECODES_MIN_PER_SEC, minimum


def _check_latency(df: pd.DataFrame) -> Tuple[bool, float]:
    if df.empty:
        return True, 0.0
    p95 = float(df["latency_us"].quantile(0.95))
    return p95 <= LATENCY_P95_MAX_US, p95


def _check_merge(df: pd.DataFrame) -> Tuple[bool, float]:
    if df.empty:
        return True, 0.0
    maximum = float(df["merge_time_s"].max())
    return maximum <= MERGE_TIME_MAX_S, maximum


def _summarise(results: Dict[str, Dict[str, object]]) -> str:
    lines: List[str] = ["# Benchmark validation summary", ""]
    lines.append("| Check | Threshold | Observed | Status |")
    lines.append("| --- | --- | --- | --- |")
    for name, payload in results.items():
        status = "PASS" if payload["ok"] else "FAIL"
        lines.append(f"| {name} | {payload['threshold']} | {payload['observed']} | {status} |")
    lines.append("")
    lines.append("```json")
    lines.append(json.dumps(results, indent=2, sort_keys=True))
    lines.append("```")
    return "\n".join(lines)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("outdir", nargs="?", default="bench_out", help="Directory containing benchmark CSVs")
    parser.add_argument("--summary", default="bench_summary.md", help="Filename for the generated markdown summary")
    args = parser.parse_args()

    outdir = Path(args.outdir)
    accuracy = _load_csv(outdir / "accuracy.csv")
    codec = _load_csv(outdir / "codec_throughput.csv")
    latency = _load_csv(outdir / "query_latency.csv")
    merge = _load_csv(outdir / "merge.csv")

    summary: Dict[str, Dict[str, object]] = {}

    accuracy_ok, accuracy_obs = _check_accuracy(accuracy)
    summary["Relative error above alpha"] = {
        "threshold": f"<= {ACCURACY_SLACK}",
        "observed": {mode: float(f"{value:.3g}") for mode, value in accuracy_obs.items()},
        "ok": accuracy_ok,
    }

    decode_ok, decode_obs = _check_decode_throughput(codec)
    summary["Decode throughput"] = {
        "threshold": f">= {DECODES_MIN_PER_SEC} sketches/sec",
        "observed": round(decode_obs, 2),
        "ok": decode_ok,
    }

    latency_ok, latency_obs = _check_latency(latency)
    summary["Query latency p95"] = {
        "threshold": f"<= {LATENCY_P95_MAX_US} µs",
        "observed": round(latency_obs, 2),
        "ok": latency_ok,
    }

    merge_ok, merge_obs = _check_merge(merge)
    summary["Merge time"] = {
        "threshold": f"<= {MERGE_TIME_MAX_S} s",
        "observed": round(merge_obs, 3),
        "ok": merge_ok,
    }

    summary_path = outdir / args.summary
    summary_path.write_text(_summarise(summary), encoding="utf-8")

    print(summary_path.read_text(encoding="utf-8"))

    if not all(item["ok"] for item in summary.values()):
        raise SystemExit("Benchmark regression detected; see summary above.")


if __name__ == "__main__":
    main()
