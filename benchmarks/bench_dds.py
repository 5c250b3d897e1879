#!/usr/bin/env python3
"""Benchmark runner for the local dds_sketch codec and merge engine."""

from __future__ import annotations

import argparse
import hashlib
import importlib
import math
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Sequence

import numpy as np
import pandas as pd


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--module", default="dds_sketch", help="Module that exports the sketch classes")
    parser.add_argument("--class", dest="cls", default="DDSketch", help="Sketch class name inside the module")
    parser.add_argument("--outdir", default="bench_out", help="Directory for benchmark CSV outputs")
    parser.add_argument("--seed", type=int, default=42, help="Base RNG seed for reproducibility")
    parser.add_argument("--Ns", nargs="+", default=["1e5", "1e6"], help="Population sizes to benchmark")
    parser.add_argument(
        "--alphas", nargs="+", default=["0.01", "0.02", "0.05"], help="Relative accuracies (gamma = (1+a)/(1-a))"
    )
    parser.add_argument(
        "--distributions",
        nargs="+",
        default=["uniform", "lognormal", "exponential", "pareto"],
        help="Synthetic data distributions to sample (all shifted to >= 1)",
    )
    parser.add_argument(
        "--qs",
        nargs="+",
        default=["0.01", "0.05", "0.1", "0.25", "0.5", "0.75", "0.9", "0.95", "0.99"],
        help="Quantiles to evaluate",
    )
    parser.add_argument("--shards", type=int, default=64, help="Number of serialized shards for the merge benchmark")
    parser.add_argument("--repeat", type=int, default=200, help="Decode/encode repetitions per configuration")
    return parser.parse_args()


def _to_int_list(values: Iterable[str]) -> List[int]:
    return [int(float(v)) for v in values]


def _to_float_list(values: Iterable[str]) -> List[float]:
    return [float(v) for v in values]


def _hash_seed(seed: int, *parts: object) -> int:
    material = "::".join(str(p) for p in (seed,) + parts)
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return int(digest[:16], 16)


def _uniform(rng: np.random.Generator, size: int) -> np.ndarray:
    return rng.uniform(1.0, 1_000.0, size)


def _lognormal(rng: np.random.Generator, size: int) -> np.ndarray:
    return 1.0 + rng.lognormal(mean=2.0, sigma=1.5, size=size)


def _exponential(rng: np.random.Generator, size: int) -> np.ndarray:
    return 1.0 + rng.exponential(scale=100.0, size=size)


def _pareto(rng: np.random.Generator, size: int) -> np.ndarray:
    return 1.0 + rng.pareto(a=1.5, size=size)


DATA_GENERATORS: Dict[str, Callable[[np.random.Generator, int], np.ndarray]] = {
    "uniform": _uniform,
    "lognormal": _lognormal,
    "exponential": _exponential,
    "pareto": _pareto,
}


def _validate_distributions(names: Sequence[str]) -> None:
    unknown = sorted(set(names) - DATA_GENERATORS.keys())
    if unknown:
        raise ValueError(f"Unknown distributions requested: {', '.join(unknown)}")


def _bucketize(module, sketch_cls, data: np.ndarray, alpha: float):
    """Build a sketch from raw values the way an upstream producer would."""
    gamma = float(np.float32((1 + alpha) / (1 - alpha)))
    keys = np.ceil(np.log(data) / np.log(gamma)).astype(np.int64)
    uniq, counts = np.unique(keys, return_counts=True)
    metadata = module.Metadata(version=1, gamma=gamma, sum=float(data.sum()), count=int(data.size))
    return sketch_cls(metadata, zip(uniq.tolist(), counts.tolist()))


def _exact_at_rank(ordered: np.ndarray, q: float) -> float:
    rank = math.floor(q * ordered.size + 0.5)
    return float(ordered[max(rank, 1) - 1])


def main() -> None:
    args = _parse_args()

    Ns = _to_int_list(args.Ns)
    alphas = _to_float_list(args.alphas)
    qs = _to_float_list(args.qs)
    _validate_distributions(args.distributions)

    module = importlib.import_module(args.module)
    if not hasattr(module, args.cls):
        available = ", ".join(sorted(attr for attr in dir(module) if not attr.startswith("_")))
        raise AttributeError(f"{module.__name__!r} does not define {args.cls!r}. Available attributes: {available}")
    sketch_cls = getattr(module, args.cls)

    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    accuracy_records: List[Dict[str, object]] = []
    codec_records: List[Dict[str, object]] = []
    latency_records: List[Dict[str, object]] = []
    merge_records: List[Dict[str, object]] = []

    for dist in args.distributions:
        for N in Ns:
            data_rng = np.random.default_rng(_hash_seed(args.seed, dist, N))
            data = DATA_GENERATORS[dist](data_rng, N).astype(float, copy=False)
            ordered = np.sort(data)

            for alpha in alphas:
                sketch = _bucketize(module, sketch_cls, data, alpha)
                payload = sketch.to_bytes()

                start = time.perf_counter()
                for _ in range(args.repeat):
                    sketch_cls.from_bytes(payload)
                decode_elapsed = time.perf_counter() - start

                start = time.perf_counter()
                for _ in range(args.repeat):
                    sketch.to_bytes()
                encode_elapsed = time.perf_counter() - start

                codec_records.append(
                    {
                        "distribution": dist,
                        "N": int(N),
                        "alpha": alpha,
                        "buckets": len(sketch.buckets),
                        "payload_bytes": len(payload),
                        "decodes_per_sec": args.repeat / decode_elapsed if decode_elapsed > 0 else math.inf,
                        "encodes_per_sec": args.repeat / encode_elapsed if encode_elapsed > 0 else math.inf,
                    }
                )

                for q in qs:
                    q_start = time.perf_counter()
                    approx = sketch.quantile(q)
                    q_elapsed = time.perf_counter() - q_start
                    exact = _exact_at_rank(ordered, q)
                    latency_records.append(
                        {
                            "distribution": dist,
                            "N": int(N),
                            "alpha": alpha,
                            "q": q,
                            "latency_us": q_elapsed * 1e6,
                        }
                    )
                    accuracy_records.append(
                        {
                            "distribution": dist,
                            "N": int(N),
                            "alpha": alpha,
                            "mode": "single",
                            "q": q,
                            "estimate": approx,
                            "exact": exact,
                            "rel_error": abs(approx - exact) / exact,
                        }
                    )

                shard_payloads = [
                    _bucketize(module, sketch_cls, shard, alpha).to_bytes()
                    for shard in np.array_split(data, args.shards)
                    if shard.size
                ]
                acc = module.Accumulator()
                merge_start = time.perf_counter()
                for shard_payload in shard_payloads:
                    acc.merge(shard_payload)
                merged = acc.to_sketch()
                merge_elapsed = time.perf_counter() - merge_start

                merge_records.append(
                    {
                        "distribution": dist,
                        "N": int(N),
                        "alpha": alpha,
                        "shards": len(shard_payloads),
                        "merge_time_s": merge_elapsed,
                    }
                )

                for q in qs:
                    approx = merged.quantile(q)
                    exact = _exact_at_rank(ordered, q)
                    accuracy_records.append(
                        {
                            "distribution": dist,
                            "N": int(N),
                            "alpha": alpha,
                            "mode": "merged",
                            "q": q,
                            "estimate": approx,
                            "exact": exact,
                            "rel_error": abs(approx - exact) / exact,
                        }
                    )

    accuracy_path = outdir / "accuracy.csv"
    codec_path = outdir / "codec_throughput.csv"
    latency_path = outdir / "query_latency.csv"
    merge_path = outdir / "merge.csv"

    pd.DataFrame.from_records(accuracy_records).to_csv(accuracy_path, index=False)
    pd.DataFrame.from_records(codec_records).to_csv(codec_path, index=False)
    pd.DataFrame.from_records(latency_records).to_csv(latency_path, index=False)
    pd.DataFrame.from_records(merge_records).to_csv(merge_path, index=False)

    print("Benchmark artifacts written to:")
    print(f"  {accuracy_path}")
    print(f"  {codec_path}")
    print(f"  {latency_path}")
    print(f"  {merge_path}")


if __name__ == "__main__":
    main()
