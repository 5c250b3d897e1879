"""Pytest micro-benchmarks for the DDSketch codec and accumulator."""

from __future__ import annotations

import pytest

pytest.importorskip("numpy")
import numpy as np

from dds_sketch import Accumulator, DDSketch, Metadata, Sketch

pytestmark = pytest.mark.benchmark


def _generate_data(dist: str, size: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    if dist == "uniform":
        return rng.uniform(1.0, 1_000.0, size)
    if dist == "lognormal":
        return 1.0 + rng.lognormal(2.0, 1.5, size)
    raise ValueError(f"Unsupported distribution for pytest benchmarks: {dist}")


def _bucketize(data: np.ndarray, alpha: float) -> DDSketch:
    gamma = float(np.float32((1 + alpha) / (1 - alpha)))
    keys, counts = np.unique(np.ceil(np.log(data) / np.log(gamma)).astype(np.int64), return_counts=True)
    metadata = Metadata(version=1, gamma=gamma, sum=float(data.sum()), count=int(data.size))
    return DDSketch(metadata, zip(keys.tolist(), counts.tolist()))


@pytest.mark.parametrize("distribution", ["uniform", "lognormal"])
@pytest.mark.parametrize("alpha", [0.005, 0.01, 0.05])
def test_decode_throughput(distribution: str, alpha: float, benchmark) -> None:
    data = _generate_data(distribution, 100_000, seed=42)
    payload = _bucketize(data, alpha).to_bytes()

    sketch = benchmark(DDSketch.from_bytes, payload)

    approx = sketch.quantile(0.5)
    exact = float(np.sort(data)[int(np.floor(0.5 * data.size + 0.5)) - 1])
    assert abs(approx - exact) <= alpha * exact * (1 + 1e-6)


@pytest.mark.parametrize("shards", [16, 256])
def test_accumulator_merge_throughput(shards: int, benchmark) -> None:
    data = _generate_data("lognormal", 200_000, seed=7)
    payloads = [_bucketize(shard, 0.01).to_bytes() for shard in np.array_split(data, shards)]

    def merge_all() -> Sketch:
        acc = Accumulator()
        for payload in payloads:
            acc.merge(payload)
        return acc.to_sketch()

    merged = benchmark(merge_all)

    assert merged.count() == data.size
    assert sum(b.count for b in merged.buckets) == data.size
