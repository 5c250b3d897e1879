# DDSketch Quantile Sketch (Python)
# Codec-centred implementation with:
# - Strict decoding (bounded varints, finite floats, validated metadata)
# - Immutable Sketch values with an ascending, unique-keyed bucket sequence
# - Hash-map Accumulator for cheap repeated merges, sorted on materialization
# - Atomic merges: a rejected payload never leaves partial state behind
# Python 3.9+

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .codec import U64_MASK, Bucket, Buffer, Decoder, Metadata, encode_varint, to_float32
from .exceptions import EmptyAccumulatorError, MalformedSketchError

BucketLike = Union[Bucket, Tuple[int, int]]


def _round_half_away(x: float) -> int:
    # Non-negative input only; ``round`` would round half to even.
    whole = math.floor(x)
    if x - whole >= 0.5:
        whole += 1
    return int(whole)


def _format_float(value: float) -> str:
    return format(value, "g")


class Sketch:
    """
    Immutable DDSketch: one :class:`Metadata` header plus ordered buckets.

    Bucket ``k`` covers the values in ``[gamma^(k-1), gamma^k)``. Queries
    answer with the bucket's midpoint ``2 * gamma^k / (gamma + 1)``, which has
    a relative error of at most ``(gamma - 1) / (gamma + 1)``.

    Invariants:
      - metadata passes :meth:`Metadata.valid`.
      - buckets are non-empty, strictly ascending by key, keys unique.
        Serialization (delta-encoded keys) and quantile estimation (single
        cumulative scan) both rely on this ordering.

    Wire format (see :mod:`dds_sketch.codec`):
      version(u8), gamma(f32 LE), sum(f32 LE), count(varint),
      then per bucket: key delta(varint, <=3 bytes), count(varint, <=10 bytes).

    Public API:
      from_bytes(b), to_bytes(), quantile(q), quantiles_at(qs), mean(), sum(),
      count(), merge(other), inspect(), to_json()
    """

    __slots__ = ("_metadata", "_buckets")

    def __init__(self, metadata: Metadata, buckets: Iterable[BucketLike]):
        if not isinstance(metadata, Metadata):
            raise TypeError("metadata must be a Metadata instance")
        if not metadata.valid():
            raise ValueError(f"invalid metadata: {metadata}")
        ordered = tuple(b if isinstance(b, Bucket) else Bucket(*b) for b in buckets)
        if not ordered:
            raise ValueError("a sketch needs at least one bucket")
        for prev, cur in zip(ordered, ordered[1:]):
            if not prev.key < cur.key:
                raise ValueError(
                    f"bucket keys must be strictly ascending (got {prev.key} then {cur.key})"
                )
        self._metadata = metadata
        self._buckets: Tuple[Bucket, ...] = ordered

    # ------------------------------- Public API --------------------------------
    @property
    def metadata(self) -> Metadata:
        return self._metadata

    @property
    def buckets(self) -> Tuple[Bucket, ...]:
        return self._buckets

    @property
    def gamma(self) -> float:
        return self._metadata.gamma

    def count(self) -> int:
        return self._metadata.count

    def sum(self) -> float:
        return self._metadata.sum

    def mean(self) -> float:
        return self._metadata.mean()

    def quantile(self, q: float) -> float:
        """Estimate the value at quantile ``q``.

        ``q`` is clamped to ``[0, 1]``; ``1`` (and beyond) answers with the
        highest bucket.
        """
        return self._batched_quantiles([q])[0]

    def quantiles_at(self, probabilities: Iterable[float]) -> List[float]:
        """Return the estimates for every entry in ``probabilities``.

        All requested quantiles are answered from a single forward scan over
        the buckets.
        """
        qs = [float(q) for q in probabilities]
        if not qs:
            return []
        return self._batched_quantiles(qs)

    def merge(self, other: "Sketch") -> "Sketch":
        """Return a new sketch summarising both populations."""
        if not isinstance(other, Sketch):
            raise TypeError("merge expects Sketch")
        acc = Accumulator()
        acc.add(self)
        acc.add(other)
        return acc.to_sketch()

    def to_bytes(self) -> bytes:
        out = bytearray(self._metadata.to_bytes())
        prev_key = 0
        for bucket in self._buckets:
            out += encode_varint(bucket.key - prev_key)
            out += encode_varint(bucket.count)
            prev_key = bucket.key
        return bytes(out)

    @classmethod
    def from_bytes(cls, b: Buffer) -> "Sketch":
        """Decode a sketch, raising :class:`MalformedSketchError` on bad input."""
        decoder = Decoder(b)
        metadata = decoder.read_metadata()
        buckets = list(decoder.read_buckets())
        if not buckets:
            raise MalformedSketchError("sketch has no buckets")
        try:
            return cls(metadata, buckets)
        except ValueError as exc:
            raise MalformedSketchError(str(exc)) from exc

    def inspect(self) -> str:
        md = self._metadata
        parts = [
            f"Sketch<version: {md.version}, sum:{_format_float(md.sum)}, count:{md.count}, "
            f"gamma:{_format_float(md.gamma)}, bucket_count: {len(self._buckets)}",
            ", buckets:{",
        ]
        parts.extend(f"{b.key}: {b.count}, " for b in self._buckets)
        parts.append("}>")
        return "".join(parts)

    def to_json(self) -> str:
        # Floats are written as their %g text (``10``, ``1e+06``), not as reprs.
        md = self._metadata
        buckets = ",".join(f'"{b.key}":{b.count}' for b in self._buckets)
        return (
            f'{{"version":{md.version},"sum":{_format_float(md.sum)},"count":{md.count},'
            f'"gamma":{_format_float(md.gamma)},"buckets":{{{buckets}}}}}'
        )

    def __repr__(self) -> str:
        return self.inspect()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Sketch):
            return NotImplemented
        return self._metadata == other._metadata and self._buckets == other._buckets

    def __hash__(self) -> int:
        return hash((self._metadata, self._buckets))

    # ------------------------------- Internals ---------------------------------
    def _bucket_value(self, key: int) -> float:
        gamma = self._metadata.gamma
        try:
            return 2.0 * gamma ** key / to_float32(gamma + 1.0)
        except OverflowError:
            return math.inf

    def _batched_quantiles(self, qs: Sequence[float]) -> List[float]:
        clamped: List[float] = []
        for q in qs:
            if math.isnan(q):
                raise ValueError("q must not be NaN")
            clamped.append(min(max(q, 0.0), 1.0))

        buckets = self._buckets
        last = len(buckets) - 1
        total = self._metadata.count

        out = [0.0] * len(clamped)
        pos = 0
        cum = buckets[0].count
        for idx in sorted(range(len(clamped)), key=clamped.__getitem__):
            rank = _round_half_away(clamped[idx] * total)
            # Falls back to the last bucket when the rank is never reached.
            while cum < rank and pos < last:
                pos += 1
                cum += buckets[pos].count
            out[idx] = self._bucket_value(buckets[pos].key)
        return out


class Accumulator:
    """
    Mutable merge target for many serialized sketches.

    Buckets live in a ``key -> count`` dict so folding in another sketch is a
    lookup and an addition per bucket; :meth:`to_sketch` sorts the keys once.

    A merge either succeeds completely or leaves the accumulator untouched.
    Instances are not thread-safe.
    """

    __slots__ = ("_metadata", "_buckets")

    def __init__(self) -> None:
        self._metadata: Optional[Metadata] = None
        self._buckets: Dict[int, int] = {}

    @property
    def metadata(self) -> Optional[Metadata]:
        return self._metadata

    @property
    def buckets(self) -> Dict[int, int]:
        return dict(self._buckets)

    def empty(self) -> bool:
        return self._metadata is None

    def __len__(self) -> int:
        return len(self._buckets)

    def merge(self, data: Buffer) -> None:
        """Fold one serialized sketch into the accumulator.

        Raises :class:`MalformedSketchError` or :class:`IncompatibleSketchError`;
        the accumulator is unchanged in either case.
        """
        decoder = Decoder(data)
        metadata = decoder.read_metadata()
        combined = self._combined(metadata)
        buckets = list(decoder.read_buckets())
        self._commit(combined, buckets)

    def add(self, sketch: Sketch) -> None:
        """Fold an already decoded :class:`Sketch` into the accumulator."""
        if not isinstance(sketch, Sketch):
            raise TypeError("add expects Sketch")
        self._commit(self._combined(sketch.metadata), sketch.buckets)

    def to_sketch(self) -> Sketch:
        if self._metadata is None:
            raise EmptyAccumulatorError("to_sketch called before any successful merge")
        ordered = [Bucket(key, self._buckets[key]) for key in sorted(self._buckets)]
        return Sketch(self._metadata, ordered)

    def clear(self) -> None:
        self._metadata = None
        self._buckets.clear()

    # ------------------------------- Internals ---------------------------------
    def _combined(self, metadata: Metadata) -> Metadata:
        combined = metadata if self._metadata is None else self._metadata.combine(metadata)
        # A wrapped count of zero or an overflowed sum can never be materialized.
        if not combined.valid() or not math.isfinite(combined.sum):
            raise MalformedSketchError(f"merged header is not a valid sketch: {combined}")
        return combined

    def _commit(self, metadata: Metadata, buckets: Sequence[Bucket]) -> None:
        if not buckets and not self._buckets:
            raise MalformedSketchError("sketch has no buckets")
        counts = self._buckets
        for bucket in buckets:
            counts[bucket.key] = (counts.get(bucket.key, 0) + bucket.count) & U64_MASK
        self._metadata = metadata


__all__ = ["Accumulator", "Sketch"]


# ----------------------------- quick self-test --------------------------------
if __name__ == "__main__":
    import random

    rng = random.Random(42)
    gamma = 1.02
    shards = []
    for _ in range(8):
        xs = [1.0 + rng.lognormvariate(0, 1) for _ in range(2_500)]
        keys: Dict[int, int] = {}
        for x in xs:
            k = math.ceil(math.log(x, gamma))
            keys[k] = keys.get(k, 0) + 1
        md = Metadata(version=1, gamma=gamma, sum=sum(xs), count=len(xs))
        shards.append(Sketch(md, sorted(keys.items())).to_bytes())

    acc = Accumulator()
    for payload in shards:
        acc.merge(payload)
    sk = Sketch.from_bytes(acc.to_sketch().to_bytes())
    for q in [0.0, 0.01, 0.1, 0.5, 0.9, 0.99, 1.0]:
        print(f"q={q:>4}: est={sk.quantile(q):.4f}")
    print(f"count={sk.count()} mean={sk.mean():.4f} bytes={len(sk.to_bytes())}")

    # Weight conservation sanity check
    assert sum(b.count for b in sk.buckets) == sk.count(), "bucket totals diverged from count"
