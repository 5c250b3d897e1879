"""Host-facing operations over serialized sketches.

Each function mirrors one user-defined function of a database integration:
arguments arrive as opaque ``bytes`` (``None`` stands for SQL ``NULL``) and
results are plain Python values. Scalar queries map undecodable input to
``None``; operations that produce a sketch let the error propagate so the
host can flag the call as failed.

Decoding into a :class:`Sketch` (``dds_inspect``, ``dds_json``,
``dds_quantile``, ``dds_invalid``) requires strictly ascending bucket keys, so
a payload that repeats a key or wraps past 65535 is reported as malformed
there. ``dds_merge`` and ``SumAggregate`` fold buckets through an
:class:`Accumulator`, which sums repeated keys and accepts the same payload.
"""
from __future__ import annotations

import logging
from typing import Optional

from .codec import Buffer, Decoder, Metadata
from .dds_sketch import Accumulator, Sketch
from .exceptions import SketchError

logger = logging.getLogger(__name__)


def _read_metadata(data: Optional[Buffer]) -> Optional[Metadata]:
    if data is None:
        return None
    try:
        return Decoder(data).read_metadata()
    except SketchError as exc:
        logger.debug("rejected sketch header: %s", exc)
        return None


def dds_inspect(data: Optional[Buffer]) -> Optional[str]:
    if data is None:
        return None
    return Sketch.from_bytes(data).inspect()


def dds_json(data: Optional[Buffer]) -> Optional[str]:
    if data is None:
        return None
    return Sketch.from_bytes(data).to_json()


def dds_quantile(q: Optional[float], data: Optional[Buffer]) -> Optional[float]:
    if q is None or data is None:
        return None
    try:
        sketch = Sketch.from_bytes(data)
    except SketchError as exc:
        logger.debug("dds_quantile: rejected sketch: %s", exc)
        return None
    return sketch.quantile(float(q))


def dds_merge(left: Optional[Buffer], right: Optional[Buffer]) -> Optional[bytes]:
    """Merge two serialized sketches; a ``None`` side acts as the identity."""
    if left is None and right is None:
        return None
    if left is None:
        return bytes(right)
    if right is None:
        return bytes(left)
    acc = Accumulator()
    acc.merge(left)
    acc.merge(right)
    return acc.to_sketch().to_bytes()


def dds_mean(data: Optional[Buffer]) -> Optional[float]:
    metadata = _read_metadata(data)
    return None if metadata is None else metadata.mean()


def dds_count(data: Optional[Buffer]) -> Optional[int]:
    metadata = _read_metadata(data)
    return None if metadata is None else metadata.count


def dds_total(data: Optional[Buffer]) -> Optional[float]:
    metadata = _read_metadata(data)
    return None if metadata is None else metadata.sum


def dds_invalid(data: Optional[Buffer]) -> Optional[int]:
    """Return ``1`` if ``data`` does not decode as a sketch, else ``0``."""
    if data is None:
        return None
    try:
        Sketch.from_bytes(data)
    except SketchError as exc:
        logger.debug("dds_invalid: %s", exc)
        return 1
    return 0


class SumAggregate:
    """Aggregate state behind ``dds_sum``: merges every row of a group.

    ``add`` skips ``NULL`` rows and raises on malformed or incompatible ones
    without disturbing what was merged so far. ``result`` is ``None`` until a
    row has been merged.
    """

    __slots__ = ("_acc", "_set")

    def __init__(self) -> None:
        self._acc = Accumulator()
        self._set = False

    def add(self, data: Optional[Buffer]) -> None:
        if data is None:
            return
        try:
            self._acc.merge(data)
        except SketchError as exc:
            logger.debug("dds_sum: rejected row: %s", exc)
            raise
        self._set = True

    def clear(self) -> None:
        self._acc.clear()
        self._set = False

    def result(self) -> Optional[bytes]:
        if not self._set:
            return None
        return self._acc.to_sketch().to_bytes()


__all__ = [
    "SumAggregate",
    "dds_count",
    "dds_inspect",
    "dds_invalid",
    "dds_json",
    "dds_mean",
    "dds_merge",
    "dds_quantile",
    "dds_total",
]
