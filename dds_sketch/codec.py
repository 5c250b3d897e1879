# DDSketch wire codec
# - Base-128 varints (LSB-first groups, bit 7 = continuation)
# - Little-endian float32 metadata fields, non-finite values rejected
# - Delta-encoded u16 bucket keys
# Every read is bounds-checked against a memoryview; a failed read leaves the
# cursor where it was.

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from typing import Iterator, Union

from .exceptions import IncompatibleSketchError, MalformedSketchError

FORMAT_VERSION = 1

VARINT16_MAX_BYTES = 3
VARINT64_MAX_BYTES = 10

_U8_MAX = 0xFF
_U16_MASK = 0xFFFF
U64_MASK = 0xFFFFFFFFFFFFFFFF

_FLOAT32 = struct.Struct("<f")
_HEADER = struct.Struct("<Bff")

Buffer = Union[bytes, bytearray, memoryview]


def to_float32(value: float) -> float:
    """Round ``value`` to the nearest IEEE-754 single precision value.

    Magnitudes beyond the float32 range become infinities, as they would in
    native single precision arithmetic.
    """
    try:
        return _FLOAT32.unpack(_FLOAT32.pack(value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def encode_varint(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as a base-128 varint."""
    value = int(value)
    if value < 0:
        raise ValueError(f"cannot encode negative value {value} as a varint")
    if value > U64_MASK:
        raise ValueError("varint value must fit in 64 bits")
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


@dataclass(frozen=True)
class Metadata:
    """Fixed-shape sketch header: format version, scale, running sum and count.

    ``gamma`` and ``sum`` are stored as their float32 values so that an
    in-memory header compares equal to its decoded wire form.
    """

    version: int
    gamma: float
    sum: float
    count: int

    def __post_init__(self) -> None:
        version = int(self.version)
        count = int(self.count)
        if not 0 <= version <= _U8_MAX:
            raise ValueError("version must fit in an unsigned byte")
        if not 0 <= count <= U64_MASK:
            raise ValueError("count must fit in 64 bits")
        object.__setattr__(self, "version", version)
        object.__setattr__(self, "count", count)
        object.__setattr__(self, "gamma", to_float32(float(self.gamma)))
        object.__setattr__(self, "sum", to_float32(float(self.sum)))

    def valid(self) -> bool:
        # ``not >`` so that a NaN gamma is rejected as well.
        if not self.gamma > 1.0:
            return False
        if self.version != FORMAT_VERSION:
            return False
        return self.count != 0

    def mergeable(self, other: "Metadata") -> bool:
        return self.gamma == other.gamma and self.version == other.version

    def mean(self) -> float:
        return self.sum / self.count

    def combine(self, other: "Metadata") -> "Metadata":
        """Return the header describing both populations.

        ``sum`` follows float32 arithmetic and ``count`` wraps at 64 bits,
        mirroring the field widths on the wire.
        """
        if not self.mergeable(other):
            raise IncompatibleSketchError(
                f"cannot combine gamma={self.gamma!r} version={self.version} "
                f"with gamma={other.gamma!r} version={other.version}"
            )
        return Metadata(
            version=self.version,
            gamma=self.gamma,
            sum=to_float32(self.sum + other.sum),
            count=(self.count + other.count) & U64_MASK,
        )

    def to_bytes(self) -> bytes:
        return _HEADER.pack(self.version, self.gamma, self.sum) + encode_varint(self.count)


@dataclass(frozen=True)
class Bucket:
    """Population of histogram cell ``key``; ordered by ``key`` alone."""

    key: int
    count: int

    def __post_init__(self) -> None:
        key = int(self.key)
        count = int(self.count)
        if not 0 <= key <= _U16_MASK:
            raise ValueError("bucket key must fit in 16 bits")
        if not 0 <= count <= U64_MASK:
            raise ValueError("bucket count must fit in 64 bits")
        object.__setattr__(self, "key", key)
        object.__setattr__(self, "count", count)

    def __lt__(self, other: "Bucket") -> bool:
        if not isinstance(other, Bucket):
            return NotImplemented
        return self.key < other.key


class Decoder:
    """Forward-only cursor over one serialized sketch.

    ``prev_key`` carries the running key used to undo the delta encoding of
    bucket keys and is scoped to this decoder instance.
    """

    __slots__ = ("_buf", "_pos", "prev_key")

    def __init__(self, data: Buffer):
        self._buf = memoryview(data).cast("B")
        self._pos = 0
        self.prev_key = 0

    @property
    def position(self) -> int:
        return self._pos

    def empty(self) -> bool:
        return self._pos >= len(self._buf)

    def bytes_left(self) -> int:
        return len(self._buf) - self._pos

    def advance(self, length: int) -> memoryview:
        """Consume exactly ``length`` bytes and return them."""
        if self.bytes_left() < length:
            raise MalformedSketchError(
                f"truncated input: needed {length} bytes, {self.bytes_left()} left"
            )
        start = self._pos
        self._pos += length
        return self._buf[start:self._pos]

    # ------------------------------- Primitives --------------------------------
    def read_varint(self, max_len: int) -> int:
        buf = self._buf
        start = pos = self._pos
        limit = min(len(buf), start + max_len)
        shift = 0
        value = 0
        while pos < limit:
            byte = buf[pos]
            value |= (byte & 0x7F) << shift
            pos += 1
            if not byte & 0x80:
                self._pos = pos
                return value & U64_MASK
            shift += 7
        if limit - start >= max_len:
            raise MalformedSketchError(f"varint longer than {max_len} bytes")
        raise MalformedSketchError("truncated varint")

    def read_varint16(self) -> int:
        return self.read_varint(VARINT16_MAX_BYTES) & _U16_MASK

    def read_varint64(self) -> int:
        return self.read_varint(VARINT64_MAX_BYTES)

    def read_fixed_int8(self) -> int:
        return self.advance(1)[0]

    def read_float(self) -> float:
        if self.bytes_left() < _FLOAT32.size:
            raise MalformedSketchError("truncated float")
        value = _FLOAT32.unpack_from(self._buf, self._pos)[0]
        if math.isnan(value) or math.isinf(value):
            raise MalformedSketchError("float field must be finite")
        self._pos += _FLOAT32.size
        return value

    # ------------------------------- Records -----------------------------------
    def read_metadata(self) -> Metadata:
        start = self._pos
        try:
            version = self.read_fixed_int8()
            gamma = self.read_float()
            total = self.read_float()
            count = self.read_varint64()
        except MalformedSketchError:
            self._pos = start
            raise
        metadata = Metadata(version=version, gamma=gamma, sum=total, count=count)
        if not metadata.valid():
            self._pos = start
            raise MalformedSketchError(f"invalid metadata: {metadata}")
        return metadata

    def read_bucket(self) -> Bucket:
        start = self._pos
        try:
            delta = self.read_varint16()
            count = self.read_varint64()
        except MalformedSketchError:
            self._pos = start
            raise
        key = (self.prev_key + delta) & _U16_MASK
        self.prev_key = key
        return Bucket(key=key, count=count)

    def read_buckets(self) -> Iterator[Bucket]:
        """Yield buckets until the input is exhausted."""
        while not self.empty():
            yield self.read_bucket()


__all__ = [
    "FORMAT_VERSION",
    "U64_MASK",
    "VARINT16_MAX_BYTES",
    "VARINT64_MAX_BYTES",
    "Bucket",
    "Decoder",
    "Metadata",
    "encode_varint",
    "to_float32",
]
