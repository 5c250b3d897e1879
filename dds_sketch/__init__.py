"""dds_sketch package public API."""
from ._metadata import __version__
from .codec import Bucket, Decoder, Metadata, encode_varint
from .dds_sketch import Accumulator, Sketch
from .exceptions import (
    EmptyAccumulatorError,
    IncompatibleSketchError,
    MalformedSketchError,
    SketchError,
)


class DDSketch(Sketch):
    """Alias for :class:`Sketch` used by the benchmarking utilities."""


__all__ = [
    "Accumulator",
    "Bucket",
    "DDSketch",
    "Decoder",
    "EmptyAccumulatorError",
    "IncompatibleSketchError",
    "MalformedSketchError",
    "Metadata",
    "Sketch",
    "SketchError",
    "encode_varint",
    "__version__",
]
