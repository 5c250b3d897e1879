"""Exception types raised by :mod:`dds_sketch`."""
from __future__ import annotations


class SketchError(Exception):
    """Base class for every error raised by the sketch codec and merge engine."""


class MalformedSketchError(SketchError, ValueError):
    """The payload could not be decoded into a valid sketch.

    Raised for truncated buffers, varints exceeding their byte budget,
    non-finite floats, metadata failing its validity check and sketches
    without any bucket.
    """


class IncompatibleSketchError(SketchError, ValueError):
    """Two sketches disagree on ``gamma`` or format ``version``."""


class EmptyAccumulatorError(SketchError, RuntimeError):
    """A sketch was requested from an accumulator that never merged anything."""


__all__ = [
    "SketchError",
    "MalformedSketchError",
    "IncompatibleSketchError",
    "EmptyAccumulatorError",
]
