"""Pytest configuration: import path and the shared reference payload."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# The repository root holds the ``dds_sketch`` package; put it on ``sys.path``
# so the suite also runs from a plain checkout without installing anything.
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


REFERENCE_PAYLOAD = bytes(
    [
        0x01,                    # version = 1
        0xFB, 0x95, 0x82, 0x3F,  # gamma = 1.020202 (f32 LE)
        0xCD, 0xCC, 0x0C, 0x41,  # sum = 8.8 (f32 LE)
        0x04,                    # count = 4
        0x05, 0x01,              # key 5, count 1
        0x23, 0x02,              # delta 35 -> key 40, count 2
        0x14, 0x01,              # delta 20 -> key 60, count 1
    ]
)


@pytest.fixture(scope="session")
def reference_payload() -> bytes:
    return REFERENCE_PAYLOAD
