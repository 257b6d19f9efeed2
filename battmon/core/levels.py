"""Battery Level value decoding and display tiers."""

from __future__ import annotations

from battmon.core.errors import MalformedValueError

_MAX_LEVEL = 100
_HIGH_THRESHOLD = 65
_MEDIUM_THRESHOLD = 30


def decode_level(raw: bytes | bytearray) -> int:
    """Decode a raw Battery Level value into a percentage.

    The value must be a single unsigned byte in the range 0..100.
    """
    if len(raw) != 1:
        raise MalformedValueError(f"Invalid Battery Level value length: {len(raw)}")
    level = raw[0]
    if level > _MAX_LEVEL:
        raise MalformedValueError(f"Battery Level {level} is outside 0..{_MAX_LEVEL}")
    return level


def classify_level(level: int) -> str:
    if level > _HIGH_THRESHOLD:
        return "high"
    if level > _MEDIUM_THRESHOLD:
        return "medium"
    return "low"
