"""GATT UUID normalization."""

from __future__ import annotations

import re

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"


def normalize_uuid(value: str) -> str:
    """Return the lowercase 128-bit form of a 16-, 32- or 128-bit UUID string.

    Raises ValueError for anything else.
    """
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ValueError(f"'{value}' is not a 16-bit, 32-bit, or 128-bit UUID string")
    if len(normalized) == 4:
        return f"0000{normalized}{_BASE_UUID_SUFFIX}"
    if len(normalized) == 8:
        return f"{normalized}{_BASE_UUID_SUFFIX}"
    return normalized


def uuid_matches(value: str, normalized: str) -> bool:
    """Compare an adapter-reported UUID in any accepted form against a normalized one."""
    try:
        return normalize_uuid(value) == normalized
    except ValueError:
        return False
