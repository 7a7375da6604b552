"""Hashing helpers used to spread hosts over upstream servers."""

from __future__ import annotations

_MASK64 = (1 << 64) - 1
_FNV_PRIME = 0x100000001B3
_JUMP_MULTIPLIER = 2862933555777941757


def fnv(data: bytes | str) -> int:
    """Return a 64-bit FNV-1a style hash of ``data``, starting from zero."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    value = 0
    for byte in data:
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK64
    return value


def jumphash(key: int, buckets: int) -> int:
    """Map ``key`` to a bucket in ``range(buckets)`` with jump consistent hashing.

    Returns -1 when ``buckets`` is not positive.
    """
    key &= _MASK64
    b, j = -1, 0
    while j < buckets:
        b = j
        key = (key * _JUMP_MULTIPLIER + 1) & _MASK64
        j = int(float(b + 1) * (float(1 << 31) / float((key >> 33) + 1)))
    return b