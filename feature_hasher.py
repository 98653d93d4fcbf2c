"""
Deterministic hashing of line features.

Used to find features with identical geometries, which are then drawn as
one stack of parallel lines.
"""

import hashlib
import struct
import time
from typing import Any, Sequence

from features import coordinates_of

HASH_BITS = 64
HASH_MASK = (1 << HASH_BITS) - 1
HASH_SEED = 17
HASH_MULTIPLIER = 31

# Markers keep e.g. None, False and 0 apart
_NONE_MARKER = 0x6E6F6E65
_TRUE_MARKER = 0x74727565
_FALSE_MARKER = 0x66616C73


def _double_bits(value: float) -> int:
    """IEEE-754 bit pattern of a double as an unsigned integer."""
    return struct.unpack("<Q", struct.pack("<d", float(value)))[0]


def _bytes_bits(data: bytes) -> int:
    return int.from_bytes(hashlib.blake2b(data, digest_size=8).digest(), "little")


def _value_bits(value: Any) -> int:
    if value is None:
        return _NONE_MARKER
    if isinstance(value, bool):
        return _TRUE_MARKER if value else _FALSE_MARKER
    if isinstance(value, int):
        return value & HASH_MASK
    if isinstance(value, float):
        return _double_bits(value)
    if isinstance(value, bytes):
        return _bytes_bits(value)
    return _bytes_bits(str(value).encode("utf-8"))


def _mix(bits: int) -> int:
    # splitmix64 finalizer, spreads the high exponent bits of small doubles
    z = (bits + 0x9E3779B97F4A7C15) & HASH_MASK
    z = ((z ^ (z >> 30)) * 0xBF58476D1CE4E5B9) & HASH_MASK
    z = ((z ^ (z >> 27)) * 0x94D049BB133111EB) & HASH_MASK
    return z ^ (z >> 31)


def _fold(h: int, bits: int) -> int:
    return (h * HASH_MULTIPLIER + _mix(bits)) & HASH_MASK


class GeometryHasher:
    """Order sensitive 64 bit hash over a feature's coordinates and attributes.

    Equal coordinate sequences always give equal hashes. Reversed lines hash
    differently. Attribute values are only included when named in
    `included_attributes`; stacking uses the geometry alone.
    """

    def __init__(
        self,
        included_attributes: Sequence[str] = (),
        include_geometry: bool = True,
        measuring_enabled: bool = False
    ):
        self.included_attributes = list(included_attributes)
        self.include_geometry = include_geometry
        self.measuring_enabled = measuring_enabled
        self.time_spent = 0.0

    def hash_geometry(self, geometry, h: int = HASH_SEED) -> int:
        """Fold the coordinates of a line into `h`."""
        for x, y in coordinates_of(geometry):
            h = _fold(h, _double_bits(x))
            h = _fold(h, _double_bits(y))
        return h

    def hash(self, feature) -> int:
        """Hash of a feature (input or aggregated)."""
        started = time.perf_counter() if self.measuring_enabled else None

        h = HASH_SEED
        if self.include_geometry:
            h = self.hash_geometry(feature.geometry, h)
        for name in self.included_attributes:
            h = _fold(h, _value_bits(feature.attributes.get(name)))

        if started is not None:
            self.time_spent += time.perf_counter() - started
        return h
