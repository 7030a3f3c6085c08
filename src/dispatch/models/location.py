"""Location record model.

Coordinates are fixed-point integers: degrees scaled by 10**6. All
distance arithmetic stays in integers.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime

COORD_SCALE = 1_000_000
MAX_LATITUDE = 90 * COORD_SCALE
MAX_LONGITUDE = 180 * COORD_SCALE


@dataclass
class LocationRecord:
    """Last known position of a provider.

    A record with valid=False is never used for matching, however recent.
    Stale records are invalidated in place, never deleted.
    """
    provider_id: str
    latitude: int
    longitude: int
    updated_utc: datetime
    valid: bool = True


def to_fixed(degrees: float) -> int:
    """Convert decimal degrees to the scaled integer representation."""
    return int(round(degrees * COORD_SCALE))


def coordinates_in_range(latitude: int, longitude: int) -> bool:
    return (
        -MAX_LATITUDE <= latitude <= MAX_LATITUDE
        and -MAX_LONGITUDE <= longitude <= MAX_LONGITUDE
    )


def location_commitment(latitude: int, longitude: int, nonce: str = "") -> str:
    """Opaque commitment to a job location.

    The nonce lets a client commit to the same point twice without the
    two hashes being linkable.
    """
    material = f"{latitude}:{longitude}:{nonce}".encode("utf-8")
    return f"sha256:{hashlib.sha256(material).hexdigest()}"
