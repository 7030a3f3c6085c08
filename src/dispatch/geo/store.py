"""Geolocation store: last-known provider positions and proximity ranking.

Distance is a squared-Euclidean proxy over the scaled integer
coordinates:

    d = (lat_a - lat_b)**2 + (lng_a - lng_b)**2

This is not a geodesic distance. Ranking stays in exact integer
arithmetic; on equal distance the earlier candidate wins.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable, Optional, Sequence

from dispatch.access import AccessPolicy
from dispatch.clock import Clock, SystemClock
from dispatch.errors import AuthorizationError, ValidationError
from dispatch.models.location import LocationRecord, coordinates_in_range

logger = logging.getLogger(__name__)


def proxy_distance(lat_a: int, lng_a: int, lat_b: int, lng_b: int) -> int:
    """Squared-Euclidean distance between two scaled coordinates."""
    d_lat = lat_a - lat_b
    d_lng = lng_a - lng_b
    return d_lat * d_lat + d_lng * d_lng


class GeolocationStore:
    """Owns the location table. The only writer of LocationRecords.

    Usage:
        store = GeolocationStore(access, clock)
        store.update("fighter-1", "fighter-1", 40_712_776, -74_005_974)
        winner = store.nearest(["fighter-1", "fighter-2"], ref_lat, ref_lng)
    """

    def __init__(
        self,
        access: AccessPolicy,
        clock: Optional[Clock] = None,
        records: Optional[dict[str, LocationRecord]] = None,
    ) -> None:
        self._access = access
        self._clock = clock or SystemClock()
        self._records: dict[str, LocationRecord] = dict(records or {})

    def update(
        self,
        caller_id: str,
        provider_id: str,
        latitude: int,
        longitude: int,
    ) -> LocationRecord:
        """Overwrite a provider's position, mark it valid, stamp the time."""
        if not self._access.may_update_location(caller_id, provider_id):
            raise AuthorizationError(
                f"Caller {caller_id} may not update location of {provider_id}"
            )
        self.validate_coordinates(latitude, longitude)
        record = LocationRecord(
            provider_id=provider_id.strip(),
            latitude=latitude,
            longitude=longitude,
            updated_utc=self._clock.now(),
            valid=True,
        )
        self._records[record.provider_id] = record
        return record

    def get(self, provider_id: str) -> Optional[LocationRecord]:
        return self._records.get(provider_id.strip())

    def nearest(
        self,
        candidates: Sequence[str],
        ref_lat: int,
        ref_lng: int,
    ) -> Optional[str]:
        """Return the candidate closest to the reference point.

        Single pass in the given order. Candidates with no record or an
        invalid record are skipped. On equal distance the earlier
        candidate wins, so callers must pass a meaningful priority
        order. Returns None when no candidate has a valid record.
        """
        best_id: Optional[str] = None
        best_distance = 0
        for provider_id in candidates:
            record = self._records.get(provider_id)
            if record is None or not record.valid:
                continue
            distance = proxy_distance(record.latitude, record.longitude, ref_lat, ref_lng)
            if best_id is None or distance < best_distance:
                best_id = provider_id
                best_distance = distance
        return best_id

    def sweep_stale(
        self,
        caller_id: str,
        provider_ids: Iterable[str],
        max_age: timedelta,
    ) -> list[str]:
        """Invalidate records older than ``max_age``. Admin only.

        Records are kept for audit; only the valid flag changes.
        Returns the ids that were invalidated by this sweep.
        """
        if not self._access.is_admin(caller_id):
            raise AuthorizationError(f"Caller {caller_id} may not sweep locations")
        if max_age < timedelta(0):
            raise ValidationError(f"max_age must be non-negative, got {max_age}")
        cutoff = self._clock.now() - max_age
        invalidated: list[str] = []
        for provider_id in provider_ids:
            record = self._records.get(provider_id.strip())
            if record is None or not record.valid:
                continue
            if record.updated_utc < cutoff:
                record.valid = False
                invalidated.append(record.provider_id)
        if invalidated:
            logger.info("Invalidated %d stale location(s)", len(invalidated))
        return invalidated

    def all_records(self) -> list[LocationRecord]:
        return list(self._records.values())

    @staticmethod
    def validate_coordinates(latitude: int, longitude: int) -> None:
        if isinstance(latitude, bool) or isinstance(longitude, bool):
            raise ValidationError("Coordinates must be integers")
        if not isinstance(latitude, int) or not isinstance(longitude, int):
            raise ValidationError(
                "Coordinates must be integers scaled by 10**6, "
                f"got {latitude!r}, {longitude!r}"
            )
        if not coordinates_in_range(latitude, longitude):
            raise ValidationError(
                f"Coordinates out of range: ({latitude}, {longitude})"
            )
