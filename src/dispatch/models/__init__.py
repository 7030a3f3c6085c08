"""Core data models for the dispatch marketplace."""

from dispatch.models.location import COORD_SCALE, LocationRecord, location_commitment
from dispatch.models.mission import DisputeResolution, Mission, MissionState
from dispatch.models.provider import (
    Discipline,
    ProviderAttributes,
    ProviderProfile,
    ProviderStatus,
    Tier,
)
from dispatch.models.settlement import Payout, PayoutReason, Settlement

__all__ = [
    "COORD_SCALE",
    "Discipline",
    "DisputeResolution",
    "LocationRecord",
    "Mission",
    "MissionState",
    "Payout",
    "PayoutReason",
    "ProviderAttributes",
    "ProviderProfile",
    "ProviderStatus",
    "Settlement",
    "Tier",
    "location_commitment",
]
