"""Mission data model.

Mission lifecycle:
    CREATED → ASSIGNED → COMPLETED
    CREATED → CANCELLED
    ASSIGNED → DISPUTED → COMPLETED

COMPLETED and CANCELLED are terminal. Funds move exactly once, on the
transition into a terminal state.

Amounts are integers in the single value unit. The split is fixed at
creation: fighter_amount + platform_fee == total_amount.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dispatch.models.provider import Tier


class MissionState(str, enum.Enum):
    """Lifecycle state of a mission."""
    CREATED = "created"
    ASSIGNED = "assigned"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DisputeResolution(str, enum.Enum):
    """Outcome of an administrative dispute resolution."""
    FAVOR_CLIENT = "favor_client"
    FAVOR_PROVIDER = "favor_provider"


@dataclass
class Mission:
    """A client-posted job with escrowed payment.

    location_hash is an opaque commitment to the job location; the raw
    client coordinates are kept separately for matching.
    """
    mission_id: int
    client_id: str
    location_hash: str
    client_latitude: int
    client_longitude: int
    total_amount: int
    fighter_amount: int
    platform_fee: int
    required_tier: Tier
    state: MissionState = MissionState.CREATED
    assigned_provider_id: Optional[str] = None
    description: str = ""
    created_utc: Optional[datetime] = None
    assigned_utc: Optional[datetime] = None
    completed_utc: Optional[datetime] = None
    disputed_by: Optional[str] = None
    resolution: Optional[DisputeResolution] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (MissionState.COMPLETED, MissionState.CANCELLED)
