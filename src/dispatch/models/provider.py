"""Provider (fighter) data models.

A provider registers once with a fixed attribute set. The tier is
computed from those attributes at registration and never recomputed.
Status is the only lifecycle field:

    AVAILABLE ↔ BUSY        (ledger: assignment / release)
    any → SUSPENDED         (administration)
    SUSPENDED → AVAILABLE   (administration: reinstate)

Providers are never deleted; suspension is the soft-disable.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class Tier(str, enum.Enum):
    """Ordered capability class of a provider.

    The order is explicit in _TIER_ORDER below. All eligibility checks
    go through satisfies(); do not compare tiers any other way.
    """
    NOVICE = "novice"
    WARRIOR = "warrior"
    EXPERT = "expert"
    ELITE = "elite"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def satisfies(self, required: Tier) -> bool:
        """True if this tier meets or exceeds ``required``."""
        return self.rank >= required.rank


_TIER_ORDER: tuple[Tier, ...] = (
    Tier.NOVICE,
    Tier.WARRIOR,
    Tier.EXPERT,
    Tier.ELITE,
)


class ProviderStatus(str, enum.Enum):
    """Operational status of a provider."""
    AVAILABLE = "available"
    BUSY = "busy"
    SUSPENDED = "suspended"


class Discipline(str, enum.Enum):
    """Primary combat discipline. Drives the capability bonus in scoring."""
    MMA = "mma"
    BOXING = "boxing"
    MUAY_THAI = "muay_thai"
    WRESTLING = "wrestling"
    KICKBOXING = "kickboxing"
    KARATE = "karate"
    JUDO = "judo"
    SELF_DEFENSE = "self_defense"


@dataclass(frozen=True)
class ProviderAttributes:
    """Registration attributes. Immutable once submitted.

    win_rate_bps is on a 0–10000 scale (10000 = 100 %).
    """
    provider_id: str
    display_name: str
    height_cm: int
    weight_kg: int
    is_professional: bool
    years_experience: int
    discipline: Discipline
    win_rate_bps: int


@dataclass
class ProviderProfile:
    """A registered provider.

    The directory is the only writer. tier and attributes are fixed at
    registration; status and the earnings counters are mutated through
    directory operations only.
    """
    provider_id: str
    display_name: str
    tier: Tier
    attributes: ProviderAttributes
    status: ProviderStatus = ProviderStatus.AVAILABLE
    total_earnings: int = 0
    completed_missions: int = 0
    registered_utc: Optional[datetime] = None
    status_changed_utc: Optional[datetime] = None
    suspension_reason: str = ""

    def is_available(self) -> bool:
        return self.status == ProviderStatus.AVAILABLE
