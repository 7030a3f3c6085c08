"""Settlement models: the fund movements of a terminal transition.

A Settlement is the full, ordered batch of payouts released from
custody for one mission. It is submitted to the funds rail as a single
all-or-nothing call and recorded exactly once per mission.

Invariant: sum(p.amount for p in payouts) == mission.total_amount
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class PayoutReason(str, enum.Enum):
    """Why a payout left custody."""
    FIGHTER_PAYMENT = "fighter_payment"
    PLATFORM_FEE = "platform_fee"
    CLIENT_REFUND = "client_refund"
    CANCELLATION_PENALTY = "cancellation_penalty"


@dataclass(frozen=True)
class Payout:
    """A single transfer instruction out of custody."""
    recipient_id: str
    amount: int
    reason: PayoutReason


@dataclass(frozen=True)
class Settlement:
    """All payouts for one mission's terminal transition."""
    mission_id: int
    payouts: tuple[Payout, ...] = field(default_factory=tuple)
    settled_utc: Optional[datetime] = None

    @property
    def total(self) -> int:
        return sum(p.amount for p in self.payouts)

    def amount_to(self, recipient_id: str) -> int:
        return sum(p.amount for p in self.payouts if p.recipient_id == recipient_id)
