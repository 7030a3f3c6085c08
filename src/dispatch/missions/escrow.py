"""Escrow split: how a mission's deposit is divided and released.

The client deposits total_amount when the mission is created. The
split is fixed at that moment:

    platform_fee   = total_amount * fee_bps // 10000
    fighter_amount = total_amount - platform_fee

Integer division truncates; the remainder always stays with the
fighter, so the two parts sum to the deposit exactly.

On a terminal transition the escrow is released as one settlement:

    complete                    fighter_amount → provider, platform_fee → platform
    dispute, favor provider     fighter_amount → provider, platform_fee → platform
    dispute, favor client       fighter_amount → client,   platform_fee → platform
    cancel (CREATED only)       penalty → platform, total - penalty → client
                                penalty = total_amount * penalty_bps // 10000

Every settlement sums to total_amount. Zero-amount payouts are omitted.

Pure computation: the ledger decides when to settle and submits the
payouts to the funds rail.
"""

from __future__ import annotations

from typing import Optional

from dispatch.errors import PreconditionError, ValidationError
from dispatch.models.mission import Mission
from dispatch.models.settlement import Payout, PayoutReason
from dispatch.policy.resolver import BPS_DENOMINATOR, PolicyResolver


def bps_of(amount: int, bps: int) -> int:
    """``amount * bps / 10000``, truncated toward zero."""
    return amount * bps // BPS_DENOMINATOR


class EscrowCalculator:
    """Computes deposit splits and terminal payouts.

    Usage:
        calc = EscrowCalculator(resolver)
        fighter_amount, platform_fee = calc.split_deposit(1000)
        payouts = calc.completion_payouts(mission)
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._fee_bps = resolver.platform_fee_bps()
        self._penalty_bps = resolver.cancellation_penalty_bps()
        self._platform_account = resolver.platform_account()

    @property
    def platform_account(self) -> str:
        return self._platform_account

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    def split_deposit(self, total_amount: int) -> tuple[int, int]:
        """Return (fighter_amount, platform_fee) for a deposit."""
        if total_amount <= 0:
            raise ValidationError("Deposit amount must be positive")
        platform_fee = bps_of(total_amount, self._fee_bps)
        return total_amount - platform_fee, platform_fee

    def completion_payouts(self, mission: Mission) -> tuple[Payout, ...]:
        return self._fighter_side(mission, self._require_provider(mission))

    def dispute_payouts(
        self,
        mission: Mission,
        favor_client: bool,
    ) -> tuple[Payout, ...]:
        if favor_client:
            payouts = [
                Payout(mission.client_id, mission.fighter_amount, PayoutReason.CLIENT_REFUND),
                Payout(self._platform_account, mission.platform_fee, PayoutReason.PLATFORM_FEE),
            ]
            return self._nonzero(payouts)
        return self._fighter_side(mission, self._require_provider(mission))

    def cancellation_payouts(self, mission: Mission) -> tuple[Payout, ...]:
        penalty = bps_of(mission.total_amount, self._penalty_bps)
        payouts = [
            Payout(mission.client_id, mission.total_amount - penalty, PayoutReason.CLIENT_REFUND),
            Payout(self._platform_account, penalty, PayoutReason.CANCELLATION_PENALTY),
        ]
        return self._nonzero(payouts)

    def _fighter_side(self, mission: Mission, provider_id: str) -> tuple[Payout, ...]:
        payouts = [
            Payout(provider_id, mission.fighter_amount, PayoutReason.FIGHTER_PAYMENT),
            Payout(self._platform_account, mission.platform_fee, PayoutReason.PLATFORM_FEE),
        ]
        return self._nonzero(payouts)

    @staticmethod
    def _require_provider(mission: Mission) -> str:
        provider_id: Optional[str] = mission.assigned_provider_id
        if provider_id is None:
            raise PreconditionError(
                f"Mission {mission.mission_id} has no assigned provider"
            )
        return provider_id

    @staticmethod
    def _nonzero(payouts: list[Payout]) -> tuple[Payout, ...]:
        return tuple(p for p in payouts if p.amount > 0)
