"""Tests for the escrow split: every settlement sums to the deposit."""

import pytest

from dispatch.errors import PreconditionError, ValidationError
from dispatch.missions.escrow import EscrowCalculator, bps_of
from dispatch.models.mission import Mission, MissionState
from dispatch.models.provider import Tier
from dispatch.models.settlement import PayoutReason
from dispatch.policy.resolver import PolicyResolver


@pytest.fixture
def calc(resolver: PolicyResolver) -> EscrowCalculator:
    return EscrowCalculator(resolver)


def _make_mission(
    calc: EscrowCalculator,
    total: int = 1000,
    provider_id: str | None = "f1",
) -> Mission:
    fighter, fee = calc.split_deposit(total)
    return Mission(
        mission_id=1,
        client_id="client-1",
        location_hash="sha256:abc",
        client_latitude=0,
        client_longitude=0,
        total_amount=total,
        fighter_amount=fighter,
        platform_fee=fee,
        required_tier=Tier.NOVICE,
        state=MissionState.ASSIGNED,
        assigned_provider_id=provider_id,
    )


class TestSplit:
    def test_default_fee(self, calc: EscrowCalculator) -> None:
        assert calc.split_deposit(1000) == (950, 50)

    def test_remainder_goes_to_fighter(self, calc: EscrowCalculator) -> None:
        # 999 * 500 // 10000 == 49
        assert calc.split_deposit(999) == (950, 49)

    @pytest.mark.parametrize("total", [1, 19, 20, 21, 12_345, 10**12 + 7])
    def test_split_identity(self, calc: EscrowCalculator, total: int) -> None:
        fighter, fee = calc.split_deposit(total)
        assert fighter + fee == total
        assert fee == total * 500 // 10000

    def test_tiny_deposit_has_zero_fee(self, calc: EscrowCalculator) -> None:
        assert calc.split_deposit(1) == (1, 0)

    @pytest.mark.parametrize("total", [0, -5])
    def test_non_positive_rejected(self, calc: EscrowCalculator, total: int) -> None:
        with pytest.raises(ValidationError):
            calc.split_deposit(total)

    def test_bps_of(self) -> None:
        assert bps_of(1000, 100) == 10
        assert bps_of(99, 100) == 0


class TestPayouts:
    def test_completion(self, calc: EscrowCalculator) -> None:
        payouts = calc.completion_payouts(_make_mission(calc))
        assert [(p.recipient_id, p.amount, p.reason) for p in payouts] == [
            ("f1", 950, PayoutReason.FIGHTER_PAYMENT),
            ("platform", 50, PayoutReason.PLATFORM_FEE),
        ]

    def test_dispute_favor_client(self, calc: EscrowCalculator) -> None:
        payouts = calc.dispute_payouts(_make_mission(calc), favor_client=True)
        assert [(p.recipient_id, p.amount) for p in payouts] == [
            ("client-1", 950), ("platform", 50),
        ]
        assert payouts[0].reason == PayoutReason.CLIENT_REFUND

    def test_dispute_favor_provider(self, calc: EscrowCalculator) -> None:
        payouts = calc.dispute_payouts(_make_mission(calc), favor_client=False)
        assert payouts[0].recipient_id == "f1"
        assert sum(p.amount for p in payouts) == 1000

    def test_cancellation(self, calc: EscrowCalculator) -> None:
        payouts = calc.cancellation_payouts(_make_mission(calc, provider_id=None))
        assert [(p.recipient_id, p.amount, p.reason) for p in payouts] == [
            ("client-1", 990, PayoutReason.CLIENT_REFUND),
            ("platform", 10, PayoutReason.CANCELLATION_PENALTY),
        ]

    def test_zero_payouts_omitted(self, calc: EscrowCalculator) -> None:
        payouts = calc.cancellation_payouts(_make_mission(calc, total=50, provider_id=None))
        assert len(payouts) == 1
        assert payouts[0].amount == 50

    def test_completion_needs_provider(self, calc: EscrowCalculator) -> None:
        with pytest.raises(PreconditionError):
            calc.completion_payouts(_make_mission(calc, provider_id=None))

    @pytest.mark.parametrize("total", [1, 7, 99, 101, 1000, 65_537])
    def test_every_payout_set_sums_to_total(self, calc: EscrowCalculator, total: int) -> None:
        mission = _make_mission(calc, total=total)
        for payouts in (
            calc.completion_payouts(mission),
            calc.dispute_payouts(mission, True),
            calc.dispute_payouts(mission, False),
            calc.cancellation_payouts(mission),
        ):
            assert sum(p.amount for p in payouts) == total

    def test_zero_fee_policy(self) -> None:
        calc = EscrowCalculator(PolicyResolver({"fees": {"platform_fee_bps": 0}}))
        assert calc.split_deposit(1000) == (1000, 0)
        payouts = calc.completion_payouts(_make_mission(calc))
        assert len(payouts) == 1
