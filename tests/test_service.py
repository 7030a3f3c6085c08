"""Tests for DispatchService: the facade orchestrates correctly."""

import pytest

from dispatch.models.mission import MissionState
from dispatch.models.provider import Discipline, ProviderAttributes, ProviderStatus, Tier
from dispatch.payments.rail import InMemoryFundsRail
from dispatch.persistence.event_log import EventKind, EventLog
from dispatch.policy.resolver import PolicyResolver
from dispatch.service import DispatchService


def _make_attrs(provider_id: str, **overrides) -> ProviderAttributes:
    values = dict(
        provider_id=provider_id,
        display_name=provider_id.title(),
        height_cm=182,
        weight_kg=84,
        is_professional=True,
        years_experience=2,
        discipline=Discipline.MMA,
        win_rate_bps=0,
    )
    values.update(overrides)
    return ProviderAttributes(**values)


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def rail() -> InMemoryFundsRail:
    return InMemoryFundsRail()


@pytest.fixture
def service(resolver: PolicyResolver, event_log: EventLog, rail: InMemoryFundsRail, clock) -> DispatchService:
    return DispatchService(resolver, event_log=event_log, rail=rail, clock=clock)


def _open_mission(service: DispatchService, deposit: int = 1000) -> int:
    result = service.create_mission("c1", 0, 0, "Door security", Tier.WARRIOR, deposit)
    assert result.success
    return result.data["mission_id"]


class TestProviders:
    def test_register_sets_location(self, service: DispatchService) -> None:
        result = service.register_provider(_make_attrs("p"), 40_712_776, -74_005_974)
        assert result.success
        assert result.data == {"provider_id": "p", "tier": "expert"}
        record = service.get_location("p")
        assert record.valid
        assert record.longitude == -74_005_974
        assert service.list_available_providers() == ["p"]

    def test_bad_coordinates_register_nothing(self, service: DispatchService) -> None:
        result = service.register_provider(_make_attrs("p"), 95_000_000, 0)
        assert not result.success
        assert result.data["category"] == "validation"
        assert service.get_provider("p") is None

    def test_mistyped_attributes_fail_cleanly(self, service: DispatchService) -> None:
        result = service.register_provider(_make_attrs("p", height_cm="180"), 1, 1)
        assert not result.success
        assert result.data["category"] == "validation"
        assert service.get_provider("p") is None

    def test_duplicate_is_precondition(self, service: DispatchService) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        result = service.register_provider(_make_attrs("p"), 2, 2)
        assert not result.success
        assert result.data["category"] == "precondition"
        assert service.get_location("p").latitude == 1

    def test_update_location_authority(self, service: DispatchService) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        assert service.update_location("p", "p", 5, 5).success
        assert service.update_location("geo-gateway", "p", 6, 6).success
        denied = service.update_location("q", "p", 7, 7)
        assert not denied.success
        assert denied.data["category"] == "administrative"
        assert service.get_location("p").latitude == 6

    def test_update_unknown_provider(self, service: DispatchService) -> None:
        result = service.update_location("admin", "ghost", 1, 1)
        assert not result.success
        assert result.data["category"] == "precondition"
        assert service.get_location("ghost") is None

    def test_suspend_and_reinstate(self, service: DispatchService, event_log: EventLog) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        assert not service.suspend_provider("p", "p").success
        assert service.suspend_provider("admin", "p", "complaint").success
        assert service.get_provider("p").status == ProviderStatus.SUSPENDED
        assert service.reinstate_provider("admin", "p").success
        assert service.get_provider("p").status == ProviderStatus.AVAILABLE
        changes = event_log.events(EventKind.PROVIDER_STATUS_CHANGED)
        assert [(e.payload["from"], e.payload["to"]) for e in changes] == [
            ("available", "suspended"), ("suspended", "available"),
        ]

    def test_reinstate_mid_mission_cannot_double_book(self, service: DispatchService) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        first = _open_mission(service)
        service.assign_nearest("c1", first)
        service.suspend_provider("admin", "p")

        result = service.reinstate_provider("admin", "p")
        assert result.success
        assert result.data["status"] == "busy"
        assert service.list_available_providers() == []

        second = _open_mission(service)
        assert service.assign_nearest("c1", second).data["category"] == "resource"
        service.complete("p", first)
        assert service.assign_nearest("c1", second).data["provider_id"] == "p"
        third = _open_mission(service)
        assert not service.assign_nearest("c1", third).success
        assert service.missions_for_provider("p") == [first, second]

    def test_sweep_uses_policy_max_age(self, service: DispatchService, clock) -> None:
        service.register_provider(_make_attrs("old"), 1, 1)
        clock.advance(3000)
        service.register_provider(_make_attrs("new"), 2, 2)
        clock.advance(601)

        result = service.sweep_stale_locations("admin")
        assert result.success
        assert result.data["invalidated"] == ["old"]
        assert not service.get_location("old").valid

        mid = _open_mission(service)
        assigned = service.assign_nearest("c1", mid)
        assert assigned.data["provider_id"] == "new"

    def test_sweep_requires_admin(self, service: DispatchService) -> None:
        result = service.sweep_stale_locations("c1", 0)
        assert not result.success
        assert result.data["category"] == "administrative"


class TestMissionFlow:
    def test_create_derives_location_hash(self, service: DispatchService) -> None:
        mid = _open_mission(service)
        mission = service.get_mission(mid)
        assert mission.location_hash.startswith("sha256:")

    def test_full_completion(self, service: DispatchService, event_log: EventLog, rail: InMemoryFundsRail) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        mid = _open_mission(service)
        assert service.assign_nearest("c1", mid).success
        result = service.complete("p", mid)

        assert result.success
        assert {(p["recipient_id"], p["amount"]) for p in result.data["payouts"]} == {
            ("p", 950), ("platform", 50),
        }
        assert rail.balance_of("p") == 950
        assert event_log.disbursed_total(mid) == 1000
        kinds = [e.event_kind for e in event_log.events_for_mission(mid)]
        assert kinds == [
            EventKind.MISSION_CREATED,
            EventKind.MISSION_ASSIGNED,
            EventKind.MISSION_COMPLETED,
            EventKind.FUNDS_DISBURSED,
            EventKind.FUNDS_DISBURSED,
        ]

    def test_no_provider_is_resource_error(self, service: DispatchService) -> None:
        mid = _open_mission(service)
        result = service.assign_nearest("c1", mid)
        assert not result.success
        assert result.data["category"] == "resource"
        assert service.get_mission(mid).state == MissionState.CREATED

    def test_refused_transfer_changes_nothing(self, service: DispatchService, event_log: EventLog, rail: InMemoryFundsRail) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        mid = _open_mission(service)
        service.assign_specific("c1", mid, "p")
        before = event_log.count
        rail.reject_funds("p")

        result = service.complete("p", mid)
        assert not result.success
        assert result.data["category"] == "resource"
        assert event_log.count == before
        assert service.get_mission(mid).state == MissionState.ASSIGNED
        assert service.get_provider("p").status == ProviderStatus.BUSY

    def test_dispute_resolution(self, service: DispatchService, event_log: EventLog) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        mid = _open_mission(service)
        service.assign_nearest("c1", mid)
        disputed = service.signal_dispute("c1", mid)
        assert disputed.data["state"] == "disputed"

        denied = service.resolve_dispute("c1", mid, favor_client=True)
        assert denied.data["category"] == "administrative"

        result = service.resolve_dispute("admin", mid, favor_client=True)
        assert result.success
        assert result.data["resolution"] == "favor_client"
        assert event_log.disbursed_total(mid) == 1000
        assert service.get_provider("p").total_earnings == 0

    def test_cancel(self, service: DispatchService) -> None:
        mid = _open_mission(service, deposit=1000)
        result = service.cancel("c1", mid)
        assert result.success
        reasons = {p["reason"]: p["amount"] for p in result.data["payouts"]}
        assert reasons == {"client_refund": 990, "cancellation_penalty": 10}

        again = service.cancel("c1", mid)
        assert not again.success
        assert again.data["category"] == "precondition"

    def test_unknown_mission(self, service: DispatchService) -> None:
        result = service.complete("p", 404)
        assert not result.success
        assert "404" in result.errors[0]


class TestStatus:
    def test_status_summary(self, service: DispatchService) -> None:
        service.register_provider(_make_attrs("p"), 1, 1)
        _open_mission(service, deposit=700)
        status = service.status()
        assert status["providers"]["total"] == 1
        assert status["providers"]["by_status"] == {"available": 1}
        assert status["missions"]["by_state"] == {"created": 1}
        assert status["escrow"]["custody_balance"] == 700
        assert status["escrow"]["platform_account"] == "platform"
        assert status["events"] == 3
        assert status["audit_degraded"] is False

    def test_audit_failure_is_warning(self, resolver: PolicyResolver, clock) -> None:
        log = EventLog()
        svc = DispatchService(resolver, event_log=log, clock=clock)
        # Rewind the counter so the next event id collides.
        svc.create_mission("c1", 0, 0, "x", Tier.NOVICE, 10)
        svc._event_counter = 0
        result = svc.create_mission("c1", 0, 0, "y", Tier.NOVICE, 10)
        assert result.success
        assert "Audit degraded" in result.data["warning"]
        assert svc.audit_degraded
        assert svc.get_mission(2) is not None
