"""Tests for the state store: a restart restores a working service."""

import json

from dispatch.models.mission import DisputeResolution, MissionState
from dispatch.models.provider import Discipline, ProviderAttributes, ProviderStatus, Tier
from dispatch.persistence.event_log import EventLog
from dispatch.persistence.state_store import StateStore
from dispatch.policy.resolver import PolicyResolver
from dispatch.service import DispatchService


def _make_attrs(provider_id: str) -> ProviderAttributes:
    return ProviderAttributes(
        provider_id=provider_id,
        display_name=provider_id.title(),
        height_cm=182,
        weight_kg=84,
        is_professional=True,
        years_experience=2,
        discipline=Discipline.MMA,
        win_rate_bps=0,
    )


def _service(resolver: PolicyResolver, clock, tmp_path) -> DispatchService:
    return DispatchService(
        resolver,
        event_log=EventLog(storage_path=tmp_path / "events.jsonl"),
        state_store=StateStore(tmp_path / "state.json"),
        clock=clock,
    )


class TestRoundTrip:
    def test_restart_preserves_everything(self, resolver: PolicyResolver, clock, tmp_path) -> None:
        svc = _service(resolver, clock, tmp_path)
        svc.register_provider(_make_attrs("p"), 10, 10)
        svc.register_provider(_make_attrs("q"), 20, 20)
        done = svc.create_mission("c1", 0, 0, "Job A", Tier.WARRIOR, 1000).data["mission_id"]
        svc.assign_nearest("c1", done)
        svc.signal_dispute("c1", done)
        svc.resolve_dispute("admin", done, favor_client=True)
        open_id = svc.create_mission("c1", 0, 0, "Job B", Tier.WARRIOR, 500).data["mission_id"]
        svc.assign_specific("c1", open_id, "q")
        svc.suspend_provider("admin", "p", "review")

        restored = _service(resolver, clock, tmp_path)

        mission = restored.get_mission(done)
        assert mission.state == MissionState.COMPLETED
        assert mission.resolution == DisputeResolution.FAVOR_CLIENT
        assert mission.created_utc == clock.now()
        settlement = restored.get_settlement(done)
        assert settlement.amount_to("c1") == 950

        assert restored.get_provider("p").status == ProviderStatus.SUSPENDED
        assert restored.get_provider("p").suspension_reason == "review"
        assert restored.get_provider("q").status == ProviderStatus.BUSY
        assert restored.get_provider("q").tier == Tier.EXPERT
        assert restored.get_location("q").latitude == 20
        assert restored.missions_for_client("c1") == [done, open_id]
        assert restored.missions_for_provider("q") == [open_id]
        assert restored.ledger.custody_balance == 500

        # The restored service keeps working and keeps counting ids.
        result = restored.complete("q", open_id)
        assert result.success
        third = restored.create_mission("c1", 0, 0, "Job C", Tier.NOVICE, 10)
        assert third.data["mission_id"] == 3

    def test_event_ids_continue_after_restart(self, resolver: PolicyResolver, clock, tmp_path) -> None:
        svc = _service(resolver, clock, tmp_path)
        svc.register_provider(_make_attrs("p"), 10, 10)
        restored = _service(resolver, clock, tmp_path)
        result = restored.register_provider(_make_attrs("q"), 20, 20)
        assert result.success
        assert "warning" not in result.data
        assert EventLog(storage_path=tmp_path / "events.jsonl").count == 4


class TestStoreFile:
    def test_empty_store_loads_defaults(self, tmp_path) -> None:
        store = StateStore(tmp_path / "missing.json")
        assert store.load_providers() == {}
        assert store.load_locations() == {}
        ledger = store.load_ledger()
        assert ledger.next_mission_id == 1
        assert ledger.missions == {}

    def test_file_is_plain_json(self, resolver: PolicyResolver, clock, tmp_path) -> None:
        svc = _service(resolver, clock, tmp_path)
        svc.register_provider(_make_attrs("p"), 10, 10)
        data = json.loads((tmp_path / "state.json").read_text(encoding="utf-8"))
        assert data["providers"][0]["tier"] == "expert"
        assert data["ledger"]["next_mission_id"] == 1
        assert not (tmp_path / "state.json.tmp").exists()

    def test_unwritable_store_degrades(self, resolver: PolicyResolver, clock, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        svc = DispatchService(
            resolver,
            state_store=StateStore(blocker / "state.json"),
            clock=clock,
        )
        result = svc.register_provider(_make_attrs("p"), 10, 10)
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert svc.persistence_degraded
        assert svc.get_provider("p") is not None
