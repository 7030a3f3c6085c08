"""Tests for the mission state machine: transition rules are fail-closed."""

import pytest

from dispatch.errors import PreconditionError, TransitionError
from dispatch.missions.state_machine import MissionStateMachine
from dispatch.models.mission import Mission, MissionState
from dispatch.models.provider import Tier


def _make_mission(state: MissionState = MissionState.CREATED) -> Mission:
    return Mission(
        mission_id=7,
        client_id="client-1",
        location_hash="sha256:abc",
        client_latitude=0,
        client_longitude=0,
        total_amount=1000,
        fighter_amount=950,
        platform_fee=50,
        required_tier=Tier.NOVICE,
        state=state,
    )


class TestTransitions:
    @pytest.mark.parametrize("source,target", [
        (MissionState.CREATED, MissionState.ASSIGNED),
        (MissionState.CREATED, MissionState.CANCELLED),
        (MissionState.ASSIGNED, MissionState.COMPLETED),
        (MissionState.ASSIGNED, MissionState.DISPUTED),
        (MissionState.DISPUTED, MissionState.COMPLETED),
    ])
    def test_allowed(self, source: MissionState, target: MissionState) -> None:
        mission = _make_mission(source)
        assert MissionStateMachine.validate_transition(mission, target) == []
        previous = MissionStateMachine.apply_transition(mission, target)
        assert previous == source
        assert mission.state == target

    @pytest.mark.parametrize("source,target", [
        (MissionState.CREATED, MissionState.COMPLETED),
        (MissionState.CREATED, MissionState.DISPUTED),
        (MissionState.ASSIGNED, MissionState.CANCELLED),
        (MissionState.DISPUTED, MissionState.ASSIGNED),
        (MissionState.DISPUTED, MissionState.CANCELLED),
        (MissionState.COMPLETED, MissionState.ASSIGNED),
        (MissionState.CANCELLED, MissionState.CREATED),
    ])
    def test_rejected_leaves_state(self, source: MissionState, target: MissionState) -> None:
        mission = _make_mission(source)
        with pytest.raises(TransitionError):
            MissionStateMachine.apply_transition(mission, target)
        assert mission.state == source

    def test_transition_error_is_precondition(self) -> None:
        assert issubclass(TransitionError, PreconditionError)

    def test_terminal_states_have_no_exits(self) -> None:
        for state in (MissionState.COMPLETED, MissionState.CANCELLED):
            assert MissionStateMachine.is_terminal(state)
            assert MissionStateMachine.valid_transitions(state) == set()

    def test_error_message_names_mission(self) -> None:
        errors = MissionStateMachine.validate_transition(
            _make_mission(), MissionState.COMPLETED,
        )
        assert len(errors) == 1
        assert "7" in errors[0]

    def test_require_state(self) -> None:
        mission = _make_mission(MissionState.ASSIGNED)
        MissionStateMachine.require_state(mission, MissionState.ASSIGNED, "complete")
        with pytest.raises(TransitionError, match="Cannot cancel"):
            MissionStateMachine.require_state(mission, MissionState.CREATED, "cancel")
