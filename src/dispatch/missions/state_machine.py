"""Mission state machine: enforces valid lifecycle transitions.

Mission lifecycle:
    CREATED → ASSIGNED → COMPLETED
    CREATED → CANCELLED
    ASSIGNED → DISPUTED → COMPLETED

State semantics:
- CREATED: deposit escrowed, no provider yet. Only the client may cancel.
- ASSIGNED: provider bound and BUSY. Ends by completion or dispute.
- DISPUTED: client or provider raised a dispute. Administration decides.
- COMPLETED: terminal. Escrow settled to provider/client and platform.
- CANCELLED: terminal. Escrow refunded less the cancellation penalty.

Fail-closed: any transition not listed is rejected. There are no
implicit transitions and no way out of a terminal state.
"""

from __future__ import annotations

from dispatch.errors import TransitionError
from dispatch.models.mission import Mission, MissionState


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[MissionState, set[MissionState]] = {
    MissionState.CREATED: {MissionState.ASSIGNED, MissionState.CANCELLED},
    MissionState.ASSIGNED: {MissionState.COMPLETED, MissionState.DISPUTED},
    MissionState.DISPUTED: {MissionState.COMPLETED},
    # Terminal states
    MissionState.COMPLETED: set(),
    MissionState.CANCELLED: set(),
}


class MissionStateMachine:
    """Validates and applies mission state transitions.

    Pure computation. Fund movements and provider status changes are
    the ledger's job.
    """

    @staticmethod
    def validate_transition(
        mission: Mission,
        target: MissionState,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = mission.state
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid mission transition for {mission.mission_id}: "
                f"{current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(
        mission: Mission,
        target: MissionState,
    ) -> MissionState:
        """Validate and apply a transition. Returns the previous state.

        Raises TransitionError without touching the mission if the
        transition is not allowed.
        """
        errors = MissionStateMachine.validate_transition(mission, target)
        if errors:
            raise TransitionError(errors[0])
        previous = mission.state
        mission.state = target
        return previous

    @staticmethod
    def require_state(
        mission: Mission,
        expected: MissionState,
        action: str,
    ) -> None:
        """Raise TransitionError unless the mission is in ``expected``."""
        if mission.state != expected:
            raise TransitionError(
                f"Cannot {action} mission {mission.mission_id} in state "
                f"{mission.state.value}; expected {expected.value}"
            )

    @staticmethod
    def is_terminal(state: MissionState) -> bool:
        return state in (MissionState.COMPLETED, MissionState.CANCELLED)

    @staticmethod
    def valid_transitions(state: MissionState) -> set[MissionState]:
        """Return the set of valid target states from the given state."""
        return set(_TRANSITIONS.get(state, set()))
