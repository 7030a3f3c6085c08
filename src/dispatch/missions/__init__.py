"""Mission lifecycle: state machine, escrow split and the ledger."""

from dispatch.missions.escrow import EscrowCalculator
from dispatch.missions.ledger import LedgerState, MissionLedger
from dispatch.missions.state_machine import MissionStateMachine

__all__ = [
    "EscrowCalculator",
    "LedgerState",
    "MissionLedger",
    "MissionStateMachine",
]
