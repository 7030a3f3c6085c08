"""Mission ledger: owns missions, drives the lifecycle, settles escrow.

The ledger is the only writer of mission records, the client and
provider mission indexes, and settlements. Provider status and earnings
belong to the ProviderDirectory; the ledger requests changes through
directory operations under its own ledger identity.

Atomicity: every mutating operation runs under one re-entrant lock and
inside an undo journal. Each mutation registers its inverse as it is
made; if anything raises (a failed precondition, a refused transfer)
the journal replays the inverses newest-first and the exception
propagates. Callers observe either the full effect or none of it.

Contention is not queued: a second operation on the same mission waits
only for the lock, then fails its own state check.

Funds move exactly once per mission, in the same step that enters a
terminal state. The rail settlement is the last step of each terminal
operation, so a refused transfer unwinds a transition that has not yet
been observed.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from dispatch.access import AccessPolicy
from dispatch.clock import Clock, SystemClock
from dispatch.directory.registry import ProviderDirectory
from dispatch.errors import (
    AuthorizationError,
    MissionNotFoundError,
    NoEligibleProviderError,
    PreconditionError,
    ProviderNotFoundError,
    ValidationError,
)
from dispatch.geo.store import GeolocationStore
from dispatch.missions.escrow import EscrowCalculator
from dispatch.missions.state_machine import MissionStateMachine
from dispatch.models.mission import DisputeResolution, Mission, MissionState
from dispatch.models.provider import ProviderStatus, Tier
from dispatch.models.settlement import Payout, Settlement
from dispatch.payments.rail import FundsRail
from dispatch.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


@dataclass
class LedgerState:
    """Everything the ledger owns, in persistable form."""
    missions: dict[int, Mission] = field(default_factory=dict)
    missions_by_client: dict[str, list[int]] = field(default_factory=dict)
    missions_by_provider: dict[str, list[int]] = field(default_factory=dict)
    settlements: dict[int, Settlement] = field(default_factory=dict)
    next_mission_id: int = 1
    custody_balance: int = 0


class _Transaction:
    """Undo journal for one ledger operation."""

    def __init__(self) -> None:
        self._undo: list[Callable[[], None]] = []

    def on_rollback(self, undo: Callable[[], None]) -> None:
        self._undo.append(undo)

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()

    @property
    def has_changes(self) -> bool:
        return bool(self._undo)


class MissionLedger:
    """Mission records, lifecycle and escrow.

    Usage:
        ledger = MissionLedger(resolver, directory, geo, rail, access)
        mission = ledger.create("client-1", "sha256:...", lat, lng,
                                "Escort", Tier.WARRIOR, 1000)
        ledger.assign_nearest("client-1", mission.mission_id)
        settlement = ledger.complete(provider_id, mission.mission_id)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        directory: ProviderDirectory,
        geo: GeolocationStore,
        rail: FundsRail,
        access: AccessPolicy,
        clock: Optional[Clock] = None,
        state: Optional[LedgerState] = None,
    ) -> None:
        self._ledger_id = resolver.ledger_id()
        self._directory = directory
        self._geo = geo
        self._rail = rail
        self._access = access
        self._clock = clock or SystemClock()
        self._escrow = EscrowCalculator(resolver)
        self._lock = threading.RLock()

        state = state or LedgerState()
        self._missions = state.missions
        self._by_client = state.missions_by_client
        self._by_provider = state.missions_by_provider
        self._settlements = state.settlements
        self._next_id = state.next_mission_id
        self._custody = state.custody_balance

        if not access.is_ledger(self._ledger_id):
            raise ValidationError(
                f"Access policy does not recognise ledger identity {self._ledger_id}"
            )

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def create(
        self,
        client_id: str,
        location_hash: str,
        client_latitude: int,
        client_longitude: int,
        description: str,
        required_tier: Tier,
        deposit_amount: int,
    ) -> Mission:
        """Escrow a deposit and open a mission in CREATED."""
        client = client_id.strip()
        if not client:
            raise ValidationError("Client ID must be non-empty")
        if isinstance(deposit_amount, bool) or not isinstance(deposit_amount, int):
            raise ValidationError(f"Deposit must be an integer amount, got {deposit_amount!r}")
        if deposit_amount <= 0:
            raise ValidationError("Deposit amount must be positive")
        if not location_hash or not location_hash.strip():
            raise ValidationError("Location hash must be non-empty")
        if not isinstance(required_tier, Tier):
            raise ValidationError(f"Unknown tier: {required_tier!r}")
        GeolocationStore.validate_coordinates(client_latitude, client_longitude)
        fighter_amount, platform_fee = self._escrow.split_deposit(deposit_amount)

        with self._atomic() as txn:
            mission_id = self._next_id
            mission = Mission(
                mission_id=mission_id,
                client_id=client,
                location_hash=location_hash.strip(),
                client_latitude=client_latitude,
                client_longitude=client_longitude,
                total_amount=deposit_amount,
                fighter_amount=fighter_amount,
                platform_fee=platform_fee,
                required_tier=required_tier,
                description=description,
                created_utc=self._clock.now(),
            )
            self._next_id += 1
            txn.on_rollback(self._restore_next_id(mission_id))
            self._missions[mission_id] = mission
            txn.on_rollback(lambda: self._missions.pop(mission_id, None))
            self._append_index(txn, self._by_client, client, mission_id)
            self._custody += deposit_amount
            txn.on_rollback(self._restore_custody(self._custody - deposit_amount))

        logger.info(
            "Mission %d created by %s: total=%d fighter=%d fee=%d tier>=%s",
            mission_id, client, deposit_amount, fighter_amount, platform_fee,
            required_tier.value,
        )
        return mission

    def assign_nearest(self, caller_id: str, mission_id: int) -> Mission:
        """Assign the nearest available provider meeting the tier."""
        with self._atomic() as txn:
            mission = self._require_mission(mission_id)
            MissionStateMachine.require_state(mission, MissionState.CREATED, "assign")
            self._require_client(mission, caller_id)

            eligible = [
                provider_id
                for provider_id in self._directory.list_available()
                if self._tier_of(provider_id).satisfies(mission.required_tier)
            ]
            if not eligible:
                raise NoEligibleProviderError(
                    f"No eligible providers for mission {mission_id} "
                    f"(required tier {mission.required_tier.value})"
                )
            winner = self._geo.nearest(
                eligible, mission.client_latitude, mission.client_longitude,
            )
            if winner is None:
                raise NoEligibleProviderError(
                    f"No eligible provider with a valid location for mission {mission_id}"
                )
            self._assign(txn, mission, winner)
        return mission

    def assign_specific(
        self,
        caller_id: str,
        mission_id: int,
        provider_id: str,
    ) -> Mission:
        """Assign a provider chosen by the client."""
        with self._atomic() as txn:
            mission = self._require_mission(mission_id)
            MissionStateMachine.require_state(mission, MissionState.CREATED, "assign")
            self._require_client(mission, caller_id)

            profile = self._directory.get(provider_id)
            if profile is None:
                raise ProviderNotFoundError(provider_id)
            if profile.status != ProviderStatus.AVAILABLE:
                raise PreconditionError(
                    f"Provider {profile.provider_id} is not available "
                    f"(status {profile.status.value})"
                )
            if not profile.tier.satisfies(mission.required_tier):
                raise PreconditionError(
                    f"Provider {profile.provider_id} tier {profile.tier.value} "
                    f"does not meet required tier {mission.required_tier.value}"
                )
            self._assign(txn, mission, profile.provider_id)
        return mission

    def complete(self, caller_id: str, mission_id: int) -> Settlement:
        """Assigned provider marks the mission done; escrow is released."""
        with self._atomic() as txn:
            mission = self._require_mission(mission_id)
            MissionStateMachine.require_state(mission, MissionState.ASSIGNED, "complete")
            provider_id = self._require_assigned_provider(mission, caller_id)

            self._enter_terminal(txn, mission, MissionState.COMPLETED)
            self._release_provider(txn, provider_id)
            self._directory.record_earnings(
                self._ledger_id, provider_id, mission.fighter_amount, 1,
            )
            settlement = self._settle(txn, mission, self._escrow.completion_payouts(mission))

        logger.info(
            "Mission %d completed by %s: paid %d, fee %d",
            mission_id, provider_id, mission.fighter_amount, mission.platform_fee,
        )
        return settlement

    def signal_dispute(self, caller_id: str, mission_id: int) -> Mission:
        """Client or assigned provider freezes the mission for arbitration."""
        with self._atomic() as txn:
            mission = self._require_mission(mission_id)
            MissionStateMachine.require_state(mission, MissionState.ASSIGNED, "dispute")
            caller = caller_id.strip()
            if caller not in (mission.client_id, mission.assigned_provider_id):
                raise PreconditionError(
                    f"Only the client or assigned provider may dispute mission {mission_id}"
                )
            txn.on_rollback(self._restore_mission(mission))
            MissionStateMachine.apply_transition(mission, MissionState.DISPUTED)
            mission.disputed_by = caller

        logger.info("Mission %d disputed by %s", mission_id, caller)
        return mission

    def resolve_dispute(
        self,
        caller_id: str,
        mission_id: int,
        favor_client: bool,
    ) -> Settlement:
        """Administrative ruling on a disputed mission. Always terminal.

        The provider returns to AVAILABLE unless it was suspended while
        the mission was open; a suspension is only lifted by reinstate.
        """
        if not self._access.is_admin(caller_id):
            raise AuthorizationError(f"Caller {caller_id} may not resolve disputes")
        with self._atomic() as txn:
            mission = self._require_mission(mission_id)
            MissionStateMachine.require_state(mission, MissionState.DISPUTED, "resolve")
            provider_id = mission.assigned_provider_id
            if provider_id is None:
                raise PreconditionError(f"Mission {mission_id} has no assigned provider")

            self._enter_terminal(txn, mission, MissionState.COMPLETED)
            mission.resolution = (
                DisputeResolution.FAVOR_CLIENT if favor_client
                else DisputeResolution.FAVOR_PROVIDER
            )
            self._release_provider(txn, provider_id)
            if not favor_client:
                self._directory.record_earnings(
                    self._ledger_id, provider_id, mission.fighter_amount, 1,
                )
            settlement = self._settle(
                txn, mission, self._escrow.dispute_payouts(mission, favor_client),
            )

        logger.info(
            "Mission %d dispute resolved in favour of %s",
            mission_id, "client" if favor_client else "provider",
        )
        return settlement

    def cancel(self, caller_id: str, mission_id: int) -> Settlement:
        """Client withdraws an unassigned mission; penalty retained."""
        with self._atomic() as txn:
            mission = self._require_mission(mission_id)
            MissionStateMachine.require_state(mission, MissionState.CREATED, "cancel")
            self._require_client(mission, caller_id)

            txn.on_rollback(self._restore_mission(mission))
            MissionStateMachine.apply_transition(mission, MissionState.CANCELLED)
            settlement = self._settle(txn, mission, self._escrow.cancellation_payouts(mission))

        logger.info(
            "Mission %d cancelled: refunded %d",
            mission_id, settlement.amount_to(mission.client_id),
        )
        return settlement

    def reinstate(self, caller_id: str, provider_id: str) -> tuple[ProviderStatus, ProviderStatus]:
        """Lift a suspension. Returns (previous, new) status.

        A provider still assigned to an open mission goes back to BUSY,
        so it cannot be matched again until that mission ends.
        """
        if not self._access.is_admin(caller_id):
            raise AuthorizationError(f"Caller {caller_id} may not reinstate providers")
        with self._lock:
            target = (
                ProviderStatus.BUSY if self.open_missions_for(provider_id)
                else ProviderStatus.AVAILABLE
            )
            previous = self._directory.set_status(caller_id, provider_id, target)
        logger.info("Provider %s reinstated as %s", provider_id, target.value)
        return previous, target

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def open_missions_for(self, provider_id: str) -> list[int]:
        """Ids of ASSIGNED or DISPUTED missions bound to the provider."""
        return [
            mission_id for mission_id in self._by_provider.get(provider_id.strip(), [])
            if not self._missions[mission_id].is_terminal
        ]

    def get(self, mission_id: int) -> Optional[Mission]:
        return self._missions.get(mission_id)

    def missions_by_client(self, client_id: str) -> list[int]:
        return list(self._by_client.get(client_id.strip(), []))

    def missions_by_provider(self, provider_id: str) -> list[int]:
        return list(self._by_provider.get(provider_id.strip(), []))

    def settlement(self, mission_id: int) -> Optional[Settlement]:
        return self._settlements.get(mission_id)

    def all_missions(self) -> list[Mission]:
        return list(self._missions.values())

    @property
    def custody_balance(self) -> int:
        """Funds currently held in escrow across all open missions."""
        return self._custody

    @property
    def ledger_id(self) -> str:
        return self._ledger_id

    @property
    def platform_account(self) -> str:
        return self._escrow.platform_account

    def count_by_state(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for m in self._missions.values():
            counts[m.state.value] = counts.get(m.state.value, 0) + 1
        return counts

    def export_state(self) -> LedgerState:
        """Detached copy of the ledger's tables, for persistence."""
        with self._lock:
            return LedgerState(
                missions=copy.deepcopy(self._missions),
                missions_by_client=copy.deepcopy(self._by_client),
                missions_by_provider=copy.deepcopy(self._by_provider),
                settlements=dict(self._settlements),
                next_mission_id=self._next_id,
                custody_balance=self._custody,
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _atomic(self) -> Iterator[_Transaction]:
        with self._lock:
            txn = _Transaction()
            try:
                yield txn
            except Exception as exc:
                if txn.has_changes:
                    logger.warning("Rolling back ledger operation: %s", exc)
                txn.rollback()
                raise

    def _assign(self, txn: _Transaction, mission: Mission, provider_id: str) -> None:
        """Bind a provider. Callers have already validated everything."""
        snapshot = self._directory.snapshot(provider_id)
        txn.on_rollback(self._restore_mission(mission))
        MissionStateMachine.apply_transition(mission, MissionState.ASSIGNED)
        mission.assigned_provider_id = provider_id
        mission.assigned_utc = self._clock.now()

        self._directory.set_status(self._ledger_id, provider_id, ProviderStatus.BUSY)
        txn.on_rollback(lambda: self._directory.restore(self._ledger_id, snapshot))
        self._append_index(txn, self._by_provider, provider_id, mission.mission_id)
        logger.info("Mission %d assigned to %s", mission.mission_id, provider_id)

    def _enter_terminal(
        self,
        txn: _Transaction,
        mission: Mission,
        target: MissionState,
    ) -> None:
        txn.on_rollback(self._restore_mission(mission))
        MissionStateMachine.apply_transition(mission, target)
        mission.completed_utc = self._clock.now()

    def _release_provider(self, txn: _Transaction, provider_id: str) -> None:
        """Snapshot the provider, then return it to AVAILABLE if BUSY.

        A provider suspended mid-mission stays suspended. The snapshot
        also covers any earnings credited later in the same operation.
        """
        snapshot = self._directory.snapshot(provider_id)
        txn.on_rollback(lambda: self._directory.restore(self._ledger_id, snapshot))
        if snapshot.status == ProviderStatus.BUSY:
            self._directory.set_status(
                self._ledger_id, provider_id, ProviderStatus.AVAILABLE,
            )

    def _settle(
        self,
        txn: _Transaction,
        mission: Mission,
        payouts: tuple[Payout, ...],
    ) -> Settlement:
        if mission.mission_id in self._settlements:
            raise PreconditionError(f"Mission {mission.mission_id} is already settled")
        total = sum(p.amount for p in payouts)
        if total != mission.total_amount:
            raise PreconditionError(
                f"Settlement for mission {mission.mission_id} sums to {total}, "
                f"expected {mission.total_amount}"
            )
        # Rail call last: a TransferError here unwinds the whole journal.
        self._rail.settle(payouts)
        settlement = Settlement(
            mission_id=mission.mission_id,
            payouts=payouts,
            settled_utc=self._clock.now(),
        )
        self._settlements[mission.mission_id] = settlement
        txn.on_rollback(lambda: self._settlements.pop(mission.mission_id, None))
        txn.on_rollback(self._restore_custody(self._custody))
        self._custody -= mission.total_amount
        return settlement

    def _append_index(
        self,
        txn: _Transaction,
        index: dict[str, list[int]],
        key: str,
        mission_id: int,
    ) -> None:
        bucket = index.setdefault(key, [])
        bucket.append(mission_id)

        def _undo() -> None:
            bucket.pop()
            if not bucket:
                index.pop(key, None)

        txn.on_rollback(_undo)

    def _restore_mission(self, mission: Mission) -> Callable[[], None]:
        """Capture the mutable mission fields now; the closure puts them back."""
        fields = (
            mission.state,
            mission.assigned_provider_id,
            mission.assigned_utc,
            mission.completed_utc,
            mission.disputed_by,
            mission.resolution,
        )

        def _undo() -> None:
            (
                mission.state,
                mission.assigned_provider_id,
                mission.assigned_utc,
                mission.completed_utc,
                mission.disputed_by,
                mission.resolution,
            ) = fields

        return _undo

    def _restore_next_id(self, value: int) -> Callable[[], None]:
        def _undo() -> None:
            self._next_id = value
        return _undo

    def _restore_custody(self, value: int) -> Callable[[], None]:
        def _undo() -> None:
            self._custody = value
        return _undo

    def _require_mission(self, mission_id: int) -> Mission:
        mission = self._missions.get(mission_id)
        if mission is None:
            raise MissionNotFoundError(mission_id)
        return mission

    def _require_client(self, mission: Mission, caller_id: str) -> None:
        if caller_id.strip() != mission.client_id:
            raise PreconditionError(
                f"Only the client may perform this on mission {mission.mission_id}"
            )

    def _require_assigned_provider(self, mission: Mission, caller_id: str) -> str:
        provider_id = mission.assigned_provider_id
        if provider_id is None or caller_id.strip() != provider_id:
            raise PreconditionError(
                f"Only the assigned provider may complete mission {mission.mission_id}"
            )
        return provider_id

    def _tier_of(self, provider_id: str) -> Tier:
        profile = self._directory.get(provider_id)
        if profile is None:
            raise ProviderNotFoundError(provider_id)
        return profile.tier
