"""Dispatch service: unified facade for the marketplace core.

This is the primary interface for programmatic access to dispatch.
It orchestrates all subsystems:
- Provider directory (registration, tier scoring, suspension)
- Geolocation store (location updates, stale sweeps)
- Mission ledger (create, assign, complete, dispute, cancel)
- Escrow settlement through the configured funds rail
- Persistence (event log, state store)

All operations produce typed results. Core components raise
DispatchError subclasses; this facade turns them into failed
ServiceResults and never lets one escape.

Ordering after a successful mutation: audit events first, then state
persistence. Once a mutation has committed (and funds may have moved)
it is never rolled back; an audit or persistence failure at that point
is reported as a warning and flips a degraded flag instead.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from dispatch import __version__
from dispatch.access import AccessPolicy, StaticAccessPolicy
from dispatch.clock import Clock, SystemClock
from dispatch.directory.registry import ProviderDirectory
from dispatch.directory.scoring import TierScorer
from dispatch.errors import DispatchError, ProviderNotFoundError
from dispatch.geo.store import GeolocationStore
from dispatch.missions.ledger import MissionLedger
from dispatch.models.location import LocationRecord, location_commitment
from dispatch.models.mission import Mission
from dispatch.models.provider import (
    ProviderAttributes,
    ProviderProfile,
    ProviderStatus,
    Tier,
)
from dispatch.models.settlement import Settlement
from dispatch.payments.rail import FundsRail, InMemoryFundsRail
from dispatch.persistence.event_log import EventKind, EventLog, EventRecord
from dispatch.persistence.state_store import StateStore
from dispatch.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


# (kind, actor_id, payload) awaiting the audit log
_PendingEvent = tuple[EventKind, str, dict[str, Any]]


class DispatchService:
    """Unified marketplace facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = DispatchService(resolver)

        service.register_provider(attributes, latitude, longitude)
        result = service.create_mission("client-1", lat, lng, "Escort",
                                        Tier.WARRIOR, 1000)
        mission_id = result.data["mission_id"]
        service.assign_nearest("client-1", mission_id)
        service.complete(provider_id, mission_id)

    Persistence (optional):
        service = DispatchService(resolver, event_log=log, state_store=store)
        # State is loaded on construction and saved after each mutation.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        rail: Optional[FundsRail] = None,
        access: Optional[AccessPolicy] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._resolver = resolver
        self._event_log = event_log
        self._state_store = state_store
        self._clock = clock or SystemClock()
        self._rail = rail or InMemoryFundsRail()
        self._access = access or StaticAccessPolicy(
            admin_ids=resolver.admin_ids(),
            ledger_ids=[resolver.ledger_id()],
            trusted_location_writers=resolver.trusted_location_writers(),
        )

        # Load persisted state or start fresh
        if state_store is not None:
            providers = state_store.load_providers()
            locations = state_store.load_locations()
            ledger_state = state_store.load_ledger()
        else:
            providers, locations, ledger_state = {}, {}, None

        self._directory = ProviderDirectory(
            TierScorer(resolver), self._access, providers=providers, clock=self._clock,
        )
        self._geo = GeolocationStore(self._access, clock=self._clock, records=locations)
        self._ledger = MissionLedger(
            resolver,
            self._directory,
            self._geo,
            self._rail,
            self._access,
            clock=self._clock,
            state=ledger_state,
        )

        # Directory and location writes are serialised with ledger work;
        # the ledger takes its own lock inside this one.
        self._lock = threading.RLock()

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0

        # Health flags: set when an audit append or a StateStore write
        # fails after a mutation has committed.
        self._audit_degraded: bool = False
        self._persistence_degraded: bool = False

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    def register_provider(
        self,
        attributes: ProviderAttributes,
        latitude: int,
        longitude: int,
    ) -> ServiceResult:
        """Register a provider and record its initial location.

        Coordinates are validated before the directory is touched, so a
        bad position cannot leave a registered provider with no location.
        """
        try:
            GeolocationStore.validate_coordinates(latitude, longitude)
            with self._lock:
                provider_id = self._directory.register(attributes)
                # A provider always may report its own position.
                record = self._geo.update(provider_id, provider_id, latitude, longitude)
                profile = self._directory.get(provider_id)
                assert profile is not None
                return self._commit(
                    {"provider_id": provider_id, "tier": profile.tier.value},
                    [
                        (EventKind.PROVIDER_REGISTERED, provider_id, {
                            "provider_id": provider_id,
                            "tier": profile.tier.value,
                            "discipline": attributes.discipline.value,
                        }),
                        (EventKind.LOCATION_UPDATED, provider_id,
                         self._location_payload(record)),
                    ],
                )
        except DispatchError as e:
            return self._fail(e)

    def update_location(
        self,
        caller_id: str,
        provider_id: str,
        latitude: int,
        longitude: int,
    ) -> ServiceResult:
        """Report a registered provider's current position."""
        try:
            with self._lock:
                if self._directory.get(provider_id) is None:
                    raise ProviderNotFoundError(provider_id)
                record = self._geo.update(caller_id, provider_id, latitude, longitude)
                return self._commit(
                    {"provider_id": record.provider_id},
                    [(EventKind.LOCATION_UPDATED, caller_id.strip(),
                      self._location_payload(record))],
                )
        except DispatchError as e:
            return self._fail(e)

    def suspend_provider(
        self,
        caller_id: str,
        provider_id: str,
        reason: str = "",
    ) -> ServiceResult:
        """Administratively suspend a provider.

        A BUSY provider keeps its current mission; it simply will not be
        released back to AVAILABLE when that mission ends.
        """
        return self._change_status(caller_id, provider_id, ProviderStatus.SUSPENDED, reason)

    def reinstate_provider(self, caller_id: str, provider_id: str) -> ServiceResult:
        """Lift a suspension: AVAILABLE, or BUSY while a mission is still open."""
        try:
            with self._lock:
                previous, new_status = self._ledger.reinstate(caller_id, provider_id)
                return self._status_changed(caller_id, provider_id, previous, new_status)
        except DispatchError as e:
            return self._fail(e)

    def sweep_stale_locations(
        self,
        caller_id: str,
        max_age_seconds: Optional[int] = None,
    ) -> ServiceResult:
        """Invalidate every location older than max age (policy default)."""
        try:
            with self._lock:
                if max_age_seconds is None:
                    max_age = self._resolver.stale_location_max_age()
                else:
                    max_age = timedelta(seconds=max_age_seconds)
                provider_ids = [p.provider_id for p in self._directory.all_providers()]
                invalidated = self._geo.sweep_stale(caller_id, provider_ids, max_age)
                events: list[_PendingEvent] = []
                if invalidated:
                    events.append((EventKind.LOCATIONS_SWEPT, caller_id.strip(), {
                        "provider_ids": invalidated,
                        "max_age_seconds": int(max_age.total_seconds()),
                    }))
                return self._commit({"invalidated": invalidated}, events)
        except DispatchError as e:
            return self._fail(e)

    def get_provider(self, provider_id: str) -> Optional[ProviderProfile]:
        return self._directory.get(provider_id)

    def get_location(self, provider_id: str) -> Optional[LocationRecord]:
        return self._geo.get(provider_id)

    def list_available_providers(self) -> list[str]:
        return self._directory.list_available()

    # ------------------------------------------------------------------
    # Mission lifecycle
    # ------------------------------------------------------------------

    def create_mission(
        self,
        client_id: str,
        client_latitude: int,
        client_longitude: int,
        description: str,
        required_tier: Tier,
        deposit_amount: int,
        location_hash: Optional[str] = None,
    ) -> ServiceResult:
        """Escrow a deposit and open a mission.

        Without an explicit location_hash, the commitment is derived from
        the client coordinates and the description.
        """
        try:
            if location_hash is None:
                location_hash = location_commitment(
                    client_latitude, client_longitude, description,
                )
            with self._lock:
                mission = self._ledger.create(
                    client_id,
                    location_hash,
                    client_latitude,
                    client_longitude,
                    description,
                    required_tier,
                    deposit_amount,
                )
                return self._commit(
                    {
                        "mission_id": mission.mission_id,
                        "fighter_amount": mission.fighter_amount,
                        "platform_fee": mission.platform_fee,
                    },
                    [(EventKind.MISSION_CREATED, mission.client_id, {
                        "mission_id": mission.mission_id,
                        "location_hash": mission.location_hash,
                        "required_tier": mission.required_tier.value,
                        "total_amount": mission.total_amount,
                        "fighter_amount": mission.fighter_amount,
                        "platform_fee": mission.platform_fee,
                    })],
                )
        except DispatchError as e:
            return self._fail(e)

    def assign_nearest(self, caller_id: str, mission_id: int) -> ServiceResult:
        """Match the nearest eligible provider to a CREATED mission."""
        try:
            with self._lock:
                mission = self._ledger.assign_nearest(caller_id, mission_id)
                return self._assigned(caller_id, mission, "nearest")
        except DispatchError as e:
            return self._fail(e)

    def assign_specific(
        self,
        caller_id: str,
        mission_id: int,
        provider_id: str,
    ) -> ServiceResult:
        """Assign a client-chosen provider to a CREATED mission."""
        try:
            with self._lock:
                mission = self._ledger.assign_specific(caller_id, mission_id, provider_id)
                return self._assigned(caller_id, mission, "specific")
        except DispatchError as e:
            return self._fail(e)

    def complete(self, caller_id: str, mission_id: int) -> ServiceResult:
        try:
            with self._lock:
                settlement = self._ledger.complete(caller_id, mission_id)
                return self._settled(
                    caller_id, settlement, EventKind.MISSION_COMPLETED, {},
                )
        except DispatchError as e:
            return self._fail(e)

    def signal_dispute(self, caller_id: str, mission_id: int) -> ServiceResult:
        try:
            with self._lock:
                mission = self._ledger.signal_dispute(caller_id, mission_id)
                return self._commit(
                    {"mission_id": mission.mission_id, "state": mission.state.value},
                    [(EventKind.MISSION_DISPUTED, caller_id.strip(), {
                        "mission_id": mission.mission_id,
                        "disputed_by": mission.disputed_by,
                    })],
                )
        except DispatchError as e:
            return self._fail(e)

    def resolve_dispute(
        self,
        caller_id: str,
        mission_id: int,
        favor_client: bool,
    ) -> ServiceResult:
        try:
            with self._lock:
                settlement = self._ledger.resolve_dispute(caller_id, mission_id, favor_client)
                mission = self._ledger.get(mission_id)
                assert mission is not None and mission.resolution is not None
                return self._settled(
                    caller_id,
                    settlement,
                    EventKind.DISPUTE_RESOLVED,
                    {"resolution": mission.resolution.value},
                )
        except DispatchError as e:
            return self._fail(e)

    def cancel(self, caller_id: str, mission_id: int) -> ServiceResult:
        try:
            with self._lock:
                settlement = self._ledger.cancel(caller_id, mission_id)
                return self._settled(
                    caller_id, settlement, EventKind.MISSION_CANCELLED, {},
                )
        except DispatchError as e:
            return self._fail(e)

    def get_mission(self, mission_id: int) -> Optional[Mission]:
        return self._ledger.get(mission_id)

    def get_settlement(self, mission_id: int) -> Optional[Settlement]:
        return self._ledger.settlement(mission_id)

    def missions_for_client(self, client_id: str) -> list[int]:
        return self._ledger.missions_by_client(client_id)

    def missions_for_provider(self, provider_id: str) -> list[int]:
        return self._ledger.missions_by_provider(provider_id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def rail(self) -> FundsRail:
        return self._rail

    @property
    def ledger(self) -> MissionLedger:
        return self._ledger

    @property
    def audit_degraded(self) -> bool:
        return self._audit_degraded

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        return {
            "version": __version__,
            "providers": {
                "total": self._directory.count,
                "by_status": self._directory.count_by_status(),
                "with_valid_location": sum(
                    1 for r in self._geo.all_records() if r.valid
                ),
            },
            "missions": {
                "total": len(self._ledger.all_missions()),
                "by_state": self._ledger.count_by_state(),
            },
            "escrow": {
                "custody_balance": self._ledger.custody_balance,
                "platform_account": self._ledger.platform_account,
                "rail": self._rail.rail_id,
            },
            "events": self._event_log.count if self._event_log is not None else 0,
            "audit_degraded": self._audit_degraded,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _change_status(
        self,
        caller_id: str,
        provider_id: str,
        new_status: ProviderStatus,
        reason: str = "",
    ) -> ServiceResult:
        try:
            with self._lock:
                previous = self._directory.set_status(
                    caller_id, provider_id, new_status, reason,
                )
                return self._status_changed(
                    caller_id, provider_id, previous, new_status, reason,
                )
        except DispatchError as e:
            return self._fail(e)

    def _status_changed(
        self,
        caller_id: str,
        provider_id: str,
        previous: ProviderStatus,
        new_status: ProviderStatus,
        reason: str = "",
    ) -> ServiceResult:
        profile = self._directory.get(provider_id)
        assert profile is not None
        logger.info(
            "Provider %s: %s -> %s by %s",
            profile.provider_id, previous.value, new_status.value, caller_id,
        )
        return self._commit(
            {"provider_id": profile.provider_id, "status": new_status.value},
            [(EventKind.PROVIDER_STATUS_CHANGED, caller_id.strip(), {
                "provider_id": profile.provider_id,
                "from": previous.value,
                "to": new_status.value,
                "reason": reason,
            })],
        )

    def _assigned(self, caller_id: str, mission: Mission, method: str) -> ServiceResult:
        return self._commit(
            {
                "mission_id": mission.mission_id,
                "provider_id": mission.assigned_provider_id,
            },
            [(EventKind.MISSION_ASSIGNED, caller_id.strip(), {
                "mission_id": mission.mission_id,
                "provider_id": mission.assigned_provider_id,
                "method": method,
            })],
        )

    def _settled(
        self,
        caller_id: str,
        settlement: Settlement,
        kind: EventKind,
        extra: dict[str, Any],
    ) -> ServiceResult:
        """Commit a terminal transition: one event, then one per payout."""
        mission_id = settlement.mission_id
        events: list[_PendingEvent] = [
            (kind, caller_id.strip(), {"mission_id": mission_id, **extra}),
        ]
        for payout in settlement.payouts:
            events.append((EventKind.FUNDS_DISBURSED, self._ledger.ledger_id, {
                "mission_id": mission_id,
                "recipient_id": payout.recipient_id,
                "amount": payout.amount,
                "reason": payout.reason.value,
            }))
        return self._commit(
            {
                "mission_id": mission_id,
                "payouts": [
                    {
                        "recipient_id": p.recipient_id,
                        "amount": p.amount,
                        "reason": p.reason.value,
                    }
                    for p in settlement.payouts
                ],
                **extra,
            },
            events,
        )

    def _commit(
        self,
        data: dict[str, Any],
        events: list[_PendingEvent],
    ) -> ServiceResult:
        """Post-commit bookkeeping for a mutation that already happened."""
        warnings: list[str] = []
        for kind, actor_id, payload in events:
            err = self._record_event(kind, actor_id, payload)
            if err:
                warnings.append(err)
                break
        err = self._safe_persist_post_audit()
        if err:
            warnings.append(err)
        if warnings:
            data["warning"] = "; ".join(warnings)
        return ServiceResult(success=True, data=data)

    @staticmethod
    def _fail(error: DispatchError) -> ServiceResult:
        return ServiceResult(
            success=False,
            errors=[str(error)],
            data={"category": error.category},
        )

    @staticmethod
    def _location_payload(record: LocationRecord) -> dict[str, Any]:
        return {
            "provider_id": record.provider_id,
            "latitude": record.latitude,
            "longitude": record.longitude,
        }

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> Optional[str]:
        """Append one audit event. Returns a warning string or None."""
        if self._event_log is None:
            return None
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id,
                payload=payload,
                timestamp_utc=self._clock.now(),
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            self._audit_degraded = True
            logger.warning("Audit append failed for %s: %s", kind.value, e)
            return f"Audit degraded: {e}; state committed but event log is incomplete"
        return None

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        NOTE: This method can raise OSError. Mutators go through
        _safe_persist_post_audit() instead.
        """
        if self._state_store is None:
            return
        self._state_store.save_all(
            self._directory.all_providers(),
            self._geo.all_records(),
            self._ledger.export_state(),
        )

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after audit events have been committed.

        Never rolls back in-memory state. On failure, sets
        _persistence_degraded and returns a warning string.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning("State persistence failed: %s", e)
            return f"Persistence degraded: {e}; state committed but StateStore is stale"
