"""Invariant checks over the policy config and persisted dispatch state.

Each check returns a list of human-readable violations (empty = OK) and
never raises for a violation it can describe. The checks are read-only
and safe to run against a live data directory.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from dispatch.errors import ValidationError
from dispatch.missions.ledger import LedgerState
from dispatch.models.mission import MissionState
from dispatch.models.provider import ProviderProfile, ProviderStatus
from dispatch.persistence.event_log import EventLog
from dispatch.persistence.state_store import StateStore
from dispatch.policy.resolver import POLICY_FILENAME, PolicyResolver

_TERMINAL = (MissionState.COMPLETED, MissionState.CANCELLED)


def check_policy(config_dir: Path) -> list[str]:
    """Validate the policy file, plus cross-field rules the resolver allows."""
    path = Path(config_dir) / POLICY_FILENAME
    try:
        with path.open("r", encoding="utf-8") as handle:
            params = json.load(handle)
    except (OSError, json.JSONDecodeError) as e:
        return [f"Cannot read policy {path}: {e}"]
    try:
        resolver = PolicyResolver(params)
    except ValidationError as e:
        return [str(e)]

    errors: list[str] = []
    ledger_id = resolver.ledger_id()
    if ledger_id in resolver.admin_ids():
        errors.append(f"ledger identity {ledger_id} must not also be an administrator")
    if resolver.platform_account() == ledger_id:
        errors.append("platform account must differ from the ledger identity")
    if resolver.cancellation_penalty_bps() > resolver.platform_fee_bps():
        errors.append(
            "cancellation penalty should not exceed the platform fee "
            f"({resolver.cancellation_penalty_bps()} > {resolver.platform_fee_bps()} bps)"
        )
    return errors


def check_ledger(state: LedgerState) -> list[str]:
    """Accounting and index invariants of a ledger snapshot."""
    errors: list[str] = []
    open_total = 0

    for mission_id, m in sorted(state.missions.items()):
        if m.mission_id != mission_id:
            errors.append(f"Mission keyed {mission_id} carries id {m.mission_id}")
        if m.fighter_amount + m.platform_fee != m.total_amount:
            errors.append(
                f"Mission {mission_id}: fighter_amount + platform_fee "
                f"({m.fighter_amount} + {m.platform_fee}) != total {m.total_amount}"
            )
        if m.fighter_amount < 0 or m.platform_fee < 0:
            errors.append(f"Mission {mission_id}: negative split")
        if mission_id >= state.next_mission_id:
            errors.append(
                f"Mission {mission_id} is not below next_mission_id {state.next_mission_id}"
            )
        if mission_id not in state.missions_by_client.get(m.client_id, []):
            errors.append(f"Mission {mission_id} missing from client index of {m.client_id}")
        if m.state != MissionState.CREATED and m.state != MissionState.CANCELLED:
            provider_id = m.assigned_provider_id
            if provider_id is None:
                errors.append(f"Mission {mission_id} in {m.state.value} has no provider")
            elif mission_id not in state.missions_by_provider.get(provider_id, []):
                errors.append(
                    f"Mission {mission_id} missing from provider index of {provider_id}"
                )

        settlement = state.settlements.get(mission_id)
        if m.state in _TERMINAL:
            if settlement is None:
                errors.append(f"Terminal mission {mission_id} has no settlement")
            elif settlement.total != m.total_amount:
                errors.append(
                    f"Mission {mission_id}: settlement sums to {settlement.total}, "
                    f"expected {m.total_amount}"
                )
        else:
            open_total += m.total_amount
            if settlement is not None:
                errors.append(f"Open mission {mission_id} already has a settlement")

    orphans = set(state.settlements) - set(state.missions)
    if orphans:
        errors.append(f"Settlements for unknown missions: {sorted(orphans)}")
    if state.custody_balance != open_total:
        errors.append(
            f"Custody balance {state.custody_balance} != open mission totals {open_total}"
        )
    return errors


def check_assignments(providers: dict[str, ProviderProfile], state: LedgerState) -> list[str]:
    """Each provider holds at most one open mission, and only while BUSY or SUSPENDED."""
    errors: list[str] = []
    open_by_provider: dict[str, list[int]] = {}
    for mission_id, m in sorted(state.missions.items()):
        if m.state in (MissionState.ASSIGNED, MissionState.DISPUTED) and m.assigned_provider_id:
            open_by_provider.setdefault(m.assigned_provider_id, []).append(mission_id)

    for provider_id, mission_ids in open_by_provider.items():
        if len(mission_ids) > 1:
            errors.append(f"Provider {provider_id} holds several open missions: {mission_ids}")
        profile = providers.get(provider_id)
        if profile is not None and profile.status == ProviderStatus.AVAILABLE:
            errors.append(
                f"Provider {provider_id} is available while on mission {mission_ids[0]}"
            )
    for provider_id, profile in providers.items():
        if profile.status == ProviderStatus.BUSY and provider_id not in open_by_provider:
            errors.append(f"Provider {provider_id} is busy with no open mission")
    return errors


def check_disbursements(state: LedgerState, event_log: EventLog) -> list[str]:
    """Per mission, FUNDS_DISBURSED events sum to the total exactly once."""
    errors: list[str] = []
    for mission_id, m in sorted(state.missions.items()):
        disbursed = event_log.disbursed_total(mission_id)
        expected = m.total_amount if m.state in _TERMINAL else 0
        if disbursed != expected:
            errors.append(
                f"Mission {mission_id}: disbursed {disbursed} per event log, "
                f"expected {expected}"
            )
    return errors


def run_checks(config_dir: Path, data_dir: Optional[Path] = None) -> list[str]:
    """Run every check that the available files allow."""
    errors = check_policy(config_dir)
    if data_dir is None:
        return errors

    state_path = Path(data_dir) / "state.json"
    if state_path.exists():
        try:
            store = StateStore(state_path)
            state = store.load_ledger()
            providers = store.load_providers()
        except (OSError, ValueError, KeyError) as e:
            return errors + [f"Cannot load state {state_path}: {e}"]
        errors.extend(check_ledger(state))
        errors.extend(check_assignments(providers, state))

        events_path = Path(data_dir) / "events.jsonl"
        if events_path.exists():
            try:
                log = EventLog(storage_path=events_path)
            except (OSError, ValueError, KeyError) as e:
                return errors + [f"Cannot load event log {events_path}: {e}"]
            errors.extend(check_disbursements(state, log))
    return errors
