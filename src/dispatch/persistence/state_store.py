"""State store: JSON-based persistence for dispatch runtime state.

Stores and recovers:
- Provider directory (profiles with their fixed registration attributes)
- Location records (including invalidated ones)
- Mission ledger (missions, client/provider indexes, settlements,
  next mission id, custody balance)

This is a simple file-based store suitable for single-node deployment.
Every save rewrites the whole file through a temporary sibling and an
atomic replace, so a crash mid-write leaves the previous file intact.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dispatch.missions.ledger import LedgerState
from dispatch.models.location import LocationRecord
from dispatch.models.mission import DisputeResolution, Mission, MissionState
from dispatch.models.provider import (
    Discipline,
    ProviderAttributes,
    ProviderProfile,
    ProviderStatus,
    Tier,
)
from dispatch.models.settlement import Payout, PayoutReason, Settlement


def _dt_out(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_in(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class StateStore:
    """JSON file-based state persistence.

    Usage:
        store = StateStore(Path("data/state.json"))
        store.save_all(directory.all_providers(), geo.all_records(), ledger.export_state())

        # On recovery:
        providers = store.load_providers()
        locations = store.load_locations()
        ledger_state = store.load_ledger()
    """

    def __init__(self, storage_path: Path) -> None:
        self._path = storage_path
        self._state: dict[str, Any] = {}
        if storage_path.exists():
            self._load()

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as f:
            self._state = json.load(f)

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2, sort_keys=True, ensure_ascii=False)
        os.replace(tmp, self._path)

    def save_all(
        self,
        providers: list[ProviderProfile],
        locations: list[LocationRecord],
        ledger: LedgerState,
    ) -> None:
        """Write every table in one file replacement."""
        self._state["providers"] = [self._provider_to_dict(p) for p in providers]
        self._state["locations"] = [self._location_to_dict(r) for r in locations]
        self._state["ledger"] = self._ledger_to_dict(ledger)
        self._save()

    # ------------------------------------------------------------------
    # Provider persistence
    # ------------------------------------------------------------------

    def load_providers(self) -> dict[str, ProviderProfile]:
        """Deserialize providers, keyed by id in registration order."""
        providers: dict[str, ProviderProfile] = {}
        for data in self._state.get("providers", []):
            attrs_data = data["attributes"]
            attributes = ProviderAttributes(
                provider_id=attrs_data["provider_id"],
                display_name=attrs_data["display_name"],
                height_cm=attrs_data["height_cm"],
                weight_kg=attrs_data["weight_kg"],
                is_professional=attrs_data["is_professional"],
                years_experience=attrs_data["years_experience"],
                discipline=Discipline(attrs_data["discipline"]),
                win_rate_bps=attrs_data["win_rate_bps"],
            )
            providers[data["provider_id"]] = ProviderProfile(
                provider_id=data["provider_id"],
                display_name=data["display_name"],
                tier=Tier(data["tier"]),
                attributes=attributes,
                status=ProviderStatus(data["status"]),
                total_earnings=data.get("total_earnings", 0),
                completed_missions=data.get("completed_missions", 0),
                registered_utc=_dt_in(data.get("registered_utc")),
                status_changed_utc=_dt_in(data.get("status_changed_utc")),
                suspension_reason=data.get("suspension_reason", ""),
            )
        return providers

    @staticmethod
    def _provider_to_dict(p: ProviderProfile) -> dict[str, Any]:
        a = p.attributes
        return {
            "provider_id": p.provider_id,
            "display_name": p.display_name,
            "tier": p.tier.value,
            "status": p.status.value,
            "total_earnings": p.total_earnings,
            "completed_missions": p.completed_missions,
            "registered_utc": _dt_out(p.registered_utc),
            "status_changed_utc": _dt_out(p.status_changed_utc),
            "suspension_reason": p.suspension_reason,
            "attributes": {
                "provider_id": a.provider_id,
                "display_name": a.display_name,
                "height_cm": a.height_cm,
                "weight_kg": a.weight_kg,
                "is_professional": a.is_professional,
                "years_experience": a.years_experience,
                "discipline": a.discipline.value,
                "win_rate_bps": a.win_rate_bps,
            },
        }

    # ------------------------------------------------------------------
    # Location persistence
    # ------------------------------------------------------------------

    def load_locations(self) -> dict[str, LocationRecord]:
        records: dict[str, LocationRecord] = {}
        for data in self._state.get("locations", []):
            records[data["provider_id"]] = LocationRecord(
                provider_id=data["provider_id"],
                latitude=data["latitude"],
                longitude=data["longitude"],
                updated_utc=datetime.fromisoformat(data["updated_utc"]),
                valid=data.get("valid", True),
            )
        return records

    @staticmethod
    def _location_to_dict(r: LocationRecord) -> dict[str, Any]:
        return {
            "provider_id": r.provider_id,
            "latitude": r.latitude,
            "longitude": r.longitude,
            "updated_utc": r.updated_utc.isoformat(),
            "valid": r.valid,
        }

    # ------------------------------------------------------------------
    # Ledger persistence
    # ------------------------------------------------------------------

    def load_ledger(self) -> LedgerState:
        """Deserialize the ledger. Returns an empty ledger if none is stored."""
        data = self._state.get("ledger")
        if not data:
            return LedgerState()

        missions: dict[int, Mission] = {}
        for m in data.get("missions", []):
            resolution = m.get("resolution")
            missions[m["mission_id"]] = Mission(
                mission_id=m["mission_id"],
                client_id=m["client_id"],
                location_hash=m["location_hash"],
                client_latitude=m["client_latitude"],
                client_longitude=m["client_longitude"],
                total_amount=m["total_amount"],
                fighter_amount=m["fighter_amount"],
                platform_fee=m["platform_fee"],
                required_tier=Tier(m["required_tier"]),
                state=MissionState(m["state"]),
                assigned_provider_id=m.get("assigned_provider_id"),
                description=m.get("description", ""),
                created_utc=_dt_in(m.get("created_utc")),
                assigned_utc=_dt_in(m.get("assigned_utc")),
                completed_utc=_dt_in(m.get("completed_utc")),
                disputed_by=m.get("disputed_by"),
                resolution=DisputeResolution(resolution) if resolution else None,
            )

        settlements: dict[int, Settlement] = {}
        for s in data.get("settlements", []):
            settlements[s["mission_id"]] = Settlement(
                mission_id=s["mission_id"],
                payouts=tuple(
                    Payout(
                        recipient_id=p["recipient_id"],
                        amount=p["amount"],
                        reason=PayoutReason(p["reason"]),
                    )
                    for p in s["payouts"]
                ),
                settled_utc=_dt_in(s.get("settled_utc")),
            )

        return LedgerState(
            missions=missions,
            missions_by_client={
                k: list(v) for k, v in data.get("missions_by_client", {}).items()
            },
            missions_by_provider={
                k: list(v) for k, v in data.get("missions_by_provider", {}).items()
            },
            settlements=settlements,
            next_mission_id=data.get("next_mission_id", 1),
            custody_balance=data.get("custody_balance", 0),
        )

    @staticmethod
    def _ledger_to_dict(ledger: LedgerState) -> dict[str, Any]:
        return {
            "next_mission_id": ledger.next_mission_id,
            "custody_balance": ledger.custody_balance,
            "missions": [
                {
                    "mission_id": m.mission_id,
                    "client_id": m.client_id,
                    "location_hash": m.location_hash,
                    "client_latitude": m.client_latitude,
                    "client_longitude": m.client_longitude,
                    "total_amount": m.total_amount,
                    "fighter_amount": m.fighter_amount,
                    "platform_fee": m.platform_fee,
                    "required_tier": m.required_tier.value,
                    "state": m.state.value,
                    "assigned_provider_id": m.assigned_provider_id,
                    "description": m.description,
                    "created_utc": _dt_out(m.created_utc),
                    "assigned_utc": _dt_out(m.assigned_utc),
                    "completed_utc": _dt_out(m.completed_utc),
                    "disputed_by": m.disputed_by,
                    "resolution": m.resolution.value if m.resolution else None,
                }
                for m in sorted(ledger.missions.values(), key=lambda x: x.mission_id)
            ],
            # JSON object keys are strings; ids stay ints inside the lists.
            "missions_by_client": ledger.missions_by_client,
            "missions_by_provider": ledger.missions_by_provider,
            "settlements": [
                {
                    "mission_id": s.mission_id,
                    "settled_utc": _dt_out(s.settled_utc),
                    "payouts": [
                        {
                            "recipient_id": p.recipient_id,
                            "amount": p.amount,
                            "reason": p.reason.value,
                        }
                        for p in s.payouts
                    ],
                }
                for s in sorted(ledger.settlements.values(), key=lambda x: x.mission_id)
            ],
        }
