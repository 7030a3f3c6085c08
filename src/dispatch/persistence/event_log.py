"""Append-only event log: the audit record of every committed change.

Every committed directory, location or mission change produces an
event, and every payout released from escrow produces one
FUNDS_DISBURSED event. Events are immutable once written. The log is:
1. The disbursement audit trail: per mission, FUNDS_DISBURSED amounts
   sum to the mission's total_amount, exactly once.
2. Tamper evident: each record carries the SHA-256 of its canonical JSON,
   re-verified when a JSONL file is loaded.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of dispatch events."""
    # Directory
    PROVIDER_REGISTERED = "provider_registered"
    PROVIDER_STATUS_CHANGED = "provider_status_changed"
    # Locations
    LOCATION_UPDATED = "location_updated"
    LOCATIONS_SWEPT = "locations_swept"
    # Missions
    MISSION_CREATED = "mission_created"
    MISSION_ASSIGNED = "mission_assigned"
    MISSION_COMPLETED = "mission_completed"
    MISSION_DISPUTED = "mission_disputed"
    DISPUTE_RESOLVED = "dispute_resolved"
    MISSION_CANCELLED = "mission_cancelled"
    # Escrow
    FUNDS_DISBURSED = "funds_disbursed"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event.

    event_hash is computed once, at creation, over the canonical JSON of
    the other fields.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = (timestamp_utc or datetime.now(timezone.utc)).isoformat()
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts, actor_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Events can only be appended, never modified or deleted. With a
    storage path, each append is written through to the file, and an
    existing file is loaded (and verified) on construction.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        if self._storage_path:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")
        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for_mission(self, mission_id: int) -> list[EventRecord]:
        return [e for e in self._events if e.payload.get("mission_id") == mission_id]

    def disbursed_total(self, mission_id: int) -> int:
        """Sum of FUNDS_DISBURSED amounts recorded for one mission."""
        return sum(
            int(e.payload["amount"])
            for e in self._events
            if e.event_kind == EventKind.FUNDS_DISBURSED
            and e.payload.get("mission_id") == mission_id
        )

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        """Load and verify a JSONL log.

        Fail-closed: a hash mismatch or a repeated event ID aborts the
        load with ValueError.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )
                expected = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected}"
                    )
                self._events.append(EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                ))
                self._event_ids.add(event_id)
