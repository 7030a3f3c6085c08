"""Persistence: the audit event log and the JSON state store."""

from dispatch.persistence.event_log import EventKind, EventLog, EventRecord
from dispatch.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
