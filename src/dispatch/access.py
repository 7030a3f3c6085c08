"""Access policy: who may mutate directory and location state.

Access-control wiring itself is owned elsewhere; the core only asks the
questions below. StaticAccessPolicy answers them from fixed id sets,
which is what the config-driven service and the tests use.
"""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable


@runtime_checkable
class AccessPolicy(Protocol):
    """Authorization checks consumed by the directory, store and ledger."""

    def is_admin(self, caller_id: str) -> bool:
        ...

    def is_ledger(self, caller_id: str) -> bool:
        ...

    def may_update_location(self, caller_id: str, provider_id: str) -> bool:
        ...


class StaticAccessPolicy:
    """Fixed sets of administrators, ledger identities and trusted writers.

    A provider may always report its own location. Administrators and
    trusted location writers may report anyone's.
    """

    def __init__(
        self,
        admin_ids: Iterable[str] = (),
        ledger_ids: Iterable[str] = (),
        trusted_location_writers: Iterable[str] = (),
    ) -> None:
        self._admins = frozenset(a.strip() for a in admin_ids)
        self._ledgers = frozenset(l.strip() for l in ledger_ids)
        self._location_writers = frozenset(
            w.strip() for w in trusted_location_writers
        )

    def is_admin(self, caller_id: str) -> bool:
        return caller_id.strip() in self._admins

    def is_ledger(self, caller_id: str) -> bool:
        return caller_id.strip() in self._ledgers

    def may_update_location(self, caller_id: str, provider_id: str) -> bool:
        caller = caller_id.strip()
        return (
            caller == provider_id.strip()
            or caller in self._admins
            or caller in self._location_writers
        )

