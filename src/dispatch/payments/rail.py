"""Funds rail abstraction: how settled escrow leaves custody.

The ledger never moves money directly. It hands a complete batch of
payouts for one terminal transition to a FundsRail, and the rail either
performs every payout or none of them. A refusal raises TransferError,
and the ledger rolls back the enclosing operation.

Adding a real settlement backend means implementing FundsRail. The
ledger, escrow split and state machine do not change.
"""

from __future__ import annotations

import threading
from typing import Iterable, Protocol, Sequence, runtime_checkable

from dispatch.errors import TransferError, ValidationError
from dispatch.models.settlement import Payout


@runtime_checkable
class FundsRail(Protocol):
    """All-or-nothing settlement primitive."""

    @property
    def rail_id(self) -> str:
        ...

    def settle(self, payouts: Sequence[Payout]) -> None:
        """Perform every payout, or none. Raises TransferError on refusal."""
        ...


class InMemoryFundsRail:
    """In-process rail that keeps recipient balances.

    Recipients can be marked as rejecting funds, which makes any batch
    containing a payout to them fail as a whole. Used by the CLI and
    the test suite.
    """

    def __init__(
        self,
        rail_id: str = "in_memory",
        rejecting: Iterable[str] = (),
    ) -> None:
        self._rail_id = rail_id
        self._balances: dict[str, int] = {}
        self._rejecting: set[str] = set(rejecting)
        self._guard = threading.Lock()
        self._settled_batches = 0

    @property
    def rail_id(self) -> str:
        return self._rail_id

    def settle(self, payouts: Sequence[Payout]) -> None:
        for payout in payouts:
            if payout.amount < 0:
                raise ValidationError(
                    f"Payout amount must be non-negative, got {payout.amount}"
                )
        with self._guard:
            refused = sorted({
                p.recipient_id for p in payouts if p.recipient_id in self._rejecting
            })
            if refused:
                raise TransferError(
                    f"Rail {self._rail_id} refused settlement: "
                    f"recipient(s) reject funds: {', '.join(refused)}"
                )
            for payout in payouts:
                self._balances[payout.recipient_id] = (
                    self._balances.get(payout.recipient_id, 0) + payout.amount
                )
            self._settled_batches += 1

    def balance_of(self, recipient_id: str) -> int:
        return self._balances.get(recipient_id, 0)

    def balances(self) -> dict[str, int]:
        return dict(self._balances)

    def reject_funds(self, recipient_id: str) -> None:
        """Make ``recipient_id`` refuse all future payouts."""
        self._rejecting.add(recipient_id)

    def accept_funds(self, recipient_id: str) -> None:
        self._rejecting.discard(recipient_id)

    @property
    def settled_batches(self) -> int:
        return self._settled_batches
