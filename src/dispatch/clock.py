"""Time source consumed by the stores and the ledger."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Current-time source. Must never go backwards."""

    def now(self) -> datetime:
        """Return the current UTC time."""
        ...


class SystemClock:
    """Wall-clock time, clamped so successive readings never decrease."""

    def __init__(self) -> None:
        self._last: Optional[datetime] = None
        self._guard = threading.Lock()

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        with self._guard:
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
        return current
