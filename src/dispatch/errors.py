"""Error taxonomy for the dispatch core.

Every failure is raised synchronously to the caller of the failing
operation, with no partial mutation left behind. The four categories:

- validation: malformed or out-of-range input, rejected before any
  state is read.
- precondition: wrong state, role or ownership, rejected after state is
  read but before anything is mutated.
- resource: funds transfer failure or no eligible match found.
- administrative: the caller lacks administrative authority.

The service layer converts these into failed ServiceResults; the core
components only raise.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch errors."""
    category = "error"


class ValidationError(DispatchError, ValueError):
    """Malformed or out-of-range input."""
    category = "validation"


class PreconditionError(DispatchError):
    """Operation not permitted in the current state or for this caller."""
    category = "precondition"


class TransitionError(PreconditionError):
    """Raised when a mission state transition is not allowed."""


class MissionNotFoundError(PreconditionError):
    def __init__(self, mission_id: int) -> None:
        super().__init__(f"Mission not found: {mission_id}")
        self.mission_id = mission_id


class ProviderNotFoundError(PreconditionError):
    def __init__(self, provider_id: str) -> None:
        super().__init__(f"Provider not found: {provider_id}")
        self.provider_id = provider_id


class ResourceError(DispatchError):
    """A required resource (funds, a matching provider) is unavailable."""
    category = "resource"


class NoEligibleProviderError(ResourceError):
    """Matching found no available provider meeting the requirement."""


class TransferError(ResourceError):
    """The funds rail refused a settlement. Nothing was transferred."""


class AuthorizationError(DispatchError):
    """Caller lacks the authority required for the operation."""
    category = "administrative"
