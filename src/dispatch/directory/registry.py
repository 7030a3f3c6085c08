"""Provider directory: registry of providers and their availability.

The directory is the source of truth for who can be matched to a
mission. It holds each provider's fixed attributes and tier, plus the
mutable status and earnings counters.

Invariants enforced:
- A provider id can be registered exactly once; the tier computed at
  registration is never recomputed.
- Registration is atomic: a rejected registration leaves no record.
- Status moves AVAILABLE ↔ BUSY only at the ledger's request; SUSPENDED
  and reinstatement are administrative only.
- Earnings are credited by the ledger only and are additive.
"""

from __future__ import annotations

import copy
import logging
from typing import Optional

from dispatch.access import AccessPolicy
from dispatch.clock import Clock, SystemClock
from dispatch.directory.scoring import TierScorer
from dispatch.errors import (
    AuthorizationError,
    PreconditionError,
    ProviderNotFoundError,
    ValidationError,
)
from dispatch.models.provider import (
    ProviderAttributes,
    ProviderProfile,
    ProviderStatus,
)

logger = logging.getLogger(__name__)

# Status changes the ledger may request: (from, to)
_LEDGER_TRANSITIONS: set[tuple[ProviderStatus, ProviderStatus]] = {
    (ProviderStatus.AVAILABLE, ProviderStatus.BUSY),
    (ProviderStatus.BUSY, ProviderStatus.AVAILABLE),
}

# Status changes administration may make
_ADMIN_TRANSITIONS: set[tuple[ProviderStatus, ProviderStatus]] = {
    (ProviderStatus.AVAILABLE, ProviderStatus.SUSPENDED),
    (ProviderStatus.BUSY, ProviderStatus.SUSPENDED),
    (ProviderStatus.SUSPENDED, ProviderStatus.AVAILABLE),
    # Reinstating a provider still bound to an open mission
    (ProviderStatus.SUSPENDED, ProviderStatus.BUSY),
}


class ProviderDirectory:
    """Registry of all providers.

    Thread-safety: not thread-safe on its own. Mutations made on behalf
    of a mission run inside the ledger's lock.
    """

    def __init__(
        self,
        scorer: TierScorer,
        access: AccessPolicy,
        providers: Optional[dict[str, ProviderProfile]] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._scorer = scorer
        self._access = access
        self._providers: dict[str, ProviderProfile] = dict(providers or {})
        self._clock = clock or SystemClock()

    def register(self, attributes: ProviderAttributes) -> str:
        """Register a provider and compute its tier.

        Raises:
            ValidationError: attributes out of range or blank names.
            PreconditionError: the identity is already registered.
        """
        errors = self._scorer.validate(attributes)
        if errors:
            raise ValidationError("; ".join(errors))
        provider_id = attributes.provider_id.strip()
        if provider_id in self._providers:
            raise PreconditionError(f"Provider already registered: {provider_id}")

        tier = self._scorer.classify(attributes)
        now = self._clock.now()
        self._providers[provider_id] = ProviderProfile(
            provider_id=provider_id,
            display_name=attributes.display_name.strip(),
            tier=tier,
            attributes=attributes,
            registered_utc=now,
            status_changed_utc=now,
        )
        logger.info("Registered provider %s as %s", provider_id, tier.value)
        return provider_id

    def get(self, provider_id: str) -> Optional[ProviderProfile]:
        """Look up a provider by id."""
        return self._providers.get(provider_id.strip())

    def list_available(self) -> list[str]:
        """Ids of AVAILABLE providers, in registration order."""
        return [p.provider_id for p in self._providers.values() if p.is_available()]

    def all_providers(self) -> list[ProviderProfile]:
        return list(self._providers.values())

    def set_status(
        self,
        caller_id: str,
        provider_id: str,
        new_status: ProviderStatus,
        reason: str = "",
    ) -> ProviderStatus:
        """Change a provider's status. Returns the previous status.

        The ledger may only flip AVAILABLE ↔ BUSY. Administrators may
        suspend from any non-suspended state and reinstate to AVAILABLE,
        or to BUSY when the provider still holds an open mission (the
        ledger decides which, see MissionLedger.reinstate).
        """
        profile = self._require(provider_id)
        transition = (profile.status, new_status)
        if self._access.is_ledger(caller_id):
            allowed = _LEDGER_TRANSITIONS
        elif self._access.is_admin(caller_id):
            allowed = _ADMIN_TRANSITIONS
        else:
            raise AuthorizationError(
                f"Caller {caller_id} may not change provider status"
            )
        if transition not in allowed:
            raise PreconditionError(
                f"Illegal provider status change for {profile.provider_id}: "
                f"{profile.status.value} → {new_status.value}"
            )
        previous = profile.status
        profile.status = new_status
        profile.status_changed_utc = self._clock.now()
        if new_status == ProviderStatus.SUSPENDED:
            profile.suspension_reason = reason
        elif previous == ProviderStatus.SUSPENDED:
            profile.suspension_reason = ""
        return previous

    def record_earnings(
        self,
        caller_id: str,
        provider_id: str,
        amount: int,
        mission_count: int = 1,
    ) -> None:
        """Credit a provider's cumulative earnings. Ledger only."""
        if not self._access.is_ledger(caller_id):
            raise AuthorizationError(f"Caller {caller_id} may not record earnings")
        if amount < 0 or mission_count < 0:
            raise ValidationError("Earnings and mission count must be non-negative")
        profile = self._require(provider_id)
        profile.total_earnings += amount
        profile.completed_missions += mission_count

    def snapshot(self, provider_id: str) -> ProviderProfile:
        """Detached copy of a provider record, for transactional rollback."""
        return copy.deepcopy(self._require(provider_id))

    def restore(self, caller_id: str, profile: ProviderProfile) -> None:
        """Put back a record taken with snapshot(). Ledger only."""
        if not self._access.is_ledger(caller_id):
            raise AuthorizationError(f"Caller {caller_id} may not restore providers")
        current = self._require(profile.provider_id)
        current.status = profile.status
        current.status_changed_utc = profile.status_changed_utc
        current.suspension_reason = profile.suspension_reason
        current.total_earnings = profile.total_earnings
        current.completed_missions = profile.completed_missions

    @property
    def count(self) -> int:
        return len(self._providers)

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for p in self._providers.values():
            counts[p.status.value] = counts.get(p.status.value, 0) + 1
        return counts

    def _require(self, provider_id: str) -> ProviderProfile:
        profile = self._providers.get(provider_id.strip())
        if profile is None:
            raise ProviderNotFoundError(provider_id)
        return profile
