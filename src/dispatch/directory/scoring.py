"""Tier scorer: maps registration attributes to a capability tier.

Score formula (defaults, all configurable under tier_scoring):
    score = 20 * [height_cm >= 180]
          + 20 * [weight_kg >= 80]
          + 40 * [is_professional]
          + 5 * years_experience
          + discipline_bonus          (MMA 30; striking/grappling 20; other 10)
          + win_rate_bps // 100       (0-100 points)

Thresholds: >= 200 ELITE, >= 120 EXPERT, >= 60 WARRIOR, else NOVICE.

Pure computation. The directory calls it exactly once per provider, at
registration, and stores the result.
"""

from __future__ import annotations

from dispatch.models.provider import Discipline, ProviderAttributes, Tier
from dispatch.policy.resolver import PolicyResolver, TierScoringParams


class TierScorer:
    """Scores provider attributes and classifies them into a tier.

    Usage:
        scorer = TierScorer(resolver)
        errors = scorer.validate(attributes)
        if not errors:
            tier = scorer.classify(attributes)
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._params: TierScoringParams = resolver.tier_scoring_params()

    def validate(self, attrs: ProviderAttributes) -> list[str]:
        """Check attribute types and ranges. Returns errors (empty = OK)."""
        errors = self._type_errors(attrs)
        if errors:
            return errors
        p = self._params
        if not attrs.provider_id.strip():
            errors.append("Provider ID must be non-empty")
        if not attrs.display_name.strip():
            errors.append("Display name must be non-empty")
        low, high = p.height_bounds
        if not (low <= attrs.height_cm <= high):
            errors.append(f"Height must be in [{low}, {high}] cm, got {attrs.height_cm}")
        low, high = p.weight_bounds
        if not (low <= attrs.weight_kg <= high):
            errors.append(f"Weight must be in [{low}, {high}] kg, got {attrs.weight_kg}")
        low, high = p.win_rate_bounds
        if not (low <= attrs.win_rate_bps <= high):
            errors.append(f"Win rate must be in [{low}, {high}], got {attrs.win_rate_bps}")
        if attrs.years_experience < 0:
            errors.append(f"Years of experience cannot be negative, got {attrs.years_experience}")
        return errors

    @staticmethod
    def _type_errors(attrs: ProviderAttributes) -> list[str]:
        errors: list[str] = []
        for name in ("provider_id", "display_name"):
            value = getattr(attrs, name)
            if not isinstance(value, str):
                errors.append(f"{name} must be a string, got {value!r}")
        for name in ("height_cm", "weight_kg", "years_experience", "win_rate_bps"):
            value = getattr(attrs, name)
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"{name} must be an integer, got {value!r}")
        if not isinstance(attrs.is_professional, bool):
            errors.append(f"is_professional must be a boolean, got {attrs.is_professional!r}")
        if not isinstance(attrs.discipline, Discipline):
            errors.append(f"Unknown discipline: {attrs.discipline!r}")
        return errors

    def score(self, attrs: ProviderAttributes) -> int:
        p = self._params
        total = 0
        if attrs.height_cm >= p.height_threshold_cm:
            total += p.height_bonus
        if attrs.weight_kg >= p.weight_threshold_kg:
            total += p.weight_bonus
        if attrs.is_professional:
            total += p.professional_bonus
        total += p.points_per_year * attrs.years_experience
        total += p.discipline_bonus.get(attrs.discipline, 0)
        total += attrs.win_rate_bps // p.win_rate_divisor
        return total

    def tier_for(self, score: int) -> Tier:
        for tier, threshold in self._params.thresholds:
            if score >= threshold:
                return tier
        return Tier.NOVICE

    def classify(self, attrs: ProviderAttributes) -> Tier:
        """Score the attributes and return the resulting tier."""
        return self.tier_for(self.score(attrs))
