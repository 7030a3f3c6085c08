"""Policy resolution for the dispatch marketplace."""

from dispatch.policy.resolver import PolicyResolver, TierScoringParams

__all__ = ["PolicyResolver", "TierScoringParams"]
