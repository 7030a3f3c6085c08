"""Provider directory: registration, tier scoring and availability."""

from dispatch.directory.registry import ProviderDirectory
from dispatch.directory.scoring import TierScorer

__all__ = ["ProviderDirectory", "TierScorer"]
