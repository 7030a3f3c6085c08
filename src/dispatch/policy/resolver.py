"""Policy resolver: typed access to the dispatch policy config.

Policy lives in config/dispatch_policy.json. Every value has a built-in
default so a partial file (or none at all, via PolicyResolver.default())
still yields a complete policy. Values are validated once, at load time;
a bad config fails closed with a ValidationError.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from dispatch.errors import ValidationError
from dispatch.models.provider import Discipline, Tier

POLICY_FILENAME = "dispatch_policy.json"
BPS_DENOMINATOR = 10_000

_DEFAULTS: dict[str, Any] = {
    "fees": {
        "platform_fee_bps": 500,
        "cancellation_penalty_bps": 100,
    },
    "accounts": {
        "platform_account": "platform",
    },
    "access": {
        "ledger_id": "mission-ledger",
        "admin_ids": ["admin"],
        "trusted_location_writers": [],
    },
    "locations": {
        "stale_max_age_seconds": 3600,
    },
    "tier_scoring": {
        "height_threshold_cm": 180,
        "height_bonus": 20,
        "weight_threshold_kg": 80,
        "weight_bonus": 20,
        "professional_bonus": 40,
        "points_per_year": 5,
        "win_rate_divisor": 100,
        "discipline_bonus": {
            "mma": 30,
            "boxing": 20,
            "muay_thai": 20,
            "wrestling": 20,
            "kickboxing": 10,
            "karate": 10,
            "judo": 10,
            "self_defense": 10,
        },
        "thresholds": {
            "elite": 200,
            "expert": 120,
            "warrior": 60,
        },
        "bounds": {
            "height_cm": [120, 250],
            "weight_kg": [40, 200],
            "win_rate_bps": [0, 10000],
        },
    },
}


@dataclass(frozen=True)
class TierScoringParams:
    """Weights, bonuses, thresholds and bounds for tier scoring."""
    height_threshold_cm: int
    height_bonus: int
    weight_threshold_kg: int
    weight_bonus: int
    professional_bonus: int
    points_per_year: int
    win_rate_divisor: int
    discipline_bonus: dict[Discipline, int]
    # Ordered highest tier first: [(ELITE, 200), (EXPERT, 120), (WARRIOR, 60)]
    thresholds: tuple[tuple[Tier, int], ...]
    height_bounds: tuple[int, int]
    weight_bounds: tuple[int, int]
    win_rate_bounds: tuple[int, int]


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class PolicyResolver:
    """Resolves dispatch policy values.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        fee_bps = resolver.platform_fee_bps()
        scoring = resolver.tier_scoring_params()
    """

    def __init__(self, params: Optional[dict[str, Any]] = None) -> None:
        self._params = _merge(_DEFAULTS, params or {})
        errors = self.validate()
        if errors:
            raise ValidationError("Invalid dispatch policy: " + "; ".join(errors))
        self._scoring = self._build_scoring_params()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load policy from ``config_dir/dispatch_policy.json``."""
        path = Path(config_dir) / POLICY_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def default(cls) -> PolicyResolver:
        return cls({})

    @property
    def params(self) -> dict[str, Any]:
        """Deep copy of the effective (merged) policy."""
        return copy.deepcopy(self._params)

    # ------------------------------------------------------------------
    # Fees and accounts
    # ------------------------------------------------------------------

    def platform_fee_bps(self) -> int:
        return int(self._params["fees"]["platform_fee_bps"])

    def cancellation_penalty_bps(self) -> int:
        return int(self._params["fees"]["cancellation_penalty_bps"])

    def platform_account(self) -> str:
        return str(self._params["accounts"]["platform_account"])

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def ledger_id(self) -> str:
        return str(self._params["access"]["ledger_id"])

    def admin_ids(self) -> list[str]:
        return list(self._params["access"]["admin_ids"])

    def trusted_location_writers(self) -> list[str]:
        return list(self._params["access"]["trusted_location_writers"])

    # ------------------------------------------------------------------
    # Locations and scoring
    # ------------------------------------------------------------------

    def stale_location_max_age(self) -> timedelta:
        return timedelta(seconds=int(self._params["locations"]["stale_max_age_seconds"]))

    def tier_scoring_params(self) -> TierScoringParams:
        return self._scoring

    def validate(self) -> list[str]:
        """Check structural policy invariants. Returns errors (empty = OK)."""
        errors: list[str] = []
        fees = self._params["fees"]
        for key in ("platform_fee_bps", "cancellation_penalty_bps"):
            value = fees.get(key)
            if not isinstance(value, int) or not (0 <= value <= BPS_DENOMINATOR):
                errors.append(f"fees.{key} must be an integer in [0, {BPS_DENOMINATOR}], got {value!r}")

        if not str(self._params["accounts"].get("platform_account", "")).strip():
            errors.append("accounts.platform_account must be non-empty")
        if not str(self._params["access"].get("ledger_id", "")).strip():
            errors.append("access.ledger_id must be non-empty")

        max_age = self._params["locations"].get("stale_max_age_seconds")
        if not isinstance(max_age, int) or max_age <= 0:
            errors.append(f"locations.stale_max_age_seconds must be a positive integer, got {max_age!r}")

        scoring = self._params["tier_scoring"]
        thresholds = scoring["thresholds"]
        try:
            elite, expert, warrior = (
                int(thresholds["elite"]), int(thresholds["expert"]), int(thresholds["warrior"]),
            )
        except (KeyError, TypeError, ValueError):
            errors.append("tier_scoring.thresholds must define integer elite, expert, warrior")
        else:
            if not elite > expert > warrior > 0:
                errors.append(
                    "tier_scoring.thresholds must be strictly descending and positive "
                    f"(elite={elite}, expert={expert}, warrior={warrior})"
                )

        unknown = set(scoring["discipline_bonus"]) - {d.value for d in Discipline}
        if unknown:
            errors.append(f"tier_scoring.discipline_bonus has unknown disciplines: {sorted(unknown)}")
        missing = {d.value for d in Discipline} - set(scoring["discipline_bonus"])
        if missing:
            errors.append(f"tier_scoring.discipline_bonus missing disciplines: {sorted(missing)}")

        if int(scoring["win_rate_divisor"]) <= 0:
            errors.append("tier_scoring.win_rate_divisor must be positive")

        for name, pair in scoring["bounds"].items():
            if len(pair) != 2 or int(pair[0]) > int(pair[1]):
                errors.append(f"tier_scoring.bounds.{name} must be [low, high] with low <= high")
        return errors

    def _build_scoring_params(self) -> TierScoringParams:
        s = self._params["tier_scoring"]
        t = s["thresholds"]
        b = s["bounds"]
        return TierScoringParams(
            height_threshold_cm=int(s["height_threshold_cm"]),
            height_bonus=int(s["height_bonus"]),
            weight_threshold_kg=int(s["weight_threshold_kg"]),
            weight_bonus=int(s["weight_bonus"]),
            professional_bonus=int(s["professional_bonus"]),
            points_per_year=int(s["points_per_year"]),
            win_rate_divisor=int(s["win_rate_divisor"]),
            discipline_bonus={
                Discipline(name): int(bonus)
                for name, bonus in s["discipline_bonus"].items()
            },
            thresholds=(
                (Tier.ELITE, int(t["elite"])),
                (Tier.EXPERT, int(t["expert"])),
                (Tier.WARRIOR, int(t["warrior"])),
            ),
            height_bounds=(int(b["height_cm"][0]), int(b["height_cm"][1])),
            weight_bounds=(int(b["weight_kg"][0]), int(b["weight_kg"][1])),
            win_rate_bounds=(int(b["win_rate_bps"][0]), int(b["win_rate_bps"][1])),
        )
