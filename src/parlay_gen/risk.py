"""Risk tiers and the numeric policy each one enforces."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskPolicy:
    """Acceptance thresholds for one risk tier.

    ``calibration_bands`` pairs a minimum stated confidence with the longest
    American price allowed at that confidence, checked highest band first.
    """

    name: str
    description: str
    target_range: str
    confidence_min: int
    confidence_max: int
    confidence_example: str
    goal: str
    max_attempts: int
    heavy_favorite_max: int | None = None
    calibration_bands: tuple[tuple[int, int], ...] = ()

    @property
    def enforces_price_policy(self) -> bool:
        return self.heavy_favorite_max is not None

    def confidence_rule(self) -> str:
        return (
            f"- CONFIDENCE REQUIREMENT: ALL legs MUST be {self.confidence_min}-"
            f"{self.confidence_max}/10 confidence. {self.goal}"
        )


LOW = RiskPolicy(
    name="Low",
    description="High probability to hit, heavy favorites, +200 to +400 odds.",
    target_range="+200 to +400",
    confidence_min=8,
    confidence_max=9,
    confidence_example="8/10 or 9/10",
    goal=(
        "Low risk = high probability. Focus on favorites, safe bets, data-backed picks. "
        "Goal: WIN the parlay, not maximize payout."
    ),
    max_attempts=3,
    heavy_favorite_max=-200,
    calibration_bands=((9, -401), (8, -201), (7, -151)),
)

MEDIUM = RiskPolicy(
    name="Medium",
    description="Balanced value favorites with moderate props, +400 to +600 odds.",
    target_range="+400 to +600",
    confidence_min=6,
    confidence_max=9,
    confidence_example="7/10",
    goal=(
        "Medium risk = balanced value. Mix of favorites and value picks. "
        "Goal: Balance probability and payout."
    ),
    max_attempts=1,
)

HIGH = RiskPolicy(
    name="High",
    description="Value underdogs and high-variance outcomes, +600+ odds.",
    target_range="+600 and up",
    confidence_min=3,
    confidence_max=9,
    confidence_example="5/10",
    goal=(
        "High risk = big payout potential. Include upsets, underdogs, analyst picks. "
        "Goal: Maximize payout with calculated risks."
    ),
    max_attempts=1,
)

RISK_POLICIES: dict[str, RiskPolicy] = {policy.name: policy for policy in (LOW, MEDIUM, HIGH)}


def risk_policy(level: str) -> RiskPolicy:
    """Policy for a tier name; unknown tiers use Medium with a warning."""
    for name, policy in RISK_POLICIES.items():
        if name.lower() == level.strip().lower():
            return policy
    logger.warning("unknown risk level %r; using Medium", level)
    return MEDIUM
