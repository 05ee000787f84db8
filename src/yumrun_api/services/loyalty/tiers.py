"""Pure loyalty tier and points arithmetic.

Nothing in this module touches the database; thresholds come from
``Settings.loyalty_tier_thresholds`` unless a mapping is passed explicitly,
which keeps the functions deterministic and easy to test.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from yumrun_api.core.settings import get_settings
from yumrun_api.models.user import LoyaltyTierEnum


TIER_ORDER: tuple[LoyaltyTierEnum, ...] = (
    LoyaltyTierEnum.BRONZE,
    LoyaltyTierEnum.SILVER,
    LoyaltyTierEnum.GOLD,
    LoyaltyTierEnum.PLATINUM,
)


@dataclass(frozen=True, slots=True)
class TierBenefits:
    points_multiplier: Decimal
    perks: tuple[str, ...]


_TIER_BENEFITS: dict[LoyaltyTierEnum, TierBenefits] = {
    LoyaltyTierEnum.BRONZE: TierBenefits(Decimal("1"), ("Basic member benefits",)),
    LoyaltyTierEnum.SILVER: TierBenefits(
        Decimal("1.2"),
        ("10% bonus points", "Priority customer service"),
    ),
    LoyaltyTierEnum.GOLD: TierBenefits(
        Decimal("1.5"),
        ("Free delivery", "20% bonus points", "Exclusive promotions"),
    ),
    LoyaltyTierEnum.PLATINUM: TierBenefits(
        Decimal("2"),
        ("Free delivery", "Double points on all orders", "Exclusive promotions", "Birthday rewards"),
    ),
}


def _coerce_tier(tier: LoyaltyTierEnum | str | None) -> Optional[LoyaltyTierEnum]:
    if isinstance(tier, LoyaltyTierEnum):
        return tier
    if isinstance(tier, str):
        try:
            return LoyaltyTierEnum(tier.strip().upper())
        except ValueError:
            return None
    return None


def tier_thresholds(thresholds: Mapping[str, int] | None = None) -> dict[LoyaltyTierEnum, int]:
    source = thresholds if thresholds is not None else get_settings().loyalty_tier_thresholds
    return {tier: int(source[tier.value]) for tier in TIER_ORDER}


def calculate_tier(lifetime_points: int, thresholds: Mapping[str, int] | None = None) -> LoyaltyTierEnum:
    """Return the highest tier whose threshold is at or below ``lifetime_points``."""

    resolved = tier_thresholds(thresholds)
    current = LoyaltyTierEnum.BRONZE
    for tier in TIER_ORDER:
        if lifetime_points >= resolved[tier]:
            current = tier
    return current


def tier_rank(tier: LoyaltyTierEnum | str) -> int:
    coerced = _coerce_tier(tier) or LoyaltyTierEnum.BRONZE
    return TIER_ORDER.index(coerced)


def next_tier(tier: LoyaltyTierEnum | str) -> Optional[LoyaltyTierEnum]:
    rank = tier_rank(tier)
    if rank + 1 >= len(TIER_ORDER):
        return None
    return TIER_ORDER[rank + 1]


def points_to_next_tier(lifetime_points: int, thresholds: Mapping[str, int] | None = None) -> int:
    """Points still needed to reach the next tier, 0 once at the top."""

    upcoming = next_tier(calculate_tier(lifetime_points, thresholds))
    if upcoming is None:
        return 0
    return max(0, tier_thresholds(thresholds)[upcoming] - lifetime_points)


def get_tier_benefits(tier: LoyaltyTierEnum | str | None) -> TierBenefits:
    """Benefits for ``tier``; unknown tiers get the BRONZE package."""

    coerced = _coerce_tier(tier)
    if coerced is None:
        return _TIER_BENEFITS[LoyaltyTierEnum.BRONZE]
    return _TIER_BENEFITS[coerced]


def calculate_order_points(base_points: int, tier: LoyaltyTierEnum | str | None) -> int:
    multiplier = get_tier_benefits(tier).points_multiplier
    scaled = (Decimal(int(base_points)) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(scaled)


def calculate_base_points(
    order_total: Decimal | int | float,
    *,
    points_per_block: int | None = None,
    currency_block: int | None = None,
) -> int:
    """Award ``points_per_block`` points for every full ``currency_block`` spent."""

    settings = get_settings()
    per_block = points_per_block if points_per_block is not None else settings.loyalty_points_per_block
    block = currency_block if currency_block is not None else settings.loyalty_currency_block

    total = Decimal(str(order_total))
    if total <= 0:
        return 0
    return int(total // Decimal(block)) * per_block


__all__ = [
    "TIER_ORDER",
    "TierBenefits",
    "calculate_base_points",
    "calculate_order_points",
    "calculate_tier",
    "get_tier_benefits",
    "next_tier",
    "points_to_next_tier",
    "tier_rank",
    "tier_thresholds",
]
