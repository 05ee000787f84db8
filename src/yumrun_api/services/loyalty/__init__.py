"""Loyalty service exports."""

from .loyalty_service import (  # noqa: F401
    ExpiryRunResult,
    LoyaltyService,
    LoyaltySummary,
    TransactionPage,
    add_months,
)
from .tiers import (  # noqa: F401
    TierBenefits,
    calculate_base_points,
    calculate_order_points,
    calculate_tier,
    get_tier_benefits,
    next_tier,
    points_to_next_tier,
    tier_rank,
)
from .catalog import DEFAULT_REWARDS, seed_default_rewards  # noqa: F401
