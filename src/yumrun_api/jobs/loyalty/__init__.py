"""Loyalty maintenance jobs."""

from .expiry import run_points_expiry  # noqa: F401
from .tiers import run_tier_reconciliation  # noqa: F401
