"""Default reward catalogue and its idempotent seeding."""

from __future__ import annotations

from typing import TypedDict

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.models.loyalty import LoyaltyReward, LoyaltyRewardType


class RewardSeed(TypedDict):
    name: str
    description: str
    points_required: int
    value: str
    type: LoyaltyRewardType


DEFAULT_REWARDS: list[RewardSeed] = [
    {
        "name": "Rs. 50 off",
        "description": "Get Rs. 50 off on your next order",
        "points_required": 500,
        "value": "50",
        "type": LoyaltyRewardType.DISCOUNT,
    },
    {
        "name": "Rs. 100 off",
        "description": "Get Rs. 100 off on your next order",
        "points_required": 1000,
        "value": "100",
        "type": LoyaltyRewardType.DISCOUNT,
    },
    {
        "name": "Rs. 200 off",
        "description": "Get Rs. 200 off on your next order",
        "points_required": 2000,
        "value": "200",
        "type": LoyaltyRewardType.DISCOUNT,
    },
    {
        "name": "Free Delivery",
        "description": "Free delivery on your next order",
        "points_required": 300,
        "value": "free_delivery",
        "type": LoyaltyRewardType.FREE_DELIVERY,
    },
    {
        "name": "Priority Order Processing",
        "description": "Your next order gets priority processing",
        "points_required": 250,
        "value": "priority",
        "type": LoyaltyRewardType.SPECIAL,
    },
]


async def seed_default_rewards(session: AsyncSession) -> int:
    """Insert catalogue entries missing by name; returns how many were created."""

    existing = set((await session.execute(select(LoyaltyReward.name))).scalars().all())
    created = 0
    for seed in DEFAULT_REWARDS:
        if seed["name"] in existing:
            continue
        session.add(LoyaltyReward(active=True, **seed))
        created += 1
    await session.commit()
    logger.info("Seeded loyalty rewards", created=created, total=len(DEFAULT_REWARDS))
    return created


__all__ = ["DEFAULT_REWARDS", "RewardSeed", "seed_default_rewards"]
