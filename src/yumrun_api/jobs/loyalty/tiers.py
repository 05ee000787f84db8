"""Reconcile cached loyalty tiers against lifetime points."""

# meta: job: loyalty-tier-reconciliation

from __future__ import annotations

from typing import Any, Dict

from loguru import logger
from sqlalchemy import select

from yumrun_api.models.user import User
from yumrun_api.services.loyalty import LoyaltyService, calculate_tier
from yumrun_api.services.notifications import NotificationService

from .expiry import SessionFactory, _open_session


async def run_tier_reconciliation(*, session_factory: SessionFactory, batch_size: int = 500) -> Dict[str, Any]:
    """Fix users whose stored tier disagrees with their lifetime points (e.g. after a threshold change)."""

    session = await _open_session(session_factory)
    async with session as managed_session:
        service = LoyaltyService(managed_session, notification_service=NotificationService(managed_session))
        result = await managed_session.execute(select(User.id, User.lifetime_loyalty_points, User.loyalty_tier))

        scanned = 0
        updated = 0
        for user_id, lifetime_points, stored_tier in result.all():
            scanned += 1
            if calculate_tier(lifetime_points) == stored_tier:
                continue
            await service.update_user_tier(user_id)
            updated += 1
            if updated % batch_size == 0:
                await managed_session.commit()

        await managed_session.commit()
        await service.dispatch_tier_notifications()

        summary = {"scanned": scanned, "updated": updated}
        logger.bind(summary=summary).info("Loyalty tier reconciliation completed")
        return summary
