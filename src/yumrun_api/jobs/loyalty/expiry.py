"""Daily sweep that turns overdue EARN rows into EXPIRE rows."""

# meta: job: loyalty-points-expiry

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.services.loyalty import LoyaltyService
from yumrun_api.services.notifications import NotificationService

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def _open_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


async def run_points_expiry(
    *,
    session_factory: SessionFactory,
    reference_time: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Expire every EARN transaction whose expiry date has passed.

    Safe to re-run: rows already expired carry ``processed_expiry`` and are
    skipped, and rows committed before a crash stay committed.
    """

    session = await _open_session(session_factory)
    async with session as managed_session:
        service = LoyaltyService(managed_session, notification_service=NotificationService(managed_session))
        now = reference_time or dt.datetime.now(dt.timezone.utc)
        outcome = await service.run_expiry(reference_time=now)

        summary = {
            "processed": outcome.processed,
            "failed": outcome.failed,
            "reference_time": now.isoformat(),
        }
        logger.bind(summary=summary, failures=outcome.failures).info("Loyalty points expiry sweep completed")
        return summary
