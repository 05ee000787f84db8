"""Rider-facing read models: claimable orders and earnings summary."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.models.order import Order, OrderStatusEnum
from yumrun_api.models.user import User
from yumrun_api.services.auth import Capability, ensure_capability

from .state_machine import RIDER_CLAIMABLE_STATUSES


@dataclass(slots=True)
class RiderSummary:
    delivered_orders: int
    active_orders: int
    earnings: Decimal
    average_delivery_minutes: Optional[float]


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


class DeliveryService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_available(self, rider: User, *, limit: int = 50) -> list[Order]:
        """Unassigned orders a rider could claim, oldest first."""

        ensure_capability(rider, Capability.ACCEPT_DELIVERY)
        stmt = (
            select(Order)
            .where(
                Order.delivery_person_id.is_(None),
                Order.status.in_(tuple(RIDER_CLAIMABLE_STATUSES)),
            )
            .order_by(Order.created_at.asc())
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars())

    async def rider_summary(self, rider: User) -> RiderSummary:
        """Earnings are delivery fees plus tips of delivered orders."""

        ensure_capability(rider, Capability.COMPLETE_DELIVERY)
        stmt = select(Order).where(Order.delivery_person_id == rider.id)
        orders = list((await self._session.execute(stmt)).scalars())

        delivered = [order for order in orders if order.status is OrderStatusEnum.DELIVERED]
        active = [order for order in orders if order.status is OrderStatusEnum.OUT_FOR_DELIVERY]
        earnings = sum(
            (Decimal(order.delivery_fee or 0) + Decimal(order.tip or 0) for order in delivered),
            Decimal("0"),
        )

        durations = [
            (_as_utc(order.actual_delivery_time) - _as_utc(order.created_at)).total_seconds() / 60
            for order in delivered
            if order.actual_delivery_time is not None and order.created_at is not None
        ]
        average = round(sum(durations) / len(durations), 1) if durations else None

        return RiderSummary(
            delivered_orders=len(delivered),
            active_orders=len(active),
            earnings=earnings.quantize(Decimal("0.01")),
            average_delivery_minutes=average,
        )


__all__ = ["DeliveryService", "RiderSummary"]
