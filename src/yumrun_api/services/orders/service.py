"""Order placement and read helpers."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.core.errors import NotFoundError, OrderNotFoundError, PermissionDeniedError, ValidationError
from yumrun_api.models.order import Order, OrderItem, OrderStatusEnum, PaymentMethodEnum
from yumrun_api.models.order_status_update import OrderStatusUpdate
from yumrun_api.models.restaurant import Restaurant
from yumrun_api.models.user import User, UserRoleEnum
from yumrun_api.services.auth import Capability, ensure_capability
from yumrun_api.services.loyalty import LoyaltyService
from yumrun_api.services.notifications import NotificationService


_CENT = Decimal("0.01")


@dataclass(slots=True)
class OrderLineDraft:
    name: str
    quantity: int
    unit_price: Decimal
    menu_item_id: Optional[UUID] = None


@dataclass(slots=True)
class OrderDraft:
    restaurant_id: UUID
    items: Sequence[OrderLineDraft]
    delivery_fee: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    loyalty_points_used: int = 0
    payment_method: PaymentMethodEnum = PaymentMethodEnum.CASH
    delivery_address: Optional[str] = None
    special_instructions: Optional[str] = None


def generate_order_number(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"YR{moment:%y%m%d}-{secrets.token_hex(3).upper()}"


def compute_grand_total(
    total_price: Decimal,
    *,
    delivery_fee: Decimal,
    tax: Decimal,
    tip: Decimal,
    loyalty_points_used: int,
) -> Decimal:
    """Order total after the loyalty discount (one point is worth one currency unit)."""

    gross = total_price + delivery_fee + tax + tip
    return (gross - Decimal(loyalty_points_used)).quantize(_CENT)


class OrderService:
    """Creates orders in PENDING and answers order lookups with visibility checks."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        notification_service: NotificationService | None = None,
        loyalty_service: LoyaltyService | None = None,
    ) -> None:
        self._session = session
        self._notifications = notification_service or NotificationService(session)
        self._loyalty = loyalty_service or LoyaltyService(session, notification_service=self._notifications)

    async def place_order(self, customer: User, draft: OrderDraft) -> Order:
        ensure_capability(customer, Capability.PLACE_ORDER)

        restaurant = await self._session.get(Restaurant, draft.restaurant_id)
        if restaurant is None or not restaurant.is_active:
            raise NotFoundError(f"Restaurant {draft.restaurant_id} not found")
        if not draft.items:
            raise ValidationError("An order needs at least one item")

        lines: list[OrderItem] = []
        total_price = Decimal("0")
        for line in draft.items:
            if line.quantity < 1:
                raise ValidationError(f"Quantity for '{line.name}' must be at least 1")
            unit_price = Decimal(line.unit_price).quantize(_CENT)
            if unit_price < 0:
                raise ValidationError(f"Price for '{line.name}' cannot be negative")
            line_total = (unit_price * line.quantity).quantize(_CENT)
            total_price += line_total
            lines.append(
                OrderItem(
                    menu_item_id=line.menu_item_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    total_price=line_total,
                )
            )

        for label, amount in (("deliveryFee", draft.delivery_fee), ("tax", draft.tax), ("tip", draft.tip)):
            if amount < 0:
                raise ValidationError(f"{label} cannot be negative")
        if draft.loyalty_points_used < 0:
            raise ValidationError("loyaltyPointsUsed cannot be negative")

        grand_total = compute_grand_total(
            total_price,
            delivery_fee=draft.delivery_fee,
            tax=draft.tax,
            tip=draft.tip,
            loyalty_points_used=draft.loyalty_points_used,
        )
        if grand_total < 0:
            raise ValidationError("Loyalty points used exceed the order total")

        now = datetime.now(timezone.utc)
        order = Order(
            order_number=generate_order_number(now),
            user_id=customer.id,
            restaurant_id=restaurant.id,
            status=OrderStatusEnum.PENDING,
            total_price=total_price.quantize(_CENT),
            delivery_fee=Decimal(draft.delivery_fee).quantize(_CENT),
            tax=Decimal(draft.tax).quantize(_CENT),
            tip=Decimal(draft.tip).quantize(_CENT),
            grand_total=grand_total,
            loyalty_points_used=draft.loyalty_points_used,
            payment_method=draft.payment_method,
            delivery_address=draft.delivery_address,
            special_instructions=draft.special_instructions,
            items=lines,
            status_updates=[
                OrderStatusUpdate(sequence=1, status=OrderStatusEnum.PENDING, updated_by=customer.id, timestamp=now)
            ],
        )
        self._session.add(order)
        await self._session.flush()

        if draft.loyalty_points_used:
            await self._loyalty.apply_points_to_order(customer, order, draft.loyalty_points_used)

        await self._session.commit()
        order = await self.get_order(order.id)
        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=str(customer.id),
            restaurant_id=str(restaurant.id),
            grand_total=str(order.grand_total),
            loyalty_points_used=order.loyalty_points_used,
        )

        try:
            await self._notifications.notify_order_placed(order)
        except Exception as exc:
            logger.opt(exception=exc).warning("New order notification failed", order_id=str(order.id))
        await self._loyalty.dispatch_tier_notifications()
        return order

    async def get_order(self, order_id: UUID) -> Order:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        order = (await self._session.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_visible_order(self, order_id: UUID, viewer: User) -> Order:
        """Load an order the viewer is allowed to see."""

        order = await self.get_order(order_id)
        role = viewer.role_enum
        if role is UserRoleEnum.ADMIN:
            return order
        if role is UserRoleEnum.CUSTOMER and order.user_id == viewer.id:
            return order
        if role is UserRoleEnum.DELIVERY_RIDER and order.delivery_person_id == viewer.id:
            return order
        if role is UserRoleEnum.RESTAURANT and order.restaurant_id is not None:
            owner_id = (
                await self._session.execute(select(Restaurant.owner_id).where(Restaurant.id == order.restaurant_id))
            ).scalar_one_or_none()
            if owner_id == viewer.id:
                return order
        raise PermissionDeniedError("You do not have access to this order")


__all__ = [
    "OrderDraft",
    "OrderLineDraft",
    "OrderService",
    "compute_grand_total",
    "generate_order_number",
]
