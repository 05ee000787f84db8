"""Order status state machine shared by every status-changing endpoint."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.core.errors import (
    InvalidTransitionError,
    OrderNotFoundError,
    PermissionDeniedError,
    PointsAlreadyAwardedError,
    RiderAlreadyAssignedError,
    UserNotFoundError,
    ValidationError,
)
from yumrun_api.core.settings import get_settings
from yumrun_api.models.order import Order, OrderStatusEnum
from yumrun_api.models.order_status_update import OrderStatusUpdate
from yumrun_api.models.restaurant import Restaurant
from yumrun_api.models.user import User, UserRoleEnum
from yumrun_api.services.auth import Capability, ensure_capability, has_capability
from yumrun_api.services.loyalty import LoyaltyService
from yumrun_api.services.notifications import NotificationService


STATUS_TRANSITIONS: dict[OrderStatusEnum, frozenset[OrderStatusEnum]] = {
    OrderStatusEnum.PENDING: frozenset({OrderStatusEnum.CONFIRMED, OrderStatusEnum.CANCELLED}),
    OrderStatusEnum.CONFIRMED: frozenset({OrderStatusEnum.PREPARING, OrderStatusEnum.CANCELLED}),
    OrderStatusEnum.PREPARING: frozenset({OrderStatusEnum.READY, OrderStatusEnum.CANCELLED}),
    OrderStatusEnum.READY: frozenset({OrderStatusEnum.CANCELLED}),
    # Rider claim moves PREPARING/READY to OUT_FOR_DELIVERY; delivery completion
    # moves OUT_FOR_DELIVERY to DELIVERED. Neither goes through this table.
    OrderStatusEnum.OUT_FOR_DELIVERY: frozenset(),
    OrderStatusEnum.DELIVERED: frozenset(),
    OrderStatusEnum.CANCELLED: frozenset(),
}

RIDER_CLAIMABLE_STATUSES: frozenset[OrderStatusEnum] = frozenset({OrderStatusEnum.PREPARING, OrderStatusEnum.READY})
TERMINAL_STATUSES: frozenset[OrderStatusEnum] = frozenset({OrderStatusEnum.DELIVERED, OrderStatusEnum.CANCELLED})


def allowed_transitions(status: OrderStatusEnum) -> frozenset[OrderStatusEnum]:
    return STATUS_TRANSITIONS.get(status, frozenset())


def can_transition(current: OrderStatusEnum, target: OrderStatusEnum) -> bool:
    return target in allowed_transitions(current)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TransitionResult:
    """Outcome of a committed status change."""

    order: Order
    previous_status: OrderStatusEnum
    status_update: OrderStatusUpdate
    points_earned: int = 0


class OrderStateMachine:
    """Applies status transitions, rider claims and delivery completion.

    Each mutation appends a ``statusUpdates`` entry and commits; email and in-app
    notifications follow the commit and never undo it.
    """

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

    async def transition(
        self,
        *,
        order_id: UUID,
        target_status: OrderStatusEnum,
        actor: User,
    ) -> TransitionResult:
        """Move an order along the transition table on behalf of ``actor``."""

        order = await self.get_order(order_id, for_update=True)
        current_status = order.status
        await self._authorize_status_change(order, target_status, actor)

        if not can_transition(current_status, target_status):
            raise InvalidTransitionError(current_status.value, target_status.value)

        status_update, points = await self._apply_status(order, target_status, actor)
        return await self._commit_and_notify(order, current_status, status_update, points)

    async def assign_rider(self, *, order_id: UUID, rider_id: UUID, actor: User) -> TransitionResult:
        """Restaurant or admin hands the order to a specific rider."""

        ensure_capability(actor, Capability.ASSIGN_RIDER)
        order = await self.get_order(order_id)
        await self._ensure_restaurant_scope(order, actor)

        rider = await self._session.get(User, rider_id)
        if rider is None:
            raise UserNotFoundError(rider_id)
        if rider.role_enum is not UserRoleEnum.DELIVERY_RIDER:
            raise ValidationError("Assigned user is not a delivery rider")

        return await self._claim(order, rider, actor)

    async def accept_delivery(self, *, order_id: UUID, rider: User) -> TransitionResult:
        """An approved rider claims an unassigned order for themselves."""

        ensure_capability(rider, Capability.ACCEPT_DELIVERY)
        if rider.role_enum is not UserRoleEnum.DELIVERY_RIDER:
            raise PermissionDeniedError("Only delivery riders can accept deliveries")
        if not rider.approved:
            raise PermissionDeniedError("Rider account is not approved for deliveries")

        order = await self.get_order(order_id)
        return await self._claim(order, rider, rider)

    async def complete_delivery(self, *, order_id: UUID, actor: User) -> TransitionResult:
        """Assigned rider (or an admin) marks the order delivered."""

        ensure_capability(actor, Capability.COMPLETE_DELIVERY)
        order = await self.get_order(order_id, for_update=True)
        if actor.role_enum is not UserRoleEnum.ADMIN and order.delivery_person_id != actor.id:
            raise PermissionDeniedError("Only the assigned rider can complete this delivery")

        current_status = order.status
        if current_status is not OrderStatusEnum.OUT_FOR_DELIVERY:
            raise InvalidTransitionError(current_status.value, OrderStatusEnum.DELIVERED.value)

        status_update, points = await self._apply_status(order, OrderStatusEnum.DELIVERED, actor)
        rider = await self._session.get(User, order.delivery_person_id) if order.delivery_person_id else None
        if rider is not None:
            rider.is_available = True
        return await self._commit_and_notify(order, current_status, status_update, points)

    async def list_status_updates(self, order_id: UUID) -> list[OrderStatusUpdate]:
        stmt = (
            select(OrderStatusUpdate)
            .where(OrderStatusUpdate.order_id == order_id)
            .order_by(OrderStatusUpdate.sequence.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def get_order(self, order_id: UUID, *, for_update: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        if for_update:
            # Status updates are numbered from the loaded collection; concurrent writers must queue.
            stmt = stmt.with_for_update(of=Order)
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _claim(self, order: Order, rider: User, actor: User) -> TransitionResult:
        order_id, rider_id, previous_status = order.id, rider.id, order.status
        # Compare-and-swap: only one claim can move the row out of the claimable set.
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.delivery_person_id.is_(None),
                Order.status.in_(tuple(RIDER_CLAIMABLE_STATUSES)),
            )
            .values(
                delivery_person_id=rider_id,
                status=OrderStatusEnum.OUT_FOR_DELIVERY,
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            current = await self.get_order(order_id)
            logger.info(
                "Rider claim rejected",
                order_id=str(order_id),
                rider_id=str(rider_id),
                status=current.status.value,
                assigned_rider=str(current.delivery_person_id) if current.delivery_person_id else None,
            )
            if current.delivery_person_id is not None:
                raise RiderAlreadyAssignedError(order_id)
            raise InvalidTransitionError(current.status.value, OrderStatusEnum.OUT_FOR_DELIVERY.value)

        order = await self.get_order(order_id)
        status_update = self._append_status_update(order, OrderStatusEnum.OUT_FOR_DELIVERY, actor)
        rider.is_available = False
        logger.info("Rider claimed order", order_id=str(order_id), rider_id=str(rider_id), actor_id=str(actor.id))
        return await self._commit_and_notify(order, previous_status, status_update, 0)

    async def _authorize_status_change(self, order: Order, target_status: OrderStatusEnum, actor: User) -> None:
        if has_capability(actor.role, Capability.MANAGE_ORDER_STATUS):
            await self._ensure_restaurant_scope(order, actor)
            return

        if target_status is OrderStatusEnum.CANCELLED and has_capability(actor.role, Capability.CANCEL_OWN_ORDER):
            if order.user_id != actor.id:
                raise PermissionDeniedError("Customers can only cancel their own orders")
            if order.status is not OrderStatusEnum.PENDING and can_transition(order.status, target_status):
                raise PermissionDeniedError("Orders can only be cancelled by the customer while pending")
            return

        ensure_capability(actor, Capability.MANAGE_ORDER_STATUS)

    async def _ensure_restaurant_scope(self, order: Order, actor: User) -> None:
        if actor.role_enum is not UserRoleEnum.RESTAURANT:
            return
        owner_id = None
        if order.restaurant_id is not None:
            owner_id = (
                await self._session.execute(select(Restaurant.owner_id).where(Restaurant.id == order.restaurant_id))
            ).scalar_one_or_none()
        if owner_id != actor.id:
            raise PermissionDeniedError("Order belongs to a different restaurant")

    async def _apply_status(
        self,
        order: Order,
        target_status: OrderStatusEnum,
        actor: User,
    ) -> tuple[OrderStatusUpdate, int]:
        now = _utcnow()
        order.status = target_status
        status_update = self._append_status_update(order, target_status, actor, timestamp=now)

        if target_status is OrderStatusEnum.CONFIRMED and order.estimated_delivery_time is None:
            order.estimated_delivery_time = now + timedelta(minutes=get_settings().order_default_eta_minutes)

        points = 0
        if target_status is OrderStatusEnum.DELIVERED:
            if order.actual_delivery_time is None:
                order.actual_delivery_time = now
            points = await self._award_delivery_points(order)
        return status_update, points

    async def _award_delivery_points(self, order: Order) -> int:
        if not get_settings().loyalty_award_on_delivery or order.user_id is None:
            return 0

        customer = await self._session.get(User, order.user_id)
        if customer is None:
            logger.warning("Delivered order has no customer record", order_id=str(order.id))
            return 0
        try:
            transaction = await self._loyalty.earn_for_order(order, customer)
        except PointsAlreadyAwardedError:
            logger.info("Loyalty points already awarded for order", order_id=str(order.id))
            return 0
        return transaction.points if transaction is not None else 0

    def _append_status_update(
        self,
        order: Order,
        status: OrderStatusEnum,
        actor: User,
        *,
        timestamp: Optional[datetime] = None,
    ) -> OrderStatusUpdate:
        status_update = OrderStatusUpdate(
            sequence=len(order.status_updates) + 1,
            status=status,
            updated_by=actor.id,
            timestamp=timestamp or _utcnow(),
        )
        order.status_updates.append(status_update)
        return status_update

    async def _commit_and_notify(
        self,
        order: Order,
        previous_status: OrderStatusEnum,
        status_update: OrderStatusUpdate,
        points: int,
    ) -> TransitionResult:
        await self._session.commit()
        order = await self.get_order(order.id)
        logger.info(
            "Order status transitioned",
            order_id=str(order.id),
            from_status=previous_status.value,
            to_status=order.status.value,
            updated_by=str(status_update.updated_by) if status_update.updated_by else None,
            points_earned=points,
        )

        await self._dispatch_side_effects(order, previous_status)
        return TransitionResult(
            order=order,
            previous_status=previous_status,
            status_update=status_update,
            points_earned=points,
        )

    async def _dispatch_side_effects(self, order: Order, previous_status: OrderStatusEnum) -> None:
        try:
            await self._notifications.send_order_status_update(order, previous_status=previous_status)
        except Exception as exc:
            logger.opt(exception=exc).warning("Order status email failed", order_id=str(order.id))

        try:
            await self._notifications.create_order_status_notification(order)
        except Exception as exc:
            logger.opt(exception=exc).warning("Order status notification failed", order_id=str(order.id))

        await self._loyalty.dispatch_tier_notifications()


__all__ = [
    "OrderStateMachine",
    "RIDER_CLAIMABLE_STATUSES",
    "STATUS_TRANSITIONS",
    "TERMINAL_STATUSES",
    "TransitionResult",
    "allowed_transitions",
    "can_transition",
]
