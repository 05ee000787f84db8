"""Notification fan-out: transactional email plus the in-app inbox."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.core.settings import get_settings
from yumrun_api.models.notification import Notification, NotificationPreference, NotificationTypeEnum
from yumrun_api.models.order import Order, OrderStatusEnum
from yumrun_api.models.restaurant import Restaurant
from yumrun_api.models.user import LoyaltyTierEnum, User

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .templates import (
    RenderedTemplate,
    render_loyalty_tier_downgrade,
    render_loyalty_tier_upgrade,
    render_order_status_update,
    status_copy,
)


@dataclass
class NotificationEvent:
    """Representation of an email that was sent."""

    recipient: str
    subject: str
    body_text: str
    body_html: str | None
    event_type: str
    metadata: dict[str, Any]


@dataclass
class _Contact:
    email: str
    display_name: Optional[str]


@dataclass
class _PreferenceSnapshot:
    order_updates: bool = True
    promotions: bool = False
    delivery_updates: bool = True


class NotificationService:
    """Coordinates email delivery via a pluggable backend and persists in-app notifications.

    Callers treat every method as best effort: failures propagate to the caller,
    which logs them without undoing the business change that triggered them.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        backend: Optional[EmailBackend] = None,
    ) -> None:
        self._db = db_session
        self._backend = backend or self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    def use_in_memory_backend(self) -> InMemoryEmailBackend:
        """Replace backend with in-memory implementation (dry runs and tests)."""
        backend = InMemoryEmailBackend()
        self._backend = backend
        return backend

    async def create_in_app(
        self,
        user_id: UUID,
        *,
        type: NotificationTypeEnum,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or {},
            is_read=False,
        )
        self._db.add(notification)
        try:
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise

        logger.debug("Created in-app notification", user_id=str(user_id), type=type.value, title=title)
        return notification

    async def notify_order_placed(self, order: Order) -> None:
        """Inbox entries for the customer and the restaurant owner of a new order."""

        data = {"orderId": str(order.id), "orderNumber": order.order_number}
        if order.user_id is not None:
            await self.create_in_app(
                order.user_id,
                type=NotificationTypeEnum.ORDER,
                title="New Order",
                message=f"Your order #{order.order_number} has been placed successfully.",
                data={**data, "actionUrl": f"/user/orders/{order.id}"},
            )

        owner_id = await self._resolve_restaurant_owner(order.restaurant_id)
        if owner_id is not None:
            await self.create_in_app(
                owner_id,
                type=NotificationTypeEnum.ORDER,
                title="New Order Received",
                message=f"You have received a new order #{order.order_number}.",
                data={**data, "actionUrl": f"/restaurant/orders/{order.id}"},
            )

    async def create_order_status_notification(self, order: Order) -> Optional[Notification]:
        if order.user_id is None:
            return None

        copy = status_copy(order.status)
        notification_type = (
            NotificationTypeEnum.DELIVERY
            if order.status in {OrderStatusEnum.OUT_FOR_DELIVERY, OrderStatusEnum.DELIVERED}
            else NotificationTypeEnum.ORDER
        )
        return await self.create_in_app(
            order.user_id,
            type=notification_type,
            title=copy.title,
            message=f"Order #{order.order_number}: {copy.message}",
            data={
                "orderId": str(order.id),
                "orderNumber": order.order_number,
                "status": order.status.value,
                "actionUrl": f"/user/orders/{order.id}",
            },
        )

    async def send_order_status_update(
        self,
        order: Order,
        *,
        previous_status: OrderStatusEnum | None = None,
    ) -> None:
        """Email the customer when an order status changes."""
        if self._backend is None:
            return

        contact = await self._resolve_user_contact(order.user_id)
        if contact is None:
            return

        preferences = await self._get_preferences(order.user_id)
        if not preferences.order_updates:
            return

        settings = get_settings()
        template = render_order_status_update(
            order_number=order.order_number,
            status=order.status,
            grand_total=order.grand_total,
            contact_name=contact.display_name,
            order_url=f"{settings.frontend_url.rstrip('/')}/user/orders/{order.id}",
        )
        await self._deliver(
            contact,
            template,
            event_type="order_status_update",
            metadata={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "previous_status": previous_status.value if previous_status else None,
                "current_status": order.status.value,
            },
        )

    async def send_loyalty_tier_change(
        self,
        user: User,
        *,
        previous_tier: LoyaltyTierEnum,
        perks: tuple[str, ...],
    ) -> None:
        """Inbox entry and email when a member's tier changes."""

        tier: LoyaltyTierEnum = user.loyalty_tier
        tiers = list(LoyaltyTierEnum)
        demoted = tiers.index(tier) < tiers.index(previous_tier)
        await self.create_in_app(
            user.id,
            type=NotificationTypeEnum.REWARD,
            title="Loyalty Tier Updated",
            message=f"You are now a {tier.value.title()} member.",
            data={
                "previousTier": previous_tier.value,
                "currentTier": tier.value,
                "demoted": demoted,
                "perks": list(perks),
            },
        )

        if self._backend is None or not user.email:
            return
        preferences = await self._get_preferences(user.id)
        if not preferences.order_updates:
            return

        if demoted:
            template = render_loyalty_tier_downgrade(
                tier_name=tier.value,
                previous_tier_name=previous_tier.value,
                perks=perks,
                contact_name=user.name,
            )
        else:
            template = render_loyalty_tier_upgrade(tier_name=tier.value, perks=perks, contact_name=user.name)
        await self._deliver(
            _Contact(email=user.email, display_name=user.name),
            template,
            event_type="loyalty_tier_change",
            metadata={"user_id": str(user.id), "previous_tier": previous_tier.value, "tier": tier.value},
        )

    def _build_default_backend(self) -> Optional[EmailBackend]:
        settings = get_settings()
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None

        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.smtp_sender_email,
        )

    async def _resolve_user_contact(self, user_id: Optional[UUID]) -> Optional[_Contact]:
        if user_id is None:
            return None

        result = await self._db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user or not user.email:
            return None

        return _Contact(email=user.email, display_name=user.name)

    async def _resolve_restaurant_owner(self, restaurant_id: Optional[UUID]) -> Optional[UUID]:
        if restaurant_id is None:
            return None
        result = await self._db.execute(select(Restaurant.owner_id).where(Restaurant.id == restaurant_id))
        return result.scalar_one_or_none()

    async def _get_preferences(self, user_id: Optional[UUID]) -> _PreferenceSnapshot:
        if user_id is None:
            return _PreferenceSnapshot()

        stmt = select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        result = await self._db.execute(stmt)
        preference = result.scalar_one_or_none()
        if preference is None:
            return _PreferenceSnapshot()

        return _PreferenceSnapshot(
            order_updates=preference.order_updates,
            promotions=preference.promotions,
            delivery_updates=preference.delivery_updates,
        )

    async def _deliver(
        self,
        contact: _Contact,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        """Send using active backend and record emitted event."""
        if self._backend is None:
            return

        await self._backend.send_email(
            contact.email,
            template.subject,
            template.text_body,
            body_html=template.html_body,
        )
        self._events.append(
            NotificationEvent(
                recipient=contact.email,
                subject=template.subject,
                body_text=template.text_body,
                body_html=template.html_body,
                event_type=event_type,
                metadata=metadata,
            )
        )
        logger.info("Sent notification email", event_type=event_type, recipient=contact.email)
