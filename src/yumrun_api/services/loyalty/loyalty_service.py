"""Loyalty ledger: point awards, redemptions, adjustments, tier sync and expiry."""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.core.errors import (
    InsufficientPointsError,
    PermissionDeniedError,
    PointsAlreadyAwardedError,
    RestaurantNotFoundError,
    RewardInactiveError,
    RewardNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from yumrun_api.core.settings import get_settings
from yumrun_api.models.loyalty import (
    LoyaltyReward,
    LoyaltyTransaction,
    LoyaltyTransactionSource,
    LoyaltyTransactionType,
)
from yumrun_api.models.order import Order
from yumrun_api.models.restaurant import Restaurant
from yumrun_api.models.user import LoyaltyTierEnum, User, UserRoleEnum
from yumrun_api.observability.loyalty import get_loyalty_store
from yumrun_api.services.notifications import NotificationService

from .tiers import (
    TierBenefits,
    calculate_base_points,
    calculate_order_points,
    calculate_tier,
    get_tier_benefits,
    next_tier,
    points_to_next_tier,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping to the last day of shorter months."""

    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass(slots=True)
class LoyaltySummary:
    """Read model for ``GET /loyalty/info``."""

    current_points: int
    lifetime_points: int
    current_tier: LoyaltyTierEnum
    tier_benefits: TierBenefits
    next_tier: Optional[LoyaltyTierEnum]
    points_to_next_tier: int
    tier_update_date: Optional[datetime]
    restaurant_id: Optional[UUID] = None


@dataclass(slots=True)
class TransactionPage:
    transactions: list[LoyaltyTransaction]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(slots=True)
class ExpiryRunResult:
    processed: int = 0
    failed: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)


class LoyaltyService:
    """Maintains the append-only ledger and the cached aggregate on ``User``.

    Every mutation writes the ledger row and the user's balance in the current
    session and flushes; the caller owns the commit, so both land in the same
    database transaction. The expiry batch is the exception: it commits one
    scope per expiring row so a single bad row cannot stall the run.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        notification_service: NotificationService | None = None,
    ) -> None:
        self._db = db_session
        self._notifications = notification_service
        self._pending_tier_changes: list[tuple[User, LoyaltyTierEnum]] = []

    async def get_user(self, user_id: UUID, *, for_update: bool = False) -> User:
        stmt = select(User).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._db.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def earn_for_order(self, order: Order, user: User) -> Optional[LoyaltyTransaction]:
        """Award points for ``order``; ``None`` when the order is too small to earn any."""

        if order.user_id != user.id:
            raise ValidationError("Order does not belong to this user")

        # The member row lock serialises concurrent awards, so the duplicate
        # check must run after it is held.
        member = await self.get_user(user.id, for_update=True)
        existing = await self._db.execute(
            select(LoyaltyTransaction.id).where(
                LoyaltyTransaction.reference_id == order.id,
                LoyaltyTransaction.type == LoyaltyTransactionType.EARN,
            )
        )
        if existing.first() is not None:
            raise PointsAlreadyAwardedError(order.id)

        base_points = calculate_base_points(order.grand_total)
        points = calculate_order_points(base_points, member.loyalty_tier)
        if points <= 0:
            logger.info("Order below loyalty earning threshold", order_id=str(order.id), grand_total=str(order.grand_total))
            return None

        settings = get_settings()
        try:
            transaction = await self._record_transaction(
                member,
                points=points,
                transaction_type=LoyaltyTransactionType.EARN,
                source=LoyaltyTransactionSource.ORDER,
                description=f"Points earned from order #{order.order_number}",
                reference_id=order.id,
                restaurant_id=order.restaurant_id,
                expiry_date=add_months(_utcnow(), settings.loyalty_points_expiry_months),
                lifetime_delta=points,
            )
        except IntegrityError as exc:
            # uq_loyalty_transactions_order_earn; the session must be rolled back.
            raise PointsAlreadyAwardedError(order.id) from exc
        order.loyalty_points_earned = points
        return transaction

    async def redeem(
        self,
        user: User,
        reward_id: UUID,
        *,
        points: int | None = None,
        restaurant_id: UUID | None = None,
    ) -> LoyaltyTransaction:
        """Spend points on a catalogue reward; nothing is written when a check fails."""

        reward = await self._db.get(LoyaltyReward, reward_id)
        if reward is None:
            raise RewardNotFoundError(reward_id)
        if not reward.active:
            raise RewardInactiveError(f"Reward '{reward.name}' is not currently available")
        if points is not None and points != reward.points_required:
            raise ValidationError(
                f"Reward '{reward.name}' costs {reward.points_required} points, not {points}",
            )

        if restaurant_id is not None and await self._db.get(Restaurant, restaurant_id) is None:
            raise RestaurantNotFoundError(restaurant_id)

        member = await self.get_user(user.id, for_update=True)
        if member.loyalty_points < reward.points_required:
            raise InsufficientPointsError(member.loyalty_points, reward.points_required)

        return await self._record_transaction(
            member,
            points=-reward.points_required,
            transaction_type=LoyaltyTransactionType.REDEEM,
            source=LoyaltyTransactionSource.SYSTEM,
            description=f"Redeemed points for reward: {reward.name}",
            reference_id=reward.id,
            restaurant_id=restaurant_id,
        )

    async def apply_points_to_order(self, user: User, order: Order, points: int) -> LoyaltyTransaction:
        """Debit points spent as a discount at checkout."""

        if points <= 0:
            raise ValidationError("Points applied to an order must be positive")

        member = await self.get_user(user.id, for_update=True)
        if member.loyalty_points < points:
            raise InsufficientPointsError(member.loyalty_points, points)

        return await self._record_transaction(
            member,
            points=-points,
            transaction_type=LoyaltyTransactionType.REDEEM,
            source=LoyaltyTransactionSource.ORDER,
            description=f"Points applied to order #{order.order_number}",
            reference_id=order.id,
            restaurant_id=order.restaurant_id,
        )

    async def adjust(self, admin: User, user: User, points: int, reason: str) -> LoyaltyTransaction:
        """Manual credit or debit by an administrator.

        Credits raise both the balance and lifetime points; debits only lower the
        balance so lifetime points (and therefore tier) never move backwards.
        """

        if admin.role_enum is not UserRoleEnum.ADMIN:
            raise PermissionDeniedError("Only administrators can adjust loyalty points")
        if points == 0:
            raise ValidationError("Adjustment points must be non-zero")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Adjustment reason is required")

        member = await self.get_user(user.id, for_update=True)
        if member.loyalty_points + points < 0:
            raise InsufficientPointsError(member.loyalty_points, -points)

        return await self._record_transaction(
            member,
            points=points,
            transaction_type=LoyaltyTransactionType.ADJUST,
            source=LoyaltyTransactionSource.ADMIN,
            description=reason,
            adjusted_by=admin.id,
            lifetime_delta=max(points, 0),
        )

    async def update_user_tier(self, user_id: UUID) -> User:
        """Recompute the cached tier from lifetime points; a no-op when already in sync."""

        user = await self.get_user(user_id)
        if self._sync_tier(user):
            await self._db.flush()
        return user

    async def process_expired_points(self, *, reference_time: datetime | None = None) -> int:
        result = await self.run_expiry(reference_time=reference_time)
        return result.processed

    async def run_expiry(self, *, reference_time: datetime | None = None) -> ExpiryRunResult:
        """Emit EXPIRE rows for every overdue, unprocessed EARN row.

        Rows are handled oldest first, each in its own committed scope. Failures
        are rolled back, logged and counted; the batch always continues.
        """

        horizon = reference_time or _utcnow()
        stmt = (
            select(LoyaltyTransaction.id)
            .where(
                LoyaltyTransaction.type == LoyaltyTransactionType.EARN,
                LoyaltyTransaction.processed_expiry.is_(False),
                LoyaltyTransaction.expiry_date.is_not(None),
                LoyaltyTransaction.expiry_date < horizon,
            )
            .order_by(LoyaltyTransaction.expiry_date.asc(), LoyaltyTransaction.created_at.asc())
        )
        candidate_ids = list((await self._db.execute(stmt)).scalars().all())

        outcome = ExpiryRunResult()
        for transaction_id in candidate_ids:
            queued = len(self._pending_tier_changes)
            try:
                expired = await self._expire_transaction(transaction_id)
                await self._db.commit()
            except Exception as exc:
                await self._db.rollback()
                del self._pending_tier_changes[queued:]
                outcome.failed += 1
                outcome.failures.append({"transactionId": str(transaction_id), "error": str(exc)})
                logger.opt(exception=exc).error(
                    "Failed to expire loyalty transaction",
                    transaction_id=str(transaction_id),
                )
                continue
            if expired:
                outcome.processed += 1

        get_loyalty_store().record_expiry_run(processed=outcome.processed, failed=outcome.failed)
        logger.info(
            "Processed expired loyalty points",
            candidates=len(candidate_ids),
            processed=outcome.processed,
            failed=outcome.failed,
        )
        await self.dispatch_tier_notifications()
        return outcome

    async def get_loyalty_info(self, user: User, *, restaurant_id: UUID | None = None) -> LoyaltySummary:
        current_points = user.loyalty_points
        if restaurant_id is not None:
            scoped = await self._db.execute(
                select(func.coalesce(func.sum(LoyaltyTransaction.points), 0)).where(
                    LoyaltyTransaction.user_id == user.id,
                    LoyaltyTransaction.restaurant_id == restaurant_id,
                )
            )
            current_points = max(int(scoped.scalar_one()), 0)

        tier = calculate_tier(user.lifetime_loyalty_points)
        return LoyaltySummary(
            current_points=current_points,
            lifetime_points=user.lifetime_loyalty_points,
            current_tier=tier,
            tier_benefits=get_tier_benefits(tier),
            next_tier=next_tier(tier),
            points_to_next_tier=points_to_next_tier(user.lifetime_loyalty_points),
            tier_update_date=user.tier_update_date,
            restaurant_id=restaurant_id,
        )

    async def list_transactions(
        self,
        user: User,
        *,
        page: int = 1,
        limit: int = 10,
        transaction_type: LoyaltyTransactionType | None = None,
        restaurant_id: UUID | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> TransactionPage:
        if page < 1:
            raise ValidationError("page must be at least 1")
        if not 1 <= limit <= 100:
            raise ValidationError("limit must be between 1 and 100")
        if start_date and end_date and start_date > end_date:
            raise ValidationError("startDate must be before endDate")

        filters = [LoyaltyTransaction.user_id == user.id]
        if transaction_type is not None:
            filters.append(LoyaltyTransaction.type == transaction_type)
        if restaurant_id is not None:
            filters.append(LoyaltyTransaction.restaurant_id == restaurant_id)
        if start_date is not None:
            filters.append(LoyaltyTransaction.created_at >= start_date)
        if end_date is not None:
            filters.append(LoyaltyTransaction.created_at <= end_date)

        total = (await self._db.execute(select(func.count()).select_from(LoyaltyTransaction).where(*filters))).scalar_one()
        rows = await self._db.execute(
            select(LoyaltyTransaction)
            .where(*filters)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return TransactionPage(transactions=list(rows.scalars().all()), page=page, limit=limit, total=int(total))

    async def list_rewards(self, *, active_only: bool = True) -> list[LoyaltyReward]:
        stmt = select(LoyaltyReward).order_by(LoyaltyReward.points_required.asc(), LoyaltyReward.name.asc())
        if active_only:
            stmt = stmt.where(LoyaltyReward.active.is_(True))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def dispatch_tier_notifications(self) -> None:
        """Send queued tier-change notifications; call only after the ledger write committed."""

        pending, self._pending_tier_changes = self._pending_tier_changes, []
        if self._notifications is None:
            return
        for user, previous_tier in pending:
            try:
                await self._notifications.send_loyalty_tier_change(
                    user,
                    previous_tier=previous_tier,
                    perks=get_tier_benefits(user.loyalty_tier).perks,
                )
            except Exception as exc:
                logger.opt(exception=exc).warning("Tier change notification failed", user_id=str(user.id))

    async def _expire_transaction(self, transaction_id: UUID) -> bool:
        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        earned = (await self._db.execute(stmt)).scalar_one_or_none()
        if earned is None or earned.processed_expiry:
            return False

        user = await self.get_user(earned.user_id, for_update=True)
        new_balance = max(0, user.loyalty_points - earned.points)
        expiry = LoyaltyTransaction(
            user_id=user.id,
            restaurant_id=earned.restaurant_id,
            points=-earned.points,
            type=LoyaltyTransactionType.EXPIRE,
            source=LoyaltyTransactionSource.SYSTEM,
            description=f"Expired points from transaction on {earned.created_at:%Y-%m-%d}",
            reference_id=earned.id,
            balance=new_balance,
        )
        self._db.add(expiry)
        user.loyalty_points = new_balance
        earned.processed_expiry = True
        self._sync_tier(user)
        await self._db.flush()

        get_loyalty_store().record_transaction(LoyaltyTransactionType.EXPIRE.value, -earned.points)
        logger.info(
            "Expired loyalty points",
            user_id=str(user.id),
            transaction_id=str(earned.id),
            points=earned.points,
            balance=new_balance,
        )
        return True

    async def _record_transaction(
        self,
        user: User,
        *,
        points: int,
        transaction_type: LoyaltyTransactionType,
        source: LoyaltyTransactionSource,
        description: str,
        reference_id: UUID | None = None,
        restaurant_id: UUID | None = None,
        expiry_date: datetime | None = None,
        adjusted_by: UUID | None = None,
        lifetime_delta: int = 0,
    ) -> LoyaltyTransaction:
        """Single write path for ledger rows; keeps balance, lifetime and tier in step."""

        new_balance = user.loyalty_points + points
        transaction = LoyaltyTransaction(
            user_id=user.id,
            restaurant_id=restaurant_id,
            points=points,
            type=transaction_type,
            source=source,
            description=description,
            reference_id=reference_id,
            balance=new_balance,
            expiry_date=expiry_date,
            processed_expiry=False,
            adjusted_by=adjusted_by,
        )
        self._db.add(transaction)

        user.loyalty_points = new_balance
        if lifetime_delta > 0:
            user.lifetime_loyalty_points = user.lifetime_loyalty_points + lifetime_delta
        self._sync_tier(user)
        await self._db.flush()

        get_loyalty_store().record_transaction(transaction_type.value, points)
        logger.info(
            "Recorded loyalty transaction",
            user_id=str(user.id),
            type=transaction_type.value,
            source=source.value,
            points=points,
            balance=new_balance,
        )
        return transaction

    def _sync_tier(self, user: User) -> bool:
        target = calculate_tier(user.lifetime_loyalty_points)
        previous = LoyaltyTierEnum(user.loyalty_tier) if user.loyalty_tier is not None else None
        if previous is target:
            return False

        user.loyalty_tier = target
        user.tier_update_date = _utcnow()
        if previous is None:
            return True

        self._pending_tier_changes.append((user, previous))
        get_loyalty_store().record_tier_change(target.value)
        logger.info(
            "Loyalty tier changed",
            user_id=str(user.id),
            previous_tier=previous.value,
            tier=target.value,
            lifetime_points=user.lifetime_loyalty_points,
        )
        return True


__all__ = [
    "ExpiryRunResult",
    "LoyaltyService",
    "LoyaltySummary",
    "TransactionPage",
    "add_months",
]
