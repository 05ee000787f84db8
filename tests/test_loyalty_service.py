from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from helpers import create_order, create_restaurant, create_reward, create_user
from yumrun_api.core.errors import (
    InsufficientPointsError,
    PermissionDeniedError,
    PointsAlreadyAwardedError,
    RestaurantNotFoundError,
    RewardInactiveError,
    RewardNotFoundError,
    ValidationError,
)
from yumrun_api.models.loyalty import LoyaltyTransaction, LoyaltyTransactionSource, LoyaltyTransactionType
from yumrun_api.models.notification import Notification, NotificationTypeEnum
from yumrun_api.models.order import Order
from yumrun_api.models.user import LoyaltyTierEnum, User, UserRoleEnum
from yumrun_api.observability.loyalty import get_loyalty_store
from yumrun_api.services.loyalty import LoyaltyService, add_months, calculate_tier
from yumrun_api.services.notifications import NotificationService


async def _ledger(session, user_id) -> list[LoyaltyTransaction]:
    result = await session.execute(
        select(LoyaltyTransaction).where(LoyaltyTransaction.user_id == user_id).order_by(LoyaltyTransaction.created_at)
    )
    return list(result.scalars())


def test_add_months_clamps_to_month_end() -> None:
    moment = datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert add_months(moment, 1) == datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert add_months(moment, 12) == datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_earn_for_order_writes_ledger_and_updates_aggregate(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        restaurant = await create_restaurant(session)
        order = await create_order(session, customer=customer, restaurant=restaurant, grand_total=Decimal("1250.00"))
        service = LoyaltyService(session)

        transaction = await service.earn_for_order(order, customer)
        await session.commit()

        assert transaction is not None
        assert transaction.points == 120
        assert transaction.type is LoyaltyTransactionType.EARN
        assert transaction.source is LoyaltyTransactionSource.ORDER
        assert transaction.reference_id == order.id
        assert transaction.restaurant_id == restaurant.id
        assert transaction.balance == 120
        assert transaction.description == f"Points earned from order #{order.order_number}"
        assert transaction.expiry_date is not None
        assert transaction.expiry_date.replace(tzinfo=timezone.utc) > datetime.now(timezone.utc) + timedelta(days=330)

        assert customer.loyalty_points == 120
        assert customer.lifetime_loyalty_points == 120
        assert order.loyalty_points_earned == 120

    assert get_loyalty_store().snapshot().transactions == {"EARN": 1}


@pytest.mark.asyncio
async def test_earn_applies_tier_multiplier(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session, points=1000, tier=LoyaltyTierEnum.SILVER)
        order = await create_order(session, customer=customer, grand_total=Decimal("1000.00"))

        transaction = await LoyaltyService(session).earn_for_order(order, customer)

        assert transaction.points == 120
        assert customer.loyalty_points == 1120


@pytest.mark.asyncio
async def test_earn_twice_for_same_order_is_rejected(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        order = await create_order(session, customer=customer, grand_total=Decimal("500.00"))
        service = LoyaltyService(session)
        await service.earn_for_order(order, customer)
        await session.commit()

        with pytest.raises(PointsAlreadyAwardedError):
            await service.earn_for_order(order, customer)

        rows = await _ledger(session, customer.id)
        assert len(rows) == 1
        assert customer.loyalty_points == 50


@pytest.mark.asyncio
async def test_earn_rechecks_for_award_committed_while_waiting_for_member_lock(session_factory, monkeypatch) -> None:
    async with session_factory() as setup:
        customer = await create_user(setup)
        order = await create_order(setup, customer=customer, grand_total=Decimal("1000.00"))
        await setup.commit()

    original_get_user = LoyaltyService.get_user
    competing = {"done": False}

    async def get_user_after_competing_award(self, user_id, *, for_update=False):
        if for_update and not competing["done"]:
            competing["done"] = True
            async with session_factory() as other:
                await LoyaltyService(other).earn_for_order(
                    await other.get(Order, order.id),
                    await other.get(User, customer.id),
                )
                await other.commit()
        return await original_get_user(self, user_id, for_update=for_update)

    monkeypatch.setattr(LoyaltyService, "get_user", get_user_after_competing_award)

    async with session_factory() as session:
        local_order = await session.get(Order, order.id)
        local_customer = await session.get(User, customer.id)
        with pytest.raises(PointsAlreadyAwardedError):
            await LoyaltyService(session).earn_for_order(local_order, local_customer)
        await session.rollback()

    assert competing["done"] is True
    async with session_factory() as check:
        earn_rows = (
            await check.execute(
                select(func.count())
                .select_from(LoyaltyTransaction)
                .where(LoyaltyTransaction.reference_id == order.id, LoyaltyTransaction.type == LoyaltyTransactionType.EARN)
            )
        ).scalar_one()
        member = await check.get(User, customer.id)
        assert earn_rows == 1
        assert member.loyalty_points == 100


@pytest.mark.asyncio
async def test_ledger_allows_one_earn_row_per_order(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        order = await create_order(session, customer=customer)
        for points in (100, 100):
            session.add(
                LoyaltyTransaction(
                    user_id=customer.id,
                    points=points,
                    type=LoyaltyTransactionType.EARN,
                    source=LoyaltyTransactionSource.ORDER,
                    description=f"Points earned from order #{order.order_number}",
                    reference_id=order.id,
                    balance=points,
                )
            )
        with pytest.raises(IntegrityError):
            await session.flush()
        await session.rollback()

    async with session_factory() as session:
        customer = await create_user(session, points=1000)
        order = await create_order(session, customer=customer)
        service = LoyaltyService(session)
        await service.apply_points_to_order(customer, order, 100)
        await service.apply_points_to_order(customer, order, 50)
        await session.commit()

        assert customer.loyalty_points == 850


@pytest.mark.asyncio
async def test_small_order_earns_nothing(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        order = await create_order(session, customer=customer, grand_total=Decimal("99.00"))

        assert await LoyaltyService(session).earn_for_order(order, customer) is None
        assert await _ledger(session, customer.id) == []
        assert customer.loyalty_points == 0


@pytest.mark.asyncio
async def test_tier_upgrade_is_notified_after_commit(session_factory, email_backend) -> None:
    async with session_factory() as session:
        customer = await create_user(session, points=950)
        order = await create_order(session, customer=customer, grand_total=Decimal("1000.00"))
        service = LoyaltyService(session, notification_service=NotificationService(session))

        await service.earn_for_order(order, customer)
        await session.commit()

        assert customer.loyalty_tier is LoyaltyTierEnum.SILVER
        assert customer.tier_update_date is not None
        assert email_backend.sent_messages == []

        await service.dispatch_tier_notifications()

        notifications = (
            await session.execute(select(Notification).where(Notification.user_id == customer.id))
        ).scalars().all()
        assert [note.type for note in notifications] == [NotificationTypeEnum.REWARD]
        assert notifications[0].data["currentTier"] == "SILVER"
        assert len(email_backend.sent_messages) == 1
        assert "Silver" in email_backend.sent_messages[0]["Subject"]

    assert get_loyalty_store().snapshot().tier_changes == {"SILVER": 1}


@pytest.mark.asyncio
async def test_redeem_debits_balance(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session, points=800)
        reward = await create_reward(session, points_required=500)
        restaurant = await create_restaurant(session)

        transaction = await LoyaltyService(session).redeem(customer, reward.id, restaurant_id=restaurant.id)
        await session.commit()

        assert transaction.points == -500
        assert transaction.type is LoyaltyTransactionType.REDEEM
        assert transaction.source is LoyaltyTransactionSource.SYSTEM
        assert transaction.reference_id == reward.id
        assert transaction.balance == 300
        assert transaction.description == "Redeemed points for reward: Rs. 50 off"
        assert customer.loyalty_points == 300
        assert customer.lifetime_loyalty_points == 800


@pytest.mark.asyncio
async def test_redeem_failures_write_nothing(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session, points=100)
        reward = await create_reward(session, points_required=500)
        retired = await create_reward(session, name="Retired", points_required=50, active=False)
        service = LoyaltyService(session)

        with pytest.raises(InsufficientPointsError) as excinfo:
            await service.redeem(customer, reward.id)
        assert excinfo.value.details == {"available": 100, "required": 500}

        with pytest.raises(RewardInactiveError):
            await service.redeem(customer, retired.id)

        with pytest.raises(RewardNotFoundError):
            await service.redeem(customer, customer.id)

        with pytest.raises(ValidationError):
            await service.redeem(customer, reward.id, points=10)

        with pytest.raises(RestaurantNotFoundError):
            await service.redeem(customer, reward.id, restaurant_id=uuid4())

        assert await _ledger(session, customer.id) == []
        assert customer.loyalty_points == 100


@pytest.mark.asyncio
async def test_admin_adjustments(session_factory) -> None:
    async with session_factory() as session:
        admin = await create_user(session, role=UserRoleEnum.ADMIN)
        customer = await create_user(session, points=200)
        service = LoyaltyService(session)

        credit = await service.adjust(admin, customer, 900, "Goodwill credit")
        assert credit.type is LoyaltyTransactionType.ADJUST
        assert credit.source is LoyaltyTransactionSource.ADMIN
        assert credit.adjusted_by == admin.id
        assert credit.description == "Goodwill credit"
        assert customer.loyalty_points == 1100
        assert customer.lifetime_loyalty_points == 1100
        assert customer.loyalty_tier is LoyaltyTierEnum.SILVER

        await service.adjust(admin, customer, -600, "Reversal")
        assert customer.loyalty_points == 500
        assert customer.lifetime_loyalty_points == 1100
        assert customer.loyalty_tier is LoyaltyTierEnum.SILVER

        with pytest.raises(InsufficientPointsError):
            await service.adjust(admin, customer, -501, "Too much")
        with pytest.raises(ValidationError):
            await service.adjust(admin, customer, 0, "Nothing")
        with pytest.raises(ValidationError):
            await service.adjust(admin, customer, 10, "   ")
        with pytest.raises(PermissionDeniedError):
            await service.adjust(customer, customer, 10, "Self service")

        rows = await _ledger(session, customer.id)
        assert [row.points for row in rows] == [900, -600]


@pytest.mark.asyncio
async def test_apply_points_to_order(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session, points=300)
        order = await create_order(session, customer=customer)
        service = LoyaltyService(session)

        transaction = await service.apply_points_to_order(customer, order, 120)
        assert transaction.source is LoyaltyTransactionSource.ORDER
        assert transaction.reference_id == order.id
        assert customer.loyalty_points == 180

        with pytest.raises(InsufficientPointsError):
            await service.apply_points_to_order(customer, order, 181)
        with pytest.raises(ValidationError):
            await service.apply_points_to_order(customer, order, 0)


@pytest.mark.asyncio
async def test_update_user_tier_is_idempotent(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session, points=6000, tier=LoyaltyTierEnum.BRONZE)
        service = LoyaltyService(session)

        await service.update_user_tier(customer.id)
        first_update = customer.tier_update_date
        assert customer.loyalty_tier is LoyaltyTierEnum.GOLD

        await service.update_user_tier(customer.id)
        assert customer.loyalty_tier is LoyaltyTierEnum.GOLD
        assert customer.tier_update_date == first_update


@pytest.mark.asyncio
async def test_loyalty_info_and_restaurant_scope(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        kitchen = await create_restaurant(session)
        other = await create_restaurant(session)
        service = LoyaltyService(session)

        first = await create_order(session, customer=customer, restaurant=kitchen, grand_total=Decimal("3000.00"))
        second = await create_order(session, customer=customer, restaurant=other, grand_total=Decimal("1000.00"))
        await service.earn_for_order(first, customer)
        await service.earn_for_order(second, customer)

        summary = await service.get_loyalty_info(customer)
        assert summary.current_points == 400
        assert summary.lifetime_points == 400
        assert summary.current_tier is LoyaltyTierEnum.BRONZE
        assert summary.next_tier is LoyaltyTierEnum.SILVER
        assert summary.points_to_next_tier == 600

        scoped = await service.get_loyalty_info(customer, restaurant_id=kitchen.id)
        assert scoped.current_points == 300
        assert scoped.restaurant_id == kitchen.id


@pytest.mark.asyncio
async def test_list_transactions_paginates_newest_first(session_factory) -> None:
    async with session_factory() as session:
        admin = await create_user(session, role=UserRoleEnum.ADMIN)
        customer = await create_user(session)
        service = LoyaltyService(session)
        for points in (10, 20, 30):
            await service.adjust(admin, customer, points, f"Credit {points}")
        await session.commit()

        page = await service.list_transactions(customer, page=1, limit=2)
        assert page.total == 3
        assert page.pages == 2
        assert len(page.transactions) == 2

        earned_only = await service.list_transactions(customer, transaction_type=LoyaltyTransactionType.EARN)
        assert earned_only.total == 0

        with pytest.raises(ValidationError):
            await service.list_transactions(customer, limit=101)
        with pytest.raises(ValidationError):
            await service.list_transactions(
                customer,
                start_date=datetime(2025, 2, 1, tzinfo=timezone.utc),
                end_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )


@pytest.mark.asyncio
async def test_balance_matches_ledger_sum(session_factory) -> None:
    async with session_factory() as session:
        admin = await create_user(session, role=UserRoleEnum.ADMIN)
        customer = await create_user(session)
        reward = await create_reward(session, points_required=300)
        service = LoyaltyService(session)

        order = await create_order(session, customer=customer, grand_total=Decimal("4000.00"))
        await service.earn_for_order(order, customer)
        await service.adjust(admin, customer, 250, "Promo")
        await service.redeem(customer, reward.id)
        await service.adjust(admin, customer, -50, "Correction")
        await session.commit()

        total = (
            await session.execute(
                select(func.sum(LoyaltyTransaction.points)).where(LoyaltyTransaction.user_id == customer.id)
            )
        ).scalar_one()
        assert total == customer.loyalty_points == 300
        assert customer.loyalty_tier is calculate_tier(customer.lifetime_loyalty_points)
