"""Row builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.models.loyalty import (
    LoyaltyReward,
    LoyaltyRewardType,
    LoyaltyTransaction,
    LoyaltyTransactionSource,
    LoyaltyTransactionType,
)
from yumrun_api.models.order import Order, OrderItem, OrderStatusEnum
from yumrun_api.models.order_status_update import OrderStatusUpdate
from yumrun_api.models.restaurant import Restaurant
from yumrun_api.models.user import LoyaltyTierEnum, User, UserRoleEnum


def session_headers(user: User) -> dict[str, str]:
    return {"X-Session-User": str(user.id)}


async def create_user(
    session: AsyncSession,
    *,
    role: UserRoleEnum | str = UserRoleEnum.CUSTOMER,
    points: int = 0,
    lifetime: int | None = None,
    tier: LoyaltyTierEnum = LoyaltyTierEnum.BRONZE,
    approved: bool = True,
    email: str | None = None,
) -> User:
    user = User(
        email=email or f"{uuid4().hex[:10]}@yumrun.test",
        name="Test User",
        role=role.value if isinstance(role, UserRoleEnum) else role,
        approved=approved,
        loyalty_points=points,
        lifetime_loyalty_points=points if lifetime is None else lifetime,
        loyalty_tier=tier,
    )
    session.add(user)
    await session.flush()
    return user


async def create_restaurant(session: AsyncSession, owner: User | None = None) -> Restaurant:
    restaurant = Restaurant(name="Momo House", owner_id=owner.id if owner else None, email="kitchen@yumrun.test")
    session.add(restaurant)
    await session.flush()
    return restaurant


async def create_order(
    session: AsyncSession,
    *,
    customer: User,
    restaurant: Restaurant | None = None,
    status: OrderStatusEnum = OrderStatusEnum.PENDING,
    grand_total: Decimal = Decimal("1000.00"),
    delivery_fee: Decimal = Decimal("0"),
    tip: Decimal = Decimal("0"),
    rider: User | None = None,
) -> Order:
    order = Order(
        order_number=f"YR-{uuid4().hex[:8].upper()}",
        user_id=customer.id,
        restaurant_id=restaurant.id if restaurant else None,
        status=status,
        total_price=grand_total - delivery_fee - tip,
        delivery_fee=delivery_fee,
        tax=Decimal("0"),
        tip=tip,
        grand_total=grand_total,
        delivery_person_id=rider.id if rider else None,
        items=[
            OrderItem(
                name="Chicken Momo",
                quantity=1,
                unit_price=grand_total - delivery_fee - tip,
                total_price=grand_total - delivery_fee - tip,
            )
        ],
        status_updates=[
            OrderStatusUpdate(sequence=1, status=status, updated_by=customer.id, timestamp=datetime.now(timezone.utc))
        ],
    )
    session.add(order)
    await session.flush()
    return order


async def create_reward(
    session: AsyncSession,
    *,
    name: str = "Rs. 50 off",
    points_required: int = 500,
    active: bool = True,
) -> LoyaltyReward:
    reward = LoyaltyReward(
        name=name,
        description=f"{name} on your next order",
        points_required=points_required,
        value="50",
        type=LoyaltyRewardType.DISCOUNT,
        active=active,
    )
    session.add(reward)
    await session.flush()
    return reward


async def create_earn_row(
    session: AsyncSession,
    *,
    user_id,
    points: int,
    expiry_date: datetime,
    balance: int | None = None,
) -> LoyaltyTransaction:
    row = LoyaltyTransaction(
        user_id=user_id,
        points=points,
        type=LoyaltyTransactionType.EARN,
        source=LoyaltyTransactionSource.ORDER,
        description="Points earned from order #SEED",
        balance=points if balance is None else balance,
        expiry_date=expiry_date,
        processed_expiry=False,
    )
    session.add(row)
    await session.flush()
    return row
