from decimal import Decimal
from itertools import product

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql

from helpers import create_order, create_restaurant, create_user
from yumrun_api.core.errors import (
    InvalidTransitionError,
    PermissionDeniedError,
    RiderAlreadyAssignedError,
    ValidationError,
)
from yumrun_api.models.order import OrderStatusEnum
from yumrun_api.models.user import User, UserRoleEnum
from yumrun_api.services.orders import (
    STATUS_TRANSITIONS,
    TERMINAL_STATUSES,
    OrderStateMachine,
    allowed_transitions,
    can_transition,
)


ALL_PAIRS = list(product(OrderStatusEnum, OrderStatusEnum))


def test_transition_table_covers_every_status() -> None:
    assert set(STATUS_TRANSITIONS) == set(OrderStatusEnum)
    assert allowed_transitions(OrderStatusEnum.PENDING) == {OrderStatusEnum.CONFIRMED, OrderStatusEnum.CANCELLED}
    assert allowed_transitions(OrderStatusEnum.READY) == {OrderStatusEnum.CANCELLED}
    assert not can_transition(OrderStatusEnum.PENDING, OrderStatusEnum.DELIVERED)
    for terminal in TERMINAL_STATUSES:
        assert allowed_transitions(terminal) == frozenset()


@pytest.mark.asyncio
@pytest.mark.parametrize(("current", "target"), ALL_PAIRS, ids=[f"{a.value}->{b.value}" for a, b in ALL_PAIRS])
async def test_admin_transition_follows_table(session_factory, current, target) -> None:
    async with session_factory() as session:
        admin = await create_user(session, role=UserRoleEnum.ADMIN)
        customer = await create_user(session)
        order = await create_order(session, customer=customer, status=current)
        await session.commit()
        machine = OrderStateMachine(session)

        if can_transition(current, target):
            result = await machine.transition(order_id=order.id, target_status=target, actor=admin)
            assert result.previous_status is current
            assert result.order.status is target
            assert [update.status for update in result.order.status_updates] == [current, target]
            assert result.order.status_updates[-1].updated_by == admin.id
        else:
            with pytest.raises(InvalidTransitionError) as excinfo:
                await machine.transition(order_id=order.id, target_status=target, actor=admin)
            assert excinfo.value.details == {"currentStatus": current.value, "requestedStatus": target.value}

            reloaded = await machine.get_order(order.id)
            assert reloaded.status is current
            assert len(reloaded.status_updates) == 1


@pytest.mark.asyncio
async def test_confirmation_sets_eta_and_notifies(session_factory, email_backend) -> None:
    async with session_factory() as session:
        owner = await create_user(session, role=UserRoleEnum.RESTAURANT)
        restaurant = await create_restaurant(session, owner=owner)
        customer = await create_user(session)
        order = await create_order(session, customer=customer, restaurant=restaurant)
        await session.commit()

        result = await OrderStateMachine(session).transition(
            order_id=order.id,
            target_status=OrderStatusEnum.CONFIRMED,
            actor=owner,
        )

        assert result.order.estimated_delivery_time is not None
        assert len(email_backend.sent_messages) == 1
        assert email_backend.sent_messages[0]["To"] == customer.email
        assert email_backend.sent_messages[0]["Subject"].startswith("Your Order is Confirmed")


@pytest.mark.asyncio
async def test_status_updates_are_appended_in_order(session_factory) -> None:
    async with session_factory() as session:
        admin = await create_user(session, role=UserRoleEnum.ADMIN)
        customer = await create_user(session)
        order = await create_order(session, customer=customer)
        await session.commit()
        machine = OrderStateMachine(session)

        for target in (OrderStatusEnum.CONFIRMED, OrderStatusEnum.PREPARING, OrderStatusEnum.READY):
            await machine.transition(order_id=order.id, target_status=target, actor=admin)

        updates = await machine.list_status_updates(order.id)
        assert [update.sequence for update in updates] == [1, 2, 3, 4]
        assert [update.status for update in updates] == [
            OrderStatusEnum.PENDING,
            OrderStatusEnum.CONFIRMED,
            OrderStatusEnum.PREPARING,
            OrderStatusEnum.READY,
        ]


@pytest.mark.asyncio
async def test_customer_cancellation_rules(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        stranger = await create_user(session)
        pending = await create_order(session, customer=customer)
        confirmed = await create_order(session, customer=customer, status=OrderStatusEnum.CONFIRMED)
        delivered = await create_order(session, customer=customer, status=OrderStatusEnum.DELIVERED)
        await session.commit()
        machine = OrderStateMachine(session)

        with pytest.raises(PermissionDeniedError):
            await machine.transition(order_id=pending.id, target_status=OrderStatusEnum.CANCELLED, actor=stranger)
        with pytest.raises(PermissionDeniedError):
            await machine.transition(order_id=confirmed.id, target_status=OrderStatusEnum.CANCELLED, actor=customer)
        with pytest.raises(PermissionDeniedError):
            await machine.transition(order_id=pending.id, target_status=OrderStatusEnum.CONFIRMED, actor=customer)
        with pytest.raises(InvalidTransitionError):
            await machine.transition(order_id=delivered.id, target_status=OrderStatusEnum.CANCELLED, actor=customer)

        result = await machine.transition(order_id=pending.id, target_status=OrderStatusEnum.CANCELLED, actor=customer)
        assert result.order.status is OrderStatusEnum.CANCELLED


@pytest.mark.asyncio
async def test_restaurant_owner_is_scoped_to_own_orders(session_factory) -> None:
    async with session_factory() as session:
        owner = await create_user(session, role=UserRoleEnum.RESTAURANT)
        rival = await create_user(session, role="restaurantOwner")
        restaurant = await create_restaurant(session, owner=owner)
        customer = await create_user(session)
        order = await create_order(session, customer=customer, restaurant=restaurant)
        await session.commit()
        machine = OrderStateMachine(session)

        with pytest.raises(PermissionDeniedError):
            await machine.transition(order_id=order.id, target_status=OrderStatusEnum.CONFIRMED, actor=rival)

        result = await machine.transition(order_id=order.id, target_status=OrderStatusEnum.CONFIRMED, actor=owner)
        assert result.order.status is OrderStatusEnum.CONFIRMED


@pytest.mark.asyncio
async def test_first_rider_claim_wins(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        first = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        second = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        order = await create_order(session, customer=customer, status=OrderStatusEnum.READY)
        await session.commit()
        machine = OrderStateMachine(session)

        result = await machine.accept_delivery(order_id=order.id, rider=first)
        assert result.previous_status is OrderStatusEnum.READY
        assert result.order.status is OrderStatusEnum.OUT_FOR_DELIVERY
        assert result.order.delivery_person_id == first.id
        assert result.order.status_updates[-1].updated_by == first.id
        assert first.is_available is False

        with pytest.raises(RiderAlreadyAssignedError):
            await machine.accept_delivery(order_id=order.id, rider=second)

        reloaded = await machine.get_order(order.id)
        assert reloaded.delivery_person_id == first.id
        assert len(reloaded.status_updates) == 2


@pytest.mark.asyncio
async def test_rider_claim_preconditions(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        rider = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        pending_rider = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER, approved=False)
        pending = await create_order(session, customer=customer)
        preparing = await create_order(session, customer=customer, status=OrderStatusEnum.PREPARING)
        await session.commit()
        machine = OrderStateMachine(session)

        with pytest.raises(InvalidTransitionError):
            await machine.accept_delivery(order_id=pending.id, rider=rider)
        with pytest.raises(PermissionDeniedError):
            await machine.accept_delivery(order_id=preparing.id, rider=pending_rider)
        with pytest.raises(PermissionDeniedError):
            await machine.accept_delivery(order_id=preparing.id, rider=customer)

        result = await machine.accept_delivery(order_id=preparing.id, rider=rider)
        assert result.order.status is OrderStatusEnum.OUT_FOR_DELIVERY


@pytest.mark.asyncio
async def test_restaurant_assigns_rider(session_factory) -> None:
    async with session_factory() as session:
        owner = await create_user(session, role=UserRoleEnum.RESTAURANT)
        restaurant = await create_restaurant(session, owner=owner)
        customer = await create_user(session)
        rider = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        order = await create_order(session, customer=customer, restaurant=restaurant, status=OrderStatusEnum.PREPARING)
        await session.commit()
        machine = OrderStateMachine(session)

        with pytest.raises(ValidationError):
            await machine.assign_rider(order_id=order.id, rider_id=customer.id, actor=owner)

        result = await machine.assign_rider(order_id=order.id, rider_id=rider.id, actor=owner)
        assert result.order.delivery_person_id == rider.id
        assert result.order.status_updates[-1].updated_by == owner.id


@pytest.mark.asyncio
async def test_delivery_completion_stamps_time_and_awards_points(session_factory) -> None:
    async with session_factory() as session:
        customer = await create_user(session)
        rider = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        other_rider = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        order = await create_order(
            session,
            customer=customer,
            status=OrderStatusEnum.READY,
            grand_total=Decimal("1500.00"),
        )
        await session.commit()
        machine = OrderStateMachine(session)
        await machine.accept_delivery(order_id=order.id, rider=rider)

        with pytest.raises(PermissionDeniedError):
            await machine.complete_delivery(order_id=order.id, actor=other_rider)

        result = await machine.complete_delivery(order_id=order.id, actor=rider)
        delivered_at = result.order.actual_delivery_time
        assert result.order.status is OrderStatusEnum.DELIVERED
        assert delivered_at is not None
        assert result.points_earned == 150
        assert result.order.loyalty_points_earned == 150
        assert rider.is_available is True

        refreshed = await session.get(User, customer.id)
        assert refreshed.loyalty_points == 150

        with pytest.raises(InvalidTransitionError):
            await machine.complete_delivery(order_id=order.id, actor=rider)
        reloaded = await machine.get_order(order.id)
        assert reloaded.actual_delivery_time == delivered_at


@pytest.mark.asyncio
async def test_status_change_survives_notification_failure(session_factory, monkeypatch) -> None:
    async with session_factory() as session:
        admin = await create_user(session, role=UserRoleEnum.ADMIN)
        customer = await create_user(session)
        order = await create_order(session, customer=customer)
        await session.commit()
        machine = OrderStateMachine(session)

        async def broken(*args, **kwargs):
            raise RuntimeError("smtp down")

        monkeypatch.setattr(machine._notifications, "send_order_status_update", broken)

        result = await machine.transition(order_id=order.id, target_status=OrderStatusEnum.CONFIRMED, actor=admin)
        assert result.order.status is OrderStatusEnum.CONFIRMED
        reloaded = await machine.get_order(order.id)
        assert reloaded.status is OrderStatusEnum.CONFIRMED


@pytest.mark.asyncio
async def test_status_writers_lock_the_order_row(session_factory) -> None:
    async with session_factory() as session:
        admin = await create_user(session, role=UserRoleEnum.ADMIN)
        customer = await create_user(session)
        rider = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        confirmed = await create_order(session, customer=customer)
        on_the_way = await create_order(session, customer=customer, status=OrderStatusEnum.OUT_FOR_DELIVERY, rider=rider)
        await session.commit()

        executed: list[str] = []

        def capture(orm_execute_state) -> None:
            if orm_execute_state.is_select and not orm_execute_state.is_relationship_load:
                executed.append(str(orm_execute_state.statement.compile(dialect=postgresql.dialect())))

        event.listen(session.sync_session, "do_orm_execute", capture)
        machine = OrderStateMachine(session)

        await machine.transition(order_id=confirmed.id, target_status=OrderStatusEnum.CONFIRMED, actor=admin)
        transition_locks = [sql for sql in executed if "FOR UPDATE OF orders" in sql]
        assert len(transition_locks) == 1

        executed.clear()
        await machine.complete_delivery(order_id=on_the_way.id, actor=rider)
        completion_locks = [sql for sql in executed if "FOR UPDATE OF orders" in sql]
        assert len(completion_locks) == 1

        event.remove(session.sync_session, "do_orm_execute", capture)
