from decimal import Decimal

import pytest

from helpers import create_order, create_restaurant, create_user, session_headers
from yumrun_api.models.order import OrderStatusEnum
from yumrun_api.models.user import UserRoleEnum


async def _seed(session_factory):
    async with session_factory() as session:
        customer = await create_user(session)
        rider = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER)
        restaurant = await create_restaurant(session)
        ready = await create_order(
            session,
            customer=customer,
            restaurant=restaurant,
            status=OrderStatusEnum.READY,
            grand_total=Decimal("1200.00"),
            delivery_fee=Decimal("80.00"),
            tip=Decimal("20.00"),
        )
        preparing = await create_order(session, customer=customer, restaurant=restaurant, status=OrderStatusEnum.PREPARING)
        await create_order(session, customer=customer, restaurant=restaurant, status=OrderStatusEnum.PENDING)
        await session.commit()
        return customer, rider, ready, preparing


@pytest.mark.asyncio
async def test_available_orders_lists_claimable_only(client, app_with_db) -> None:
    _, session_factory = app_with_db
    customer, rider, ready, preparing = await _seed(session_factory)

    response = await client.get("/api/delivery/available", headers=session_headers(rider))

    assert response.status_code == 200
    ids = {order["id"] for order in response.json()["data"]}
    assert ids == {str(ready.id), str(preparing.id)}

    denied = await client.get("/api/delivery/available", headers=session_headers(customer))
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_rider_accepts_and_completes_delivery(client, app_with_db) -> None:
    _, session_factory = app_with_db
    customer, rider, ready, _ = await _seed(session_factory)
    headers = session_headers(rider)

    accepted = await client.post(f"/api/delivery/accept/{ready.id}", headers=headers)
    assert accepted.status_code == 200
    assert accepted.json()["data"]["order"]["status"] == "OUT_FOR_DELIVERY"
    assert accepted.json()["data"]["previousStatus"] == "READY"

    available = await client.get("/api/delivery/available", headers=headers)
    assert str(ready.id) not in {order["id"] for order in available.json()["data"]}

    in_progress = await client.get("/api/delivery/summary", headers=headers)
    assert in_progress.json()["data"]["activeOrders"] == 1
    assert in_progress.json()["data"]["isAvailable"] is False

    delivered = await client.post(f"/api/delivery/{ready.id}/delivered", headers=headers)
    assert delivered.status_code == 200
    data = delivered.json()["data"]
    assert data["order"]["status"] == "DELIVERED"
    assert data["order"]["actualDeliveryTime"] is not None
    assert data["pointsEarned"] == 120

    again = await client.post(f"/api/delivery/{ready.id}/delivered", headers=headers)
    assert again.status_code == 400
    assert again.json()["error"]["code"] == "INVALID_TRANSITION"

    summary = await client.get("/api/delivery/summary", headers=headers)
    assert summary.json()["data"]["deliveredOrders"] == 1
    assert summary.json()["data"]["activeOrders"] == 0
    assert summary.json()["data"]["earnings"] == 100.0
    assert summary.json()["data"]["averageDeliveryMinutes"] is not None
    assert summary.json()["data"]["isAvailable"] is True

    info = await client.get("/api/loyalty/info", headers=session_headers(customer))
    assert info.json()["data"]["currentPoints"] == 120


@pytest.mark.asyncio
async def test_second_rider_gets_conflict(client, app_with_db) -> None:
    _, session_factory = app_with_db
    _, rider, ready, _ = await _seed(session_factory)
    async with session_factory() as session:
        rival = await create_user(session, role="rider")
        unapproved = await create_user(session, role=UserRoleEnum.DELIVERY_RIDER, approved=False)
        await session.commit()

    blocked = await client.post(f"/api/delivery/accept/{ready.id}", headers=session_headers(unapproved))
    assert blocked.status_code == 403

    first = await client.post(f"/api/delivery/accept/{ready.id}", headers=session_headers(rider))
    assert first.status_code == 200

    second = await client.post(f"/api/delivery/accept/{ready.id}", headers=session_headers(rival))
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "RIDER_ALREADY_ASSIGNED"

    not_theirs = await client.post(f"/api/delivery/{ready.id}/delivered", headers=session_headers(rival))
    assert not_theirs.status_code == 403
