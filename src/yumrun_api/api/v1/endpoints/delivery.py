"""Rider workflow: claimable orders, self-assignment, completion and earnings."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from loguru import logger
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.api.dependencies.session import require_capability
from yumrun_api.api.envelope import ApiResponse, ok
from yumrun_api.core.errors import ServerError, YumRunError
from yumrun_api.db.session import get_session
from yumrun_api.models.user import User
from yumrun_api.services.auth import Capability
from yumrun_api.services.orders import DeliveryService, OrderStateMachine

from .orders import OrderResponse, TransitionResponse, serialize_order, serialize_transition


router = APIRouter(prefix="/delivery", tags=["delivery"])


class RiderSummaryResponse(BaseModel):
    deliveredOrders: int
    activeOrders: int
    earnings: float
    averageDeliveryMinutes: Optional[float]
    isAvailable: bool


@router.get("/available", response_model=ApiResponse[List[OrderResponse]])
async def list_available_orders(
    limit: int = Query(50, ge=1, le=100),
    rider: User = Depends(require_capability(Capability.ACCEPT_DELIVERY)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[List[OrderResponse]]:
    orders = await DeliveryService(db).list_available(rider, limit=limit)
    return ok([serialize_order(order) for order in orders])


@router.post("/accept/{order_id}", response_model=ApiResponse[TransitionResponse])
async def accept_delivery(
    order_id: UUID,
    rider: User = Depends(require_capability(Capability.ACCEPT_DELIVERY)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[TransitionResponse]:
    try:
        result = await OrderStateMachine(db).accept_delivery(order_id=order_id, rider=rider)
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to accept delivery", order_id=str(order_id), rider_id=str(rider.id))
        await db.rollback()
        raise ServerError("Failed to accept delivery") from exc

    return ok(serialize_transition(result))


@router.post("/{order_id}/delivered", response_model=ApiResponse[TransitionResponse])
async def complete_delivery(
    order_id: UUID,
    actor: User = Depends(require_capability(Capability.COMPLETE_DELIVERY)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[TransitionResponse]:
    try:
        result = await OrderStateMachine(db).complete_delivery(order_id=order_id, actor=actor)
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to complete delivery", order_id=str(order_id), actor_id=str(actor.id))
        await db.rollback()
        raise ServerError("Failed to complete delivery") from exc

    return ok(serialize_transition(result))


@router.get("/summary", response_model=ApiResponse[RiderSummaryResponse])
async def rider_summary(
    rider: User = Depends(require_capability(Capability.COMPLETE_DELIVERY)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[RiderSummaryResponse]:
    summary = await DeliveryService(db).rider_summary(rider)
    return ok(
        RiderSummaryResponse(
            deliveredOrders=summary.delivered_orders,
            activeOrders=summary.active_orders,
            earnings=float(summary.earnings),
            averageDeliveryMinutes=summary.average_delivery_minutes,
            isAvailable=rider.is_available,
        )
    )
