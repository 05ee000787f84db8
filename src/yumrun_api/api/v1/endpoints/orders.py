"""Order placement, lookup and status transitions."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.api.dependencies.session import require_capability, require_session_user
from yumrun_api.api.envelope import ApiResponse, ok
from yumrun_api.core.errors import ServerError, YumRunError
from yumrun_api.db.session import get_session
from yumrun_api.models.order import Order, OrderStatusEnum, PaymentMethodEnum
from yumrun_api.models.user import User
from yumrun_api.services.auth import Capability
from yumrun_api.services.orders import (
    OrderDraft,
    OrderLineDraft,
    OrderService,
    OrderStateMachine,
    TransitionResult,
    allowed_transitions,
)


router = APIRouter(prefix="/orders", tags=["orders"])


class OrderItemCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Menu item name as shown to the customer")
    quantity: int = Field(..., ge=1, description="Number of units")
    unitPrice: Decimal = Field(..., ge=0, description="Price per unit")
    menuItemId: Optional[UUID] = Field(None, description="Menu item reference")


class OrderCreate(BaseModel):
    restaurantId: UUID = Field(..., description="Restaurant the order is placed with")
    items: List[OrderItemCreate] = Field(..., min_length=1, description="Ordered items")
    deliveryFee: Decimal = Field(Decimal("0"), ge=0)
    tax: Decimal = Field(Decimal("0"), ge=0)
    tip: Decimal = Field(Decimal("0"), ge=0)
    loyaltyPointsUsed: int = Field(0, ge=0, description="Points applied as a discount, one point per currency unit")
    paymentMethod: PaymentMethodEnum = Field(PaymentMethodEnum.CASH)
    deliveryAddress: Optional[str] = Field(None, description="Drop-off address")
    specialInstructions: Optional[str] = Field(None, description="Notes for the kitchen or rider")


class OrderStatusChange(BaseModel):
    status: OrderStatusEnum = Field(..., description="Target order status")


class RiderAssignment(BaseModel):
    riderId: UUID = Field(..., description="Delivery rider to hand the order to")


class OrderItemResponse(BaseModel):
    id: UUID
    menuItemId: Optional[UUID]
    name: str
    quantity: int
    unitPrice: float
    totalPrice: float


class StatusUpdateResponse(BaseModel):
    status: str
    timestamp: datetime
    updatedBy: Optional[UUID]


class OrderResponse(BaseModel):
    id: UUID
    orderNumber: str
    userId: Optional[UUID]
    restaurantId: Optional[UUID]
    status: str
    totalPrice: float
    deliveryFee: float
    tax: float
    tip: float
    grandTotal: float
    loyaltyPointsUsed: int
    loyaltyPointsEarned: int
    paymentMethod: str
    paymentStatus: str
    deliveryAddress: Optional[str]
    specialInstructions: Optional[str]
    deliveryPersonId: Optional[UUID]
    estimatedDeliveryTime: Optional[datetime]
    actualDeliveryTime: Optional[datetime]
    allowedTransitions: List[str]
    items: List[OrderItemResponse]
    statusUpdates: List[StatusUpdateResponse]
    createdAt: datetime
    updatedAt: datetime


class TransitionResponse(BaseModel):
    order: OrderResponse
    previousStatus: str
    pointsEarned: int


def serialize_order(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        orderNumber=order.order_number,
        userId=order.user_id,
        restaurantId=order.restaurant_id,
        status=order.status.value,
        totalPrice=float(order.total_price),
        deliveryFee=float(order.delivery_fee),
        tax=float(order.tax),
        tip=float(order.tip),
        grandTotal=float(order.grand_total),
        loyaltyPointsUsed=order.loyalty_points_used,
        loyaltyPointsEarned=order.loyalty_points_earned,
        paymentMethod=order.payment_method.value,
        paymentStatus=order.payment_status.value,
        deliveryAddress=order.delivery_address,
        specialInstructions=order.special_instructions,
        deliveryPersonId=order.delivery_person_id,
        estimatedDeliveryTime=order.estimated_delivery_time,
        actualDeliveryTime=order.actual_delivery_time,
        allowedTransitions=sorted(target.value for target in allowed_transitions(order.status)),
        items=[
            OrderItemResponse(
                id=item.id,
                menuItemId=item.menu_item_id,
                name=item.name,
                quantity=item.quantity,
                unitPrice=float(item.unit_price),
                totalPrice=float(item.total_price),
            )
            for item in order.items
        ],
        statusUpdates=[
            StatusUpdateResponse(status=update.status.value, timestamp=update.timestamp, updatedBy=update.updated_by)
            for update in order.status_updates
        ],
        createdAt=order.created_at,
        updatedAt=order.updated_at,
    )


def serialize_transition(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        order=serialize_order(result.order),
        previousStatus=result.previous_status.value,
        pointsEarned=result.points_earned,
    )


@router.post("", response_model=ApiResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    customer: User = Depends(require_capability(Capability.PLACE_ORDER)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[OrderResponse]:
    draft = OrderDraft(
        restaurant_id=payload.restaurantId,
        items=[
            OrderLineDraft(
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unitPrice,
                menu_item_id=item.menuItemId,
            )
            for item in payload.items
        ],
        delivery_fee=payload.deliveryFee,
        tax=payload.tax,
        tip=payload.tip,
        loyalty_points_used=payload.loyaltyPointsUsed,
        payment_method=payload.paymentMethod,
        delivery_address=payload.deliveryAddress,
        special_instructions=payload.specialInstructions,
    )
    try:
        order = await OrderService(db).place_order(customer, draft)
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to create order", user_id=str(customer.id))
        await db.rollback()
        raise ServerError("Failed to create order") from exc

    return ok(serialize_order(order))


@router.get("/{order_id}", response_model=ApiResponse[OrderResponse])
async def get_order(
    order_id: UUID,
    viewer: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[OrderResponse]:
    order = await OrderService(db).get_visible_order(order_id, viewer)
    return ok(serialize_order(order))


@router.api_route("/{order_id}/status", methods=["POST", "PATCH"], response_model=ApiResponse[TransitionResponse])
async def update_order_status(
    order_id: UUID,
    payload: OrderStatusChange,
    actor: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[TransitionResponse]:
    """Both verbs share one transition table."""

    try:
        result = await OrderStateMachine(db).transition(order_id=order_id, target_status=payload.status, actor=actor)
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error(
            "Failed to update order status",
            order_id=str(order_id),
            target_status=payload.status.value,
        )
        await db.rollback()
        raise ServerError("Failed to update order status") from exc

    return ok(serialize_transition(result))


@router.api_route("/{order_id}/assign-rider", methods=["POST", "PATCH"], response_model=ApiResponse[TransitionResponse])
async def assign_rider(
    order_id: UUID,
    payload: RiderAssignment,
    actor: User = Depends(require_capability(Capability.ASSIGN_RIDER)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[TransitionResponse]:
    try:
        result = await OrderStateMachine(db).assign_rider(order_id=order_id, rider_id=payload.riderId, actor=actor)
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to assign rider", order_id=str(order_id), rider_id=str(payload.riderId))
        await db.rollback()
        raise ServerError("Failed to assign rider") from exc

    return ok(serialize_transition(result))
