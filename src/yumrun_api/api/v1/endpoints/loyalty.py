"""API endpoints for loyalty balances, the ledger, rewards and expiry."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.api.dependencies.session import require_capability, require_session_user
from yumrun_api.api.envelope import ApiResponse, ok
from yumrun_api.core.errors import PermissionDeniedError, ServerError, ValidationError, YumRunError
from yumrun_api.db.session import get_session
from yumrun_api.models.loyalty import LoyaltyReward, LoyaltyTransaction, LoyaltyTransactionType
from yumrun_api.models.order import OrderStatusEnum
from yumrun_api.models.user import User
from yumrun_api.services.auth import Capability
from yumrun_api.services.loyalty import LoyaltyService, LoyaltySummary
from yumrun_api.services.notifications import NotificationService
from yumrun_api.services.orders import OrderService


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class TierBenefitsResponse(BaseModel):
    pointsMultiplier: float
    perks: List[str]


class LoyaltyInfoResponse(BaseModel):
    currentPoints: int
    lifetimePoints: int
    currentTier: str
    tierBenefits: TierBenefitsResponse
    nextTier: Optional[str]
    pointsToNextTier: int
    tierUpdateDate: Optional[datetime]
    restaurantId: Optional[UUID] = None


class LoyaltyTransactionResponse(BaseModel):
    id: UUID
    userId: UUID
    restaurantId: Optional[UUID]
    points: int
    type: str
    source: str
    description: str
    referenceId: Optional[UUID]
    balance: int
    expiryDate: Optional[datetime]
    processedExpiry: bool
    adjustedBy: Optional[UUID]
    createdAt: datetime


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TransactionListResponse(BaseModel):
    transactions: List[LoyaltyTransactionResponse]
    pagination: PaginationResponse


class LoyaltyRewardResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    pointsRequired: int
    value: str
    type: str
    active: bool


class LedgerWriteResponse(BaseModel):
    transaction: Optional[LoyaltyTransactionResponse]
    currentPoints: int
    lifetimePoints: int
    tier: str


class EarnRequest(BaseModel):
    orderId: UUID = Field(..., description="Order to award points for")


class RedeemRequest(BaseModel):
    rewardId: UUID = Field(..., description="Reward to redeem")
    points: Optional[int] = Field(None, gt=0, description="Expected reward cost; must match the catalogue")
    restaurantId: Optional[UUID] = Field(None, description="Restaurant the redemption is scoped to")


class AdjustRequest(BaseModel):
    userId: UUID = Field(..., description="Member whose balance is adjusted")
    points: int = Field(..., description="Signed point delta; must be non-zero")
    reason: str = Field(..., min_length=1, max_length=500, description="Reason recorded on the ledger row")


class ExpiryRunResponse(BaseModel):
    processed: int
    failed: int


def _serialize_transaction(transaction: LoyaltyTransaction) -> LoyaltyTransactionResponse:
    return LoyaltyTransactionResponse(
        id=transaction.id,
        userId=transaction.user_id,
        restaurantId=transaction.restaurant_id,
        points=transaction.points,
        type=transaction.type.value,
        source=transaction.source.value,
        description=transaction.description,
        referenceId=transaction.reference_id,
        balance=transaction.balance,
        expiryDate=transaction.expiry_date,
        processedExpiry=transaction.processed_expiry,
        adjustedBy=transaction.adjusted_by,
        createdAt=transaction.created_at,
    )


def _serialize_reward(reward: LoyaltyReward) -> LoyaltyRewardResponse:
    return LoyaltyRewardResponse(
        id=reward.id,
        name=reward.name,
        description=reward.description,
        pointsRequired=reward.points_required,
        value=reward.value,
        type=reward.type.value,
        active=reward.active,
    )


def _serialize_summary(summary: LoyaltySummary) -> LoyaltyInfoResponse:
    return LoyaltyInfoResponse(
        currentPoints=summary.current_points,
        lifetimePoints=summary.lifetime_points,
        currentTier=summary.current_tier.value,
        tierBenefits=TierBenefitsResponse(
            pointsMultiplier=float(summary.tier_benefits.points_multiplier),
            perks=list(summary.tier_benefits.perks),
        ),
        nextTier=summary.next_tier.value if summary.next_tier else None,
        pointsToNextTier=summary.points_to_next_tier,
        tierUpdateDate=summary.tier_update_date,
        restaurantId=summary.restaurant_id,
    )


def _ledger_write(member: User, transaction: Optional[LoyaltyTransaction]) -> LedgerWriteResponse:
    return LedgerWriteResponse(
        transaction=_serialize_transaction(transaction) if transaction is not None else None,
        currentPoints=member.loyalty_points,
        lifetimePoints=member.lifetime_loyalty_points,
        tier=member.loyalty_tier.value,
    )


def _loyalty_service(db: AsyncSession) -> LoyaltyService:
    return LoyaltyService(db, notification_service=NotificationService(db))


@router.get("/info", response_model=ApiResponse[LoyaltyInfoResponse])
async def get_loyalty_info(
    restaurant_id: Optional[UUID] = Query(None, alias="restaurantId"),
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[LoyaltyInfoResponse]:
    summary = await LoyaltyService(db).get_loyalty_info(user, restaurant_id=restaurant_id)
    return ok(_serialize_summary(summary))


@router.get("/transactions", response_model=ApiResponse[TransactionListResponse])
async def list_loyalty_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    transaction_type: Optional[LoyaltyTransactionType] = Query(None, alias="type"),
    restaurant_id: Optional[UUID] = Query(None, alias="restaurantId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[TransactionListResponse]:
    result = await LoyaltyService(db).list_transactions(
        user,
        page=page,
        limit=limit,
        transaction_type=transaction_type,
        restaurant_id=restaurant_id,
        start_date=start_date,
        end_date=end_date,
    )
    return ok(
        TransactionListResponse(
            transactions=[_serialize_transaction(row) for row in result.transactions],
            pagination=PaginationResponse(page=result.page, limit=result.limit, total=result.total, pages=result.pages),
        )
    )


@router.get("/rewards", response_model=ApiResponse[List[LoyaltyRewardResponse]])
async def list_loyalty_rewards(
    user: User = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[List[LoyaltyRewardResponse]]:
    rewards = await LoyaltyService(db).list_rewards(active_only=True)
    return ok([_serialize_reward(reward) for reward in rewards])


@router.post("/earn", response_model=ApiResponse[LedgerWriteResponse])
async def earn_loyalty_points(
    payload: EarnRequest,
    user: User = Depends(require_capability(Capability.USE_LOYALTY)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[LedgerWriteResponse]:
    """Award points for one of the caller's delivered orders; a second award for the same order is rejected."""

    service = _loyalty_service(db)
    try:
        order = await OrderService(db).get_order(payload.orderId)
        if order.user_id != user.id:
            raise PermissionDeniedError("You can only earn points for your own orders")
        # DELIVERED is terminal, so an awarded order can no longer be cancelled.
        if order.status is not OrderStatusEnum.DELIVERED:
            raise ValidationError(
                "Only delivered orders earn loyalty points",
                details={"status": order.status.value},
            )

        transaction = await service.earn_for_order(order, user)
        await db.commit()
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to earn loyalty points", user_id=str(user.id), order_id=str(payload.orderId))
        await db.rollback()
        raise ServerError("Failed to earn loyalty points") from exc

    await service.dispatch_tier_notifications()
    return ok(_ledger_write(user, transaction))


@router.post("/redeem", response_model=ApiResponse[LedgerWriteResponse])
async def redeem_loyalty_reward(
    payload: RedeemRequest,
    user: User = Depends(require_capability(Capability.USE_LOYALTY)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[LedgerWriteResponse]:
    service = _loyalty_service(db)
    try:
        transaction = await service.redeem(
            user,
            payload.rewardId,
            points=payload.points,
            restaurant_id=payload.restaurantId,
        )
        await db.commit()
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to redeem loyalty reward", user_id=str(user.id), reward_id=str(payload.rewardId))
        await db.rollback()
        raise ServerError("Failed to redeem reward") from exc

    return ok(_ledger_write(user, transaction))


@router.post("/adjust", response_model=ApiResponse[LedgerWriteResponse])
async def adjust_loyalty_points(
    payload: AdjustRequest,
    admin: User = Depends(require_capability(Capability.ADJUST_LOYALTY)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[LedgerWriteResponse]:
    service = _loyalty_service(db)
    try:
        member = await service.get_user(payload.userId)
        transaction = await service.adjust(admin, member, payload.points, payload.reason)
        await db.commit()
    except YumRunError:
        await db.rollback()
        raise
    except Exception as exc:
        logger.opt(exception=exc).error("Failed to adjust loyalty points", admin_id=str(admin.id), user_id=str(payload.userId))
        await db.rollback()
        raise ServerError("Failed to adjust loyalty points") from exc

    await service.dispatch_tier_notifications()
    logger.info(
        "Loyalty points adjusted",
        admin_id=str(admin.id),
        user_id=str(member.id),
        points=payload.points,
    )
    return ok(_ledger_write(member, transaction))


@router.post("/process-expired", response_model=ApiResponse[ExpiryRunResponse])
async def process_expired_points(
    admin: User = Depends(require_capability(Capability.RUN_LOYALTY_JOBS)),
    db: AsyncSession = Depends(get_session),
) -> ApiResponse[ExpiryRunResponse]:
    """Run the expiry sweep now; rows are committed one at a time."""

    admin_id = str(admin.id)
    result = await _loyalty_service(db).run_expiry()
    logger.info("Manual loyalty expiry run", admin_id=admin_id, processed=result.processed, failed=result.failed)
    return ok(ExpiryRunResponse(processed=result.processed, failed=result.failed))
