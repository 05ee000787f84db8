"""Loyalty ledger and reward catalogue models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from yumrun_api.db.base import Base, utcnow


class LoyaltyTransactionType(str, Enum):
    """Ledger event kinds."""

    EARN = "EARN"
    REDEEM = "REDEEM"
    ADJUST = "ADJUST"
    EXPIRE = "EXPIRE"


class LoyaltyTransactionSource(str, Enum):
    """Origin of a ledger event."""

    ORDER = "ORDER"
    REFUND = "REFUND"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"
    PROMOTION = "PROMOTION"


class LoyaltyRewardType(str, Enum):
    DISCOUNT = "discount"
    FREE_DELIVERY = "free_delivery"
    SPECIAL = "special"
    GIFT = "gift"


class LoyaltyTransaction(Base):
    """Append-only ledger row; ``balance`` snapshots the user's points after it applied."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        Index("ix_loyalty_transactions_user_created", "user_id", "created_at"),
        Index("ix_loyalty_transactions_expiry_scan", "type", "processed_expiry", "expiry_date"),
        Index(
            "uq_loyalty_transactions_order_earn",
            "reference_id",
            unique=True,
            postgresql_where=text("type = 'EARN'"),
            sqlite_where=text("type = 'EARN'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    restaurant_id = Column(UUID(as_uuid=True), ForeignKey("restaurants.id", ondelete="SET NULL"), nullable=True, index=True)
    points = Column(Integer, nullable=False)
    type = Column(SqlEnum(LoyaltyTransactionType, name="loyalty_transaction_type_enum"), nullable=False)
    source = Column(SqlEnum(LoyaltyTransactionSource, name="loyalty_transaction_source_enum"), nullable=False)
    description = Column(String, nullable=False)
    reference_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    balance = Column(Integer, nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    processed_expiry = Column(Boolean, nullable=False, default=False, server_default="false")
    adjusted_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class LoyaltyReward(Base):
    """Redeemable catalogue entry."""

    __tablename__ = "loyalty_rewards"
    __table_args__ = (CheckConstraint("points_required > 0", name="ck_loyalty_rewards_points_positive"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    points_required = Column(Integer, nullable=False)
    value = Column(String, nullable=False)
    type = Column(SqlEnum(LoyaltyRewardType, name="loyalty_reward_type_enum"), nullable=False)
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)
