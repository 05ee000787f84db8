from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from yumrun_api.db.base import Base, utcnow


class OrderStatusEnum(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentMethodEnum(str, Enum):
    CASH = "CASH"
    KHALTI = "KHALTI"


class PaymentStatusEnum(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_number = Column(String, nullable=False, unique=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    restaurant_id = Column(UUID(as_uuid=True), ForeignKey("restaurants.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(
        SqlEnum(OrderStatusEnum, name="order_status_enum"),
        nullable=False,
        default=OrderStatusEnum.PENDING,
        server_default=OrderStatusEnum.PENDING.value,
    )
    total_price = Column(Numeric(12, 2), nullable=False, server_default="0")
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    tax = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    tip = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    grand_total = Column(Numeric(12, 2), nullable=False, server_default="0")
    loyalty_points_used = Column(Integer, nullable=False, default=0, server_default="0")
    loyalty_points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    payment_method = Column(
        SqlEnum(PaymentMethodEnum, name="payment_method_enum"),
        nullable=False,
        default=PaymentMethodEnum.CASH,
        server_default=PaymentMethodEnum.CASH.value,
    )
    payment_status = Column(
        SqlEnum(PaymentStatusEnum, name="payment_status_enum"),
        nullable=False,
        default=PaymentStatusEnum.PENDING,
        server_default=PaymentStatusEnum.PENDING.value,
    )
    delivery_address = Column(Text, nullable=True)
    special_instructions = Column(Text, nullable=True)
    delivery_person_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    estimated_delivery_time = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")
    status_updates = relationship(
        "OrderStatusUpdate",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusUpdate.sequence",
        lazy="selectin",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    menu_item_id = Column(UUID(as_uuid=True), nullable=True)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1, server_default="1")
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
