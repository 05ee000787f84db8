"""Order status audit trail."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from yumrun_api.db.base import Base, utcnow
from yumrun_api.models.order import OrderStatusEnum


class OrderStatusUpdate(Base):
    """Immutable ``{status, timestamp, updated_by}`` entry appended on every status change."""

    __tablename__ = "order_status_updates"
    __table_args__ = (UniqueConstraint("order_id", "sequence", name="uq_order_status_updates_order_sequence"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(SqlEnum(OrderStatusEnum, name="order_status_enum"), nullable=False)
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="status_updates")
