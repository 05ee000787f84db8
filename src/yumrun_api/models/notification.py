from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from yumrun_api.db.base import Base, utcnow


class NotificationTypeEnum(str, Enum):
    ORDER = "ORDER"
    DELIVERY = "DELIVERY"
    REWARD = "REWARD"
    SYSTEM = "SYSTEM"


class Notification(Base):
    """In-app notification shown in the user's inbox."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(
        SqlEnum(NotificationTypeEnum, name="notification_type_enum"),
        nullable=False,
        default=NotificationTypeEnum.SYSTEM,
        server_default=NotificationTypeEnum.SYSTEM.value,
    )
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class NotificationPreference(Base):
    """Per-user notification delivery preferences."""

    __tablename__ = "notification_preferences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    order_updates = Column(Boolean, nullable=False, default=True, server_default="true")
    promotions = Column(Boolean, nullable=False, default=False, server_default="false")
    delivery_updates = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="notification_preferences")
