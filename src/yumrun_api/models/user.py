from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Enum as SqlEnum, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from yumrun_api.db.base import Base, utcnow


class UserRoleEnum(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DELIVERY_RIDER = "delivery_rider"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: "str | UserRoleEnum") -> "UserRoleEnum":
        """Normalize stored or legacy role spellings onto the closed enum."""

        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        normalized = _ROLE_ALIASES.get(normalized, normalized)
        return cls(normalized)


_ROLE_ALIASES = {
    "restaurantowner": "restaurant",
    "restaurant_owner": "restaurant",
    "owner": "restaurant",
    "rider": "delivery_rider",
    "delivery": "delivery_rider",
    "deliveryrider": "delivery_rider",
    "user": "customer",
}


class LoyaltyTierEnum(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint("loyalty_points >= 0", name="ck_users_loyalty_points_non_negative"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    phone = Column(String(32), nullable=True)
    role = Column(String(length=16), nullable=False, default=UserRoleEnum.CUSTOMER.value, server_default=UserRoleEnum.CUSTOMER.value)
    approved = Column(Boolean, nullable=False, default=False, server_default="false")
    is_available = Column(Boolean, nullable=False, default=True, server_default="true")

    loyalty_points = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_loyalty_points = Column(Integer, nullable=False, default=0, server_default="0")
    loyalty_tier = Column(
        SqlEnum(LoyaltyTierEnum, name="loyalty_tier_enum"),
        nullable=False,
        default=LoyaltyTierEnum.BRONZE,
        server_default=LoyaltyTierEnum.BRONZE.value,
    )
    tier_update_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    notification_preferences = relationship(
        "NotificationPreference",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def role_enum(self) -> UserRoleEnum:
        return UserRoleEnum.parse(self.role)
