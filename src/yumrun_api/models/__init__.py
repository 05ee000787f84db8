"""SQLAlchemy models package."""

from .user import LoyaltyTierEnum, User, UserRoleEnum  # noqa: F401
from .restaurant import Restaurant  # noqa: F401
from .loyalty import (  # noqa: F401
    LoyaltyReward,
    LoyaltyRewardType,
    LoyaltyTransaction,
    LoyaltyTransactionSource,
    LoyaltyTransactionType,
)
from .order import Order, OrderItem, OrderStatusEnum, PaymentMethodEnum, PaymentStatusEnum  # noqa: F401
from .order_status_update import OrderStatusUpdate  # noqa: F401
from .notification import Notification, NotificationPreference, NotificationTypeEnum  # noqa: F401
