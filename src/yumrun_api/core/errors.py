"""Domain error taxonomy shared by services, jobs and the HTTP layer."""

from __future__ import annotations

from typing import Any
from uuid import UUID


class YumRunError(Exception):
    """Base class for failures that map to a stable error code."""

    status_code: int = 500
    code: str = "SERVER_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(YumRunError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class AuthenticationError(YumRunError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Authentication required"


class PermissionDeniedError(YumRunError):
    status_code = 403
    code = "PERMISSION_DENIED"
    default_message = "You do not have permission to perform this action"


class NotFoundError(YumRunError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: UUID | str) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class OrderNotFoundError(NotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: UUID | str) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class RewardNotFoundError(NotFoundError):
    code = "REWARD_NOT_FOUND"

    def __init__(self, reward_id: UUID | str) -> None:
        super().__init__(f"Reward {reward_id} not found")
        self.reward_id = reward_id


class RestaurantNotFoundError(NotFoundError):
    code = "RESTAURANT_NOT_FOUND"

    def __init__(self, restaurant_id: UUID | str) -> None:
        super().__init__(f"Restaurant {restaurant_id} not found")
        self.restaurant_id = restaurant_id


class InvalidTransitionError(YumRunError):
    status_code = 400
    code = "INVALID_TRANSITION"

    def __init__(self, current_status: str, requested_status: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Cannot transition order from {current_status} to {requested_status}",
            details={"currentStatus": current_status, "requestedStatus": requested_status},
        )
        self.current_status = current_status
        self.requested_status = requested_status


class InsufficientPointsError(YumRunError):
    status_code = 400
    code = "INSUFFICIENT_POINTS"

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Insufficient loyalty points: {available} available, {required} required",
            details={"available": available, "required": required},
        )
        self.available = available
        self.required = required


class RewardInactiveError(YumRunError):
    status_code = 400
    code = "REWARD_INACTIVE"
    default_message = "Reward is not currently available"


class PointsAlreadyAwardedError(YumRunError):
    status_code = 409
    code = "POINTS_ALREADY_AWARDED"

    def __init__(self, order_id: UUID | str) -> None:
        super().__init__(f"Loyalty points were already awarded for order {order_id}")
        self.order_id = order_id


class RiderAlreadyAssignedError(YumRunError):
    status_code = 409
    code = "RIDER_ALREADY_ASSIGNED"

    def __init__(self, order_id: UUID | str) -> None:
        super().__init__(f"Order {order_id} already has a delivery rider")
        self.order_id = order_id


class ServerError(YumRunError):
    """Unexpected failure surfaced with a generic message."""


__all__ = [
    "AuthenticationError",
    "InsufficientPointsError",
    "InvalidTransitionError",
    "NotFoundError",
    "OrderNotFoundError",
    "PermissionDeniedError",
    "PointsAlreadyAwardedError",
    "RestaurantNotFoundError",
    "RewardInactiveError",
    "RewardNotFoundError",
    "RiderAlreadyAssignedError",
    "ServerError",
    "UserNotFoundError",
    "ValidationError",
    "YumRunError",
]
