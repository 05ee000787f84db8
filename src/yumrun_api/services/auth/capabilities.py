"""Closed role-to-capability table; the only place role names are interpreted."""

from __future__ import annotations

from enum import Enum

from yumrun_api.core.errors import PermissionDeniedError
from yumrun_api.models.user import User, UserRoleEnum


class Capability(str, Enum):
    PLACE_ORDER = "place_order"
    CANCEL_OWN_ORDER = "cancel_own_order"
    MANAGE_ORDER_STATUS = "manage_order_status"
    ASSIGN_RIDER = "assign_rider"
    ACCEPT_DELIVERY = "accept_delivery"
    COMPLETE_DELIVERY = "complete_delivery"
    USE_LOYALTY = "use_loyalty"
    ADJUST_LOYALTY = "adjust_loyalty"
    RUN_LOYALTY_JOBS = "run_loyalty_jobs"
    VIEW_OPERATIONS = "view_operations"


ROLE_CAPABILITIES: dict[UserRoleEnum, frozenset[Capability]] = {
    UserRoleEnum.CUSTOMER: frozenset(
        {Capability.PLACE_ORDER, Capability.CANCEL_OWN_ORDER, Capability.USE_LOYALTY}
    ),
    UserRoleEnum.RESTAURANT: frozenset(
        {Capability.MANAGE_ORDER_STATUS, Capability.ASSIGN_RIDER, Capability.USE_LOYALTY}
    ),
    UserRoleEnum.DELIVERY_RIDER: frozenset(
        {Capability.ACCEPT_DELIVERY, Capability.COMPLETE_DELIVERY, Capability.USE_LOYALTY}
    ),
    UserRoleEnum.ADMIN: frozenset(Capability),
}


def has_capability(role: UserRoleEnum | str, capability: Capability) -> bool:
    try:
        resolved = UserRoleEnum.parse(role)
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES[resolved]


def ensure_capability(user: User, capability: Capability) -> None:
    if not has_capability(user.role, capability):
        raise PermissionDeniedError(
            f"Role '{user.role}' is not allowed to {capability.value.replace('_', ' ')}",
            details={"capability": capability.value},
        )


__all__ = ["Capability", "ROLE_CAPABILITIES", "ensure_capability", "has_capability"]
