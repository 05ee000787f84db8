"""Order placement, status state machine and rider workflow."""

from .delivery import DeliveryService, RiderSummary  # noqa: F401
from .service import OrderDraft, OrderLineDraft, OrderService, compute_grand_total  # noqa: F401
from .state_machine import (  # noqa: F401
    RIDER_CLAIMABLE_STATUSES,
    STATUS_TRANSITIONS,
    TERMINAL_STATUSES,
    OrderStateMachine,
    TransitionResult,
    allowed_transitions,
    can_transition,
)
