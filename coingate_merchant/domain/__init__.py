"""Domain model: orders, payments, remote orders and the order state machine."""
from .models import ORDER_TOKEN_KEY, Order, OrderItem, Payment, RemoteOrder
from .states import (
    CANCEL_STATUSES,
    PAID_STATUS,
    PENDING_STATES,
    OrderState,
    OrderStatusConfig,
    can_transition,
    target_state,
)

__all__ = [
    "CANCEL_STATUSES",
    "ORDER_TOKEN_KEY",
    "PAID_STATUS",
    "PENDING_STATES",
    "Order",
    "OrderItem",
    "OrderState",
    "OrderStatusConfig",
    "Payment",
    "RemoteOrder",
    "can_transition",
    "target_state",
]
