"""
Order lifecycle states and the transitions a CoinGate callback may apply.

State machine (scoped to this bridge):

    new / pending_payment --paid--> processing
    new / pending_payment --invalid|expired|canceled|refunded--> canceled

Every other combination is a no-op, so duplicate or out-of-order callbacks
can never regress an order once it is processing or canceled.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping, Optional


class OrderState(str, Enum):
    """Local order states relevant to payment reconciliation."""

    NEW = "new"
    PENDING_PAYMENT = "pending_payment"
    PROCESSING = "processing"
    CANCELED = "canceled"


PENDING_STATES = frozenset({OrderState.NEW, OrderState.PENDING_PAYMENT})

PAID_STATUS = "paid"

CANCEL_STATUSES = frozenset({
    "invalid",
    "expired",
    "canceled",
    "refunded",
})

DEFAULT_STATE_STATUSES: Dict[OrderState, str] = {
    OrderState.NEW: "pending",
    OrderState.PENDING_PAYMENT: "pending_payment",
    OrderState.PROCESSING: "processing",
    OrderState.CANCELED: "canceled",
}


def target_state(remote_status: Optional[str]) -> Optional[OrderState]:
    """
    Map a remote CoinGate status to the local state it asks for.

    Matching is exact and case-sensitive. Non-terminal statuses such as
    ``new``, ``pending`` or ``confirming`` return None.
    """
    if remote_status == PAID_STATUS:
        return OrderState.PROCESSING
    if remote_status in CANCEL_STATUSES:
        return OrderState.CANCELED
    return None


def can_transition(current: OrderState, target: OrderState) -> bool:
    """Only pending orders may move, and only to processing or canceled."""
    return current in PENDING_STATES and target in (
        OrderState.PROCESSING,
        OrderState.CANCELED,
    )


class OrderStatusConfig:
    """Platform default display status for each state."""

    def __init__(self, overrides: Optional[Mapping[OrderState, str]] = None) -> None:
        self._statuses = dict(DEFAULT_STATE_STATUSES)
        if overrides:
            self._statuses.update(overrides)

    def get_state_default_status(self, state: OrderState) -> str:
        return self._statuses[state]
