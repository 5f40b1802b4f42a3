"""
In-memory order store.

Implements the order repository, payment repository and order management
contracts for local development and tests. Records are copied on the way in
and out so callers never share mutable state with the store, and every
state change is a compare-and-set under a lock.
"""
import copy
import threading
from collections import deque
from typing import Deque, Dict, Optional

import structlog

from coingate_merchant.domain.models import Order, Payment
from coingate_merchant.domain.states import (
    DEFAULT_STATE_STATUSES,
    OrderState,
    can_transition,
)

logger = structlog.get_logger(__name__)


class InMemoryOrderStore:
    """Dict-backed order/payment storage with guarded state transitions."""

    STATE_WRITE_HISTORY = 1000

    def __init__(self, canceled_status: Optional[str] = None) -> None:
        self._orders: Dict[str, Order] = {}
        self._lock = threading.Lock()
        self.canceled_status = canceled_status or DEFAULT_STATE_STATUSES[OrderState.CANCELED]
        # Most recent state changes, newest last
        self.state_writes: Deque[tuple] = deque(maxlen=self.STATE_WRITE_HISTORY)

    def add(self, order: Order) -> None:
        """Seed or replace an order."""
        with self._lock:
            self._orders[order.increment_id] = copy.deepcopy(order)

    async def get(self, increment_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(increment_id)
            return copy.deepcopy(order) if order is not None else None

    async def compare_and_set_state(
        self,
        increment_id: str,
        expected: OrderState,
        state: OrderState,
        status: str,
    ) -> bool:
        with self._lock:
            order = self._orders.get(increment_id)
            if order is None:
                raise KeyError(f"Order {increment_id} does not exist")
            if order.state != expected:
                return False
            order.state = state
            order.status = status
            self.state_writes.append((increment_id, expected, state))
            return True

    async def save(self, payment: Payment) -> None:
        """Persist a payment onto its order."""
        with self._lock:
            order = self._orders.get(payment.order_increment_id)
            if order is None:
                raise KeyError(f"Order {payment.order_increment_id} does not exist")
            order.payment = copy.deepcopy(payment)

    async def cancel(self, increment_id: str) -> bool:
        with self._lock:
            order = self._orders.get(increment_id)
            if order is None:
                logger.warning("cancel_unknown_order", order_id=increment_id)
                return False
            if not can_transition(order.state, OrderState.CANCELED):
                return False
            previous = order.state
            order.state = OrderState.CANCELED
            order.status = self.canceled_status
            self.state_writes.append((increment_id, previous, OrderState.CANCELED))
            return True
