"""
Contracts for the merchant platform collaborators.

Persistence, order management and URL routing belong to the platform;
the bridge only talks to them through these protocols.
"""
from __future__ import annotations

from typing import Mapping, Optional, Protocol

from coingate_merchant.domain.models import Order, Payment
from coingate_merchant.domain.states import OrderState


class OrderRepository(Protocol):
    """Loads orders and persists guarded state changes."""

    async def get(self, increment_id: str) -> Optional[Order]:
        """Return the order with this increment id, or None."""
        ...

    async def compare_and_set_state(
        self,
        increment_id: str,
        expected: OrderState,
        state: OrderState,
        status: str,
    ) -> bool:
        """
        Persist `state`/`status` only if the stored state still equals `expected`.

        Returns True when the write happened.
        """
        ...


class PaymentRepository(Protocol):
    """Persists payment records independently of their order."""

    async def save(self, payment: Payment) -> None:
        ...


class OrderManagement(Protocol):
    """Platform order operations."""

    async def cancel(self, increment_id: str) -> bool:
        """
        Cancel the order if it can still be canceled.

        The pending check and the write must be one atomic step: callers may
        cancel an order other than the one whose callback they are handling,
        without holding that order's reconciliation lock.

        Returns True when the order was canceled by this call.
        """
        ...


class UrlBuilder(Protocol):
    """Builds absolute store URLs."""

    def get_url(self, route: str, query: Optional[Mapping[str, str]] = None) -> str:
        ...


class StoreInfo(Protocol):
    """Website-level store configuration."""

    def get_website_name(self) -> str:
        ...
