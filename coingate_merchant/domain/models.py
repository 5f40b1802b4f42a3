"""
Order, payment and remote order models.

Order and Payment are mutable records owned by the merchant platform;
RemoteOrder is an immutable snapshot of what CoinGate reported.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from coingate_merchant.domain.states import OrderState

# Reserved key for the correlation token in the payment's additional information
ORDER_TOKEN_KEY = "coingate_order_token"


@dataclass
class OrderItem:
    """A single order line."""

    name: str
    qty_ordered: Decimal = Decimal("1")


@dataclass
class Payment:
    """Payment record attached 1:1 to an order."""

    order_increment_id: Optional[str] = None
    method: str = "coingate_merchant"
    additional_information: Dict[str, Any] = field(default_factory=dict)

    def get_additional_information(self, key: str) -> Any:
        return self.additional_information.get(key)

    def set_additional_information(self, key: str, value: Any) -> None:
        self.additional_information[key] = value

    @property
    def order_token(self) -> Optional[str]:
        """Correlation token stored for this payment attempt, if any."""
        return self.additional_information.get(ORDER_TOKEN_KEY)


@dataclass
class Order:
    """
    Local sale record.

    `increment_id` is the human-facing order number and never changes.
    `state` is only moved by the guarded transitions in
    `coingate_merchant.domain.states`.
    """

    increment_id: str
    grand_total: Decimal
    currency_code: str
    items: List[OrderItem] = field(default_factory=list)
    state: OrderState = OrderState.NEW
    status: str = "pending"
    payment: Payment = field(default_factory=Payment)

    def __post_init__(self) -> None:
        if self.payment.order_increment_id is None:
            self.payment.order_increment_id = self.increment_id

    def get_all_items(self) -> List[OrderItem]:
        return list(self.items)


class RemoteOrder(BaseModel):
    """Order as reported by the CoinGate API."""

    id: int = Field(description="CoinGate order identifier used for lookups")
    status: str = Field(description="Remote payment status (new, pending, paid, ...)")
    order_id: Optional[str] = Field(default=None, description="Echoed local increment id")
    price_amount: Optional[str] = Field(default=None, description="Charged amount")
    price_currency: Optional[str] = Field(default=None, description="Charged currency")
    receive_currency: Optional[str] = Field(default=None, description="Settlement currency")
    payment_url: Optional[str] = Field(default=None, description="Hosted payment page URL")
    token: Optional[str] = Field(default=None, description="Correlation token sent on creation")
    created_at: Optional[str] = Field(default=None, description="Creation timestamp (ISO 8601)")

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)
