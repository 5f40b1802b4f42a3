"""
Amount and description formatting for CoinGate order requests.

Amounts always use '.' as decimal separator, no grouping and no exponent,
independent of locale. Rounding is half-up, so 19.995 becomes "20.00".
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from coingate_merchant.domain.models import OrderItem

Number = Union[Decimal, int, float, str]

_CENTS = Decimal("0.01")
_UNITS = Decimal("1")


def _to_decimal(value: Number) -> Decimal:
    # str() first so floats keep their shortest repr (19.995, not 19.99499...)
    return value if isinstance(value, Decimal) else Decimal(str(value))


def format_price(value: Number) -> str:
    """Render an amount with exactly two fractional digits."""
    return format(_to_decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP), "f")


def format_quantity(value: Number) -> str:
    """Render a quantity with no fractional digits."""
    return format(_to_decimal(value).quantize(_UNITS, rounding=ROUND_HALF_UP), "f")


def build_description(items: Iterable[OrderItem]) -> str:
    """'2 × Widget, 1 × Gadget' for the given order lines."""
    return ", ".join(
        f"{format_quantity(item.qty_ordered)} × {item.name}" for item in items
    )
