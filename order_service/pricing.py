"""
Order price: sum of quantity x live unit price, plus the restaurant's shipping
cost unless the subtotal is strictly above the free-shipping threshold.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from order_service.config import settings

CENT = Decimal("0.01")
MAX_PRICE = Decimal("99999999.99")  # NUMERIC(10, 2)


def to_money(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceQuote:
    subtotal: Decimal
    shipping_costs: Decimal
    price: Decimal


def quote_order(
    lines: Iterable[tuple[int, Decimal]],
    default_shipping_costs: Decimal,
    free_shipping_threshold: Decimal | None = None,
) -> PriceQuote:
    """
    lines: (quantity, current unit price) pairs, at least one.
    free_shipping_threshold defaults to settings.free_shipping_threshold.
    Raises ValueError for an empty cart or a non-positive quantity.
    """
    if free_shipping_threshold is None:
        free_shipping_threshold = settings.free_shipping_threshold
    subtotal = Decimal("0")
    count = 0
    for quantity, unit_price in lines:
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        subtotal += quantity * to_money(unit_price)
        count += 1
    if count == 0:
        raise ValueError("an order needs at least one line item")

    subtotal = to_money(subtotal)
    if subtotal > free_shipping_threshold:
        shipping_costs = to_money(0)
    else:
        shipping_costs = to_money(default_shipping_costs)
    return PriceQuote(subtotal=subtotal, shipping_costs=shipping_costs, price=subtotal + shipping_costs)
