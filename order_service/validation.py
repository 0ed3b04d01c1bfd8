"""
Order field validation: ordered lists of pure rules over an OrderDraft.
Lookups (restaurant, referenced products) are fetched once by the route and
carried on the draft, so every rule runs before anything is written.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from order_service.errors import ValidationFailedError, Violation
from order_service.pricing import MAX_PRICE
from order_service.schemas import LineItemBody

logger = logging.getLogger(__name__)


@dataclass
class OrderDraft:
    address: str
    restaurant_id: int | None
    products: list[LineItemBody]
    restaurant: dict | None = None
    catalog: dict[int, dict] = field(default_factory=dict)  # product id -> product row
    restaurant_id_supplied: bool = False  # update only: client sent restaurantId

    @property
    def product_ids(self) -> list[int]:
        return [item.productId for item in self.products]


Rule = Callable[[OrderDraft], Violation | None]


def check_address(draft: OrderDraft) -> Violation | None:
    if not draft.address or not draft.address.strip():
        return Violation("address", "The address is required")
    return None


def check_restaurant_exists(draft: OrderDraft) -> Violation | None:
    if draft.restaurant_id is None or draft.restaurant_id < 1:
        return Violation("restaurantId", "The restaurantId must be a positive integer")
    if draft.restaurant is None:
        return Violation("restaurantId", "The restaurantId does not exist")
    return None


def check_restaurant_not_supplied(draft: OrderDraft) -> Violation | None:
    if draft.restaurant_id_supplied:
        return Violation("restaurantId", "The restaurant of an order cannot be changed")
    return None


def check_products_not_empty(draft: OrderDraft) -> Violation | None:
    if not draft.products:
        return Violation("products", "Order has no products")
    return None


def check_positive_quantities(draft: OrderDraft) -> Violation | None:
    for item in draft.products:
        if item.productId <= 0 or item.quantity <= 0:
            return Violation("products", "Each product needs a productId and a quantity greater than 0")
    return None


def check_unique_products(draft: OrderDraft) -> Violation | None:
    ids = draft.product_ids
    if len(ids) != len(set(ids)):
        return Violation("products", "A product can appear only once per order")
    return None


def check_products_exist(draft: OrderDraft) -> Violation | None:
    missing = [pid for pid in draft.product_ids if pid not in draft.catalog]
    if missing:
        return Violation("products", f"The productId does not exist: {', '.join(map(str, missing))}")
    return None


def check_products_available(draft: OrderDraft) -> Violation | None:
    unavailable = [
        pid for pid in draft.product_ids
        if pid in draft.catalog and not draft.catalog[pid]["availability"]
    ]
    if unavailable:
        return Violation("products", f"The product is not available: {', '.join(map(str, unavailable))}")
    return None


def check_products_same_restaurant(draft: OrderDraft) -> Violation | None:
    foreign = [
        pid for pid in draft.product_ids
        if pid in draft.catalog and draft.catalog[pid]["restaurant_id"] != draft.restaurant_id
    ]
    if foreign:
        return Violation("products", "There are products from a different restaurant")
    return None


def check_total_in_range(draft: OrderDraft) -> Violation | None:
    subtotal = sum(
        item.quantity * draft.catalog[item.productId]["price"]
        for item in draft.products
        if item.productId in draft.catalog
    )
    if subtotal > MAX_PRICE:
        return Violation("products", f"The order total cannot exceed {MAX_PRICE}")
    return None


CREATE_RULES: tuple[Rule, ...] = (
    check_address,
    check_restaurant_exists,
    check_products_not_empty,
    check_positive_quantities,
    check_unique_products,
    check_products_exist,
    check_products_available,
    check_products_same_restaurant,
    check_total_in_range,
)

# restaurant_id on an update draft is the order's stored restaurant
UPDATE_RULES: tuple[Rule, ...] = (
    check_restaurant_not_supplied,
    check_address,
    check_products_not_empty,
    check_positive_quantities,
    check_unique_products,
    check_products_exist,
    check_products_available,
    check_products_same_restaurant,
    check_total_in_range,
)


def collect_violations(draft: OrderDraft, rules: Sequence[Rule]) -> list[Violation]:
    return [violation for violation in (rule(draft) for rule in rules) if violation is not None]


def validate(draft: OrderDraft, rules: Sequence[Rule]) -> None:
    """Raises ValidationFailedError with every violation found."""
    violations = collect_violations(draft, rules)
    if violations:
        logger.info("Order validation failed: %s", "; ".join(f"{v.field}: {v.message}" for v in violations))
        raise ValidationFailedError(violations)
