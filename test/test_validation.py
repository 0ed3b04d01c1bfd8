from decimal import Decimal

import pytest

from order_service.errors import ValidationFailedError
from order_service.schemas import LineItemBody
from order_service.validation import (
    CREATE_RULES,
    UPDATE_RULES,
    OrderDraft,
    collect_violations,
    validate,
)

RESTAURANT = {"id": 1, "shipping_costs": 2.5, "user_id": 10}
CATALOG = {
    1: {"id": 1, "price": Decimal("3.00"), "availability": True, "restaurant_id": 1},
    2: {"id": 2, "price": Decimal("5.00"), "availability": False, "restaurant_id": 1},
    3: {"id": 3, "price": Decimal("2.00"), "availability": True, "restaurant_id": 2},
}


def _items(*pairs):
    return [LineItemBody(productId=pid, quantity=qty) for pid, qty in pairs]


def _draft(products, **overrides) -> OrderDraft:
    values = dict(
        address="Calle Falsa 123",
        restaurant_id=1,
        products=products,
        restaurant=RESTAURANT,
        catalog={pid: CATALOG[pid] for pid in {p.productId for p in products} if pid in CATALOG},
    )
    values.update(overrides)
    return OrderDraft(**values)


def _messages(draft, rules):
    return [v.message for v in collect_violations(draft, rules)]


def test_valid_create_draft():
    assert collect_violations(_draft(_items((1, 2))), CREATE_RULES) == []


def test_blank_address():
    violations = collect_violations(_draft(_items((1, 1)), address="  "), CREATE_RULES)
    assert [v.field for v in violations] == ["address"]


def test_unknown_restaurant():
    violations = collect_violations(_draft(_items((1, 1)), restaurant=None), CREATE_RULES)
    assert [v.field for v in violations] == ["restaurantId"]


def test_empty_products():
    assert _messages(_draft([]), CREATE_RULES) == ["Order has no products"]


def test_non_positive_quantity():
    messages = _messages(_draft(_items((1, 0))), CREATE_RULES)
    assert messages == ["Each product needs a productId and a quantity greater than 0"]


def test_duplicate_products():
    messages = _messages(_draft(_items((1, 1), (1, 2))), CREATE_RULES)
    assert messages == ["A product can appear only once per order"]


def test_missing_product():
    assert _messages(_draft(_items((99, 1))), CREATE_RULES) == ["The productId does not exist: 99"]


def test_unavailable_product():
    assert _messages(_draft(_items((2, 1))), CREATE_RULES) == ["The product is not available: 2"]


def test_product_from_another_restaurant():
    assert _messages(_draft(_items((3, 1))), CREATE_RULES) == ["There are products from a different restaurant"]


def test_update_rejects_supplied_restaurant():
    draft = _draft(_items((1, 1)), restaurant=None, restaurant_id_supplied=True)
    violations = collect_violations(draft, UPDATE_RULES)
    assert [v.field for v in violations] == ["restaurantId"]


def test_update_checks_products_against_order_restaurant():
    draft = _draft(_items((1, 1), (3, 1)), restaurant=None)
    assert _messages(draft, UPDATE_RULES) == ["There are products from a different restaurant"]


def test_validate_raises_with_every_violation():
    draft = _draft(_items((2, 1), (3, 1)), address="")
    with pytest.raises(ValidationFailedError) as excinfo:
        validate(draft, CREATE_RULES)
    body = excinfo.value.to_dict()
    assert body["error"] == "Validation failed"
    assert [e["field"] for e in body["errors"]] == ["address", "products", "products"]


def test_total_above_price_column_range():
    draft = _draft(_items((1, 40_000_000)))
    assert _messages(draft, CREATE_RULES) == ["The order total cannot exceed 99999999.99"]
    assert _messages(_draft(_items((1, 33_333_333))), CREATE_RULES) == []
