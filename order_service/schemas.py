"""
Request bodies and JSON serialization of store rows. The API speaks camelCase;
the store speaks the column names.
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from order_service.order_state import derive_status

# ids, quantities and foreign keys are INT columns
MAX_DB_INT = 2_147_483_647


def in_id_range(value: int) -> bool:
    return 0 < value <= MAX_DB_INT


class LineItemBody(BaseModel):
    productId: int = Field(..., le=MAX_DB_INT, description="Product to order")
    quantity: int = Field(..., le=MAX_DB_INT, description="Units of the product, greater than zero")


class CreateOrderBody(BaseModel):
    address: str = Field(..., description="Delivery address")
    restaurantId: int = Field(..., le=MAX_DB_INT, description="Restaurant the order is placed with")
    products: list[LineItemBody] = Field(..., description="Line items, at least one")


class UpdateOrderBody(BaseModel):
    address: str = Field(..., description="New delivery address")
    # accepted only to be rejected: the restaurant of an order is immutable
    restaurantId: int | None = Field(default=None, description="Must not be supplied")
    products: list[LineItemBody] = Field(..., description="Replacement line items, at least one")


def _money(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_product(item: dict) -> dict:
    return {
        "id": item["id"],
        "name": item["name"],
        "description": item.get("description"),
        "price": _money(item["price"]),
        "availability": item["availability"],
        "restaurantId": item["restaurant_id"],
        "OrderProducts": {
            "quantity": item["quantity"],
            "unityPrice": _money(item["unity_price"]),
        },
    }


def serialize_order(order: dict) -> dict:
    body = {
        "id": order["id"],
        "address": order["address"],
        "price": _money(order["price"]),
        "shippingCosts": _money(order["shipping_costs"]),
        "createdAt": _timestamp(order["created_at"]),
        "startedAt": _timestamp(order["started_at"]),
        "sentAt": _timestamp(order["sent_at"]),
        "deliveredAt": _timestamp(order["delivered_at"]),
        "status": derive_status(order),
        "userId": order["user_id"],
        "restaurantId": order["restaurant_id"],
        "products": [serialize_product(item) for item in order.get("products", [])],
    }
    restaurant = order.get("restaurant")
    if restaurant is not None:
        body["restaurant"] = {
            "id": restaurant["id"],
            "name": restaurant["name"],
            "address": restaurant["address"],
            "shippingCosts": _money(restaurant["shipping_costs"]),
            "userId": restaurant["user_id"],
        }
    return body


def serialize_analytics(stats: dict) -> dict:
    return {
        "restaurantId": stats["restaurant_id"],
        "numYesterdayOrders": stats["num_yesterday_orders"],
        "numPendingOrders": stats["num_pending_orders"],
        "numDeliveredTodayOrders": stats["num_delivered_today_orders"],
        "invoicedToday": _money(stats["invoiced_today"]),
    }
