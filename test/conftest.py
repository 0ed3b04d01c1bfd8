"""
Shared fixtures: an in-memory OrderStore honouring the same contract as the
asyncpg store, seeded with two customers, two owners and their restaurants.
"""
import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from order_service.errors import InvalidStateError, NotFoundError
from order_service.main import app
from order_service.order_state import TRANSITIONS, derive_status, is_pending, rejection_reason
from order_service.pricing import quote_order
from order_service.store import get_store

CUSTOMER_TOKEN = "customer-token"
OTHER_CUSTOMER_TOKEN = "other-customer-token"
OWNER_TOKEN = "owner-token"
OTHER_OWNER_TOKEN = "other-owner-token"
EXPIRED_TOKEN = "expired-token"


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class InMemoryOrderStore:
    def __init__(self, free_shipping_threshold: Decimal = Decimal("10.00")):
        self.free_shipping_threshold = free_shipping_threshold
        self.users: dict[int, dict] = {}
        self.restaurants: dict[int, dict] = {}
        self.products: dict[int, dict] = {}
        self.orders: dict[int, dict] = {}
        self.lines: dict[int, dict[int, tuple[int, Decimal]]] = {}  # order id -> product id -> (qty, unity price)
        self._next_order_id = 1

    # -- seeding -------------------------------------------------------------

    def add_user(self, user_id, user_type, token, token_expiration=None):
        self.users[user_id] = {
            "id": user_id,
            "first_name": f"user{user_id}",
            "last_name": None,
            "email": f"user{user_id}@example.com",
            "user_type": user_type,
            "token": token,
            "token_expiration": token_expiration,
        }

    def add_restaurant(self, restaurant_id, user_id, shipping_costs):
        self.restaurants[restaurant_id] = {
            "id": restaurant_id,
            "name": f"Restaurant {restaurant_id}",
            "address": f"{restaurant_id} Main Street",
            "shipping_costs": Decimal(shipping_costs),
            "user_id": user_id,
        }

    def add_product(self, product_id, restaurant_id, price, availability=True):
        self.products[product_id] = {
            "id": product_id,
            "name": f"Product {product_id}",
            "description": None,
            "price": Decimal(price),
            "availability": availability,
            "restaurant_id": restaurant_id,
        }

    def seed_order(self, user_id, restaurant_id, created_at, items=((1, 1),), price="10.00",
                   started_at=None, sent_at=None, delivered_at=None) -> int:
        order_id = self._next_order_id
        self._next_order_id += 1
        self.orders[order_id] = {
            "id": order_id,
            "address": "Seeded address",
            "price": Decimal(price),
            "shipping_costs": Decimal("0.00"),
            "created_at": created_at,
            "started_at": started_at,
            "sent_at": sent_at,
            "delivered_at": delivered_at,
            "user_id": user_id,
            "restaurant_id": restaurant_id,
        }
        self.lines[order_id] = {pid: (qty, self.products[pid]["price"]) for pid, qty in items}
        return order_id

    # -- OrderStore contract -------------------------------------------------

    async def fetch_user_by_token(self, token):
        for user in self.users.values():
            if user["token"] == token:
                return dict(user)
        return None

    async def fetch_restaurant(self, restaurant_id):
        restaurant = self.restaurants.get(restaurant_id)
        return dict(restaurant) if restaurant else None

    async def fetch_products(self, product_ids):
        return {pid: dict(self.products[pid]) for pid in product_ids if pid in self.products}

    def _materialize(self, order_id, with_restaurant=False):
        order = dict(self.orders[order_id])
        restaurant = self.restaurants.get(order["restaurant_id"])
        order["restaurant_user_id"] = restaurant["user_id"] if restaurant else None
        if with_restaurant and restaurant:
            order["restaurant"] = dict(restaurant)
        order["products"] = [
            {**self.products[pid], "quantity": qty, "unity_price": unity_price}
            for pid, (qty, unity_price) in sorted(self.lines.get(order_id, {}).items())
        ]
        return order

    async def fetch_order(self, order_id):
        if order_id not in self.orders:
            return None
        return self._materialize(order_id)

    def _matches(self, order, filters):
        if filters.status and derive_status(order) != filters.status:
            return False
        if filters.created_from is not None and order["created_at"] < filters.created_from:
            return False
        if filters.created_before is not None and order["created_at"] >= filters.created_before:
            return False
        return True

    def _list(self, key, value, filters, with_restaurant):
        matching = [o for o in self.orders.values() if o[key] == value and self._matches(o, filters)]
        matching.sort(key=lambda o: (o["created_at"], o["id"]), reverse=True)
        return [self._materialize(o["id"], with_restaurant=with_restaurant) for o in matching]

    async def list_restaurant_orders(self, restaurant_id, filters):
        return self._list("restaurant_id", restaurant_id, filters, with_restaurant=False)

    async def list_customer_orders(self, user_id, filters):
        return self._list("user_id", user_id, filters, with_restaurant=True)

    def _quote(self, restaurant_id, items):
        restaurant = self.restaurants.get(restaurant_id)
        if restaurant is None:
            raise NotFoundError(f"Restaurant {restaurant_id} not found")
        for pid, _ in items:
            product = self.products.get(pid)
            if product is None or product["restaurant_id"] != restaurant_id:
                raise NotFoundError(f"Product {pid} not found in restaurant {restaurant_id}")
        quote = quote_order(
            ((qty, self.products[pid]["price"]) for pid, qty in items),
            restaurant["shipping_costs"],
            self.free_shipping_threshold,
        )
        return quote, {pid: (qty, self.products[pid]["price"]) for pid, qty in items}

    async def create_order(self, user_id, restaurant_id, address, items):
        quote, lines = self._quote(restaurant_id, items)
        order_id = self._next_order_id
        self._next_order_id += 1
        self.orders[order_id] = {
            "id": order_id,
            "address": address,
            "price": quote.price,
            "shipping_costs": quote.shipping_costs,
            "created_at": datetime.now(timezone.utc),
            "started_at": None,
            "sent_at": None,
            "delivered_at": None,
            "user_id": user_id,
            "restaurant_id": restaurant_id,
        }
        self.lines[order_id] = lines
        return self._materialize(order_id)

    async def update_order(self, order_id, address, items):
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not is_pending(order):
            raise InvalidStateError("The order cannot be modified because it is not pending", derive_status(order))
        quote, lines = self._quote(order["restaurant_id"], items)
        order.update(address=address, price=quote.price, shipping_costs=quote.shipping_costs)
        self.lines[order_id] = lines
        return self._materialize(order_id)

    async def delete_order(self, order_id):
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if not is_pending(order):
            raise InvalidStateError("The order cannot be deleted because it is not pending", derive_status(order))
        del self.orders[order_id]
        self.lines.pop(order_id, None)

    async def apply_transition(self, order_id, transition_name):
        transition = TRANSITIONS[transition_name]
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        reason = rejection_reason(transition, order)
        if reason is not None:
            raise InvalidStateError(reason, current_status=derive_status(order))
        order[transition.column] = datetime.now(timezone.utc)
        return self._materialize(order_id)

    async def restaurant_analytics(self, restaurant_id, window):
        orders = [o for o in self.orders.values() if o["restaurant_id"] == restaurant_id]
        return {
            "restaurant_id": restaurant_id,
            "num_yesterday_orders": sum(
                1 for o in orders if window.yesterday_start <= o["created_at"] < window.today_start
            ),
            "num_pending_orders": sum(1 for o in orders if o["started_at"] is None),
            "num_delivered_today_orders": sum(
                1 for o in orders if o["delivered_at"] is not None and o["delivered_at"] >= window.today_start
            ),
            "invoiced_today": sum(
                (o["price"] for o in orders if o["created_at"] >= window.today_start), Decimal("0")
            ),
        }

    def snapshot(self):
        return copy.deepcopy((self.orders, self.lines))


@pytest.fixture
def store() -> InMemoryOrderStore:
    s = InMemoryOrderStore()
    s.add_user(1, "customer", CUSTOMER_TOKEN)
    s.add_user(2, "customer", OTHER_CUSTOMER_TOKEN)
    s.add_user(3, "customer", EXPIRED_TOKEN, token_expiration=datetime.now(timezone.utc) - timedelta(hours=1))
    s.add_user(10, "owner", OWNER_TOKEN)
    s.add_user(11, "owner", OTHER_OWNER_TOKEN)
    s.add_restaurant(1, user_id=10, shipping_costs="2.50")
    s.add_restaurant(2, user_id=11, shipping_costs="1.00")
    s.add_product(1, restaurant_id=1, price="3.00")
    s.add_product(2, restaurant_id=1, price="5.00")
    s.add_product(3, restaurant_id=1, price="2.00")
    s.add_product(4, restaurant_id=1, price="4.00", availability=False)
    s.add_product(5, restaurant_id=2, price="6.00")
    return s


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def create_order(client):
    """POST /orders as the default customer at restaurant 1; returns the JSON body."""
    def _create(products=None, token=CUSTOMER_TOKEN, address="Calle Falsa 123"):
        response = client.post(
            "/orders",
            json={
                "address": address,
                "restaurantId": 1,
                "products": products or [{"productId": 1, "quantity": 2}, {"productId": 2, "quantity": 1}],
            },
            headers=auth(token),
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _create
