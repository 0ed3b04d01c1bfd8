"""
OrderStore: the persistence boundary of the order lifecycle.

Create and update run in a single transaction each: restaurant and product prices
are read (products locked FOR SHARE), the price is computed, then the order header
and its line items are written. Any exception inside `conn.transaction()` rolls
the whole sequence back.
Transitions and deletion are single conditional statements, so two concurrent
requests on the same order cannot both succeed.
"""
import logging
from decimal import Decimal
from typing import Sequence

import asyncpg

from order_service.analytics import AnalyticsWindow
from order_service.config import settings
from order_service.db import get_pool
from order_service.errors import InvalidStateError, NotFoundError
from order_service.filters import OrderFilters, filter_clauses
from order_service.order_state import TRANSITIONS, derive_status, guard_sql, is_pending, rejection_reason
from order_service.pricing import PriceQuote, quote_order

logger = logging.getLogger(__name__)

# (product_id, quantity)
LineItem = tuple[int, int]

ORDER_COLUMNS = """
    o.id, o.address, o.price, o.shipping_costs, o.created_at, o.started_at,
    o.sent_at, o.delivered_at, o.user_id, o.restaurant_id
"""

RESTAURANT_COLUMNS = """
    r.name AS restaurant_name, r.address AS restaurant_address,
    r.shipping_costs AS restaurant_shipping_costs, r.user_id AS restaurant_user_id
"""


def _order_from_row(row: asyncpg.Record, with_restaurant: bool = False) -> dict:
    order = {
        key: row[key]
        for key in (
            "id", "address", "price", "shipping_costs", "created_at", "started_at",
            "sent_at", "delivered_at", "user_id", "restaurant_id",
        )
    }
    order["restaurant_user_id"] = row["restaurant_user_id"]
    if with_restaurant and row["restaurant_name"] is not None:
        order["restaurant"] = {
            "id": row["restaurant_id"],
            "name": row["restaurant_name"],
            "address": row["restaurant_address"],
            "shipping_costs": row["restaurant_shipping_costs"],
            "user_id": row["restaurant_user_id"],
        }
    order["products"] = []
    return order


class OrderStore:
    def __init__(self, pool: asyncpg.Pool, free_shipping_threshold: Decimal | None = None):
        self.pool = pool
        self.free_shipping_threshold = (
            free_shipping_threshold if free_shipping_threshold is not None else settings.free_shipping_threshold
        )

    # -- lookups -----------------------------------------------------------

    async def fetch_user_by_token(self, token: str) -> dict | None:
        row = await self.pool.fetchrow(
            """
            SELECT id, first_name, last_name, email, user_type, token_expiration
            FROM users WHERE token = $1;
            """,
            token,
        )
        return dict(row) if row else None

    async def fetch_restaurant(self, restaurant_id: int) -> dict | None:
        row = await self.pool.fetchrow(
            "SELECT id, name, address, shipping_costs, user_id FROM restaurants WHERE id = $1;",
            restaurant_id,
        )
        return dict(row) if row else None

    async def fetch_products(self, product_ids: Sequence[int]) -> dict[int, dict]:
        """Products keyed by id; ids that do not exist are simply absent."""
        if not product_ids:
            return {}
        rows = await self.pool.fetch(
            """
            SELECT id, name, description, price, availability, restaurant_id
            FROM products WHERE id = ANY($1::int[]);
            """,
            list(product_ids),
        )
        return {row["id"]: dict(row) for row in rows}

    async def fetch_order(self, order_id: int) -> dict | None:
        async with self.pool.acquire() as conn:
            return await self._fetch_order(conn, order_id)

    async def _fetch_order(self, conn: asyncpg.Connection, order_id: int) -> dict | None:
        row = await conn.fetchrow(
            f"""
            SELECT {ORDER_COLUMNS}, {RESTAURANT_COLUMNS}
            FROM orders o LEFT JOIN restaurants r ON r.id = o.restaurant_id
            WHERE o.id = $1;
            """,
            order_id,
        )
        if row is None:
            return None
        order = _order_from_row(row)
        await self._attach_products(conn, [order])
        return order

    async def _attach_products(self, conn: asyncpg.Connection, orders: list[dict]) -> None:
        if not orders:
            return
        by_id = {order["id"]: order for order in orders}
        rows = await conn.fetch(
            """
            SELECT op.order_id, op.quantity, op.unity_price,
                   p.id, p.name, p.description, p.price, p.availability, p.restaurant_id
            FROM order_products op JOIN products p ON p.id = op.product_id
            WHERE op.order_id = ANY($1::int[])
            ORDER BY op.order_id, p.id;
            """,
            list(by_id),
        )
        for row in rows:
            item = dict(row)
            by_id[item.pop("order_id")]["products"].append(item)

    # -- listing -----------------------------------------------------------

    async def _list_orders(self, owner_clause: str, owner_id: int, filters: OrderFilters, with_restaurant: bool) -> list[dict]:
        params: list = [owner_id]
        clauses = [owner_clause] + filter_clauses(filters, params)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {ORDER_COLUMNS}, {RESTAURANT_COLUMNS}
                FROM orders o LEFT JOIN restaurants r ON r.id = o.restaurant_id
                WHERE {' AND '.join(clauses)}
                ORDER BY o.created_at DESC, o.id DESC;
                """,
                *params,
            )
            orders = [_order_from_row(row, with_restaurant=with_restaurant) for row in rows]
            await self._attach_products(conn, orders)
        return orders

    async def list_restaurant_orders(self, restaurant_id: int, filters: OrderFilters) -> list[dict]:
        return await self._list_orders("o.restaurant_id = $1", restaurant_id, filters, with_restaurant=False)

    async def list_customer_orders(self, user_id: int, filters: OrderFilters) -> list[dict]:
        return await self._list_orders("o.user_id = $1", user_id, filters, with_restaurant=True)

    # -- create / update / delete -----------------------------------------

    async def _quote(self, conn: asyncpg.Connection, restaurant_id: int, items: Sequence[LineItem]) -> tuple[PriceQuote, dict[int, Decimal]]:
        """Price the cart from live prices. Must run inside the caller's transaction."""
        restaurant = await conn.fetchrow(
            "SELECT id, shipping_costs FROM restaurants WHERE id = $1;",
            restaurant_id,
        )
        if restaurant is None:
            raise NotFoundError(f"Restaurant {restaurant_id} not found")

        rows = await conn.fetch(
            """
            SELECT id, price FROM products
            WHERE id = ANY($1::int[]) AND restaurant_id = $2
            FOR SHARE;
            """,
            [product_id for product_id, _ in items],
            restaurant_id,
        )
        prices = {row["id"]: row["price"] for row in rows}
        for product_id, _ in items:
            if product_id not in prices:
                raise NotFoundError(f"Product {product_id} not found in restaurant {restaurant_id}")

        quote = quote_order(
            ((quantity, prices[product_id]) for product_id, quantity in items),
            restaurant["shipping_costs"],
            self.free_shipping_threshold,
        )
        return quote, prices

    async def _insert_line_items(self, conn: asyncpg.Connection, order_id: int, items: Sequence[LineItem], prices: dict[int, Decimal]) -> None:
        await conn.executemany(
            """
            INSERT INTO order_products (order_id, product_id, quantity, unity_price)
            VALUES ($1, $2, $3, $4);
            """,
            [(order_id, product_id, quantity, prices[product_id]) for product_id, quantity in items],
        )

    async def create_order(self, user_id: int, restaurant_id: int, address: str, items: Sequence[LineItem]) -> dict:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                quote, prices = await self._quote(conn, restaurant_id, items)
                order_id = await conn.fetchval(
                    """
                    INSERT INTO orders (address, price, shipping_costs, user_id, restaurant_id, created_at)
                    VALUES ($1, $2, $3, $4, $5, NOW())
                    RETURNING id;
                    """,
                    address,
                    quote.price,
                    quote.shipping_costs,
                    user_id,
                    restaurant_id,
                )
                await self._insert_line_items(conn, order_id, items, prices)
                order = await self._fetch_order(conn, order_id)
        logger.info(
            "Created order id=%s restaurant=%s user=%s price=%s shipping=%s",
            order_id, restaurant_id, user_id, quote.price, quote.shipping_costs,
        )
        return order

    async def update_order(self, order_id: int, address: str, items: Sequence[LineItem]) -> dict:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                current = await conn.fetchrow(
                    "SELECT id, restaurant_id, started_at, sent_at, delivered_at FROM orders WHERE id = $1 FOR UPDATE;",
                    order_id,
                )
                if current is None:
                    raise NotFoundError(f"Order {order_id} not found")
                if not is_pending(current):
                    raise InvalidStateError(
                        "The order cannot be modified because it is not pending",
                        current_status=derive_status(current),
                    )

                quote, prices = await self._quote(conn, current["restaurant_id"], items)
                await conn.execute(
                    "UPDATE orders SET address = $2, price = $3, shipping_costs = $4 WHERE id = $1;",
                    order_id,
                    address,
                    quote.price,
                    quote.shipping_costs,
                )
                await conn.execute("DELETE FROM order_products WHERE order_id = $1;", order_id)
                await self._insert_line_items(conn, order_id, items, prices)
                order = await self._fetch_order(conn, order_id)
        logger.info("Updated order id=%s price=%s shipping=%s", order_id, quote.price, quote.shipping_costs)
        return order

    async def _current_state(self, conn: asyncpg.Connection, order_id: int) -> dict:
        row = await conn.fetchrow(
            "SELECT id, started_at, sent_at, delivered_at FROM orders WHERE id = $1;",
            order_id,
        )
        if row is None:
            raise NotFoundError(f"Order {order_id} not found")
        return dict(row)

    async def delete_order(self, order_id: int) -> None:
        """Deletes a pending order; its line items go with it (ON DELETE CASCADE)."""
        async with self.pool.acquire() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM orders WHERE id = $1 AND started_at IS NULL RETURNING id;",
                order_id,
            )
            if deleted is None:
                current = await self._current_state(conn, order_id)
                raise InvalidStateError(
                    "The order cannot be deleted because it is not pending",
                    current_status=derive_status(current),
                )
        logger.info("Deleted order id=%s", order_id)

    # -- lifecycle ---------------------------------------------------------

    async def apply_transition(self, order_id: int, transition_name: str) -> dict:
        """Compare-and-set one lifecycle timestamp; 404 vs 409 is decided by re-reading on a miss."""
        transition = TRANSITIONS[transition_name]
        async with self.pool.acquire() as conn:
            updated = await conn.fetchval(
                f"""
                UPDATE orders SET {transition.column} = NOW()
                WHERE id = $1 AND {guard_sql(transition)}
                RETURNING id;
                """,
                order_id,
            )
            if updated is None:
                current = await self._current_state(conn, order_id)
                reason = rejection_reason(transition, current) or f"The order cannot be {transition.to_status}"
                raise InvalidStateError(reason, current_status=derive_status(current))
            return await self._fetch_order(conn, order_id)

    # -- analytics ---------------------------------------------------------

    async def restaurant_analytics(self, restaurant_id: int, window: AnalyticsWindow) -> dict:
        async with self.pool.acquire() as conn:
            yesterday_orders = await conn.fetchval(
                """
                SELECT COUNT(*) FROM orders
                WHERE restaurant_id = $1 AND created_at >= $2 AND created_at < $3;
                """,
                restaurant_id,
                window.yesterday_start,
                window.today_start,
            )
            pending_orders = await conn.fetchval(
                "SELECT COUNT(*) FROM orders WHERE restaurant_id = $1 AND started_at IS NULL;",
                restaurant_id,
            )
            delivered_today = await conn.fetchval(
                "SELECT COUNT(*) FROM orders WHERE restaurant_id = $1 AND delivered_at >= $2;",
                restaurant_id,
                window.today_start,
            )
            invoiced_today = await conn.fetchval(
                "SELECT COALESCE(SUM(price), 0) FROM orders WHERE restaurant_id = $1 AND created_at >= $2;",
                restaurant_id,
                window.today_start,
            )
        return {
            "restaurant_id": restaurant_id,
            "num_yesterday_orders": yesterday_orders,
            "num_pending_orders": pending_orders,
            "num_delivered_today_orders": delivered_today,
            "invoiced_today": invoiced_today,
        }


async def get_store() -> OrderStore:
    """FastAPI dependency: store bound to the shared pool."""
    return OrderStore(await get_pool())
