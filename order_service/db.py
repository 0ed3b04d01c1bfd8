"""
Async Postgres pool and schema: users, restaurants, products, orders, order_products.
Order status is derived from the lifecycle timestamps; the check constraints keep
them ordered (sent requires started, delivered requires sent).
"""
import logging

import asyncpg

from order_service.config import settings

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
        logger.info("Database pool open (min=%d, max=%d)", settings.db_pool_min_size, settings.db_pool_max_size)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        first_name VARCHAR(255) NOT NULL,
        last_name VARCHAR(255),
        email VARCHAR(255) NOT NULL UNIQUE,
        user_type VARCHAR(20) NOT NULL CHECK (user_type IN ('customer', 'owner')),
        token VARCHAR(255) UNIQUE,
        token_expiration TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS restaurants (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        description TEXT,
        address VARCHAR(255) NOT NULL,
        shipping_costs NUMERIC(10, 2) NOT NULL DEFAULT 0 CHECK (shipping_costs >= 0),
        user_id INT NOT NULL REFERENCES users(id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        description TEXT,
        price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
        availability BOOLEAN NOT NULL DEFAULT TRUE,
        restaurant_id INT NOT NULL REFERENCES restaurants(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id SERIAL PRIMARY KEY,
        address VARCHAR(255) NOT NULL,
        price NUMERIC(10, 2) NOT NULL,
        shipping_costs NUMERIC(10, 2) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at TIMESTAMPTZ,
        sent_at TIMESTAMPTZ,
        delivered_at TIMESTAMPTZ,
        user_id INT NOT NULL REFERENCES users(id),
        restaurant_id INT NOT NULL REFERENCES restaurants(id) ON DELETE CASCADE,
        CONSTRAINT orders_sent_after_started CHECK (sent_at IS NULL OR started_at IS NOT NULL),
        CONSTRAINT orders_delivered_after_sent CHECK (delivered_at IS NULL OR sent_at IS NOT NULL)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS order_products (
        order_id INT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
        product_id INT NOT NULL REFERENCES products(id),
        quantity INT NOT NULL CHECK (quantity > 0),
        unity_price NUMERIC(10, 2) NOT NULL,
        PRIMARY KEY (order_id, product_id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_restaurant_id ON orders(restaurant_id);",
    "CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at);",
)


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info("Schema ready")
