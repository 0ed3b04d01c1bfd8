"""
Idempotency-Key claims for order creation. A key holds "pending" while its first
request runs, then the id of the order it created.
"""
import redis.asyncio as redis

from order_service.config import settings

_redis: redis.Redis | None = None

PENDING_MARKER = "pending"


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def order_idempotency_key(user_id: int, client_key: str) -> str:
    return f"idempotency:orders:{user_id}:{client_key}"


async def claim_idempotency_key(key: str, ttl_seconds: int | None = None) -> str | None:
    """
    Returns None if this request claimed the key (caller should proceed).
    Otherwise returns the stored value: PENDING_MARKER or the created order id.
    Uses SET NX: if we set it, we're first. The claim is short-lived so a request
    that dies before recording its order does not block retries for long.
    """
    r = await get_redis()
    was_set = await r.set(key, PENDING_MARKER, nx=True, ex=ttl_seconds or settings.idempotency_pending_ttl_seconds)
    if was_set:
        return None
    return await r.get(key) or PENDING_MARKER


async def remember_order(key: str, order_id: int, ttl_seconds: int | None = None) -> None:
    r = await get_redis()
    await r.set(key, str(order_id), ex=ttl_seconds or settings.idempotency_ttl_seconds)


async def release_idempotency_key(key: str) -> None:
    """Drop a claim whose request failed, so the client can retry with the same key."""
    r = await get_redis()
    await r.delete(key)
