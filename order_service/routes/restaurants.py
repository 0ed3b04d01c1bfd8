from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from order_service.analytics import current_window
from order_service.auth import Principal, check_restaurant_owner, require_owner
from order_service.config import settings
from order_service.filters import build_filters
from order_service.schemas import in_id_range, serialize_analytics, serialize_order
from order_service.store import OrderStore, get_store

router = APIRouter(prefix="/restaurants", tags=["restaurants"])


async def _fetch_restaurant(store: OrderStore, restaurant_id: int) -> dict | None:
    return await store.fetch_restaurant(restaurant_id) if in_id_range(restaurant_id) else None


@router.get("/{restaurant_id}/orders")
async def index_restaurant(
    restaurant_id: int,
    status: str | None = Query(default=None, description="pending, in process, sent or delivered"),
    date_from: str | None = Query(default=None, alias="from", description="YYYY-MM-DD, inclusive"),
    date_to: str | None = Query(default=None, alias="to", description="YYYY-MM-DD, inclusive of the whole day"),
    user: Principal = Depends(require_owner),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    check_restaurant_owner(await _fetch_restaurant(store, restaurant_id), restaurant_id, user)
    filters = build_filters(status, date_from, date_to, settings.timezone)
    orders = await store.list_restaurant_orders(restaurant_id, filters)
    return JSONResponse(status_code=200, content=[serialize_order(o) for o in orders])


@router.get("/{restaurant_id}/analytics")
async def restaurant_analytics(
    restaurant_id: int,
    user: Principal = Depends(require_owner),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    """
    Counts as of now: orders created yesterday, pending orders, orders delivered today,
    and the summed price of orders created today.
    """
    check_restaurant_owner(await _fetch_restaurant(store, restaurant_id), restaurant_id, user)
    stats = await store.restaurant_analytics(restaurant_id, current_window(settings.timezone))
    return JSONResponse(status_code=200, content=serialize_analytics(stats))
