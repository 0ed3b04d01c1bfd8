import logging

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from order_service.auth import (
    Principal,
    check_order_customer,
    check_order_restaurant_owner,
    check_order_visible,
    get_current_user,
    require_customer,
    require_owner,
)
from order_service.config import settings
from order_service.errors import InvalidStateError, NotFoundError, ValidationFailedError
from order_service.filters import build_filters
from order_service.metrics import (
    order_transitions_rejected_total,
    order_transitions_total,
    order_validation_failures_total,
    orders_created_total,
    orders_deleted_total,
    orders_updated_total,
)
from order_service.order_state import derive_status, is_pending
from order_service.redis_client import (
    PENDING_MARKER,
    claim_idempotency_key,
    order_idempotency_key,
    release_idempotency_key,
    remember_order,
)
from order_service.schemas import CreateOrderBody, LineItemBody, UpdateOrderBody, in_id_range, serialize_order
from order_service.store import OrderStore, get_store
from order_service.validation import CREATE_RULES, UPDATE_RULES, OrderDraft, validate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


async def _load_order(store: OrderStore, order_id: int) -> dict:
    order = await store.fetch_order(order_id) if in_id_range(order_id) else None
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _line_items(products: list[LineItemBody]) -> list[tuple[int, int]]:
    return [(item.productId, item.quantity) for item in products]


async def _fetch_catalog(store: OrderStore, products: list[LineItemBody]) -> dict[int, dict]:
    # ids outside the column range cannot exist; the rules report them
    return await store.fetch_products(sorted({item.productId for item in products if in_id_range(item.productId)}))


def _validate(draft: OrderDraft, rules, operation: str) -> None:
    try:
        validate(draft, rules)
    except ValidationFailedError:
        order_validation_failures_total.labels(operation=operation).inc()
        raise


@router.get("")
async def index_customer(
    status: str | None = Query(default=None),
    date_from: str | None = Query(default=None, alias="from"),
    date_to: str | None = Query(default=None, alias="to"),
    user: Principal = Depends(require_customer),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    """Orders of the logged-in customer, newest first, with products and restaurant."""
    filters = build_filters(status, date_from, date_to, settings.timezone)
    orders = await store.list_customer_orders(user.id, filters)
    return JSONResponse(status_code=200, content=[serialize_order(o) for o in orders])


async def _create(body: CreateOrderBody, user: Principal, store: OrderStore) -> dict:
    restaurant = await store.fetch_restaurant(body.restaurantId) if in_id_range(body.restaurantId) else None
    catalog = await _fetch_catalog(store, body.products)
    draft = OrderDraft(
        address=body.address,
        restaurant_id=body.restaurantId,
        products=body.products,
        restaurant=restaurant,
        catalog=catalog,
    )
    _validate(draft, CREATE_RULES, "create")
    order = await store.create_order(user.id, body.restaurantId, body.address.strip(), _line_items(body.products))
    orders_created_total.inc()
    return order


@router.post("")
async def create_order(
    body: CreateOrderBody,
    idempotency_key: str | None = Header(default=None),
    user: Principal = Depends(require_customer),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    """
    Place an order. With an Idempotency-Key header, a repeated request returns the
    order created by the first one instead of creating another.
    """
    if not idempotency_key:
        order = await _create(body, user, store)
        return JSONResponse(status_code=200, content=serialize_order(order))

    key = order_idempotency_key(user.id, idempotency_key)
    previous = await claim_idempotency_key(key)
    if previous == PENDING_MARKER:
        raise InvalidStateError("A request with this Idempotency-Key is still being processed")
    if previous is not None:
        order = await store.fetch_order(int(previous))
        if order is None:
            raise NotFoundError("The order created with this Idempotency-Key no longer exists")
        logger.info("Idempotency-Key replay for user=%s returned order id=%s", user.id, order["id"])
        return JSONResponse(status_code=200, content=serialize_order(order))

    try:
        order = await _create(body, user, store)
    except Exception:
        await release_idempotency_key(key)
        raise
    try:
        await remember_order(key, order["id"])
    except Exception:
        # the order is committed; the pending claim expires on its own
        logger.exception("Could not record order id=%s for Idempotency-Key %s", order["id"], key)
    return JSONResponse(status_code=200, content=serialize_order(order))


@router.get("/{order_id}")
async def show_order(
    order_id: int,
    user: Principal = Depends(get_current_user),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    order = await _load_order(store, order_id)
    check_order_visible(order, user)
    return JSONResponse(status_code=200, content=serialize_order(order))


@router.put("/{order_id}")
async def update_order(
    order_id: int,
    body: UpdateOrderBody,
    user: Principal = Depends(require_customer),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    """Replace address and line items of a pending order; the restaurant stays the same."""
    order = await _load_order(store, order_id)
    check_order_customer(order, user)
    if not is_pending(order):
        raise InvalidStateError(
            "The order cannot be modified because it is not pending",
            current_status=derive_status(order),
        )

    catalog = await _fetch_catalog(store, body.products)
    draft = OrderDraft(
        address=body.address,
        restaurant_id=order["restaurant_id"],
        products=body.products,
        catalog=catalog,
        restaurant_id_supplied=body.restaurantId is not None,
    )
    _validate(draft, UPDATE_RULES, "update")
    updated = await store.update_order(order_id, body.address.strip(), _line_items(body.products))
    orders_updated_total.inc()
    return JSONResponse(status_code=200, content=serialize_order(updated))


@router.delete("/{order_id}")
async def delete_order(
    order_id: int,
    user: Principal = Depends(require_customer),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    order = await _load_order(store, order_id)
    check_order_customer(order, user)
    if not is_pending(order):
        raise InvalidStateError(
            "The order cannot be deleted because it is not pending",
            current_status=derive_status(order),
        )
    await store.delete_order(order_id)
    orders_deleted_total.inc()
    return JSONResponse(
        status_code=200,
        content={"status": "deleted", "orderId": order_id},
    )


async def _transition(order_id: int, transition: str, user: Principal, store: OrderStore) -> JSONResponse:
    order = await _load_order(store, order_id)
    check_order_restaurant_owner(order, user)
    try:
        updated = await store.apply_transition(order_id, transition)
    except InvalidStateError as e:
        order_transitions_rejected_total.labels(
            transition=transition,
            current_status=e.current_status or "unknown",
        ).inc()
        logger.warning("Rejected %s on order id=%s (status=%s): %s", transition, order_id, e.current_status, e.message)
        raise
    order_transitions_total.labels(transition=transition).inc()
    logger.info("Applied %s on order id=%s by owner=%s", transition, order_id, user.id)
    return JSONResponse(status_code=200, content=serialize_order(updated))


@router.patch("/{order_id}/confirm")
async def confirm_order(
    order_id: int,
    user: Principal = Depends(require_owner),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    return await _transition(order_id, "confirm", user, store)


@router.patch("/{order_id}/send")
async def send_order(
    order_id: int,
    user: Principal = Depends(require_owner),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    return await _transition(order_id, "send", user, store)


@router.patch("/{order_id}/deliver")
async def deliver_order(
    order_id: int,
    user: Principal = Depends(require_owner),
    store: OrderStore = Depends(get_store),
) -> JSONResponse:
    return await _transition(order_id, "deliver", user, store)
