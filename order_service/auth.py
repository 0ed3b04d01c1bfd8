"""
Bearer-token authentication and the ownership checks used by the order routes.
"""
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, Header

from order_service.errors import ForbiddenError, NotFoundError, UnauthorizedError
from order_service.store import OrderStore, get_store

CUSTOMER = "customer"
OWNER = "owner"


@dataclass(frozen=True)
class Principal:
    id: int
    user_type: str
    email: str | None = None


async def get_current_user(
    authorization: str | None = Header(default=None),
    store: OrderStore = Depends(get_store),
) -> Principal:
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Expected a bearer token")

    user = await store.fetch_user_by_token(token.strip())
    if user is None:
        raise UnauthorizedError("Invalid token")
    expiration = user.get("token_expiration")
    if expiration is not None and expiration <= datetime.now(timezone.utc):
        raise UnauthorizedError("Token expired")
    return Principal(id=user["id"], user_type=user["user_type"], email=user.get("email"))


def require_role(role: str):
    async def dependency(user: Principal = Depends(get_current_user)) -> Principal:
        if user.user_type != role:
            raise ForbiddenError(f"Only users with the {role} role can do this")
        return user

    return dependency


require_customer = require_role(CUSTOMER)
require_owner = require_role(OWNER)


def check_order_customer(order: dict, user: Principal) -> None:
    if order["user_id"] != user.id:
        raise ForbiddenError("Not enough privileges. This entity does not belong to you")


def check_order_restaurant_owner(order: dict, user: Principal) -> None:
    # restaurant_user_id is None when the order's restaurant no longer exists
    if order.get("restaurant_user_id") is None:
        raise NotFoundError("Restaurant not found")
    if order["restaurant_user_id"] != user.id:
        raise ForbiddenError("Not enough privileges. This entity does not belong to you")


def check_order_visible(order: dict, user: Principal) -> None:
    """Owners see their restaurant's orders, customers see their own."""
    if user.user_type == OWNER:
        check_order_restaurant_owner(order, user)
    elif user.user_type == CUSTOMER:
        check_order_customer(order, user)
    else:
        raise ForbiddenError("Not enough privileges")


def check_restaurant_owner(restaurant: dict | None, restaurant_id: int, user: Principal) -> dict:
    if restaurant is None:
        raise NotFoundError(f"Restaurant {restaurant_id} not found")
    if restaurant["user_id"] != user.id:
        raise ForbiddenError("Not enough privileges. This entity does not belong to you")
    return restaurant
