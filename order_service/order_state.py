"""
Order lifecycle state machine. Status is derived from the lifecycle timestamps
(started_at, sent_at, delivered_at); it is never stored as its own column.
"""
from dataclasses import dataclass
from typing import Mapping

PENDING = "pending"
IN_PROCESS = "in process"
SENT = "sent"
DELIVERED = "delivered"

STATUSES = (PENDING, IN_PROCESS, SENT, DELIVERED)


def derive_status(order: Mapping) -> str:
    """Status of an order row from its timestamps."""
    if order.get("delivered_at") is not None:
        return DELIVERED
    if order.get("sent_at") is not None:
        return SENT
    if order.get("started_at") is not None:
        return IN_PROCESS
    return PENDING


def is_pending(order: Mapping) -> bool:
    return derive_status(order) == PENDING


@dataclass(frozen=True)
class Transition:
    name: str
    column: str  # timestamp set by this transition
    requires: str | None  # timestamp that must already be set
    from_status: str
    to_status: str


# transition name -> definition (pending -> in process -> sent -> delivered)
TRANSITIONS: dict[str, Transition] = {
    "confirm": Transition("confirm", "started_at", None, PENDING, IN_PROCESS),
    "send": Transition("send", "sent_at", "started_at", IN_PROCESS, SENT),
    "deliver": Transition("deliver", "delivered_at", "sent_at", SENT, DELIVERED),
}


def rejection_reason(transition: Transition, order: Mapping) -> str | None:
    """Why `transition` cannot be applied to `order`, or None when the guard holds."""
    if order.get(transition.column) is not None:
        return {
            "confirm": "The order has already been started",
            "send": "The order has already been sent",
            "deliver": "The order has already been delivered",
        }[transition.name]
    if transition.requires is not None and order.get(transition.requires) is None:
        return {
            "send": "The order has not been started yet and cannot be sent",
            "deliver": "The order has not been sent yet and cannot be delivered",
        }[transition.name]
    return None


def guard_sql(transition: Transition, alias: str = "") -> str:
    """SQL condition equivalent to rejection_reason(...) is None."""
    p = f"{alias}." if alias else ""
    cond = f"{p}{transition.column} IS NULL"
    if transition.requires is not None:
        cond = f"{p}{transition.requires} IS NOT NULL AND {cond}"
    return cond


# status filter -> SQL condition on the orders table aliased as "o"
STATUS_CONDITIONS: dict[str, str] = {
    PENDING: "o.started_at IS NULL",
    IN_PROCESS: "o.started_at IS NOT NULL AND o.sent_at IS NULL AND o.delivered_at IS NULL",
    SENT: "o.sent_at IS NOT NULL AND o.delivered_at IS NULL",
    DELIVERED: "o.delivered_at IS NOT NULL",
}
