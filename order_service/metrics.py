"""
Prometheus metrics: order writes, lifecycle transitions (applied and rejected), validation failures.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
)
orders_updated_total = Counter(
    "orders_updated_total",
    "Total pending orders updated by their customer",
)
orders_deleted_total = Counter(
    "orders_deleted_total",
    "Total pending orders deleted by their customer",
)

# Lifecycle: confirm / send / deliver
order_transitions_total = Counter(
    "order_transitions_total",
    "Total lifecycle transitions applied",
    ["transition"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total lifecycle transitions rejected by their guard",
    ["transition", "current_status"],
)

order_validation_failures_total = Counter(
    "order_validation_failures_total",
    "Total order requests rejected by field validation",
    ["operation"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
