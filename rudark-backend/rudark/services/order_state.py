from rudark.core.timeutils import utcnow
from rudark.models.order import Order

ORDER_STATUSES = (
    "PENDING",
    "PENDING_PAYMENT",
    "PAYMENT_FAILED",
    "PAID",
    "PROCESSING",
    "READY_FOR_COLLECTION",
    "COLLECTED",
    "SHIPPED",
    "DELIVERED",
    "COMPLETED",
    "RETURNED",
    "REFUNDED",
    "CANCELLED",
    "EXPIRED",
)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"PENDING_PAYMENT", "PAID", "PAYMENT_FAILED", "CANCELLED", "EXPIRED"},
    "PENDING_PAYMENT": {"PAID", "PAYMENT_FAILED", "CANCELLED", "EXPIRED"},
    "PAYMENT_FAILED": {"PAID", "CANCELLED", "EXPIRED"},
    "PAID": {"PROCESSING", "READY_FOR_COLLECTION", "SHIPPED", "CANCELLED", "REFUNDED"},
    "PROCESSING": {"SHIPPED", "READY_FOR_COLLECTION", "CANCELLED", "REFUNDED"},
    "READY_FOR_COLLECTION": {"COLLECTED", "CANCELLED", "REFUNDED"},
    "SHIPPED": {"DELIVERED", "RETURNED", "REFUNDED"},
    "DELIVERED": {"COMPLETED", "RETURNED", "REFUNDED"},
    "COLLECTED": {"COMPLETED", "REFUNDED"},
    "COMPLETED": {"REFUNDED"},
    "RETURNED": {"REFUNDED"},
    "REFUNDED": set(),
    "CANCELLED": set(),
    "EXPIRED": set(),
}

TERMINAL_STATUSES = {status for status, targets in ALLOWED_TRANSITIONS.items() if not targets}
UNPAID_STATUSES = {"PENDING", "PENDING_PAYMENT", "PAYMENT_FAILED"}
# A captured gateway payment can still land after cleanup expired the order
# or an admin cancelled it before it was paid.
LATE_PAYMENT_STATUSES = {"EXPIRED", "CANCELLED"}
SETTLED_PAYMENT_STATUSES = {"paid", "refunded", "partially_refunded"}

_TIMESTAMP_FIELDS = {
    "PAID": "paid_at",
    "SHIPPED": "shipped_at",
    "DELIVERED": "delivered_at",
    "COLLECTED": "collected_at",
    "CANCELLED": "cancelled_at",
    "RETURNED": "returned_at",
    "REFUNDED": "refunded_at",
    "EXPIRED": "expired_at",
}


class OrderStateError(ValueError):
    pass


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def accepts_late_payment(order: Order) -> bool:
    return order.status in LATE_PAYMENT_STATUSES and order.payment_status not in SETTLED_PAYMENT_STATUSES


def transition_order(
    order: Order,
    target: str,
    *,
    reason: str | None = None,
    late_payment: bool = False,
) -> None:
    """late_payment lets a gateway-confirmed payment revive an expired or unpaid cancelled order."""
    late = late_payment and target == "PAID" and accepts_late_payment(order)
    if not late and not can_transition(order.status, target):
        raise OrderStateError(f"Cannot change order status from {order.status} to {target}")
    order.status = target
    if reason:
        order.status_reason = reason[:255]
    stamp_field = _TIMESTAMP_FIELDS.get(target)
    if stamp_field and getattr(order, stamp_field) is None:
        setattr(order, stamp_field, utcnow())
