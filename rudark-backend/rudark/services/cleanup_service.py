from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from rudark.core.observability import log_event
from rudark.core.timeutils import utcnow
from rudark.models.order import Order
from rudark.services.order_state import transition_order
from rudark.services.stock_validation import release_reserved_stock

STALE_STATUSES = ("PENDING", "PENDING_PAYMENT", "PAYMENT_FAILED")


@dataclass(frozen=True)
class CleanupSummary:
    processed: int
    released_items: int


def _expire(db: Session, orders: list[Order], target: str, reason: str) -> CleanupSummary:
    released = 0
    for order in orders:
        if order.stock_reserved and not order.stock_deducted:
            release_reserved_stock(db, order.items)
            order.stock_reserved = False
            released += sum(item.quantity for item in order.items)
        transition_order(order, target, reason=reason)
    return CleanupSummary(processed=len(orders), released_items=released)


def cleanup_expired_reservations(db: Session, *, minutes: int) -> CleanupSummary:
    """PENDING orders older than the cutoff expire and give their stock back. Caller commits."""
    cutoff = utcnow() - timedelta(minutes=minutes)
    orders = db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.status == "PENDING", Order.created_at < cutoff)
    ).scalars().all()
    summary = _expire(db, list(orders), "EXPIRED", f"Reservation expired after {minutes} minutes")
    log_event("reservations_expired", processed=summary.processed, released_items=summary.released_items)
    return summary


def check_expired_reservations(db: Session, *, minutes: int) -> int:
    cutoff = utcnow() - timedelta(minutes=minutes)
    return int(
        db.execute(
            select(func.count(Order.id)).where(Order.status == "PENDING", Order.created_at < cutoff)
        ).scalar_one()
    )


def cleanup_stale_orders(db: Session, *, days: int) -> CleanupSummary:
    """Unpaid orders older than the cutoff are cancelled, never deleted. Caller commits."""
    cutoff = utcnow() - timedelta(days=days)
    orders = db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.status.in_(STALE_STATUSES), Order.created_at < cutoff)
    ).scalars().all()
    summary = _expire(db, list(orders), "CANCELLED", f"Unpaid for more than {days} days")
    log_event("stale_orders_cancelled", processed=summary.processed, released_items=summary.released_items)
    return summary
