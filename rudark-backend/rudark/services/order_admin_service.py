import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from rudark.core.money import ZERO_MONEY, to_money
from rudark.core.observability import log_event
from rudark.core.timeutils import utcnow
from rudark.models.order import Order, OrderItem, OrderRefund
from rudark.services.carrier_provider import CarrierProvider, extract_tracking, get_carrier_provider
from rudark.services.order_processing import mark_order_paid, process_successful_order
from rudark.services.order_state import OrderStateError, transition_order
from rudark.services.payment_provider import ProviderError, PurchaseStatus, get_payment_provider
from rudark.services.stock_validation import release_reserved_stock, restore_stock

STATS_WINDOW = 200
MIN_TRACKING_LENGTH = 5
REFUNDABLE_STATUSES = {
    "PAID",
    "PROCESSING",
    "READY_FOR_COLLECTION",
    "SHIPPED",
    "DELIVERED",
    "COLLECTED",
    "COMPLETED",
    "RETURNED",
}
NON_CANCELLABLE_STATUSES = {"DELIVERED", "COMPLETED", "REFUNDED"}
PLACEHOLDER_TRACKING = {"PENDING", "N/A"}


@dataclass(frozen=True)
class RefundLine:
    order_item_id: str
    quantity: int
    return_to_stock: bool = False


@dataclass(frozen=True)
class RefundableItem:
    order_item_id: str
    name: str
    variant_sku: str | None
    quantity: int
    refunded_quantity: int
    refundable_quantity: int
    unit_price: Decimal


@dataclass
class BatchSummary:
    checked: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def list_orders(
    db: Session,
    *,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    q: str | None = None,
    delivery_method: str | None = None,
    shipping_status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    filters = []
    if status:
        filters.append(Order.status == status.strip().upper())
    if start:
        filters.append(Order.created_at >= start)
    if end:
        filters.append(Order.created_at <= end)
    if delivery_method:
        filters.append(Order.delivery_method == delivery_method)
    if shipping_status:
        filters.append(Order.shipping_status == shipping_status.strip().upper())
    if q and q.strip():
        term = f"%{q.strip()}%"
        filters.append(
            or_(
                Order.id.ilike(term),
                Order.customer_phone.ilike(term),
                Order.customer_email.ilike(term),
                Order.tracking_no.ilike(term),
                Order.customer_name.ilike(term),
            )
        )

    total = int(db.execute(select(func.count(Order.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total


def order_stats(db: Session) -> dict[str, Any]:
    recent = db.execute(
        select(Order.status, Order.shipping_status, Order.total_amount)
        .order_by(Order.created_at.desc())
        .limit(STATS_WINDOW)
    ).all()
    counts = {"pending": 0, "paid": 0, "shipped": 0, "completed": 0, "cancelled": 0}
    revenue = ZERO_MONEY
    for status, shipping_status, total in recent:
        bucket = None
        if status in {"PENDING", "PENDING_PAYMENT"}:
            bucket = "pending"
        elif status == "SHIPPED" or (status == "PAID" and shipping_status == "READY_TO_SHIP"):
            bucket = "shipped"
        elif status == "PAID":
            bucket = "paid"
        elif status in {"COMPLETED", "DELIVERED"}:
            bucket = "completed"
        elif status in {"CANCELLED", "REFUNDED"}:
            bucket = "cancelled"
        if bucket:
            counts[bucket] += 1
        if bucket in {"paid", "shipped", "completed"}:
            revenue += to_money(total)
    return {"total": len(recent), **counts, "revenue": to_money(revenue)}


def _restock_remaining(db: Session, order: Order, *, reason: str, actor: str | None) -> int:
    """Units a refund already put back on the shelf are skipped."""
    restocked = _refunded_quantities(db, order.id, restocked_only=True)
    return restore_stock(
        db,
        [(item, item.quantity - restocked.get(item.id, 0)) for item in order.items],
        reason=reason,
        reference=order.id,
        created_by=actor,
    )


def _free_stock(db: Session, order: Order, *, reason: str, actor: str | None) -> None:
    if order.stock_deducted:
        _restock_remaining(db, order, reason=reason, actor=actor)
        order.stock_deducted = False
    elif order.stock_reserved:
        release_reserved_stock(db, order.items)
    order.stock_reserved = False


def mark_shipped(db: Session, order: Order, *, tracking_no: str | None = None) -> Order:
    if order.status not in {"PAID", "PROCESSING"}:
        raise OrderStateError(f"Only PAID or PROCESSING orders can be shipped (current: {order.status})")
    transition_order(order, "SHIPPED")
    order.shipping_status = "SHIPPED"
    if tracking_no and tracking_no.strip():
        order.tracking_no = tracking_no.strip()
        order.tracking_synced = True
        order.tracking_synced_at = utcnow()
    return order


def cancel_order(db: Session, order: Order, *, reason: str | None, actor: str | None) -> Order:
    if order.status in NON_CANCELLABLE_STATUSES:
        raise OrderStateError(f"Cannot cancel an order that is {order.status}")
    transition_order(order, "CANCELLED", reason=reason or "Cancelled by admin")
    _free_stock(db, order, reason=f"Order {order.id} cancelled", actor=actor)
    return order


def mark_returned(db: Session, order: Order, *, restock: bool, reason: str | None, actor: str | None) -> int:
    if order.status not in {"SHIPPED", "DELIVERED"}:
        raise OrderStateError(f"Only SHIPPED or DELIVERED orders can be returned (current: {order.status})")
    transition_order(order, "RETURNED", reason=reason)
    restocked = 0
    if restock and order.stock_deducted:
        restocked = _restock_remaining(db, order, reason=f"Order {order.id} returned", actor=actor)
        order.stock_deducted = False
    return restocked


def update_tracking(order: Order, tracking_no: str) -> Order:
    cleaned = (tracking_no or "").strip()
    if len(cleaned) < MIN_TRACKING_LENGTH:
        raise OrderStateError(f"Tracking number must be at least {MIN_TRACKING_LENGTH} characters")
    order.tracking_no = cleaned
    order.tracking_synced = True
    order.tracking_synced_at = utcnow()
    order.shipping_status = "AWAITING_PICKUP"
    order.shipping_error = None
    return order


def mark_collected(order: Order) -> Order:
    if order.delivery_method != "self_collection":
        raise OrderStateError("Order is not a self-collection order")
    transition_order(order, "COLLECTED")
    order.shipping_status = "COLLECTED"
    return order


def approve_manual_payment(db: Session, order: Order, *, actor: str | None) -> Order:
    if order.payment_gateway != "manual":
        raise OrderStateError("Order was not placed with manual payment")
    if order.status != "PENDING_PAYMENT":
        raise OrderStateError(f"Order is not awaiting payment (current: {order.status})")
    mark_order_paid(db, order, payment_data={"approved_by": actor}, reason="Manual payment approved")
    order.payment_reviewed_by = actor
    process_successful_order(db, order)
    return order


def reject_manual_payment(db: Session, order: Order, *, reason: str, actor: str | None) -> Order:
    if order.payment_gateway != "manual":
        raise OrderStateError("Order was not placed with manual payment")
    if order.status != "PENDING_PAYMENT":
        raise OrderStateError(f"Order is not awaiting payment (current: {order.status})")
    transition_order(order, "CANCELLED", reason=reason)
    order.payment_status = "rejected"
    order.payment_rejection_reason = reason[:255]
    order.payment_reviewed_by = actor
    _free_stock(db, order, reason=f"Order {order.id} payment rejected", actor=actor)
    return order


def reprocess_order(db: Session, order: Order) -> Order:
    if order.status in {"PENDING", "PENDING_PAYMENT"}:
        mark_order_paid(db, order, reason="Reprocessed by admin")
    elif order.status != "PAID":
        raise OrderStateError(f"Cannot reprocess an order that is {order.status}")
    process_successful_order(db, order)
    return order


def verify_chip_payment(db: Session, order: Order) -> PurchaseStatus:
    if order.payment_gateway != "chip" or not order.payment_reference:
        raise OrderStateError("Order has no CHIP purchase to verify")
    provider = get_payment_provider("chip")
    result = provider.verify_purchase(
        order.payment_reference,
        environment=order.payment_environment or "test",
    )
    if result.paid and mark_order_paid(
        db, order, payment_data={"verified_status": result.status}, late_payment=True
    ):
        process_successful_order(db, order)
    return result


def _refunded_quantities(db: Session, order_id: str, *, restocked_only: bool = False) -> dict[str, int]:
    refunded: dict[str, int] = {}
    rows = db.execute(select(OrderRefund.items_json).where(OrderRefund.order_id == order_id)).scalars().all()
    for items in rows:
        for entry in items or []:
            if restocked_only and not entry.get("return_to_stock"):
                continue
            key = entry.get("order_item_id")
            if key:
                refunded[key] = refunded.get(key, 0) + int(entry.get("quantity") or 0)
    return refunded


def refundable_items(db: Session, order: Order) -> list[RefundableItem]:
    refunded = _refunded_quantities(db, order.id)
    return [
        RefundableItem(
            order_item_id=item.id,
            name=item.name,
            variant_sku=item.variant_sku,
            quantity=item.quantity,
            refunded_quantity=refunded.get(item.id, 0),
            refundable_quantity=max(0, item.quantity - refunded.get(item.id, 0)),
            unit_price=to_money(item.unit_price),
        )
        for item in order.items
    ]


def refund_order(
    db: Session,
    order: Order,
    *,
    refund_type: str,
    amount: Decimal | None,
    reason: str | None,
    items: list[RefundLine],
    actor: str | None,
) -> OrderRefund:
    """Caller commits."""
    if order.status not in REFUNDABLE_STATUSES:
        raise OrderStateError(f"Cannot refund an order that is {order.status}")
    total = to_money(order.total_amount)
    remaining = to_money(total - to_money(order.refunded_amount))
    if remaining <= 0:
        raise OrderStateError("Order has already been fully refunded")

    refund_type = refund_type.strip().upper()
    if refund_type == "FULL":
        refund_amount = remaining
    elif refund_type == "PARTIAL":
        if amount is None or to_money(amount) <= 0:
            raise OrderStateError("Partial refund amount must be greater than 0")
        refund_amount = min(to_money(amount), remaining)
    else:
        raise OrderStateError("Refund type must be FULL or PARTIAL")

    by_id: dict[str, OrderItem] = {item.id: item for item in order.items}
    available = {entry.order_item_id: entry.refundable_quantity for entry in refundable_items(db, order)}
    restock_pairs: list[tuple[OrderItem, int]] = []
    for line in items:
        item = by_id.get(line.order_item_id)
        if item is None:
            raise OrderStateError(f"Order item not found: {line.order_item_id}")
        if line.quantity <= 0 or line.quantity > available.get(item.id, 0):
            raise OrderStateError(
                f"{item.name}: Only {available.get(item.id, 0)} can be refunded (you requested {line.quantity})"
            )
        available[item.id] -= line.quantity
        if line.return_to_stock:
            restock_pairs.append((item, line.quantity))

    if restock_pairs and order.stock_deducted:
        restore_stock(
            db,
            restock_pairs,
            reason=f"Refund for order {order.id}",
            reference=order.id,
            created_by=actor,
        )

    refund = OrderRefund(
        order_id=order.id,
        refund_type=refund_type,
        amount=refund_amount,
        reason=reason,
        items_json=[
            {
                "order_item_id": line.order_item_id,
                "quantity": line.quantity,
                "return_to_stock": line.return_to_stock and order.stock_deducted,
            }
            for line in items
        ],
        created_by=actor,
    )
    db.add(refund)

    order.refunded_amount = to_money(to_money(order.refunded_amount) + refund_amount)
    if refund_type == "FULL" or order.refunded_amount >= total:
        transition_order(order, "REFUNDED", reason=reason or "Refunded")
        order.payment_status = "refunded"
    else:
        order.payment_status = "partially_refunded"
    return refund


def list_collection_orders(
    db: Session,
    *,
    shipping_status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    return list_orders(
        db,
        delivery_method="self_collection",
        shipping_status=shipping_status,
        limit=limit,
        offset=offset,
    )


def collection_stats(db: Session) -> dict[str, Any]:
    rows = db.execute(
        select(Order.status, Order.shipping_status, Order.total_amount).where(
            Order.delivery_method == "self_collection"
        )
    ).all()
    ready = sum(1 for status, _, _ in rows if status == "READY_FOR_COLLECTION")
    collected = sum(1 for status, _, _ in rows if status in {"COLLECTED", "COMPLETED"})
    revenue = sum(
        (to_money(total) for status, _, total in rows if status in {"READY_FOR_COLLECTION", "COLLECTED", "COMPLETED"}),
        ZERO_MONEY,
    )
    return {"total": len(rows), "ready": ready, "collected": collected, "revenue": to_money(revenue)}


def sync_pending_tracking(db: Session, *, carrier: CarrierProvider | None = None) -> BatchSummary:
    """Pulls tracking numbers for shipments created without one. Caller commits."""
    carrier = carrier or get_carrier_provider()
    summary = BatchSummary()
    orders = db.execute(
        select(Order).where(
            Order.shipping_status == "READY_TO_SHIP",
            Order.tracking_synced.is_(False),
            Order.parcel_shipment_key.is_not(None),
        )
    ).scalars().all()
    for order in orders:
        summary.checked += 1
        try:
            shipments = carrier.get_shipments([order.parcel_shipment_key])
        except ProviderError as exc:
            summary.failed += 1
            summary.errors.append(f"{order.id}: {exc}")
            continue
        tracking = extract_tracking(shipments.get(order.parcel_shipment_key))
        if tracking is None and len(shipments) == 1:
            tracking = extract_tracking(next(iter(shipments.values())))
        if not tracking:
            continue
        order.tracking_no = tracking
        order.tracking_synced = True
        order.tracking_synced_at = utcnow()
        order.shipping_status = "AWAITING_PICKUP"
        summary.updated += 1
    log_event("tracking_sync", checked=summary.checked, updated=summary.updated, failed=summary.failed)
    return summary


def check_deliveries(db: Session, *, carrier: CarrierProvider | None = None) -> BatchSummary:
    """Traces shipped orders and marks delivered ones. Caller commits."""
    carrier = carrier or get_carrier_provider()
    summary = BatchSummary()
    orders = db.execute(
        select(Order).where(Order.status == "SHIPPED", Order.tracking_no.is_not(None))
    ).scalars().all()
    for order in orders:
        if order.tracking_no in PLACEHOLDER_TRACKING:
            continue
        summary.checked += 1
        try:
            trace = carrier.trace(order.tracking_no)
        except ProviderError as exc:
            summary.failed += 1
            summary.errors.append(f"{order.id}: {exc}")
            log_event("delivery_check_failed", level=logging.WARNING, order_id=order.id, error=str(exc))
            continue
        if trace.is_delivered:
            transition_order(order, "DELIVERED")
            order.shipping_status = "DELIVERED"
            summary.updated += 1
    log_event("delivery_check", checked=summary.checked, updated=summary.updated, failed=summary.failed)
    return summary
