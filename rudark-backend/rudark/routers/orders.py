from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.config import settings
from rudark.core.deps import get_db
from rudark.core.money import to_money
from rudark.core.permissions import require_manager, require_staff
from rudark.core.rate_limit import SlidingWindowRateLimiter, client_key
from rudark.models.admin_user import AdminUser
from rudark.models.order import Order, OrderRefund
from rudark.schemas.common import PaginationMeta
from rudark.schemas.order import (
    CancelOrderIn,
    ChipVerifyOut,
    OrderItemOut,
    OrderListOut,
    OrderOut,
    OrderSearchOut,
    OrderStatsOut,
    PublicOrderItemOut,
    PublicOrderOut,
    RefundableItemOut,
    RefundableItemsOut,
    RefundCreateIn,
    RefundOut,
    RejectPaymentIn,
    ReturnOrderIn,
    ReturnOrderOut,
    ShipOrderIn,
    TrackingEventOut,
    TrackingOut,
    TrackingUpdateIn,
)
from rudark.services.audit_service import log_audit_event
from rudark.services.carrier_provider import TraceResult
from rudark.services.order_admin_service import (
    RefundLine,
    approve_manual_payment,
    cancel_order,
    list_orders,
    mark_collected,
    mark_returned,
    mark_shipped,
    order_stats,
    refund_order,
    refundable_items,
    reject_manual_payment,
    reprocess_order,
    update_tracking,
    verify_chip_payment,
)
from rudark.services.order_lookup_service import LookupQueryError, get_public_order, search_order
from rudark.services.order_processing import get_order
from rudark.services.order_state import OrderStateError
from rudark.services.payment_provider import ProviderError
from rudark.services.stock_service import StockError

router = APIRouter(prefix="/orders", tags=["orders"])
public_router = APIRouter(prefix="/public/orders", tags=["order-lookup"])
MAX_ORDER_PAGE_SIZE = 200

order_search_rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.order_search_rate_limit_requests,
    window_seconds=settings.order_search_rate_limit_window_seconds,
)


def _order_out(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        status=order.status,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        address=order.address,
        postcode=order.postcode,
        city=order.city,
        state=order.state,
        delivery_method=order.delivery_method,
        shipping_provider=order.shipping_provider,
        shipping_service=order.shipping_service,
        collection_point_id=order.collection_point_id,
        collection_point_name=order.collection_point_name,
        subtotal=float(order.subtotal),
        shipping_cost=float(order.shipping_cost),
        collection_fee=float(order.collection_fee),
        discount_amount=float(order.discount_amount),
        total_amount=float(order.total_amount),
        refunded_amount=float(order.refunded_amount or 0),
        promo_code=order.promo_code,
        free_shipping=order.free_shipping,
        payment_gateway=order.payment_gateway,
        payment_status=order.payment_status,
        payment_reference=order.payment_reference,
        requires_approval=order.requires_approval,
        payment_rejection_reason=order.payment_rejection_reason,
        paid_at=order.paid_at,
        stock_reserved=order.stock_reserved,
        stock_deducted=order.stock_deducted,
        stock_deducted_error=order.stock_deducted_error,
        loyverse_status=order.loyverse_status,
        loyverse_error=order.loyverse_error,
        loyverse_receipt_number=order.loyverse_receipt_number,
        shipping_status=order.shipping_status,
        tracking_no=order.tracking_no,
        tracking_synced=order.tracking_synced,
        shipping_error=order.shipping_error,
        note=order.note,
        status_reason=order.status_reason,
        shipped_at=order.shipped_at,
        delivered_at=order.delivered_at,
        collected_at=order.collected_at,
        cancelled_at=order.cancelled_at,
        refunded_at=order.refunded_at,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemOut(
                id=item.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                name=item.name,
                sku=item.sku,
                variant_sku=item.variant_sku,
                selected_options=item.selected_options,
                quantity=item.quantity,
                unit_price=float(item.unit_price),
                line_total=float(item.line_total),
            )
            for item in order.items
        ],
    )


def _public_order_out(order: Order) -> PublicOrderOut:
    return PublicOrderOut(
        id=order.id,
        status=order.status,
        customer_name=order.customer_name,
        delivery_method=order.delivery_method,
        collection_point_name=order.collection_point_name,
        collection_point_address=order.collection_point_address,
        subtotal=float(order.subtotal),
        shipping_cost=float(order.shipping_cost),
        collection_fee=float(order.collection_fee),
        discount_amount=float(order.discount_amount),
        total_amount=float(order.total_amount),
        payment_gateway=order.payment_gateway,
        payment_instructions=order.payment_instructions if order.status == "PENDING_PAYMENT" else None,
        shipping_status=order.shipping_status,
        shipping_provider=order.shipping_provider,
        tracking_no=order.tracking_no,
        paid_at=order.paid_at,
        shipped_at=order.shipped_at,
        delivered_at=order.delivered_at,
        created_at=order.created_at,
        items=[
            PublicOrderItemOut(
                name=item.name,
                variant_sku=item.variant_sku,
                quantity=item.quantity,
                unit_price=float(item.unit_price),
                line_total=float(item.line_total),
            )
            for item in order.items
        ],
    )


def _event_out(event: dict[str, Any]) -> TrackingEventOut:
    return TrackingEventOut(
        status=event.get("status") or event.get("description") or event.get("process"),
        location=event.get("location") or event.get("city"),
        time=event.get("datetime") or event.get("time") or event.get("date"),
    )


def _tracking_out(trace: TraceResult | None) -> TrackingOut | None:
    if trace is None:
        return None
    return TrackingOut(
        tracking_no=trace.tracking_no,
        status=trace.status,
        is_delivered=trace.is_delivered,
        delivered_at=trace.delivered_at,
        events=[_event_out(event) for event in trace.events if isinstance(event, dict)],
    )


def _refund_out(refund: OrderRefund, order: Order) -> RefundOut:
    return RefundOut(
        id=refund.id,
        order_id=refund.order_id,
        refund_type=refund.refund_type,
        amount=float(refund.amount),
        reason=refund.reason,
        items=list(refund.items_json or []),
        created_by=refund.created_by,
        created_at=refund.created_at,
        order_status=order.status,
        refunded_amount=float(order.refunded_amount or 0),
    )


def _order_or_404(db: Session, order_id: str, *, for_update: bool = False) -> Order:
    order = get_order(db, order_id, for_update=for_update)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _raise_for(exc: Exception) -> None:
    if isinstance(exc, OrderStateError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, ProviderError):
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def _audit(db: Session, actor: AdminUser, action: str, order: Order, **metadata: Any) -> None:
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=action,
        target_type="order",
        target_id=order.id,
        metadata_json={"status": order.status, **metadata},
    )


@router.get(
    "",
    response_model=OrderListOut,
    summary="List orders",
    responses=error_responses(401, 403, 422, 500),
)
def get_orders(
    status: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    q: str | None = Query(default=None, description="Order id, phone, email or tracking number"),
    delivery_method: str | None = Query(default=None, pattern="^(delivery|self_collection)$"),
    shipping_status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_ORDER_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date cannot be after end_date")
    rows, total = list_orders(
        db,
        status=status,
        start=start_date,
        end=end_date,
        q=q,
        delivery_method=delivery_method,
        shipping_status=shipping_status,
        limit=limit,
        offset=offset,
    )
    return OrderListOut(
        items=[_order_out(order) for order in rows],
        pagination=PaginationMeta.page(total=total, limit=limit, offset=offset, count=len(rows)),
    )


@router.get(
    "/stats",
    response_model=OrderStatsOut,
    summary="Order stats over recent orders",
    responses=error_responses(401, 403, 500),
)
def get_order_stats(
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    stats = order_stats(db)
    return OrderStatsOut(**{**stats, "revenue": float(stats["revenue"])})


@router.get(
    "/{order_id}",
    response_model=OrderOut,
    summary="Get order",
    responses=error_responses(401, 403, 404, 500),
)
def get_order_detail(
    order_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _order_out(_order_or_404(db, order_id))


@router.post(
    "/{order_id}/ship",
    response_model=OrderOut,
    summary="Mark order shipped",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def ship_order(
    order_id: str,
    payload: ShipOrderIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        mark_shipped(db, order, tracking_no=payload.tracking_no)
    except OrderStateError as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.ship", order, tracking_no=order.tracking_no)
    db.commit()
    db.refresh(order)
    return _order_out(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderOut,
    summary="Cancel order",
    description="Releases the stock reservation, or restores stock when it was already deducted.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def cancel(
    order_id: str,
    payload: CancelOrderIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        cancel_order(db, order, reason=payload.reason, actor=actor.id)
    except (OrderStateError, StockError) as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.cancel", order, reason=payload.reason)
    db.commit()
    db.refresh(order)
    return _order_out(order)


@router.post(
    "/{order_id}/return",
    response_model=ReturnOrderOut,
    summary="Mark order returned",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def return_order(
    order_id: str,
    payload: ReturnOrderIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        restocked = mark_returned(
            db,
            order,
            restock=payload.restock,
            reason=payload.reason,
            actor=actor.id,
        )
    except (OrderStateError, StockError) as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.return", order, restocked_quantity=restocked)
    db.commit()
    db.refresh(order)
    return ReturnOrderOut(order=_order_out(order), restocked_quantity=restocked)


@router.patch(
    "/{order_id}/tracking",
    response_model=OrderOut,
    summary="Set tracking number manually",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def set_tracking(
    order_id: str,
    payload: TrackingUpdateIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        update_tracking(order, payload.tracking_no)
    except OrderStateError as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.tracking.update", order, tracking_no=order.tracking_no)
    db.commit()
    db.refresh(order)
    return _order_out(order)


@router.post(
    "/{order_id}/collected",
    response_model=OrderOut,
    summary="Mark self-collection order collected",
    responses=error_responses(401, 403, 404, 409, 500),
)
def collected(
    order_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        mark_collected(order)
    except OrderStateError as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.collected", order)
    db.commit()
    db.refresh(order)
    return _order_out(order)


@router.post(
    "/{order_id}/approve-payment",
    response_model=OrderOut,
    summary="Approve manual payment",
    responses=error_responses(401, 403, 404, 409, 500),
)
def approve_payment(
    order_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        approve_manual_payment(db, order, actor=actor.id)
    except OrderStateError as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.payment.approve", order)
    db.commit()
    db.refresh(order)
    return _order_out(order)


@router.post(
    "/{order_id}/reject-payment",
    response_model=OrderOut,
    summary="Reject manual payment",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def reject_payment(
    order_id: str,
    payload: RejectPaymentIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        reject_manual_payment(db, order, reason=payload.reason, actor=actor.id)
    except (OrderStateError, StockError) as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.payment.reject", order, reason=payload.reason)
    db.commit()
    db.refresh(order)
    return _order_out(order)


@router.post(
    "/{order_id}/reprocess",
    response_model=OrderOut,
    summary="Re-run post-payment processing",
    description="Deducts stock, syncs the POS receipt and books the shipment where not done yet.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def reprocess(
    order_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        reprocess_order(db, order)
    except OrderStateError as exc:
        db.rollback()
        _raise_for(exc)
    _audit(
        db,
        actor,
        "order.reprocess",
        order,
        loyverse_status=order.loyverse_status,
        shipping_status=order.shipping_status,
    )
    db.commit()
    db.refresh(order)
    return _order_out(order)


@router.post(
    "/{order_id}/verify-chip",
    response_model=ChipVerifyOut,
    summary="Verify CHIP payment with the gateway",
    responses=error_responses(401, 403, 404, 409, 502, 500),
)
def verify_chip(
    order_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        result = verify_chip_payment(db, order)
    except (OrderStateError, ProviderError) as exc:
        db.rollback()
        _raise_for(exc)
    _audit(db, actor, "order.payment.verify", order, gateway_status=result.status)
    db.commit()
    return ChipVerifyOut(
        purchase_id=result.purchase_id,
        status=result.status,
        paid=result.paid,
        order_status=order.status,
    )


@router.get(
    "/{order_id}/refundable-items",
    response_model=RefundableItemsOut,
    summary="Items still refundable",
    responses=error_responses(401, 403, 404, 500),
)
def get_refundable_items(
    order_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    order = _order_or_404(db, order_id)
    remaining = to_money(order.total_amount) - to_money(order.refunded_amount or 0)
    return RefundableItemsOut(
        order_id=order.id,
        remaining_amount=float(max(remaining, to_money(0))),
        items=[
            RefundableItemOut(
                order_item_id=item.order_item_id,
                name=item.name,
                variant_sku=item.variant_sku,
                quantity=item.quantity,
                refunded_quantity=item.refunded_quantity,
                refundable_quantity=item.refundable_quantity,
                unit_price=float(item.unit_price),
            )
            for item in refundable_items(db, order)
        ],
    )


@router.get(
    "/{order_id}/refunds",
    response_model=list[RefundOut],
    summary="List refunds for an order",
    responses=error_responses(401, 403, 404, 500),
)
def list_refunds(
    order_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    order = _order_or_404(db, order_id)
    refunds = db.execute(
        select(OrderRefund)
        .where(OrderRefund.order_id == order.id)
        .order_by(OrderRefund.created_at.asc(), OrderRefund.id.asc())
    ).scalars().all()
    return [_refund_out(refund, order) for refund in refunds]


@router.post(
    "/{order_id}/refunds",
    response_model=RefundOut,
    status_code=201,
    summary="Refund order",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_refund(
    order_id: str,
    payload: RefundCreateIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    order = _order_or_404(db, order_id, for_update=True)
    try:
        refund = refund_order(
            db,
            order,
            refund_type=payload.refund_type,
            amount=payload.amount,
            reason=payload.reason,
            items=[
                RefundLine(
                    order_item_id=line.order_item_id,
                    quantity=line.quantity,
                    return_to_stock=line.return_to_stock,
                )
                for line in payload.items
            ],
            actor=actor.id,
        )
    except (OrderStateError, StockError) as exc:
        db.rollback()
        _raise_for(exc)
    db.flush()
    _audit(
        db,
        actor,
        "order.refund",
        order,
        refund_id=refund.id,
        refund_type=refund.refund_type,
        amount=str(refund.amount),
    )
    db.commit()
    db.refresh(refund)
    db.refresh(order)
    return _refund_out(refund, order)


@public_router.get(
    "/search",
    response_model=OrderSearchOut,
    summary="Find an order by id, phone or tracking number",
    description=(
        "Looks the query up in the order book while tracing it with the carrier. "
        "Falls back to carrier tracking only when no order matches."
    ),
    responses=error_responses(400, 404, 422, 429, 500),
)
def search(
    request: Request,
    q: str = Query(max_length=64),
    db: Session = Depends(get_db),
):
    retry_after = order_search_rate_limiter.check_and_consume(client_key(request))
    if retry_after:
        raise HTTPException(
            status_code=429,
            detail="Too many order lookups. Please try again shortly.",
            headers={"Retry-After": str(retry_after)},
        )
    try:
        result = search_order(db, q)
    except LookupQueryError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return OrderSearchOut(
        found=True,
        source=result.source,
        order=_public_order_out(result.order) if result.order else None,
        tracking=_tracking_out(result.trace),
    )


@public_router.get(
    "/{order_id}",
    response_model=PublicOrderOut,
    summary="Public order status",
    responses=error_responses(400, 404, 500),
)
def public_order(order_id: str, db: Session = Depends(get_db)):
    try:
        order = get_public_order(db, order_id)
    except LookupQueryError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return _public_order_out(order)
