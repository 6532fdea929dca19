"""
Post-payment pipeline for an order.

Each step is guarded by a flag on the order so the pipeline can be re-run
(webhook retries, admin reprocess) without doubling side effects. A failing
step records its error on the order and never undoes the payment.
"""
import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.config import settings
from rudark.core.observability import log_event
from rudark.core.timeutils import utcnow
from rudark.models.order import Order, OrderItem
from rudark.models.product import Product, ProductVariant
from rudark.services.carrier_provider import (
    CarrierProvider,
    ShipmentContact,
    ShipmentItem,
    ShipmentRequest,
    get_carrier_provider,
)
from rudark.services.order_state import UNPAID_STATUSES, accepts_late_payment, transition_order
from rudark.services.payment_provider import ProviderError
from rudark.services.pos_provider import PosClient, get_pos_client
from rudark.services.pos_sync_service import build_sku_map
from rudark.services.shop_settings_service import get_sender_profile
from rudark.services.stock_service import StockError
from rudark.services.stock_validation import deduct_stock
from rudark.services.store_service import get_default_store

ERROR_LIMIT = 500


def mark_order_paid(
    db: Session,
    order: Order,
    *,
    payment_data: dict[str, Any] | None = None,
    reason: str | None = None,
    late_payment: bool = False,
) -> bool:
    """
    Returns False when the order is already past payment.

    With late_payment (gateway-confirmed only) an EXPIRED or unpaid CANCELLED
    order moves to PAID as well; the previous status is kept in payment_data.
    """
    if order.status not in UNPAID_STATUSES and order.payment_status == "paid":
        return False
    previous = order.status
    if late_payment and accepts_late_payment(order):
        reason = reason or f"Payment received after order was {previous}"
        payment_data = {**(payment_data or {}), "late_payment_from": previous}
        log_event("order_late_payment", level=logging.WARNING, order_id=order.id, previous_status=previous)
    transition_order(order, "PAID", reason=reason, late_payment=late_payment)
    order.payment_status = "paid"
    if payment_data:
        order.payment_data = {**(order.payment_data or {}), **payment_data}
    return True


def _deduct(db: Session, order: Order) -> None:
    if order.stock_deducted:
        return
    try:
        shortfalls = deduct_stock(
            db,
            order.items,
            reference=order.id,
            release_reservation=order.stock_reserved,
        )
    except StockError as exc:
        order.stock_deducted_error = str(exc)[:ERROR_LIMIT]
        log_event("order_stock_deduct_failed", level=logging.ERROR, order_id=order.id, error=str(exc))
        return
    order.stock_deducted = True
    order.stock_reserved = False
    order.stock_deducted_error = "; ".join(shortfalls)[:ERROR_LIMIT] if shortfalls else None
    if shortfalls:
        log_event("order_stock_shortfall", level=logging.WARNING, order_id=order.id, shortfalls=shortfalls)


def _backfill_variant_id(db: Session, item: OrderItem, variant_id: str) -> None:
    item.loyverse_variant_id = variant_id
    if item.variant_id:
        variant = db.get(ProductVariant, item.variant_id)
        if variant and not variant.loyverse_variant_id:
            variant.loyverse_variant_id = variant_id
        return
    product = db.get(Product, item.product_id)
    if product and not product.loyverse_variant_id:
        product.loyverse_variant_id = variant_id


def build_receipt_payload(db: Session, order: Order, client: PosClient) -> tuple[dict[str, Any], int]:
    """Returns the receipt payload and the number of order lines that could not be mapped."""
    sku_map: dict[str, tuple[str, str | None]] | None = None
    line_items: list[dict[str, Any]] = []
    unmapped = 0
    for item in order.items:
        variant_id = item.loyverse_variant_id
        lookup_sku = (item.variant_sku or item.sku or "").lower()
        if not variant_id and lookup_sku:
            if sku_map is None:
                sku_map = build_sku_map(client.iter_items())
            mapped = sku_map.get(lookup_sku)
            if mapped:
                variant_id = mapped[0]
                _backfill_variant_id(db, item, variant_id)
        if not variant_id:
            unmapped += 1
            continue
        line_items.append(
            {"variant_id": variant_id, "quantity": item.quantity, "price": float(item.unit_price)}
        )

    fee_label, fee = "Shipping", Decimal(order.shipping_cost or 0)
    if order.delivery_method == "self_collection":
        fee_label, fee = "Collection Fee", Decimal(order.collection_fee or 0)
    if line_items and fee > 0 and settings.loyverse_fee_variant_id:
        line_items.append(
            {
                "variant_id": settings.loyverse_fee_variant_id,
                "quantity": 1,
                "price": float(fee),
                "line_note": f"{fee_label}: RM{fee:.2f}",
            }
        )

    store = get_default_store(db)
    total = float(order.total_amount)
    payload = {
        "receipt_number": f"R-{order.id}",
        "note": f"Web Order {order.id}",
        "order_id": order.id,
        "line_items": line_items,
        "total_money": {"amount": total, "currency": "MYR"},
        "store_id": store.loyverse_store_id if store else None,
        "payments": [
            {
                "payment_type_id": store.loyverse_payment_type_id if store else None,
                "amount_money": {"amount": total, "currency": "MYR"},
            }
        ],
    }
    return payload, unmapped


def _sync_receipt(db: Session, order: Order, client: PosClient) -> None:
    if order.loyverse_status == "SYNCED":
        return
    try:
        payload, unmapped = build_receipt_payload(db, order, client)
        if not payload["line_items"]:
            order.loyverse_status = "FAILED_NO_VALID_ITEMS"
            log_event("loyverse_receipt_skipped", level=logging.WARNING, order_id=order.id)
            return
        if not payload["store_id"]:
            raise ProviderError("No default store configured for POS receipts")
        client.create_receipt(payload)
    except ProviderError as exc:
        order.loyverse_status = "FAILED"
        order.loyverse_error = str(exc)[:ERROR_LIMIT]
        log_event("loyverse_receipt_failed", level=logging.ERROR, order_id=order.id, error=str(exc))
        return
    order.loyverse_status = "PARTIAL_SYNC" if unmapped else "SYNCED"
    order.loyverse_receipt_number = payload["receipt_number"]
    order.loyverse_error = None


def build_shipment_request(db: Session, order: Order) -> ShipmentRequest:
    sender = get_sender_profile(db)
    # Free-shipping orders always go out with J&T.
    provider = "jnt" if order.free_shipping or not order.shipping_cost else (order.shipping_provider or "jnt")
    return ShipmentRequest(
        order_id=order.id,
        provider_code=provider,
        content_value=Decimal(order.total_amount or 50),
        send_method=sender.send_method,
        sender=ShipmentContact(
            name=sender.store_name,
            phone=sender.phone,
            email=sender.support_email,
            address_line_1=sender.address_line_1,
            address_line_2=sender.address_line_2,
            postcode=sender.postcode,
        ),
        receiver=ShipmentContact(
            name=order.customer_name,
            phone=order.customer_phone,
            email=order.customer_email,
            address_line_1=order.address or "",
            postcode=order.postcode or "",
        ),
        items=[
            ShipmentItem(
                name=item.name,
                quantity=item.quantity,
                weight_kg=item.weight_kg,
                parcel_size=item.parcel_size,
                length_cm=Decimal(item.length_cm) if item.length_cm else None,
                width_cm=Decimal(item.width_cm) if item.width_cm else None,
                height_cm=Decimal(item.height_cm) if item.height_cm else None,
            )
            for item in order.items
        ],
    )


def _ship(db: Session, order: Order, carrier: CarrierProvider) -> None:
    if order.delivery_method == "self_collection":
        if order.status == "PAID":
            transition_order(order, "READY_FOR_COLLECTION")
        if order.shipping_status is None:
            order.shipping_status = "READY_FOR_COLLECTION"
        return
    if order.parcel_shipment_key:
        return

    try:
        result = carrier.create_shipment(build_shipment_request(db, order))
    except ProviderError as exc:
        order.shipping_status = "SHIPMENT_FAILED"
        order.shipping_error = str(exc)[:ERROR_LIMIT]
        log_event("shipment_create_failed", level=logging.ERROR, order_id=order.id, error=str(exc))
        return
    order.parcel_shipment_key = result.shipment_key
    order.shipping_status = "READY_TO_SHIP"
    order.shipping_error = None

    try:
        tracking = carrier.checkout([result.shipment_key]).get(result.shipment_key)
    except ProviderError as exc:
        order.tracking_synced = False
        log_event("shipment_checkout_failed", level=logging.WARNING, order_id=order.id, error=str(exc))
        return
    if tracking:
        order.tracking_no = tracking
        order.tracking_synced = True
        order.tracking_synced_at = utcnow()
        order.shipping_status = "AWAITING_PICKUP"
    else:
        order.tracking_no = "PENDING"
        order.tracking_synced = False


def process_successful_order(
    db: Session,
    order: Order,
    *,
    pos: PosClient | None = None,
    carrier: CarrierProvider | None = None,
) -> Order:
    """Caller commits."""
    _deduct(db, order)
    _sync_receipt(db, order, pos or get_pos_client())
    _ship(db, order, carrier or get_carrier_provider())
    log_event(
        "order_processed",
        order_id=order.id,
        stock_deducted=order.stock_deducted,
        loyverse_status=order.loyverse_status,
        shipping_status=order.shipping_status,
    )
    return order


def get_order(db: Session, order_id: str, *, for_update: bool = False) -> Order | None:
    stmt = select(Order).where(Order.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()
