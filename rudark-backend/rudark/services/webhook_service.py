import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.config import settings
from rudark.core.money import to_money
from rudark.core.observability import log_event
from rudark.core.timeutils import utcnow
from rudark.models.order import Order
from rudark.models.payment import PaymentWebhookEvent
from rudark.services.order_processing import mark_order_paid, process_successful_order
from rudark.services.order_state import OrderStateError, transition_order
from rudark.services.stock_validation import release_reserved_stock

SIGNATURE_HEADER = "X-Rudark-Signature"
CHIP_EVENTS = {"purchase.paid", "purchase.payment_failure", "purchase.refunded"}


class WebhookPayloadError(ValueError):
    pass


class WebhookOrderNotFound(LookupError):
    pass


@dataclass(frozen=True)
class WebhookOutcome:
    outcome: str
    order_id: str | None = None
    order_status: str | None = None
    duplicate: bool = False


def build_signature(gateway: str, body: bytes) -> str:
    digest = hmac.new(
        settings.webhook_secret_for(gateway).encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()
    return f"sha256={digest}"


def verify_signature(gateway: str, body: bytes, signature_header: str | None) -> bool:
    if not signature_header:
        return False
    provided = signature_header.strip()
    if not provided.startswith("sha256="):
        provided = f"sha256={provided}"
    return hmac.compare_digest(provided, build_signature(gateway, body))


def _find_event(db: Session, event_id: str) -> PaymentWebhookEvent | None:
    return db.execute(
        select(PaymentWebhookEvent).where(PaymentWebhookEvent.event_id == event_id)
    ).scalar_one_or_none()


def _record(
    db: Session,
    *,
    gateway: str,
    event_id: str,
    event_type: str,
    outcome: WebhookOutcome,
    payload: dict[str, Any],
) -> WebhookOutcome:
    db.add(
        PaymentWebhookEvent(
            gateway=gateway,
            event_id=event_id,
            event_type=event_type,
            order_id=outcome.order_id,
            outcome=outcome.outcome,
            payload_json=payload,
        )
    )
    log_event(
        "payment_webhook",
        gateway=gateway,
        event_id=event_id,
        event_type=event_type,
        order_id=outcome.order_id,
        outcome=outcome.outcome,
    )
    return outcome


def _duplicate(existing: PaymentWebhookEvent) -> WebhookOutcome:
    return WebhookOutcome(
        outcome=existing.outcome,
        order_id=existing.order_id,
        duplicate=True,
    )


def _load_order(db: Session, order_id: str) -> Order:
    order = db.execute(select(Order).where(Order.id == order_id).with_for_update()).scalar_one_or_none()
    if order is None:
        raise WebhookOrderNotFound(f"Order not found: {order_id}")
    return order


def _apply_paid(db: Session, order: Order, payment_data: dict[str, Any]) -> str:
    try:
        changed = mark_order_paid(db, order, payment_data=payment_data, late_payment=True)
    except OrderStateError as exc:
        log_event("payment_webhook_ignored", level=logging.WARNING, order_id=order.id, error=str(exc))
        return "ignored"
    if not changed:
        return "already_paid"
    process_successful_order(db, order)
    return "paid"


def _apply_failed(db: Session, order: Order, payment_data: dict[str, Any]) -> str:
    try:
        transition_order(order, "PAYMENT_FAILED", reason="Payment failed at gateway")
    except OrderStateError as exc:
        log_event("payment_webhook_ignored", level=logging.WARNING, order_id=order.id, error=str(exc))
        return "ignored"
    order.payment_status = "failed"
    order.payment_data = {**(order.payment_data or {}), **payment_data}
    if order.stock_reserved and not order.stock_deducted:
        release_reserved_stock(db, order.items)
        order.stock_reserved = False
    return "payment_failed"


def _apply_refunded(order: Order, amount: Any) -> str:
    try:
        transition_order(order, "REFUNDED", reason="Refunded at gateway")
    except OrderStateError as exc:
        log_event("payment_webhook_ignored", level=logging.WARNING, order_id=order.id, error=str(exc))
        return "ignored"
    order.payment_status = "refunded"
    # CHIP reports the amount in cents.
    refunded = to_money(amount) / 100 if amount is not None else to_money(order.total_amount)
    order.refunded_amount = min(to_money(refunded), to_money(order.total_amount))
    return "refunded"


def handle_chip_webhook(db: Session, payload: dict[str, Any]) -> WebhookOutcome:
    """Caller commits."""
    event_type = str(payload.get("type") or payload.get("event_type") or "")
    purchase = payload.get("purchase") or {}
    order_id = purchase.get("reference") or purchase.get("order_id")
    if not order_id:
        raise WebhookPayloadError("No order ID")
    source_id = payload.get("id") or payload.get("event_id") or purchase.get("id") or order_id
    event_id = f"{event_type}:{source_id}"

    existing = _find_event(db, event_id)
    if existing:
        return _duplicate(existing)

    order = _load_order(db, order_id)
    payment = purchase.get("payment") or {}
    transaction = purchase.get("transaction_data") or {}
    if event_type == "purchase.paid":
        outcome = _apply_paid(
            db,
            order,
            {
                "purchase_id": purchase.get("id"),
                "payment_method": transaction.get("payment_method"),
                "paid_on": payment.get("paid_on"),
                "amount": payment.get("amount"),
                "currency": payment.get("currency"),
            },
        )
    elif event_type == "purchase.payment_failure":
        attempts = transaction.get("attempts") or [{}]
        outcome = _apply_failed(
            db,
            order,
            {"purchase_id": purchase.get("id"), "error": attempts[0].get("error")},
        )
    elif event_type == "purchase.refunded":
        outcome = _apply_refunded(order, payment.get("amount"))
    else:
        outcome = "unhandled"

    return _record(
        db,
        gateway="chip",
        event_id=event_id,
        event_type=event_type or "unknown",
        outcome=WebhookOutcome(outcome=outcome, order_id=order.id, order_status=order.status),
        payload=payload,
    )


def handle_bizapp_webhook(db: Session, fields: dict[str, Any]) -> WebhookOutcome:
    """Fields come from a JSON body or a form post. Caller commits."""
    bill_status = str(fields.get("billstatus") or "")
    order_id = fields.get("order_id") or fields.get("billExternalReferenceNo")
    if bill_status != "1":
        return WebhookOutcome(outcome="ignored", order_id=order_id)
    if not order_id:
        raise WebhookPayloadError("Missing order reference")

    event_id = f"bizapp:{fields.get('refno') or fields.get('billcode') or order_id}:{bill_status}"
    existing = _find_event(db, event_id)
    if existing:
        return _duplicate(existing)

    order = _load_order(db, order_id)
    outcome = _apply_paid(
        db,
        order,
        {
            "bizapp_refno": fields.get("refno"),
            "bizapp_billcode": fields.get("billcode"),
            "paid_at": utcnow().isoformat(),
        },
    )
    return _record(
        db,
        gateway="bizapp",
        event_id=event_id,
        event_type="bill.paid",
        outcome=WebhookOutcome(outcome=outcome, order_id=order.id, order_status=order.status),
        payload={key: str(value) for key, value in fields.items()},
    )
