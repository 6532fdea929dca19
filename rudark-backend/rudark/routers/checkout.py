import json
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session


from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.money import to_money
from rudark.schemas.checkout import (
    CheckoutCreateIn,
    CheckoutCreateOut,
    ShippingRateOut,
    ShippingRatesOut,
    WebhookOut,
)
from rudark.services.carrier_provider import get_carrier_provider
from rudark.services.checkout_service import CheckoutError, place_order, start_payment
from rudark.services.payment_provider import ProviderError
from rudark.services.promo_service import PromoError
from rudark.services.stock_service import StockError
from rudark.services.webhook_service import (
    SIGNATURE_HEADER,
    WebhookOrderNotFound,
    WebhookOutcome,
    WebhookPayloadError,
    handle_bizapp_webhook,
    handle_chip_webhook,
    verify_signature,
)

router = APIRouter(prefix="/checkout", tags=["checkout"])
shipping_router = APIRouter(prefix="/shipping", tags=["checkout"])
webhooks_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "",
    response_model=CheckoutCreateOut,
    status_code=201,
    summary="Create order and start payment",
    description=(
        "Reserves stock, prices the cart server-side and hands the order to the "
        "configured gateway. When the gateway fails the order is kept as "
        "PAYMENT_FAILED and the response is 502."
    ),
    responses=error_responses(400, 404, 422, 502, 500),
)
def checkout(payload: CheckoutCreateIn, db: Session = Depends(get_db)):
    try:
        placed = place_order(db, payload)
    except (StockError, PromoError, CheckoutError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    # Reservation and order are committed before the gateway round-trip.
    db.commit()

    outcome = start_payment(db, placed)
    db.commit()
    order = outcome.order
    if outcome.payment_error:
        raise HTTPException(
            status_code=502,
            detail=f"Payment initialisation failed for {order.id}: {outcome.payment_error}",
        )

    return CheckoutCreateOut(
        order_id=order.id,
        status=order.status,
        subtotal=float(order.subtotal),
        shipping_cost=float(order.shipping_cost),
        collection_fee=float(order.collection_fee),
        discount_amount=float(order.discount_amount),
        total_amount=float(order.total_amount),
        free_shipping=order.free_shipping,
        payment_gateway=order.payment_gateway,
        checkout_url=order.checkout_url,
        payment_instructions=order.payment_instructions,
    )


@shipping_router.get(
    "/rates",
    response_model=ShippingRatesOut,
    summary="Shipping rates for a postcode",
    responses=error_responses(400, 422, 502, 500),
)
def shipping_rates(
    postcode: str = Query(min_length=5, max_length=10),
    weight_kg: Decimal = Query(gt=0, le=100),
):
    try:
        rates = get_carrier_provider().check_price(
            receiver_postcode=postcode.strip(),
            weight_kg=weight_kg,
        )
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ShippingRatesOut(
        items=[
            ShippingRateOut(
                provider_code=rate.provider_code,
                provider_name=rate.provider_name,
                price=float(to_money(rate.price)),
                service_type=rate.service_type,
                estimated_days=rate.estimated_days,
                send_dates=rate.send_dates,
            )
            for rate in rates
        ]
    )


def _assert_signature(gateway: str, raw_body: bytes, request: Request) -> None:
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        raise HTTPException(status_code=401, detail="Missing webhook signature")
    if not verify_signature(gateway, raw_body, signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


def _webhook_out(gateway: str, outcome: WebhookOutcome) -> WebhookOut:
    return WebhookOut(
        gateway=gateway,
        outcome=outcome.outcome,
        order_id=outcome.order_id,
        order_status=outcome.order_status,
        duplicate=outcome.duplicate,
    )


def _run_webhook(db: Session, handler, gateway: str, payload: dict) -> WebhookOut:
    try:
        outcome = handler(db, payload)
    except WebhookPayloadError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except WebhookOrderNotFound as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return _webhook_out(gateway, outcome)


@webhooks_router.post(
    "/chip",
    response_model=WebhookOut,
    summary="CHIP purchase callback",
    responses=error_responses(400, 401, 404, 500),
)
async def chip_webhook(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    _assert_signature("chip", raw_body, request)
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    return await run_in_threadpool(_run_webhook, db, handle_chip_webhook, "chip", payload)


@webhooks_router.post(
    "/bizapp",
    response_model=WebhookOut,
    summary="BizApp bill callback",
    description="Accepts a JSON body or a form post. Only billstatus=1 is acted on.",
    responses=error_responses(400, 401, 404, 500),
)
async def bizapp_webhook(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    _assert_signature("bizapp", raw_body, request)
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            fields = json.loads(raw_body or b"{}")
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
        if not isinstance(fields, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON body")
    else:
        form = await request.form()
        fields = {key: value for key, value in form.items() if isinstance(value, str)}
    return await run_in_threadpool(_run_webhook, db, handle_bizapp_webhook, "bizapp", fields)
