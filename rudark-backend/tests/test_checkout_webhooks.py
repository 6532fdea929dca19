import asyncio
import json
from urllib.parse import urlencode

from sqlalchemy import event

from conftest import chip_paid, checkout_body, create_product, receive_stock, signed_webhook
from rudark.routers import checkout as checkout_router
from rudark.services.webhook_service import SIGNATURE_HEADER, WebhookOutcome, build_signature


def _available(client, headers, product_id: str) -> int:
    return client.get(f"/products/{product_id}", headers=headers).json()["available_quantity"]


def test_shipping_rates_come_from_carrier(test_context):
    client, _ = test_context
    res = client.get("/shipping/rates", params={"postcode": "31600", "weight_kg": "1.2"})
    assert res.status_code == 200, res.text
    assert [rate["provider_code"] for rate in res.json()["items"]] == ["jnt", "poslaju"]
    assert res.json()["items"][0]["price"] == 8.5

    assert client.get("/shipping/rates", params={"postcode": "31", "weight_kg": "1"}).status_code == 422


def test_chip_checkout_reserves_stock(test_context, owner_headers, fakes):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="BAG-001", price=50)
    receive_stock(client, owner_headers, product["id"], 3)

    res = client.post("/checkout", json=checkout_body(product["id"], 2))
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["status"] == "PENDING"
    assert body["payment_gateway"] == "chip"
    assert body["subtotal"] == 100.0
    assert body["total_amount"] == 108.5
    assert body["checkout_url"].endswith(f"/p/{body['order_id']}/")
    assert body["payment_instructions"] is None

    request = fakes.chip.requests[0]
    assert request.order_id == body["order_id"]
    assert [(line.name, line.quantity) for line in request.lines] == [("Product BAG-001", 2)]
    assert _available(client, owner_headers, product["id"]) == 1

    short = client.post("/checkout", json=checkout_body(product["id"], 2))
    assert short.status_code == 400
    assert "Only 1 available (you requested 2)" in short.json()["error"]["message"]


def test_checkout_validation_errors(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="BAG-002")
    receive_stock(client, owner_headers, product["id"], 3)

    no_quote = checkout_body(product["id"])
    no_quote.pop("shipping")
    res = client.post("/checkout", json=no_quote)
    assert res.status_code == 400
    assert res.json()["error"]["message"] == "Please select a shipping option"

    collection = checkout_body(product["id"], delivery_method="self_collection")
    res = client.post("/checkout", json=collection)
    assert res.status_code == 400
    assert res.json()["error"]["message"] == "Self collection is not available"

    bad_promo = client.post("/checkout", json=checkout_body(product["id"], promo_code="NOPE"))
    assert bad_promo.status_code == 400
    assert bad_promo.json()["error"]["message"] == "Invalid promo code"

    no_address = checkout_body(product["id"])
    no_address["customer"]["address"] = None
    assert client.post("/checkout", json=no_address).status_code == 422

    # Failed attempts leave nothing reserved.
    assert client.get(f"/products/{product['id']}", headers=owner_headers).json()["reserved_quantity"] == 0


def test_payment_init_failure_releases_reservation(test_context, owner_headers, fakes):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="BAG-003")
    receive_stock(client, owner_headers, product["id"], 2)
    promo = client.post(
        "/promos",
        json={"code": "raya10", "promo_type": "PERCENTAGE", "value": 10},
        headers=owner_headers,
    )
    assert promo.status_code == 201, promo.text
    fakes.chip.fail = True

    res = client.post("/checkout", json=checkout_body(product["id"], promo_code="RAYA10"))
    assert res.status_code == 502
    assert "Payment initialisation failed" in res.json()["error"]["message"]

    orders = client.get("/orders", params={"status": "PAYMENT_FAILED"}, headers=owner_headers).json()
    assert orders["pagination"]["total"] == 1
    assert orders["items"][0]["stock_reserved"] is False
    assert _available(client, owner_headers, product["id"]) == 2

    promos = client.get("/promos", headers=owner_headers).json()
    assert promos[0]["usage_count"] == 0


def test_chip_webhook_pays_processes_and_dedupes(test_context, owner_headers, fakes):
    client, _ = test_context
    store = client.post(
        "/stores",
        json={"name": "Chulek", "loyverse_store_id": "lv-store-1", "loyverse_payment_type_id": "lv-pay", "is_default": True},
        headers=owner_headers,
    )
    assert store.status_code == 201, store.text
    product = create_product(client, owner_headers, sku="BAG-004", loyverse_variant_id="lv-var-4")
    receive_stock(client, owner_headers, product["id"], 5)
    order_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]

    paid = chip_paid(client, order_id, event_id="evt-paid-1")
    assert paid.status_code == 200, paid.text
    assert paid.json() == {
        "ok": True,
        "gateway": "chip",
        "outcome": "paid",
        "order_id": order_id,
        "order_status": "PAID",
        "duplicate": False,
    }

    order = client.get(f"/orders/{order_id}", headers=owner_headers).json()
    assert order["payment_status"] == "paid"
    assert order["stock_deducted"] is True
    assert order["stock_reserved"] is False
    assert order["loyverse_status"] == "SYNCED"
    assert order["loyverse_receipt_number"] == f"R-{order_id}"
    assert order["shipping_status"] == "AWAITING_PICKUP"
    assert order["tracking_no"] == "JT630000000001"

    receipt = fakes.pos.receipts[0]
    assert receipt["store_id"] == "lv-store-1"
    assert receipt["line_items"] == [{"variant_id": "lv-var-4", "quantity": 1, "price": 50.0}]
    assert fakes.carrier.created[0].provider_code == "jnt"

    product_after = client.get(f"/products/{product['id']}", headers=owner_headers).json()
    assert (product_after["stock_quantity"], product_after["reserved_quantity"]) == (4, 0)
    sales = client.get(
        "/stock/movements", params={"movement_type": "SALE"}, headers=owner_headers
    ).json()["items"]
    assert [(row["quantity"], row["reference"]) for row in sales] == [(-1, order_id)]

    again = chip_paid(client, order_id, event_id="evt-paid-1")
    assert again.json()["duplicate"] is True
    assert again.json()["outcome"] == "paid"
    assert len(fakes.pos.receipts) == 1


def test_webhook_signature_is_required(test_context):
    client, _ = test_context
    raw = json.dumps({"id": "evt-x", "type": "purchase.paid", "purchase": {"reference": "ORD-1"}}).encode()

    missing = client.post("/webhooks/chip", content=raw, headers={"Content-Type": "application/json"})
    assert missing.status_code == 401

    forged = client.post(
        "/webhooks/chip",
        content=raw,
        headers={"Content-Type": "application/json", SIGNATURE_HEADER: build_signature("bizapp", raw + b" ")},
    )
    assert forged.status_code == 401


def test_chip_webhook_unknown_order(test_context):
    client, _ = test_context
    res = chip_paid(client, "ORD-0000000000000", event_id="evt-missing")
    assert res.status_code == 404


def test_chip_payment_failure_webhook_releases_stock(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="BAG-005")
    receive_stock(client, owner_headers, product["id"], 1)
    order_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]
    assert _available(client, owner_headers, product["id"]) == 0

    payload = {
        "id": "evt-fail-1",
        "type": "purchase.payment_failure",
        "purchase": {"id": "chip-x", "reference": order_id, "transaction_data": {"attempts": [{"error": "declined"}]}},
    }
    res = signed_webhook(client, "chip", json.dumps(payload).encode())
    assert res.status_code == 200, res.text
    assert res.json()["outcome"] == "payment_failed"
    assert res.json()["order_status"] == "PAYMENT_FAILED"
    assert _available(client, owner_headers, product["id"]) == 1


def test_bizapp_form_callback(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="BAG-006")
    receive_stock(client, owner_headers, product["id"], 2)
    order_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]

    pending = urlencode({"billstatus": "0", "order_id": order_id}).encode()
    ignored = signed_webhook(client, "bizapp", pending, "application/x-www-form-urlencoded")
    assert ignored.status_code == 200, ignored.text
    assert ignored.json()["outcome"] == "ignored"

    raw = urlencode({"billstatus": "1", "billExternalReferenceNo": order_id, "refno": "BZ-77"}).encode()
    res = signed_webhook(client, "bizapp", raw, "application/x-www-form-urlencoded")
    assert res.status_code == 200, res.text
    assert res.json()["outcome"] == "paid"
    assert res.json()["order_status"] == "PAID"

    again = signed_webhook(client, "bizapp", raw, "application/x-www-form-urlencoded")
    assert again.json()["duplicate"] is True


def test_manual_gateway_needs_approval(test_context, owner_headers):
    client, _ = test_context
    switched = client.patch(
        "/settings/payment",
        json={"enabled_gateway": "manual", "manual": {"payment_instructions": "Maybank 5140 1234 5678"}},
        headers=owner_headers,
    )
    assert switched.status_code == 200, switched.text
    assert switched.json()["manual"]["require_admin_approval"] is True
    assert client.get("/public/settings").json()["payment_gateway"] == "manual"

    product = create_product(client, owner_headers, sku="BAG-007")
    receive_stock(client, owner_headers, product["id"], 4)

    first = client.post("/checkout", json=checkout_body(product["id"]))
    assert first.status_code == 201, first.text
    assert first.json()["status"] == "PENDING_PAYMENT"
    assert first.json()["payment_instructions"] == "Maybank 5140 1234 5678"
    assert first.json()["checkout_url"] is None
    first_id = first.json()["order_id"]

    public = client.get(f"/public/orders/{first_id}").json()
    assert public["payment_instructions"] == "Maybank 5140 1234 5678"

    approved = client.post(f"/orders/{first_id}/approve-payment", headers=owner_headers)
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "PAID"
    assert approved.json()["stock_deducted"] is True
    assert client.get(f"/public/orders/{first_id}").json()["payment_instructions"] is None

    again = client.post(f"/orders/{first_id}/approve-payment", headers=owner_headers)
    assert again.status_code == 409

    second_id = client.post("/checkout", json=checkout_body(product["id"], 2)).json()["order_id"]
    rejected = client.post(
        f"/orders/{second_id}/reject-payment",
        json={"reason": "No transfer received"},
        headers=owner_headers,
    )
    assert rejected.status_code == 200, rejected.text
    assert rejected.json()["status"] == "CANCELLED"
    assert rejected.json()["payment_rejection_reason"] == "No transfer received"
    assert _available(client, owner_headers, product["id"]) == 3


def test_free_shipping_and_promo_pricing(test_context, owner_headers, fakes):
    client, _ = test_context
    client.patch(
        "/settings/shipping",
        json={"free_shipping_enabled": True, "free_shipping_threshold": 80},
        headers=owner_headers,
    )
    client.post(
        "/promos",
        json={"code": "FLAT5", "promo_type": "FIXED", "value": 5, "usage_limit": 1},
        headers=owner_headers,
    )
    product = create_product(client, owner_headers, sku="BAG-008", price=45)
    receive_stock(client, owner_headers, product["id"], 10)

    body = checkout_body(product["id"], 2, promo_code="flat5")
    body["shipping"] = {"provider_code": "poslaju", "service_type": "parcel", "price": 9.9}
    res = client.post("/checkout", json=body)
    assert res.status_code == 201, res.text
    out = res.json()
    assert out["free_shipping"] is True
    assert out["shipping_cost"] == 0
    assert out["discount_amount"] == 5.0
    assert out["total_amount"] == 85.0

    used_up = client.post("/checkout", json=checkout_body(product["id"], 2, promo_code="FLAT5"))
    assert used_up.status_code == 400
    assert used_up.json()["error"]["message"] == "Promo code usage limit reached"

    paid = chip_paid(client, out["order_id"], event_id="evt-free")
    assert paid.json()["outcome"] == "paid"
    assert fakes.carrier.created[0].provider_code == "jnt"


def test_paid_after_stock_drop_takes_what_is_left(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="BAG-009")
    receive_stock(client, owner_headers, product["id"], 2)
    order_id = client.post("/checkout", json=checkout_body(product["id"], 2)).json()["order_id"]
    damage = client.post(
        "/stock/damage",
        json={"product_id": product["id"], "quantity": 1, "reason": "Torn strap"},
        headers=owner_headers,
    )
    assert damage.status_code == 201, damage.text

    paid = chip_paid(client, order_id, amount=10850)
    assert paid.json()["outcome"] == "paid", paid.text

    order = client.get(f"/orders/{order_id}", headers=owner_headers).json()
    assert order["stock_deducted"] is True
    assert order["stock_reserved"] is False
    assert order["stock_deducted_error"] == "Product BAG-009: short by 1 (on hand 1, sold 2)"

    after = client.get(f"/products/{product['id']}", headers=owner_headers).json()
    assert (after["stock_quantity"], after["reserved_quantity"]) == (0, 0)
    sales = client.get(
        "/stock/movements", params={"movement_type": "SALE"}, headers=owner_headers
    ).json()["items"]
    assert [row["quantity"] for row in sales] == [-1]


def test_refund_event_sharing_the_paid_event_id(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="BAG-010")
    receive_stock(client, owner_headers, product["id"], 2)
    order_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]
    assert chip_paid(client, order_id, event_id="evt-shared").json()["outcome"] == "paid"

    refund = {
        "id": "evt-shared",
        "type": "purchase.refunded",
        "purchase": {"id": f"chip-{order_id}", "reference": order_id, "payment": {"amount": 5850}},
    }
    res = signed_webhook(client, "chip", json.dumps(refund).encode())
    assert res.status_code == 200, res.text
    assert res.json()["duplicate"] is False
    assert res.json()["outcome"] == "refunded"
    assert res.json()["order_status"] == "REFUNDED"


def test_order_is_committed_before_the_gateway_call(test_context, owner_headers, fakes, monkeypatch):
    client, session_local = test_context
    product = create_product(client, owner_headers, sku="BAG-011")
    receive_stock(client, owner_headers, product["id"], 2)
    steps: list[str] = []

    def on_commit(_session):
        steps.append("commit")

    original = fakes.chip.initialize_checkout

    def spy(request):
        steps.append("gateway")
        return original(request)

    monkeypatch.setattr(fakes.chip, "initialize_checkout", spy)
    event.listen(session_local, "after_commit", on_commit)
    try:
        res = client.post("/checkout", json=checkout_body(product["id"]))
    finally:
        event.remove(session_local, "after_commit", on_commit)

    assert res.status_code == 201, res.text
    assert steps == ["commit", "gateway", "commit"]


def test_webhook_handler_runs_off_the_event_loop(test_context, monkeypatch):
    client, _ = test_context
    seen = {}

    def handler(db, payload):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False
        return WebhookOutcome(outcome="ignored", order_id=payload["purchase"]["reference"])

    monkeypatch.setattr(checkout_router, "handle_chip_webhook", handler)
    raw = json.dumps({"id": "evt-thread", "type": "purchase.paid", "purchase": {"reference": "ORD-1"}}).encode()
    res = signed_webhook(client, "chip", raw)
    assert res.status_code == 200, res.text
    assert seen == {"on_loop": False}
