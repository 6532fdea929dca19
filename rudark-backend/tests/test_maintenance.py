from datetime import timedelta

from sqlalchemy import update

from conftest import checkout_body, chip_paid, create_product, paid_order, receive_stock, register_and_login
from rudark.core.timeutils import utcnow
from rudark.models.order import Order
from rudark.services.carrier_provider import TraceResult


def _age_order(session_local, order_id: str, **delta) -> None:
    with session_local() as session:
        session.execute(
            update(Order).where(Order.id == order_id).values(created_at=utcnow() - timedelta(**delta))
        )
        session.commit()


def _order(client, headers, order_id: str) -> dict:
    return client.get(f"/orders/{order_id}", headers=headers).json()


def test_expired_reservations_are_released(test_context, owner_headers):
    client, session_local = test_context
    product = create_product(client, owner_headers, sku="MNT-001")
    receive_stock(client, owner_headers, product["id"], 5)
    old_id = client.post("/checkout", json=checkout_body(product["id"], 2)).json()["order_id"]
    fresh_id = client.post("/checkout", json=checkout_body(product["id"], 1)).json()["order_id"]
    _age_order(session_local, old_id, minutes=45)

    count = client.get("/maintenance/reservations/expired", headers=owner_headers)
    assert count.json() == {"minutes": 30, "expired_orders": 1}

    res = client.post("/maintenance/reservations/cleanup", headers=owner_headers)
    assert res.status_code == 200, res.text
    assert res.json() == {"processed": 1, "released_items": 2}

    assert _order(client, owner_headers, old_id)["status"] == "EXPIRED"
    assert _order(client, owner_headers, fresh_id)["status"] == "PENDING"
    assert client.get(f"/products/{product['id']}", headers=owner_headers).json()["reserved_quantity"] == 1


def test_stale_unpaid_orders_are_cancelled(test_context, owner_headers, fakes):
    client, session_local = test_context
    product = create_product(client, owner_headers, sku="MNT-002")
    receive_stock(client, owner_headers, product["id"], 5)
    fakes.chip.fail = True
    client.post("/checkout", json=checkout_body(product["id"]))
    failed = client.get("/orders", params={"status": "PAYMENT_FAILED"}, headers=owner_headers).json()["items"][0]
    _age_order(session_local, failed["id"], days=10)

    res = client.post("/maintenance/orders/cleanup-stale", headers=owner_headers)
    assert res.json() == {"processed": 1, "released_items": 0}
    cancelled = _order(client, owner_headers, failed["id"])
    assert cancelled["status"] == "CANCELLED"
    assert cancelled["status_reason"] == "Unpaid for more than 7 days"


def test_tracking_sync_and_delivery_check(test_context, owner_headers, fakes):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="MNT-003")
    receive_stock(client, owner_headers, product["id"], 5)
    fakes.carrier.tracking_on_checkout = None
    order_id = paid_order(client, owner_headers, product["id"])
    assert _order(client, owner_headers, order_id)["shipping_status"] == "READY_TO_SHIP"

    fakes.carrier.shipments[f"key-{order_id}"] = {"awb_no": "JT777000111"}
    synced = client.post("/maintenance/tracking/sync", headers=owner_headers)
    assert synced.status_code == 200, synced.text
    assert synced.json() == {"checked": 1, "updated": 1, "failed": 0, "errors": []}
    order = _order(client, owner_headers, order_id)
    assert order["tracking_no"] == "JT777000111"
    assert order["shipping_status"] == "AWAITING_PICKUP"

    client.post(f"/orders/{order_id}/ship", json={}, headers=owner_headers)
    unknown = client.post("/maintenance/deliveries/check", headers=owner_headers).json()
    assert unknown["failed"] == 1
    assert unknown["errors"] == [f"{order_id}: No tracking found for JT777000111"]

    fakes.carrier.traces["JT777000111"] = TraceResult(
        tracking_no="JT777000111", status="Delivered", is_delivered=True
    )
    checked = client.post("/maintenance/deliveries/check", headers=owner_headers).json()
    assert (checked["checked"], checked["updated"]) == (1, 1)
    delivered = _order(client, owner_headers, order_id)
    assert delivered["status"] == "DELIVERED"
    assert delivered["delivered_at"] is not None


def test_pos_stock_sync_and_push(test_context, owner_headers, fakes):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="MNT-004")
    fakes.pos.items = [{"id": "lv-item-1", "variants": [{"variant_id": "lv-var-1", "sku": "mnt-004"}]}]
    fakes.pos.inventory = [
        {"variant_id": "lv-var-1", "store_id": "lv-store-1", "in_stock": 17},
        {"variant_id": "lv-var-1", "store_id": "lv-store-2", "in_stock": 90},
    ]

    no_store = client.post(f"/maintenance/pos/push-stock/{product['id']}", headers=owner_headers)
    assert no_store.status_code == 502

    client.post(
        "/stores",
        json={"name": "Chulek", "loyverse_store_id": "lv-store-1", "is_default": True},
        headers=owner_headers,
    )
    synced = client.post("/maintenance/pos/sync-stock", headers=owner_headers)
    assert synced.status_code == 200, synced.text
    assert synced.json() == {"updated": 1, "skipped": 0, "total": 1}

    after = client.get(f"/products/{product['id']}", headers=owner_headers).json()
    assert after["stock_quantity"] == 17
    assert after["loyverse_variant_id"] == "lv-var-1"
    assert after["loyverse_item_id"] == "lv-item-1"

    pushed = client.post(f"/maintenance/pos/push-stock/{product['id']}", headers=owner_headers)
    assert pushed.json() == {"product_id": product["id"], "levels_sent": 1}
    assert fakes.pos.pushed == [[{"variant_id": "lv-var-1", "store_id": "lv-store-1", "in_stock": 17}]]

    missing = client.post("/maintenance/pos/push-stock/nope", headers=owner_headers)
    assert missing.status_code == 404


def test_maintenance_needs_manager(test_context, owner_headers):
    client, _ = test_context
    staff = register_and_login(client, email="staff@rudark.my", role="staff", owner_headers=owner_headers)
    assert client.post("/maintenance/reservations/cleanup", headers=staff).status_code == 403


def test_late_chip_payment_revives_expired_order(test_context, owner_headers):
    client, session_local = test_context
    product = create_product(client, owner_headers, sku="MNT-009")
    receive_stock(client, owner_headers, product["id"], 3)
    order_id = client.post("/checkout", json=checkout_body(product["id"], 2)).json()["order_id"]
    _age_order(session_local, order_id, minutes=45)
    client.post("/maintenance/reservations/cleanup", headers=owner_headers)
    assert _order(client, owner_headers, order_id)["status"] == "EXPIRED"

    paid = chip_paid(client, order_id, amount=10850)
    assert paid.status_code == 200, paid.text
    assert paid.json()["outcome"] == "paid"
    assert paid.json()["order_status"] == "PAID"

    order = _order(client, owner_headers, order_id)
    assert order["payment_status"] == "paid"
    assert order["status_reason"] == "Payment received after order was EXPIRED"
    assert order["stock_deducted"] is True
    assert order["stock_deducted_error"] is None
    after = client.get(f"/products/{product['id']}", headers=owner_headers).json()
    assert (after["stock_quantity"], after["reserved_quantity"]) == (1, 0)


def test_cancelled_after_payment_is_not_revived(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="MNT-010")
    receive_stock(client, owner_headers, product["id"], 3)
    order_id = paid_order(client, owner_headers, product["id"])
    cancelled = client.post(f"/orders/{order_id}/cancel", json={"reason": "Customer request"}, headers=owner_headers)
    assert cancelled.status_code == 200, cancelled.text

    again = chip_paid(client, order_id, event_id="evt-late-retry")
    assert again.json()["outcome"] == "already_paid"
    assert _order(client, owner_headers, order_id)["status"] == "CANCELLED"
