import time

from conftest import create_product, paid_order, receive_stock
from rudark.core.config import settings
from rudark.routers.orders import order_search_rate_limiter
from rudark.services.carrier_provider import TraceResult
from rudark.services.payment_provider import ProviderError


def _trace(tracking_no: str, *, delivered: bool = False) -> TraceResult:
    return TraceResult(
        tracking_no=tracking_no,
        status="Delivered" if delivered else "In transit",
        is_delivered=delivered,
        delivered_at="2026-10-18 14:02" if delivered else None,
        events=[{"status": "Picked up", "location": "Ipoh Hub", "datetime": "2026-10-17 09:15"}],
    )


def test_search_by_order_id_phone_and_tracking(test_context, owner_headers, fakes):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="LOOK-001")
    receive_stock(client, owner_headers, product["id"], 2)
    order_id = paid_order(client, owner_headers, product["id"])
    fakes.carrier.traces["JT630000000001"] = _trace("JT630000000001")

    by_id = client.get("/public/orders/search", params={"q": order_id})
    assert by_id.status_code == 200, by_id.text
    body = by_id.json()
    assert body["found"] is True
    assert body["source"] == "ORDER"
    assert body["order"]["id"] == order_id
    assert body["order"]["items"][0]["name"] == "Product LOOK-001"
    assert body["tracking"]["tracking_no"] == "JT630000000001"
    assert body["tracking"]["events"] == [
        {"status": "Picked up", "location": "Ipoh Hub", "time": "2026-10-17 09:15"}
    ]

    by_phone = client.get("/public/orders/search", params={"q": "0123456789"})
    assert by_phone.json()["order"]["id"] == order_id

    by_tracking = client.get("/public/orders/search", params={"q": "JT630000000001"})
    assert by_tracking.json()["source"] == "ORDER"
    assert by_tracking.json()["order"]["id"] == order_id


def test_search_falls_back_to_carrier_trace(test_context, fakes):
    client, _ = test_context
    fakes.carrier.traces["EXT9988776655"] = _trace("EXT9988776655", delivered=True)

    res = client.get("/public/orders/search", params={"q": "EXT9988776655"})
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["source"] == "EXTERNAL"
    assert body["order"] is None
    assert body["tracking"]["is_delivered"] is True

    missing = client.get("/public/orders/search", params={"q": "NOTHING-HERE"})
    assert missing.status_code == 404


def test_search_rejects_short_queries(test_context):
    client, _ = test_context
    res = client.get("/public/orders/search", params={"q": " ab "})
    assert res.status_code == 400


def test_search_is_rate_limited(test_context, monkeypatch):
    client, _ = test_context
    monkeypatch.setattr(order_search_rate_limiter, "max_requests", 2)

    for _ in range(2):
        assert client.get("/public/orders/search", params={"q": "NOTHING-HERE"}).status_code == 404

    limited = client.get("/public/orders/search", params={"q": "NOTHING-HERE"})
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1


def test_public_order_view(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="LOOK-002", price=25)
    receive_stock(client, owner_headers, product["id"], 1)
    order_id = paid_order(client, owner_headers, product["id"])

    res = client.get(f"/public/orders/{order_id}")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "PAID"
    assert body["total_amount"] == 33.5
    assert "customer_email" not in body
    assert "customer_phone" not in body

    assert client.get("/public/orders/ORD-1").status_code == 404
    assert client.get("/public/orders/bad.id").status_code == 400


def test_slow_carrier_shares_one_trace_deadline(test_context, owner_headers, fakes, monkeypatch):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="LOOK-003")
    receive_stock(client, owner_headers, product["id"], 1)
    order_id = paid_order(client, owner_headers, product["id"])
    monkeypatch.setattr(settings, "order_search_trace_timeout_seconds", 0.3)

    def slow_trace(tracking_no):
        time.sleep(1.0)
        raise ProviderError(f"No tracking found for {tracking_no}")

    monkeypatch.setattr(fakes.carrier, "trace", slow_trace)
    started = time.monotonic()
    res = client.get("/public/orders/search", params={"q": order_id})
    elapsed = time.monotonic() - started

    assert res.status_code == 200, res.text
    assert res.json()["order"]["id"] == order_id
    assert res.json()["tracking"] is None
    # The stored-tracking trace does not get a fresh timeout of its own.
    assert elapsed < 0.55
