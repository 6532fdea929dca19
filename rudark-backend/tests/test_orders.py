from conftest import chip_paid, checkout_body, create_product, paid_order, receive_stock


def _stock(client, headers, product_id: str) -> tuple[int, int]:
    product = client.get(f"/products/{product_id}", headers=headers).json()
    return product["stock_quantity"], product["reserved_quantity"]


def test_ship_track_return_and_refund(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-001", price=80)
    receive_stock(client, owner_headers, product["id"], 4)
    order_id = paid_order(client, owner_headers, product["id"])
    assert _stock(client, owner_headers, product["id"]) == (3, 0)

    shipped = client.post(f"/orders/{order_id}/ship", json={"tracking_no": "JT630000000009"}, headers=owner_headers)
    assert shipped.status_code == 200, shipped.text
    assert shipped.json()["status"] == "SHIPPED"
    assert shipped.json()["shipped_at"] is not None

    short = client.patch(f"/orders/{order_id}/tracking", json={"tracking_no": "JT1"}, headers=owner_headers)
    assert short.status_code == 409
    assert "at least 5 characters" in short.json()["error"]["message"]

    fixed = client.patch(f"/orders/{order_id}/tracking", json={"tracking_no": " JT630000000010 "}, headers=owner_headers)
    assert fixed.status_code == 200
    assert fixed.json()["tracking_no"] == "JT630000000010"

    returned = client.post(f"/orders/{order_id}/return", json={"restock": True, "reason": "Wrong size"}, headers=owner_headers)
    assert returned.status_code == 200, returned.text
    assert returned.json()["restocked_quantity"] == 1
    assert returned.json()["order"]["status"] == "RETURNED"
    assert _stock(client, owner_headers, product["id"]) == (4, 0)

    refund = client.post(
        f"/orders/{order_id}/refunds",
        json={"refund_type": "FULL", "reason": "Returned"},
        headers=owner_headers,
    )
    assert refund.status_code == 201, refund.text
    assert refund.json()["amount"] == 88.5
    assert refund.json()["order_status"] == "REFUNDED"

    again = client.post(f"/orders/{order_id}/ship", json={}, headers=owner_headers)
    assert again.status_code == 409


def test_cancel_releases_reservation(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-002")
    receive_stock(client, owner_headers, product["id"], 2)
    order_id = client.post("/checkout", json=checkout_body(product["id"], 2)).json()["order_id"]
    assert _stock(client, owner_headers, product["id"]) == (2, 2)

    cancelled = client.post(f"/orders/{order_id}/cancel", json={"reason": "Customer asked"}, headers=owner_headers)
    assert cancelled.status_code == 200, cancelled.text
    assert cancelled.json()["status"] == "CANCELLED"
    assert cancelled.json()["status_reason"] == "Customer asked"
    assert cancelled.json()["stock_reserved"] is False
    assert _stock(client, owner_headers, product["id"]) == (2, 0)

    twice = client.post(f"/orders/{order_id}/cancel", json={}, headers=owner_headers)
    assert twice.status_code == 409


def test_cancel_paid_order_restores_stock(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-003")
    receive_stock(client, owner_headers, product["id"], 2)
    order_id = paid_order(client, owner_headers, product["id"])

    res = client.post(f"/orders/{order_id}/cancel", json={}, headers=owner_headers)
    assert res.status_code == 200, res.text
    assert res.json()["stock_deducted"] is False
    assert _stock(client, owner_headers, product["id"]) == (2, 0)

    history = client.get(f"/stock/products/{product['id']}/history", headers=owner_headers).json()
    assert sorted(row["movement_type"] for row in history) == ["RECEIVE", "RETURN", "SALE"]


def test_partial_then_full_refund(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-004", price=50)
    receive_stock(client, owner_headers, product["id"], 5)
    order_id = paid_order(client, owner_headers, product["id"], 2)
    item_id = client.get(f"/orders/{order_id}", headers=owner_headers).json()["items"][0]["id"]

    too_many = client.post(
        f"/orders/{order_id}/refunds",
        json={"refund_type": "PARTIAL", "amount": 10, "items": [{"order_item_id": item_id, "quantity": 3}]},
        headers=owner_headers,
    )
    assert too_many.status_code == 409
    assert "Only 2 can be refunded" in too_many.json()["error"]["message"]

    partial = client.post(
        f"/orders/{order_id}/refunds",
        json={
            "refund_type": "PARTIAL",
            "amount": 50,
            "reason": "One pair damaged",
            "items": [{"order_item_id": item_id, "quantity": 1, "return_to_stock": True}],
        },
        headers=owner_headers,
    )
    assert partial.status_code == 201, partial.text
    assert partial.json()["order_status"] == "PAID"
    assert partial.json()["refunded_amount"] == 50.0
    assert _stock(client, owner_headers, product["id"]) == (4, 0)
    assert client.get(f"/orders/{order_id}", headers=owner_headers).json()["payment_status"] == "partially_refunded"

    refundable = client.get(f"/orders/{order_id}/refundable-items", headers=owner_headers).json()
    assert refundable["remaining_amount"] == 58.5
    assert refundable["items"][0]["refundable_quantity"] == 1

    full = client.post(f"/orders/{order_id}/refunds", json={"refund_type": "FULL"}, headers=owner_headers)
    assert full.status_code == 201
    assert full.json()["amount"] == 58.5
    assert full.json()["order_status"] == "REFUNDED"

    refunds = client.get(f"/orders/{order_id}/refunds", headers=owner_headers).json()
    assert sorted(refund["refund_type"] for refund in refunds) == ["FULL", "PARTIAL"]

    done = client.post(f"/orders/{order_id}/refunds", json={"refund_type": "FULL"}, headers=owner_headers)
    assert done.status_code == 409


def _refund_one_to_stock(client, headers, order_id: str) -> None:
    item_id = client.get(f"/orders/{order_id}", headers=headers).json()["items"][0]["id"]
    res = client.post(
        f"/orders/{order_id}/refunds",
        json={
            "refund_type": "PARTIAL",
            "amount": 50,
            "items": [{"order_item_id": item_id, "quantity": 1, "return_to_stock": True}],
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text


def test_cancel_after_partial_restock_refund_skips_returned_units(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-010", price=50)
    receive_stock(client, owner_headers, product["id"], 5)
    order_id = paid_order(client, owner_headers, product["id"], 2)
    assert _stock(client, owner_headers, product["id"]) == (3, 0)

    _refund_one_to_stock(client, owner_headers, order_id)
    assert _stock(client, owner_headers, product["id"]) == (4, 0)

    cancelled = client.post(f"/orders/{order_id}/cancel", json={}, headers=owner_headers)
    assert cancelled.status_code == 200, cancelled.text
    assert _stock(client, owner_headers, product["id"]) == (5, 0)


def test_return_after_partial_restock_refund_skips_returned_units(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-011", price=50)
    receive_stock(client, owner_headers, product["id"], 5)
    order_id = paid_order(client, owner_headers, product["id"], 2)
    _refund_one_to_stock(client, owner_headers, order_id)
    client.post(f"/orders/{order_id}/ship", json={"tracking_no": "JT630000000011"}, headers=owner_headers)

    returned = client.post(f"/orders/{order_id}/return", json={"restock": True}, headers=owner_headers)
    assert returned.status_code == 200, returned.text
    assert returned.json()["restocked_quantity"] == 1
    assert _stock(client, owner_headers, product["id"]) == (5, 0)


def test_pending_order_cannot_be_refunded_or_shipped(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-005")
    receive_stock(client, owner_headers, product["id"], 1)
    order_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]

    assert client.post(f"/orders/{order_id}/refunds", json={"refund_type": "FULL"}, headers=owner_headers).status_code == 409
    assert client.post(f"/orders/{order_id}/ship", json={}, headers=owner_headers).status_code == 409
    assert client.post(f"/orders/{order_id}/collected", headers=owner_headers).status_code == 409
    assert client.get("/orders/ORD-404", headers=owner_headers).status_code == 404


def test_verify_chip_and_reprocess(test_context, owner_headers, fakes):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-006")
    receive_stock(client, owner_headers, product["id"], 3)
    order_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]

    fakes.chip.paid = False
    unpaid = client.post(f"/orders/{order_id}/verify-chip", headers=owner_headers)
    assert unpaid.status_code == 200, unpaid.text
    assert unpaid.json() == {
        "purchase_id": f"chip-{order_id}",
        "status": "created",
        "paid": False,
        "order_status": "PENDING",
    }

    fakes.chip.paid = True
    fakes.carrier.tracking_on_checkout = None
    verified = client.post(f"/orders/{order_id}/verify-chip", headers=owner_headers)
    assert verified.json()["order_status"] == "PAID"

    order = client.get(f"/orders/{order_id}", headers=owner_headers).json()
    assert order["shipping_status"] == "READY_TO_SHIP"
    assert order["tracking_no"] == "PENDING"
    assert order["loyverse_status"] == "FAILED_NO_VALID_ITEMS"

    reprocessed = client.post(f"/orders/{order_id}/reprocess", headers=owner_headers)
    assert reprocessed.status_code == 200
    assert reprocessed.json()["stock_deducted"] is True
    assert len(fakes.carrier.created) == 1


def test_self_collection_flow(test_context, owner_headers):
    client, _ = test_context
    client.patch("/settings/collection", json={"enabled": True}, headers=owner_headers)
    point = client.post(
        "/collection-points",
        json={"name": "Chulek Shop", "address": "LOT 10846, Jalan Besar", "postcode": "31600", "collection_fee": 2},
        headers=owner_headers,
    )
    assert point.status_code == 201, point.text
    point_id = point.json()["id"]
    assert [p["id"] for p in client.get("/public/collection-points").json()] == [point_id]

    product = create_product(client, owner_headers, sku="SHOE-007", price=30)
    receive_stock(client, owner_headers, product["id"], 2)
    body = checkout_body(product["id"], delivery_method="self_collection", collection_point_id=point_id)
    body.pop("shipping")
    res = client.post("/checkout", json=body)
    assert res.status_code == 201, res.text
    assert res.json()["collection_fee"] == 2.0
    assert res.json()["shipping_cost"] == 0
    assert res.json()["total_amount"] == 32.0
    order_id = res.json()["order_id"]

    assert chip_paid(client, order_id).json()["order_status"] == "READY_FOR_COLLECTION"
    listing = client.get("/collection-orders", params={"shipping_status": "ready_for_collection"}, headers=owner_headers)
    assert [order["id"] for order in listing.json()["items"]] == [order_id]

    collected = client.post(f"/orders/{order_id}/collected", headers=owner_headers)
    assert collected.status_code == 200, collected.text
    assert collected.json()["status"] == "COLLECTED"

    deleted = client.delete(f"/collection-points/{point_id}", headers=owner_headers)
    assert deleted.status_code == 200
    assert deleted.json()["is_active"] is False
    assert client.get("/public/collection-points").json() == []


def test_order_list_filters_and_stats(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="SHOE-008", price=20)
    receive_stock(client, owner_headers, product["id"], 10)
    paid_id = paid_order(client, owner_headers, product["id"])
    pending_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]

    by_status = client.get("/orders", params={"status": "pending"}, headers=owner_headers).json()
    assert [order["id"] for order in by_status["items"]] == [pending_id]

    first_page = client.get("/orders", params={"limit": 1}, headers=owner_headers).json()["pagination"]
    assert first_page == {"total": 2, "limit": 1, "offset": 0, "count": 1, "has_next": True}

    by_search = client.get("/orders", params={"q": paid_id}, headers=owner_headers).json()
    assert [order["id"] for order in by_search["items"]] == [paid_id]

    stats = client.get("/orders/stats", headers=owner_headers).json()
    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert stats["paid"] == 1
    assert stats["revenue"] == 28.5
