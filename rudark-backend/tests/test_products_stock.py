from datetime import timedelta

from sqlalchemy import update

from conftest import checkout_body, create_product, receive_stock
from rudark.core.timeutils import utcnow
from rudark.models.stock import StockMovement

TEE_VARIANTS = [
    {"sku": "TEE-BLK-M", "options": {"color": "Black", "size": "M"}},
    {"sku": "TEE-BLK-L", "options": {"color": "Black", "size": "L"}},
]


def test_product_create_and_catalog(test_context, owner_headers):
    client, _ = test_context
    assert client.post("/categories", json={"name": "Apparel"}, headers=owner_headers).status_code == 201
    product = create_product(
        client, owner_headers, sku="TEE-001", price=49.9, promo_price=39.9,
        category_slug="apparel", variants=TEE_VARIANTS,
    )
    assert product["stock_status"] == "OUT_OF_STOCK"
    assert product["price"] == 39.9
    assert sorted(variant["label"] for variant in product["variants"]) == ["Black / L", "Black / M"]

    duplicate = client.post(
        "/products",
        json={"sku": "tee-blk-m", "name": "Clash", "web_price": 10},
        headers=owner_headers,
    )
    assert duplicate.status_code == 409

    receive_stock(client, owner_headers, product["id"], 12, variant_sku="TEE-BLK-M")

    listing = client.get("/catalog/products", params={"category": "apparel"})
    assert listing.status_code == 200
    items = listing.json()["items"]
    assert [item["sku"] for item in items] == ["TEE-001"]
    assert items[0]["available_quantity"] == 12
    assert items[0]["stock_status"] == "IN_STOCK"

    detail = client.get("/catalog/products/tee-001")
    assert detail.status_code == 200
    by_sku = {variant["sku"]: variant["available_quantity"] for variant in detail.json()["variants"]}
    assert by_sku == {"TEE-BLK-M": 12, "TEE-BLK-L": 0}

    archived = client.post(f"/products/{product['id']}/archive", headers=owner_headers)
    assert archived.status_code == 200
    assert archived.json()["stock_status"] == "ARCHIVED"
    assert client.get("/catalog/products/TEE-001").status_code == 404


def test_stock_movements_follow_sign_rules(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="CAP-001")

    received = receive_stock(client, owner_headers, product["id"], 10)
    assert received["movement_type"] == "RECEIVE"
    assert (received["previous_quantity"], received["new_quantity"]) == (0, 10)

    damage = client.post(
        "/stock/damage",
        json={"product_id": product["id"], "quantity": 3, "reason": "Water damage"},
        headers=owner_headers,
    )
    assert damage.status_code == 201, damage.text
    assert damage.json()["quantity"] == -3
    assert damage.json()["new_quantity"] == 7

    adjust = client.post(
        "/stock/adjust",
        json={"product_id": product["id"], "target_quantity": 4, "reason": "Stock take"},
        headers=owner_headers,
    )
    assert adjust.status_code == 201, adjust.text
    assert adjust.json()["quantity"] == -3

    same = client.post(
        "/stock/adjust",
        json={"product_id": product["id"], "target_quantity": 4, "reason": "Again"},
        headers=owner_headers,
    )
    assert same.status_code == 400

    oversell = client.post(
        "/stock/pos-sale",
        json={"product_id": product["id"], "quantity": 5},
        headers=owner_headers,
    )
    assert oversell.status_code == 400
    assert "Cannot reduce stock below 0" in oversell.json()["error"]["message"]

    history = client.get(f"/stock/products/{product['id']}/history", headers=owner_headers)
    assert history.status_code == 200
    assert sorted(row["movement_type"] for row in history.json()) == ["ADJUST", "DAMAGE", "RECEIVE"]

    filtered = client.get("/stock/movements", params={"movement_type": "damage"}, headers=owner_headers)
    assert filtered.json()["pagination"]["total"] == 1


def test_variant_product_requires_variant_sku(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="TEE-002", variants=TEE_VARIANTS)

    res = client.post(
        "/stock/receive",
        json={"product_id": product["id"], "quantity": 5},
        headers=owner_headers,
    )
    assert res.status_code == 400
    assert "variant_sku is required" in res.json()["error"]["message"]

    unknown = client.post(
        "/stock/receive",
        json={"product_id": product["id"], "variant_sku": "TEE-XXL", "quantity": 5},
        headers=owner_headers,
    )
    assert unknown.status_code == 400


def test_low_stock_report(test_context, owner_headers):
    client, _ = test_context
    low = create_product(client, owner_headers, sku="LOW-001")
    plenty = create_product(client, owner_headers, sku="PLENTY-001")
    receive_stock(client, owner_headers, low["id"], 2)
    receive_stock(client, owner_headers, plenty["id"], 40)

    res = client.get("/stock/low-stock", headers=owner_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["threshold"] == 5
    assert [item["sku"] for item in body["items"]] == ["LOW-001"]
    assert body["items"][0]["available_quantity"] == 2


def test_variant_delete_blocked_while_reserved(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="TEE-003", variants=TEE_VARIANTS)
    receive_stock(client, owner_headers, product["id"], 3, variant_sku="TEE-BLK-L")
    variant_id = next(v["id"] for v in product["variants"] if v["sku"] == "TEE-BLK-L")
    unused_id = next(v["id"] for v in product["variants"] if v["sku"] == "TEE-BLK-M")

    body = checkout_body(product["id"])
    body["items"][0]["selected_options"] = {"color": "Black", "size": "L"}
    assert client.post("/checkout", json=body).status_code == 201

    blocked = client.delete(f"/products/{product['id']}/variants/{variant_id}", headers=owner_headers)
    assert blocked.status_code == 409

    removed = client.delete(f"/products/{product['id']}/variants/{unused_id}", headers=owner_headers)
    assert removed.status_code == 200
    assert [v["sku"] for v in removed.json()["variants"]] == ["TEE-BLK-L"]


def test_archive_old_movements_and_restore(test_context, owner_headers):
    client, session_local = test_context
    product = create_product(client, owner_headers, sku="OLD-001")
    old = receive_stock(client, owner_headers, product["id"], 5)
    receive_stock(client, owner_headers, product["id"], 5)

    with session_local() as session:
        session.execute(
            update(StockMovement)
            .where(StockMovement.id == old["id"])
            .values(created_at=utcnow() - timedelta(days=400))
        )
        session.commit()

    stats = client.get("/stock/archive/stats", headers=owner_headers).json()
    assert stats["active_count"] == 2
    assert stats["archivable_count"] == 1

    run = client.post("/stock/archive/run", headers=owner_headers)
    assert run.status_code == 200, run.text
    assert run.json() == {"archived": 1, "cutoff_days": 365}

    archived = client.get("/stock/archive", headers=owner_headers).json()
    assert [row["id"] for row in archived["items"]] == [old["id"]]
    assert archived["items"][0]["archived_at"] is not None
    assert len(client.get("/stock/archive/export", headers=owner_headers).json()) == 1

    restored = client.post("/stock/archive/restore", json={"ids": [old["id"]]}, headers=owner_headers)
    assert restored.json() == {"restored": 1}
    history = client.get(f"/stock/products/{product['id']}/history", headers=owner_headers).json()
    assert len(history) == 2
    assert client.get("/stock/archive", headers=owner_headers).json()["pagination"]["total"] == 0


def test_variant_checkout_messages_and_parent_totals(test_context, owner_headers):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="TEE-010", variants=TEE_VARIANTS)
    receive_stock(client, owner_headers, product["id"], 2, variant_sku="TEE-BLK-M")
    receive_stock(client, owner_headers, product["id"], 3, variant_sku="TEE-BLK-L")

    def cart(quantity: int, options: dict) -> dict:
        body = checkout_body(product["id"])
        body["items"] = [{"product_id": product["id"], "quantity": quantity, "selected_options": options}]
        return body

    short = client.post("/checkout", json=cart(3, {"color": "Black", "size": "M"}))
    assert short.status_code == 400
    assert short.json()["error"]["message"] == "Product TEE-010 (Black / M): Only 2 available (you requested 3)"

    unknown = client.post("/checkout", json=cart(1, {"color": "Black", "size": "XL"}))
    assert unknown.status_code == 400
    assert unknown.json()["error"]["message"] == "Product TEE-010 (color: Black, size: XL): Variant not found"

    placed = client.post("/checkout", json=cart(2, {"color": "Black", "size": "L"}))
    assert placed.status_code == 201, placed.text

    after = client.get(f"/products/{product['id']}", headers=owner_headers).json()
    assert (after["stock_quantity"], after["reserved_quantity"]) == (5, 2)
    large = next(v for v in after["variants"] if v["sku"] == "TEE-BLK-L")
    assert (large["reserved_quantity"], large["available_quantity"]) == (2, 1)
