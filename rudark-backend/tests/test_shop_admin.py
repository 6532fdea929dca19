from conftest import register_and_login


def test_promo_crud_and_public_validate(test_context, owner_headers):
    client, _ = test_context
    created = client.post(
        "/promos",
        json={"code": " raya10 ", "promo_type": "PERCENTAGE", "value": 10, "min_spend": 50},
        headers=owner_headers,
    )
    assert created.status_code == 201, created.text
    promo = created.json()
    assert promo["code"] == "RAYA10"
    assert promo["usage_count"] == 0
    assert promo["active"] is True

    duplicate = client.post(
        "/promos",
        json={"code": "RAYA10", "promo_type": "FIXED", "value": 5},
        headers=owner_headers,
    )
    assert duplicate.status_code == 409

    too_big = client.post(
        "/promos",
        json={"code": "HALFOFF", "promo_type": "PERCENTAGE", "value": 150},
        headers=owner_headers,
    )
    assert too_big.status_code == 422

    quote = client.post("/public/promos/validate", json={"code": "raya10", "cart_total": 120})
    assert quote.status_code == 200, quote.text
    assert quote.json() == {
        "valid": True,
        "code": "RAYA10",
        "promo_type": "PERCENTAGE",
        "discount": 12.0,
        "message": "RM12.00 off applied",
    }

    below = client.post("/public/promos/validate", json={"code": "RAYA10", "cart_total": 30})
    assert below.status_code == 400
    assert below.json()["error"]["message"] == "Minimum spend of RM50.00 required"

    patched = client.patch(
        f"/promos/{promo['id']}",
        json={"value": 200},
        headers=owner_headers,
    )
    assert patched.status_code == 400

    toggled = client.post(f"/promos/{promo['id']}/toggle", headers=owner_headers)
    assert toggled.json()["active"] is False
    inactive = client.post("/public/promos/validate", json={"code": "RAYA10", "cart_total": 120})
    assert inactive.json()["error"]["message"] == "Promo code is inactive"

    listed = client.get("/promos", params={"active": False}, headers=owner_headers).json()
    assert [row["code"] for row in listed] == ["RAYA10"]

    deleted = client.delete(f"/promos/{promo['id']}", headers=owner_headers)
    assert deleted.status_code == 204
    assert client.get(f"/promos/{promo['id']}", headers=owner_headers).status_code == 404
    unknown = client.post("/public/promos/validate", json={"code": "RAYA10", "cart_total": 120})
    assert unknown.json()["error"]["message"] == "Invalid promo code"


def test_promo_fixed_discount_is_capped_and_limit_cleared(test_context, owner_headers):
    client, _ = test_context
    promo = client.post(
        "/promos",
        json={"code": "FLAT20", "promo_type": "FIXED", "value": 20, "usage_limit": 3},
        headers=owner_headers,
    ).json()
    assert promo["usage_limit"] == 3

    capped = client.post("/public/promos/validate", json={"code": "FLAT20", "cart_total": 15})
    assert capped.json()["discount"] == 15.0

    cleared = client.patch(f"/promos/{promo['id']}", json={"clear_usage_limit": True}, headers=owner_headers)
    assert cleared.status_code == 200
    assert cleared.json()["usage_limit"] is None


def test_stores_default_and_delete_rules(test_context, owner_headers):
    client, _ = test_context
    assert client.get("/stores/default", headers=owner_headers).status_code == 404

    first = client.post(
        "/stores",
        json={"name": "Chulek", "loyverse_store_id": "lv-store-1", "is_default": True},
        headers=owner_headers,
    ).json()
    second = client.post(
        "/stores",
        json={"name": "Ipoh", "loyverse_store_id": "lv-store-2"},
        headers=owner_headers,
    ).json()
    assert client.get("/stores/default", headers=owner_headers).json()["id"] == first["id"]

    switched = client.patch(f"/stores/{second['id']}", json={"is_default": True}, headers=owner_headers)
    assert switched.status_code == 200
    assert client.get(f"/stores/{first['id']}", headers=owner_headers).json()["is_default"] is False
    assert [store["name"] for store in client.get("/stores", headers=owner_headers).json()] == ["Ipoh", "Chulek"]

    blocked = client.delete(f"/stores/{second['id']}", headers=owner_headers)
    assert blocked.status_code == 409
    assert blocked.json()["error"]["message"] == "Cannot delete the default store"

    assert client.delete(f"/stores/{first['id']}", headers=owner_headers).status_code == 204
    assert client.get(f"/stores/{first['id']}", headers=owner_headers).status_code == 404

    blank = client.post("/stores", json={"name": "  ", "loyverse_store_id": "x"}, headers=owner_headers)
    assert blank.status_code == 422


def test_settings_documents(test_context, owner_headers):
    client, _ = test_context
    payment = client.get("/settings/payment", headers=owner_headers)
    assert payment.status_code == 200
    assert payment.json()["enabled_gateway"] == "chip"
    assert payment.json()["chip"]["environment"] == "test"

    updated = client.patch(
        "/settings/payment",
        json={"enabled_gateway": "manual", "manual": {"payment_instructions": "Maybank 5140 1234 5678"}},
        headers=owner_headers,
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["enabled_gateway"] == "manual"
    assert updated.json()["manual"]["payment_instructions"] == "Maybank 5140 1234 5678"
    assert updated.json()["manual"]["require_admin_approval"] is True

    legacy = client.patch("/settings/payment", json={"enabled_gateway": "bizappay"}, headers=owner_headers)
    assert legacy.json()["enabled_gateway"] == "chip"

    admin = register_and_login(client, email="admin@rudark.my", role="admin", owner_headers=owner_headers)
    forbidden = client.patch("/settings/payment", json={"enabled_gateway": "manual"}, headers=admin)
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["message"] == "Only the owner can change payment settings"

    shipping = client.patch(
        "/settings/shipping",
        json={"free_shipping_enabled": True, "free_shipping_threshold": 150},
        headers=admin,
    )
    assert shipping.status_code == 200, shipping.text
    assert float(shipping.json()["free_shipping_threshold"]) == 150

    invalid = client.patch("/settings/shipping", json={"free_shipping_applies_to": "everyone"}, headers=owner_headers)
    assert invalid.status_code == 422

    assert client.get("/settings/bogus", headers=owner_headers).status_code == 404

    public = client.get("/public/settings")
    assert public.status_code == 200
    assert public.json() == {
        "payment_gateway": "chip",
        "free_shipping_enabled": True,
        "free_shipping_threshold": 150.0,
        "free_shipping_applies_to": "all",
        "free_shipping_regions": [],
        "collection_enabled": False,
    }


def test_unreferenced_collection_point_is_deleted(test_context, owner_headers):
    client, _ = test_context
    point = client.post(
        "/collection-points",
        json={"name": "Gopeng Pickup", "address": "Jalan Pasar", "postcode": "31600"},
        headers=owner_headers,
    ).json()

    deleted = client.delete(f"/collection-points/{point['id']}", headers=owner_headers)
    assert deleted.status_code == 200
    assert deleted.json()["id"] == point["id"]
    assert client.get("/collection-points", headers=owner_headers).json() == []
