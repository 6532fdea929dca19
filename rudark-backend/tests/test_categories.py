from conftest import create_product, register_and_login


def _create(client, headers, **body):
    res = client.post("/categories", json=body, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_category_slugs_order_and_public_menu(test_context, owner_headers):
    client, _ = test_context
    apparel = _create(client, owner_headers, name="Apparel")
    gear = _create(
        client,
        owner_headers,
        name="Gear & Safety",
        subcategories=[{"name": "PFDs / Life Vests"}, {"name": "Helmets", "slug": "Helmets"}],
    )
    _create(client, owner_headers, name="Watercraft", is_active=False)

    assert (apparel["slug"], apparel["sort_order"]) == ("apparel", 0)
    assert (gear["slug"], gear["sort_order"]) == ("gear-safety", 1)
    assert gear["subcategories"] == [
        {"name": "PFDs / Life Vests", "slug": "pfds-life-vests"},
        {"name": "Helmets", "slug": "helmets"},
    ]

    admin_list = client.get("/categories", headers=owner_headers).json()
    assert [row["slug"] for row in admin_list] == ["apparel", "gear-safety", "watercraft"]

    menu = client.get("/public/categories")
    assert menu.status_code == 200
    assert [row["slug"] for row in menu.json()] == ["apparel", "gear-safety"]
    assert menu.json()[1]["subcategories"][0]["slug"] == "pfds-life-vests"

    moved = client.patch(f"/categories/{gear['id']}", json={"sort_order": 0}, headers=owner_headers)
    assert moved.status_code == 200, moved.text
    ordered = [row["slug"] for row in client.get("/public/categories").json()]
    # Ties fall back to name order.
    assert ordered == ["apparel", "gear-safety"]


def test_category_validation_errors(test_context, owner_headers):
    client, _ = test_context
    _create(client, owner_headers, name="Apparel")

    clash = client.post("/categories", json={"name": "Other", "slug": "APPAREL"}, headers=owner_headers)
    assert clash.status_code == 409
    assert clash.json()["error"]["message"] == "Category slug 'apparel' already exists"

    symbols = client.post("/categories", json={"name": "!!!"}, headers=owner_headers)
    assert symbols.status_code == 400
    assert symbols.json()["error"]["message"] == "Category slug must contain letters or digits"

    twice = client.post(
        "/categories",
        json={"name": "Paddles", "subcategories": [{"name": "Kayak"}, {"name": "KAYAK"}]},
        headers=owner_headers,
    )
    assert twice.status_code == 400
    assert twice.json()["error"]["message"] == "Duplicate subcategory 'kayak'"


def test_products_follow_their_category(test_context, owner_headers):
    client, _ = test_context
    unknown = client.post(
        "/products",
        json={"sku": "KYK-001", "name": "Touring Kayak", "web_price": 1500, "category_slug": "Watercraft"},
        headers=owner_headers,
    )
    assert unknown.status_code == 400
    assert unknown.json()["error"]["message"] == "Unknown category 'watercraft'"

    watercraft = _create(client, owner_headers, name="Watercraft")
    product = create_product(client, owner_headers, sku="KYK-001", category_slug="watercraft")

    bad_update = client.patch(f"/products/{product['id']}", json={"category_slug": "rafts"}, headers=owner_headers)
    assert bad_update.status_code == 400

    renamed = client.patch(f"/categories/{watercraft['id']}", json={"slug": "Boats"}, headers=owner_headers)
    assert renamed.status_code == 200, renamed.text
    assert (renamed.json()["slug"], renamed.json()["product_count"]) == ("boats", 1)
    assert client.get(f"/products/{product['id']}", headers=owner_headers).json()["category_slug"] == "boats"
    assert [item["sku"] for item in client.get("/catalog/products", params={"category": "boats"}).json()["items"]] == [
        "KYK-001"
    ]

    blocked = client.delete(f"/categories/{watercraft['id']}", headers=owner_headers)
    assert blocked.status_code == 400
    assert blocked.json()["error"]["message"] == "Category 'boats' is still used by 1 product(s)"

    cleared = client.patch(f"/products/{product['id']}", json={"category_slug": None}, headers=owner_headers)
    assert cleared.status_code == 200, cleared.text
    assert client.delete(f"/categories/{watercraft['id']}", headers=owner_headers).status_code == 204
    assert client.get(f"/categories/{watercraft['id']}", headers=owner_headers).status_code == 404


def test_staff_can_read_but_not_edit_categories(test_context, owner_headers):
    client, _ = test_context
    _create(client, owner_headers, name="Apparel")
    staff = register_and_login(client, email="staff@rudark.my", role="staff", owner_headers=owner_headers)

    assert client.post("/categories", json={"name": "Rafts"}, headers=staff).status_code == 403
    listing = client.get("/categories", headers=staff)
    assert listing.status_code == 200
    assert [row["slug"] for row in listing.json()] == ["apparel"]
    assert client.get("/categories").status_code == 401
