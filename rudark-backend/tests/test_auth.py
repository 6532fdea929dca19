from conftest import auth_headers, register_and_login


def test_first_registration_becomes_owner(test_context):
    client, _ = test_context

    res = client.post(
        "/auth/register",
        json={"email": "Boss@Rudark.my", "full_name": "Boss", "password": "password123", "role": "staff"},
    )
    assert res.status_code == 201, res.text
    assert res.json()["role"] == "owner"
    assert res.json()["email"] == "boss@rudark.my"

    login = client.post("/auth/login", json={"email": "boss@rudark.my", "password": "password123"})
    assert login.status_code == 200, login.text
    body = login.json()
    assert body["token_type"] == "bearer"

    me = client.get("/auth/me", headers=auth_headers(body["access_token"]))
    assert me.status_code == 200
    assert me.json()["role"] == "owner"


def test_only_owner_can_register_more_admins(test_context, owner_headers):
    client, _ = test_context

    anonymous = client.post(
        "/auth/register",
        json={"email": "intruder@rudark.my", "full_name": "Intruder", "password": "password123", "role": "owner"},
    )
    assert anonymous.status_code == 403

    staff_headers = register_and_login(
        client, email="staff@rudark.my", role="staff", owner_headers=owner_headers
    )
    by_staff = client.post(
        "/auth/register",
        json={"email": "other@rudark.my", "full_name": "Other", "password": "password123", "role": "staff"},
        headers=staff_headers,
    )
    assert by_staff.status_code == 403

    duplicate = client.post(
        "/auth/register",
        json={"email": "STAFF@rudark.my", "full_name": "Dup", "password": "password123", "role": "staff"},
        headers=owner_headers,
    )
    assert duplicate.status_code == 409


def test_role_gates_on_admin_routes(test_context, owner_headers):
    client, _ = test_context
    staff_headers = register_and_login(
        client, email="staff@rudark.my", role="staff", owner_headers=owner_headers
    )

    assert client.get("/orders").status_code == 401
    assert client.get("/orders", headers=staff_headers).status_code == 200
    create = client.post(
        "/products",
        json={"sku": "RD-001", "name": "Tee", "web_price": 39.9},
        headers=staff_headers,
    )
    assert create.status_code == 403
    archive = client.post("/stock/archive/run", headers=staff_headers)
    assert archive.status_code == 403


def test_login_lockout_after_repeated_failures(test_context, owner_headers):
    client, _ = test_context

    for _ in range(5):
        res = client.post("/auth/login", json={"email": "owner@rudark.my", "password": "wrong-password"})
        assert res.status_code == 401

    locked = client.post("/auth/login", json={"email": "owner@rudark.my", "password": "password123"})
    assert locked.status_code == 429
    assert "Retry-After" in locked.headers
