import json
import os
from dataclasses import dataclass, field
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import rudark.models  # noqa: F401
from rudark.core.config import settings
from rudark.core.deps import get_db
from rudark.db.base import Base
from rudark.main import app
from rudark.routers.auth import login_rate_limiter
from rudark.routers.orders import order_search_rate_limiter
from rudark.services import carrier_provider, payment_provider, pos_provider
from rudark.services.carrier_provider import ShipmentResult, ShippingRate, TraceResult
from rudark.services.payment_provider import PaymentInitResult, ProviderError, PurchaseStatus
from rudark.services.webhook_service import SIGNATURE_HEADER, build_signature


@dataclass
class FakeChip:
    name: str = "chip"
    fail: bool = False
    paid: bool = True
    requests: list[Any] = field(default_factory=list)

    def initialize_checkout(self, request):
        if self.fail:
            raise ProviderError("CHIP error 500: gateway unavailable")
        self.requests.append(request)
        return PaymentInitResult(
            provider=self.name,
            status="PENDING",
            payment_reference=f"chip-{request.order_id}",
            checkout_url=f"https://gate.chip-in.asia/p/{request.order_id}/",
        )

    def verify_purchase(self, purchase_id, *, environment="test"):
        status = "paid" if self.paid else "created"
        return PurchaseStatus(purchase_id=purchase_id, status=status, paid=self.paid)


@dataclass
class FakeCarrier:
    name: str = "parcelasia"
    tracking_on_checkout: str | None = "JT630000000001"
    shipments: dict[str, dict[str, Any]] = field(default_factory=dict)
    traces: dict[str, TraceResult] = field(default_factory=dict)
    created: list[Any] = field(default_factory=list)

    def check_price(self, *, receiver_postcode, weight_kg):
        return [
            ShippingRate(
                provider_code="jnt",
                provider_name="J&T Express",
                price=Decimal("8.50"),
                service_type="parcel",
                estimated_days="2-3",
            ),
            ShippingRate(
                provider_code="poslaju",
                provider_name="Pos Laju",
                price=Decimal("9.90"),
                service_type="parcel",
            ),
        ]

    def create_shipment(self, request):
        self.created.append(request)
        return ShipmentResult(tracking_no="", shipment_key=f"key-{request.order_id}")

    def checkout(self, shipment_keys):
        return {key: self.tracking_on_checkout for key in shipment_keys}

    def get_shipments(self, shipment_keys):
        return {key: self.shipments[key] for key in shipment_keys if key in self.shipments}

    def trace(self, tracking_no):
        if tracking_no not in self.traces:
            raise ProviderError(f"No tracking found for {tracking_no}")
        return self.traces[tracking_no]


@dataclass
class FakePos:
    name: str = "loyverse"
    items: list[dict[str, Any]] = field(default_factory=list)
    inventory: list[dict[str, Any]] = field(default_factory=list)
    receipts: list[dict[str, Any]] = field(default_factory=list)
    pushed: list[list[dict[str, Any]]] = field(default_factory=list)

    def iter_items(self):
        return iter(self.items)

    def iter_inventory(self, *, store_id=None):
        return iter(
            level for level in self.inventory if store_id is None or level.get("store_id") == store_id
        )

    def get_stores(self):
        return [{"id": "store-1", "name": "Chulek"}]

    def create_receipt(self, payload):
        self.receipts.append(payload)
        return {"receipt_number": payload["receipt_number"]}

    def update_inventory(self, levels):
        self.pushed.append(levels)
        return {"inventory_levels": levels}


@pytest.fixture(autouse=True)
def fakes(monkeypatch):
    chip, carrier, pos = FakeChip(), FakeCarrier(), FakePos()
    monkeypatch.setitem(payment_provider._PAYMENT_PROVIDERS, "chip", chip)
    monkeypatch.setitem(carrier_provider._CARRIER_PROVIDERS, "parcelasia", carrier)
    monkeypatch.setitem(pos_provider._POS_CLIENTS, "loyverse", pos)
    return SimpleNamespace(chip=chip, carrier=carrier, pos=pos)


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    settings.secret_key = "test-secret-key"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    login_rate_limiter.clear()
    order_search_rate_limiter.clear()


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register_and_login(client, *, email: str, role: str = "owner", owner_headers=None) -> dict[str, str]:
    res = client.post(
        "/auth/register",
        json={"email": email, "full_name": email.split("@")[0].title(), "password": "password123", "role": role},
        headers=owner_headers or {},
    )
    assert res.status_code == 201, res.text
    login = client.post("/auth/login", json={"email": email, "password": "password123"})
    assert login.status_code == 200, login.text
    return auth_headers(login.json()["access_token"])


@pytest.fixture()
def owner_headers(test_context):
    client, _ = test_context
    return register_and_login(client, email="owner@rudark.my")


def create_product(client, headers, *, sku: str, price: float = 50.0, variants=None, **extra) -> dict:
    body = {"sku": sku, "name": f"Product {sku}", "web_price": price, "weight_kg": 0.5, **extra}
    if variants:
        body["variants"] = variants
    res = client.post("/products", json=body, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def receive_stock(client, headers, product_id: str, quantity: int, *, variant_sku: str | None = None) -> dict:
    res = client.post(
        "/stock/receive",
        json={"product_id": product_id, "variant_sku": variant_sku, "quantity": quantity},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()


def checkout_body(product_id: str, quantity: int = 1, **extra) -> dict:
    body = {
        "customer": {
            "name": "Aina Rahman",
            "email": "aina@rudark.my",
            "phone": "0123456789",
            "address": "12 Jalan Mawar",
            "postcode": "31600",
            "city": "Gopeng",
            "state": "Perak",
        },
        "items": [{"product_id": product_id, "quantity": quantity}],
        "delivery_method": "delivery",
        "shipping": {"provider_code": "jnt", "service_type": "parcel", "price": 8.5},
    }
    body.update(extra)
    return body


def signed_webhook(client, gateway: str, raw: bytes, content_type: str = "application/json"):
    return client.post(
        f"/webhooks/{gateway}",
        content=raw,
        headers={"Content-Type": content_type, SIGNATURE_HEADER: build_signature(gateway, raw)},
    )


def chip_paid(client, order_id: str, *, event_id: str | None = None, amount: int = 5850):
    payload = {
        "id": event_id or f"evt-paid-{order_id}",
        "type": "purchase.paid",
        "purchase": {
            "id": f"chip-{order_id}",
            "reference": order_id,
            "payment": {"amount": amount, "currency": "MYR", "paid_on": 1760000000},
            "transaction_data": {"payment_method": "fpx"},
        },
    }
    return signed_webhook(client, "chip", json.dumps(payload).encode("utf-8"))


def paid_order(client, headers, product_id: str, quantity: int = 1, **extra) -> str:
    res = client.post("/checkout", json=checkout_body(product_id, quantity, **extra))
    assert res.status_code == 201, res.text
    order_id = res.json()["order_id"]
    paid = chip_paid(client, order_id)
    assert paid.json()["outcome"] == "paid", paid.text
    return order_id
