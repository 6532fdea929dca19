from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from conftest import checkout_body, chip_paid, create_product, receive_stock
from rudark.core.config import settings
from rudark.services import carrier_provider
from rudark.services.carrier_provider import (
    ParcelAsiaCarrier,
    ShipmentContact,
    ShipmentItem,
    ShipmentRequest,
    clean_phone,
    extract_tracking,
    is_delivered_status,
    next_send_date,
    parcel_size_for,
)
from rudark.services.payment_provider import (
    ChipPaymentProvider,
    PaymentCustomer,
    PaymentInitRequest,
    PaymentLine,
    ProviderError,
)
from rudark.services.pos_provider import PAGE_LIMIT, LoyverseClient

INVALID_JSON = object()


class StubResponse:
    def __init__(self, body: Any, status_code: int = 200):
        self.body = body
        self.status_code = status_code
        self.text = "<html>upstream</html>" if body is INVALID_JSON else str(body)

    def json(self):
        if self.body is INVALID_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.body


@dataclass
class StubSession:
    """Stands in for requests.Session; answers calls in order."""

    responses: list[Any]
    calls: list[dict[str, Any]] = field(default_factory=list)

    def _next(self, **call) -> StubResponse:
        self.calls.append(call)
        response = self.responses.pop(0)
        return response if isinstance(response, StubResponse) else StubResponse(response)

    def post(self, url, *, json=None, headers=None, timeout=None):
        return self._next(method="POST", url=url, json=json, headers=headers)

    def get(self, url, *, headers=None, timeout=None):
        return self._next(method="GET", url=url, headers=headers)

    def request(self, method, url, *, params=None, json=None, headers=None, timeout=None):
        return self._next(method=method, url=url, params=params, json=json, headers=headers)


def _payment_request(**overrides) -> PaymentInitRequest:
    values = {
        "order_id": "ORD-1760000000000",
        "customer": PaymentCustomer(email="aina@rudark.my", phone="0123456789", full_name="Aina Rahman"),
        "lines": [
            PaymentLine(name="Plate Carrier", unit_price=Decimal("100.00"), quantity=1),
            PaymentLine(name="Velcro Patch", unit_price=Decimal("0.01"), quantity=1),
        ],
        "items_subtotal": Decimal("100.01"),
        "discount": Decimal("90.00"),
        "shipping_cost": Decimal("8.50"),
        "total": Decimal("18.51"),
    }
    values.update(overrides)
    return PaymentInitRequest(**values)


def _shipment_request(**overrides) -> ShipmentRequest:
    contact = ShipmentContact(
        name="Rudark",
        phone="+60 12-345 6789",
        email="ops@rudark.my",
        address_line_1="Lot 5 Jalan Industri",
        postcode="31600",
    )
    values = {
        "order_id": "ORD-1760000000000",
        "provider_code": "JNT",
        "content_value": Decimal("58.50"),
        "sender": contact,
        "receiver": contact,
        "items": [ShipmentItem(name="Plate Carrier", quantity=1, weight_kg=Decimal("0.5"))],
    }
    values.update(overrides)
    return ShipmentRequest(**values)


def test_chip_payload_prices_in_cents_with_proportional_discount():
    payload = ChipPaymentProvider(http=StubSession([])).build_purchase_payload(_payment_request())

    assert payload["reference"] == "ORD-1760000000000"
    assert payload["purchase"]["currency"] == "MYR"
    assert payload["purchase"]["products"] == [
        {"name": "Plate Carrier", "price": 1001, "quantity": 1},
        # A discounted line never drops below one cent.
        {"name": "Velcro Patch", "price": 1, "quantity": 1},
        {"name": "Shipping Fee", "price": 850, "quantity": 1},
    ]
    assert payload["client"]["country"] == "MY"
    assert payload["success_callback"] == f"{settings.api_base_url}/webhooks/chip"

    free_shipping = ChipPaymentProvider(http=StubSession([])).build_purchase_payload(
        _payment_request(discount=Decimal("0"), shipping_cost=Decimal("0"))
    )
    assert [line["price"] for line in free_shipping["purchase"]["products"]] == [10000, 1]


def test_chip_uses_the_key_for_its_environment(monkeypatch):
    monkeypatch.setattr(settings, "chip_api_key_live", "live-key")
    monkeypatch.setattr(settings, "chip_api_key_test", "test-key")
    http = StubSession(
        [
            {"id": "pur-1", "checkout_url": "https://gate.chip-in.asia/p/pur-1/"},
            {"id": "pur-1", "status": "paid"},
        ]
    )
    provider = ChipPaymentProvider(http=http)

    result = provider.initialize_checkout(_payment_request(environment="live"))
    assert (result.payment_reference, result.checkout_url) == ("pur-1", "https://gate.chip-in.asia/p/pur-1/")
    status = provider.verify_purchase("pur-1", environment="test")
    assert status.paid is True

    assert [call["headers"]["Authorization"] for call in http.calls] == ["Bearer live-key", "Bearer test-key"]
    assert http.calls[1]["url"].endswith("/purchases/pur-1/")


def test_chip_bad_bodies_raise_provider_errors(monkeypatch):
    monkeypatch.setattr(settings, "chip_api_key_test", "test-key")
    provider = ChipPaymentProvider(
        http=StubSession([INVALID_JSON, ["not", "a", "dict"], {"id": "pur-2"}, StubResponse({}, 503)])
    )

    with pytest.raises(ProviderError, match="invalid JSON"):
        provider.initialize_checkout(_payment_request())
    with pytest.raises(ProviderError, match="unexpected payload"):
        provider.verify_purchase("pur-2")
    with pytest.raises(ProviderError, match="missing purchase id or checkout_url"):
        provider.initialize_checkout(_payment_request())
    with pytest.raises(ProviderError, match="CHIP error 503"):
        provider.verify_purchase("pur-2")


def test_parcel_size_rules():
    assert parcel_size_for([]) == ("flyers_m", None)
    assert parcel_size_for([ShipmentItem(name="Patch", quantity=1, parcel_size="flyers_s")]) == ("flyers_m", None)
    assert parcel_size_for(
        [
            ShipmentItem(name="Pouch", quantity=1, parcel_size="flyers_l"),
            ShipmentItem(name="Patch", quantity=2, parcel_size="flyers_s"),
        ]
    ) == ("flyers_l", None)

    size, dims = parcel_size_for(
        [
            ShipmentItem(
                name="Helmet",
                quantity=1,
                parcel_size="box",
                length_cm=Decimal("30"),
                width_cm=Decimal("20"),
                height_cm=Decimal("15"),
            ),
            ShipmentItem(name="Vest", quantity=1, parcel_size="flyers_xl", length_cm=Decimal("40")),
        ]
    )
    assert size == "box"
    assert dims == {"length": Decimal("40"), "width": Decimal("20"), "height": Decimal("15")}


def test_carrier_helpers():
    assert clean_phone("+60 12-345 6789") == "0123456789"
    assert clean_phone("012-345 6789") == "0123456789"
    assert clean_phone(None) == ""

    # 17:30 UTC is already the next day in Kuala Lumpur.
    assert next_send_date(datetime(2026, 10, 19, 17, 30, tzinfo=timezone.utc)) == "2026-10-21"
    assert next_send_date(datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)) == "2026-10-20"

    assert extract_tracking({"tracking_no": "JT1", "awb_no": "AWB1"}) == "JT1"
    assert extract_tracking({"awb_no": "", "consignment_no": "MY123"}) == "MY123"
    assert extract_tracking({"waybill_no": 8812}) == "8812"
    assert extract_tracking(None) is None
    assert extract_tracking(["JT1"]) is None

    assert is_delivered_status("Parcel Delivered")
    assert is_delivered_status("SIGNED by receiver")
    assert is_delivered_status("Telah dihantar")
    assert not is_delivered_status("In transit")
    assert not is_delivered_status(None)


def test_check_price_keeps_jnt_and_poslaju_cheapest_first(monkeypatch):
    monkeypatch.setattr(settings, "parcelasia_api_key", "pa-key")
    http = StubSession(
        [
            {
                "status": True,
                "data": {
                    "prices": [
                        {"provider_code": "poslaju", "provider_label": "Pos Laju", "effective_price": "9.90"},
                        {"provider_code": "dhl", "provider_label": "DHL", "effective_price": "5.00"},
                        {"provider_code": "jnt", "provider_label": "J&T Express", "normal_price": "8.50"},
                        {"provider_code": "jnt", "effective_price": "0"},
                        "junk",
                    ]
                },
            }
        ]
    )
    rates = ParcelAsiaCarrier(http=http).check_price(receiver_postcode="31600", weight_kg=Decimal("1.2"))

    assert [(rate.provider_code, rate.price) for rate in rates] == [
        ("jnt", Decimal("8.50")),
        ("poslaju", Decimal("9.90")),
    ]
    body = http.calls[0]["json"]
    assert body["api_key"] == "pa-key"
    assert body["receiver_postcode"] == "31600"
    assert body["declared_weight"] == 1.2


def test_shipment_payload_and_tracking_fallback(monkeypatch):
    monkeypatch.setattr(settings, "parcelasia_api_key", "pa-key")
    http = StubSession(
        [
            {"status": True, "data": {"shipment_id": "SHP-9"}},
            {"status": True, "data": [{"consignment_no": "MY9988"}]},
        ]
    )
    carrier = ParcelAsiaCarrier(http=http)

    result = carrier.create_shipment(_shipment_request())
    assert result.shipment_key == "SHP-9"
    sent = http.calls[0]["json"]
    assert sent["provider_code"] == "jnt"
    assert sent["size"] == "flyers_m"
    assert sent["receiver_phone"] == "0123456789"
    assert sent["declared_weight"] == 0.5

    assert carrier.checkout(["SHP-9"]) == {"SHP-9": "MY9988"}


def test_carrier_bad_bodies_raise_provider_errors(monkeypatch):
    monkeypatch.setattr(settings, "parcelasia_api_key", "pa-key")
    carrier = ParcelAsiaCarrier(
        http=StubSession(
            [
                INVALID_JSON,
                [{"status": True}],
                {"status": True, "data": ["SHP-1"]},
                {"status": False, "message": "Insufficient credit"},
            ]
        )
    )

    with pytest.raises(ProviderError, match="invalid JSON"):
        carrier.create_shipment(_shipment_request())
    with pytest.raises(ProviderError, match="unexpected payload"):
        carrier.trace("JT630000000001")
    with pytest.raises(ProviderError, match="unexpected payload"):
        carrier.create_shipment(_shipment_request())
    with pytest.raises(ProviderError, match="Insufficient credit"):
        carrier.create_shipment(_shipment_request())


def test_paid_webhook_survives_a_garbled_carrier_reply(test_context, owner_headers, monkeypatch):
    client, _ = test_context
    product = create_product(client, owner_headers, sku="PRV-001")
    receive_stock(client, owner_headers, product["id"], 2)
    order_id = client.post("/checkout", json=checkout_body(product["id"])).json()["order_id"]

    monkeypatch.setattr(settings, "parcelasia_api_key", "pa-key")
    real_carrier = ParcelAsiaCarrier(http=StubSession([INVALID_JSON]))
    monkeypatch.setitem(carrier_provider._CARRIER_PROVIDERS, "parcelasia", real_carrier)

    paid = chip_paid(client, order_id)
    assert paid.status_code == 200, paid.text
    assert paid.json()["order_status"] == "PAID"

    order = client.get(f"/orders/{order_id}", headers=owner_headers).json()
    assert order["payment_status"] == "paid"
    assert order["stock_deducted"] is True
    assert order["shipping_status"] == "SHIPMENT_FAILED"
    assert order["shipping_error"] == "ParcelAsia create_shipment returned invalid JSON"


def test_loyverse_pages_follow_the_cursor(monkeypatch):
    monkeypatch.setattr(settings, "loyverse_api_token", "lv-token")
    http = StubSession(
        [
            {"items": [{"id": "item-1"}], "cursor": "page-2"},
            {"items": [{"id": "item-2"}, "junk"], "cursor": None},
        ]
    )

    items = list(LoyverseClient(http=http).iter_items())

    assert [item["id"] for item in items] == ["item-1", "item-2"]
    assert [call["params"] for call in http.calls] == [
        {"limit": PAGE_LIMIT},
        {"limit": PAGE_LIMIT, "cursor": "page-2"},
    ]
    assert http.calls[0]["headers"]["Authorization"] == "Bearer lv-token"


def test_loyverse_bad_bodies_raise_provider_errors(monkeypatch):
    monkeypatch.setattr(settings, "loyverse_api_token", "lv-token")
    client = LoyverseClient(http=StubSession([INVALID_JSON, [{"id": "store-1"}], StubResponse({}, 401)]))

    with pytest.raises(ProviderError, match="invalid JSON"):
        client.create_receipt({"receipt_number": "R-1"})
    with pytest.raises(ProviderError, match="unexpected payload"):
        client.get_stores()
    with pytest.raises(ProviderError, match=r"Loyverse API Error \[401\]"):
        client.update_inventory([])


def test_receipt_with_unmapped_line_is_partial_sync(test_context, owner_headers, fakes):
    client, _ = test_context
    client.post(
        "/stores",
        json={"name": "Chulek", "loyverse_store_id": "lv-store-1", "is_default": True},
        headers=owner_headers,
    )
    mapped = create_product(client, owner_headers, sku="PRV-002", loyverse_variant_id="lv-var-2")
    unmapped = create_product(client, owner_headers, sku="PRV-003")
    receive_stock(client, owner_headers, mapped["id"], 2)
    receive_stock(client, owner_headers, unmapped["id"], 2)

    body = checkout_body(mapped["id"])
    body["items"].append({"product_id": unmapped["id"], "quantity": 1})
    order_id = client.post("/checkout", json=body).json()["order_id"]
    assert chip_paid(client, order_id).json()["outcome"] == "paid"

    order = client.get(f"/orders/{order_id}", headers=owner_headers).json()
    assert order["loyverse_status"] == "PARTIAL_SYNC"
    assert fakes.pos.receipts[0]["line_items"] == [{"variant_id": "lv-var-2", "quantity": 1, "price": 50.0}]
