import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Protocol

import requests

from rudark.core.config import settings
from rudark.services.payment_provider import ProviderError

ALLOWED_RATE_PROVIDERS = ("jnt", "poslaju")
FLYER_SIZES = ("flyers_s", "flyers_m", "flyers_l", "flyers_xl")
DEFAULT_DIMENSION_CM = Decimal("10")
DEFAULT_ITEM_WEIGHT_KG = Decimal("0.1")
TRACKING_FIELDS = ("tracking_no", "awb_no", "consignment_no", "tracking_number", "connote_no", "waybill_no")
DELIVERED_KEYWORDS = (
    "delivered",
    "signed",
    "received",
    "completed",
    "arrived",
    "serah",
    "terima",
    "berjaya",
    "dihantar",
)
MALAYSIA_TZ = timezone(timedelta(hours=8), "Asia/Kuala_Lumpur")


@dataclass(frozen=True)
class ShippingRate:
    provider_code: str
    provider_name: str
    price: Decimal
    service_type: str
    estimated_days: str | None = None
    send_dates: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ShipmentItem:
    name: str
    quantity: int
    weight_kg: Decimal | None = None
    parcel_size: str | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None


@dataclass(frozen=True)
class ShipmentContact:
    name: str
    phone: str
    email: str
    address_line_1: str
    postcode: str
    address_line_2: str = ""


@dataclass(frozen=True)
class ShipmentRequest:
    order_id: str
    provider_code: str
    content_value: Decimal
    sender: ShipmentContact
    receiver: ShipmentContact
    items: list[ShipmentItem]
    send_method: str = "pickup"
    content_type: str = "general"


@dataclass(frozen=True)
class ShipmentResult:
    tracking_no: str
    shipment_key: str


@dataclass(frozen=True)
class TraceResult:
    tracking_no: str
    status: str | None
    is_delivered: bool
    delivered_at: str | None = None
    events: list[dict[str, Any]] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


class CarrierProvider(Protocol):
    name: str

    def check_price(self, *, receiver_postcode: str, weight_kg: Decimal) -> list[ShippingRate]:
        ...

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        ...

    def checkout(self, shipment_keys: list[str]) -> dict[str, str | None]:
        ...

    def get_shipments(self, shipment_keys: list[str]) -> dict[str, dict[str, Any]]:
        ...

    def trace(self, tracking_no: str) -> TraceResult:
        ...


def clean_phone(phone: str | None) -> str:
    digits = re.sub(r"[^0-9]", "", phone or "")
    if digits.startswith("60"):
        digits = "0" + digits[2:]
    return digits


def extract_tracking(shipment: dict[str, Any] | None) -> str | None:
    if not isinstance(shipment, dict):
        return None
    for key in TRACKING_FIELDS:
        value = shipment.get(key)
        if value:
            return str(value)
    return None


def is_delivered_status(status: str | None) -> bool:
    lowered = (status or "").lower()
    return any(keyword in lowered for keyword in DELIVERED_KEYWORDS)


def next_send_date(now: datetime | None = None) -> str:
    current = (now or datetime.now(timezone.utc)).astimezone(MALAYSIA_TZ)
    return (current + timedelta(days=1)).strftime("%Y-%m-%d")


def parcel_size_for(items: Iterable[ShipmentItem]) -> tuple[str, dict[str, Decimal] | None]:
    """Box wins over flyers; otherwise the largest flyer, never below flyers_m."""
    items = list(items)
    if any(item.parcel_size == "box" for item in items):
        dims = {"length": DEFAULT_DIMENSION_CM, "width": DEFAULT_DIMENSION_CM, "height": DEFAULT_DIMENSION_CM}
        for item in items:
            dims["length"] = max(dims["length"], item.length_cm or DEFAULT_DIMENSION_CM)
            dims["width"] = max(dims["width"], item.width_cm or DEFAULT_DIMENSION_CM)
            dims["height"] = max(dims["height"], item.height_cm or DEFAULT_DIMENSION_CM)
        return "box", dims

    index = 1
    for item in items:
        if item.parcel_size in FLYER_SIZES:
            index = max(index, FLYER_SIZES.index(item.parcel_size))
    return FLYER_SIZES[index], None


def declared_weight(items: Iterable[ShipmentItem]) -> Decimal:
    total = sum(
        ((item.weight_kg or DEFAULT_ITEM_WEIGHT_KG) * item.quantity for item in items),
        Decimal("0"),
    )
    if total <= 0:
        total = Decimal("1.0")
    return total.quantize(Decimal("0.001"))


def _parse_price(raw: dict[str, Any]) -> Decimal:
    value = raw.get("effective_price") or raw.get("normal_price") or raw.get("price") or "0"
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


class ParcelAsiaCarrier:
    name = "parcelasia"

    def __init__(self, http: requests.Session | None = None):
        self.http = http or requests.Session()

    def _api_key(self) -> str:
        if not settings.parcelasia_api_key:
            raise ProviderError("ParcelAsia API key is not configured")
        return settings.parcelasia_api_key

    def _post(self, endpoint: str, payload: dict[str, Any]) -> Any:
        body = {"api_key": self._api_key(), **payload}
        try:
            response = self.http.post(
                f"{settings.parcelasia_base_url}/{endpoint}",
                json=body,
                timeout=settings.http_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"ParcelAsia {endpoint} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(f"ParcelAsia {endpoint} error {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"ParcelAsia {endpoint} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"ParcelAsia {endpoint} returned an unexpected payload")
        if data.get("status") is not True or not data.get("data"):
            raise ProviderError(data.get("message") or f"ParcelAsia {endpoint} returned no data")
        return data["data"]

    def _post_dict(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._post(endpoint, payload)
        if not isinstance(data, dict):
            raise ProviderError(f"ParcelAsia {endpoint} returned an unexpected payload")
        return data

    def check_price(self, *, receiver_postcode: str, weight_kg: Decimal) -> list[ShippingRate]:
        if not receiver_postcode or weight_kg <= 0:
            raise ProviderError("Invalid shipping parameters")
        data = self._post_dict(
            "check_price",
            {
                "sender_postcode": settings.default_sender_postcode,
                "receiver_postcode": receiver_postcode,
                "declared_weight": float(weight_kg),
                "receiver_country_code": "MY",
            },
        )
        rates = [
            ShippingRate(
                provider_code=str(raw.get("provider_code") or ""),
                provider_name=str(raw.get("provider_label") or raw.get("provider_code") or ""),
                price=_parse_price(raw),
                service_type=str(raw.get("service_type") or ""),
                estimated_days=raw.get("transit_time"),
                send_dates=list(raw.get("send_dates") or []),
            )
            for raw in data.get("prices") or []
            if isinstance(raw, dict)
        ]
        rates = [
            rate for rate in rates if rate.provider_code in ALLOWED_RATE_PROVIDERS and rate.price > 0
        ]
        return sorted(rates, key=lambda rate: rate.price)

    def build_shipment_payload(self, request: ShipmentRequest) -> dict[str, Any]:
        size, dims = parcel_size_for(request.items)
        description = ", ".join(item.name for item in request.items)[:50]
        payload: dict[str, Any] = {
            "send_method": request.send_method or "pickup",
            "send_date": next_send_date(),
            "type": "parcel",
            "declared_weight": float(declared_weight(request.items)),
            "provider_code": (request.provider_code or "").lower(),
            "content_type": request.content_type,
            "content_description": description or "Tactical Gear",
            "content_value": float(request.content_value),
            "size": size,
            "integration_order_id": request.order_id,
        }
        for prefix, contact in (("sender", request.sender), ("receiver", request.receiver)):
            payload.update(
                {
                    f"{prefix}_name": contact.name,
                    f"{prefix}_phone": clean_phone(contact.phone),
                    f"{prefix}_email": contact.email,
                    f"{prefix}_address_line_1": contact.address_line_1,
                    f"{prefix}_address_line_2": contact.address_line_2,
                    f"{prefix}_address_line_3": "",
                    f"{prefix}_address_line_4": "",
                    f"{prefix}_postcode": contact.postcode,
                }
            )
        if dims:
            payload.update({key: float(value) for key, value in dims.items()})
        return payload

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        data = self._post_dict("create_shipment", self.build_shipment_payload(request))
        return ShipmentResult(
            tracking_no=str(data.get("tracking_no") or data.get("shipment_key") or "PENDING"),
            shipment_key=str(data.get("shipment_id") or data.get("shipment_key") or "UNKNOWN"),
        )

    def checkout(self, shipment_keys: list[str]) -> dict[str, str | None]:
        data = self._post("checkout", {"shipment_keys": shipment_keys})
        tracking: dict[str, str | None] = {key: None for key in shipment_keys}
        shipments = data.get("shipments") if isinstance(data, dict) else None
        if isinstance(shipments, dict):
            for key, shipment in shipments.items():
                tracking[key] = extract_tracking(shipment)
        elif len(shipment_keys) == 1:
            direct = data[0] if isinstance(data, list) and data else data
            tracking[shipment_keys[0]] = extract_tracking(direct if isinstance(direct, dict) else None)
        return tracking

    def get_shipments(self, shipment_keys: list[str]) -> dict[str, dict[str, Any]]:
        data = self._post("get_shipments", {"shipment_keys": shipment_keys})
        if isinstance(data, list):
            return {
                str(item.get("shipment_key") or key): item
                for key, item in zip(shipment_keys, data)
                if isinstance(item, dict)
            }
        if not isinstance(data, dict):
            raise ProviderError("ParcelAsia get_shipments returned an unexpected payload")
        return dict(data)

    def trace(self, tracking_no: str) -> TraceResult:
        data = self._post_dict("trace", {"tracking_no": tracking_no})
        status = data.get("current_status") or data.get("status")
        events = list(data.get("events") or data.get("checkpoints") or [])
        delivered = is_delivered_status(status)
        delivered_at = None
        if delivered:
            delivered_at = (events[0].get("datetime") if events else None) or data.get("delivered_at")
        return TraceResult(
            tracking_no=tracking_no,
            status=status,
            is_delivered=delivered,
            delivered_at=delivered_at,
            events=events,
            raw=data,
        )


_CARRIER_PROVIDERS: dict[str, CarrierProvider] = {
    "parcelasia": ParcelAsiaCarrier(),
}


def get_carrier_provider(name: str = "parcelasia") -> CarrierProvider:
    normalized = (name or "").strip().lower()
    provider = _CARRIER_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_CARRIER_PROVIDERS))
        raise ValueError(f"Unknown carrier provider '{name}'. Available: {available}")
    return provider
