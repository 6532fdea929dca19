from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import requests

from rudark.core.config import settings
from rudark.core.money import to_cents


class ProviderError(ValueError):
    """An upstream gateway, POS or carrier call failed."""


@dataclass(frozen=True)
class PaymentLine:
    name: str
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class PaymentCustomer:
    email: str
    phone: str
    full_name: str
    street_address: str = ""
    city: str = ""
    zip_code: str = ""
    state: str = ""


@dataclass(frozen=True)
class PaymentInitRequest:
    order_id: str
    customer: PaymentCustomer
    lines: list[PaymentLine]
    items_subtotal: Decimal
    discount: Decimal
    shipping_cost: Decimal
    total: Decimal
    environment: str = "test"
    brand_id: str | None = None
    instructions: str | None = None


@dataclass(frozen=True)
class PaymentInitResult:
    provider: str
    status: str
    payment_reference: str | None = None
    checkout_url: str | None = None
    instructions: str | None = None


@dataclass(frozen=True)
class PurchaseStatus:
    purchase_id: str
    status: str
    paid: bool
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    name: str

    def initialize_checkout(self, request: PaymentInitRequest) -> PaymentInitResult:
        ...


def discounted_cents(unit_price: Decimal, ratio: Decimal) -> int:
    return max(1, to_cents(unit_price * (Decimal("1") - ratio)))


class ChipPaymentProvider:
    name = "chip"

    def __init__(self, http: requests.Session | None = None):
        self.http = http or requests.Session()

    def _headers(self, environment: str) -> dict[str, str]:
        api_key = settings.chip_api_key(environment)
        if not api_key:
            raise ProviderError(f"CHIP API key is not configured for {environment} environment")
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    @staticmethod
    def _json(response: requests.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise ProviderError(f"CHIP error {response.status_code}: {response.text[:300]}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("CHIP returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError("CHIP returned an unexpected payload")
        return data

    def build_purchase_payload(self, request: PaymentInitRequest) -> dict[str, Any]:
        ratio = Decimal("0")
        if request.discount > 0 and request.items_subtotal > 0:
            ratio = request.discount / request.items_subtotal

        products = [
            {
                "name": line.name,
                "price": discounted_cents(line.unit_price, ratio),
                "quantity": line.quantity,
            }
            for line in request.lines
        ]
        if request.shipping_cost > 0:
            products.append(
                {"name": "Shipping Fee", "price": to_cents(request.shipping_cost), "quantity": 1}
            )

        shop = settings.public_base_url
        return {
            "brand_id": request.brand_id or settings.chip_brand_id,
            "reference": request.order_id,
            "client": {
                "email": request.customer.email,
                "phone": request.customer.phone,
                "full_name": request.customer.full_name,
                "street_address": request.customer.street_address,
                "city": request.customer.city,
                "zip_code": request.customer.zip_code,
                "state": request.customer.state,
                "country": "MY",
            },
            "purchase": {"currency": "MYR", "products": products},
            "success_redirect": f"{shop}/checkout/success?order_id={request.order_id}",
            "failure_redirect": f"{shop}/checkout/failed?order_id={request.order_id}",
            "cancel_redirect": f"{shop}/checkout?cancelled={request.order_id}",
            "success_callback": f"{settings.api_base_url}/webhooks/chip",
        }

    def initialize_checkout(self, request: PaymentInitRequest) -> PaymentInitResult:
        payload = self.build_purchase_payload(request)
        try:
            response = self.http.post(
                f"{settings.chip_base_url}/purchases/",
                json=payload,
                headers=self._headers(request.environment),
                timeout=settings.http_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"CHIP request failed: {exc}") from exc
        data = self._json(response)
        if not data.get("id") or not data.get("checkout_url"):
            raise ProviderError("CHIP response is missing purchase id or checkout_url")
        return PaymentInitResult(
            provider=self.name,
            status="PENDING",
            payment_reference=str(data["id"]),
            checkout_url=data["checkout_url"],
        )

    def verify_purchase(self, purchase_id: str, *, environment: str = "test") -> PurchaseStatus:
        try:
            response = self.http.get(
                f"{settings.chip_base_url}/purchases/{purchase_id}/",
                headers=self._headers(environment),
                timeout=settings.http_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"CHIP request failed: {exc}") from exc
        data = self._json(response)
        status = str(data.get("status") or "unknown")
        return PurchaseStatus(purchase_id=purchase_id, status=status, paid=status == "paid", raw=data)


class ManualPaymentProvider:
    name = "manual"

    def initialize_checkout(self, request: PaymentInitRequest) -> PaymentInitResult:
        return PaymentInitResult(
            provider=self.name,
            status="PENDING_PAYMENT",
            payment_reference=f"MANUAL-{request.order_id}",
            instructions=request.instructions,
        )


_PAYMENT_PROVIDERS: dict[str, PaymentProvider] = {
    "chip": ChipPaymentProvider(),
    "manual": ManualPaymentProvider(),
}


def get_payment_provider(name: str) -> PaymentProvider:
    normalized = (name or "").strip().lower()
    provider = _PAYMENT_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_PAYMENT_PROVIDERS.keys()))
        raise ValueError(f"Unknown payment provider '{name}'. Available: {available}")
    return provider
