from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

DeliveryMethod = Literal["delivery", "self_collection"]


class CheckoutCustomerIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    phone: str = Field(min_length=6, max_length=30)
    address: Optional[str] = Field(default=None, max_length=255)
    postcode: Optional[str] = Field(default=None, max_length=10)
    city: Optional[str] = Field(default=None, max_length=120)
    state: Optional[str] = Field(default=None, max_length=120)

    @field_validator("name", "phone")
    @classmethod
    def strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned


class CheckoutItemIn(BaseModel):
    product_id: str
    quantity: int = Field(gt=0, le=100)
    selected_options: dict[str, Any] = Field(default_factory=dict)


class ShippingQuoteIn(BaseModel):
    provider_code: str
    service_type: Optional[str] = None
    price: Decimal = Field(ge=0)


class CheckoutCreateIn(BaseModel):
    customer: CheckoutCustomerIn
    items: list[CheckoutItemIn]
    delivery_method: DeliveryMethod = "delivery"
    shipping: Optional[ShippingQuoteIn] = None
    collection_point_id: Optional[str] = None
    promo_code: Optional[str] = Field(default=None, max_length=40)
    region: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_delivery(self) -> "CheckoutCreateIn":
        if self.delivery_method == "delivery":
            if not self.customer.address or not self.customer.postcode:
                raise ValueError("address and postcode are required for delivery")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer": {
                    "name": "Aiman Rahman",
                    "email": "aiman@example.com",
                    "phone": "0123456789",
                    "address": "12 Jalan Bukit",
                    "postcode": "31400",
                    "city": "Ipoh",
                    "state": "Perak",
                },
                "items": [
                    {"product_id": "product-id", "quantity": 1, "selected_options": {"Size": "L"}}
                ],
                "delivery_method": "delivery",
                "shipping": {"provider_code": "jnt", "service_type": "Standard", "price": 8.5},
                "promo_code": "RAYA10",
                "region": "Peninsular",
            }
        }
    )


class CheckoutCreateOut(BaseModel):
    order_id: str
    status: str
    subtotal: float
    shipping_cost: float
    collection_fee: float
    discount_amount: float
    total_amount: float
    free_shipping: bool
    payment_gateway: str
    checkout_url: Optional[str] = None
    payment_instructions: Optional[str] = None


class ShippingRateOut(BaseModel):
    provider_code: str
    provider_name: str
    price: float
    service_type: str
    estimated_days: Optional[str] = None
    send_dates: list[str] = Field(default_factory=list)


class ShippingRatesOut(BaseModel):
    items: list[ShippingRateOut]


class WebhookOut(BaseModel):
    ok: bool = True
    gateway: str
    outcome: str
    order_id: Optional[str] = None
    order_status: Optional[str] = None
    duplicate: bool = False
