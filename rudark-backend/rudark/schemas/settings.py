from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChipSettings(BaseModel):
    environment: Literal["test", "live"] = "test"
    brand_id: Optional[str] = None


class ManualPaymentSettings(BaseModel):
    payment_instructions: str = "Transfer the total to our bank account and send the receipt with your order ID."
    require_admin_approval: bool = True


class PaymentSettings(BaseModel):
    enabled_gateway: str = "chip"
    chip: ChipSettings = Field(default_factory=ChipSettings)
    manual: ManualPaymentSettings = Field(default_factory=ManualPaymentSettings)

    @field_validator("enabled_gateway", mode="before")
    @classmethod
    def fallback_gateway(cls, value: str | None) -> str:
        # Legacy values (e.g. bizappay) route to CHIP.
        normalized = (value or "").strip().lower()
        return normalized if normalized in {"chip", "manual"} else "chip"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "enabled_gateway": "manual",
                "chip": {"environment": "test", "brand_id": "brand-id"},
                "manual": {
                    "payment_instructions": "Maybank 5140 1234 5678 (Rudark Enterprise)",
                    "require_admin_approval": True,
                },
            }
        }
    )


class ShippingSettings(BaseModel):
    free_shipping_enabled: bool = False
    free_shipping_threshold: Decimal = Field(default=Decimal("100"), ge=0)
    free_shipping_applies_to: Literal["all", "specific"] = "all"
    free_shipping_regions: list[str] = Field(default_factory=list)
    free_shipping_categories: list[str] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "free_shipping_enabled": True,
                "free_shipping_threshold": 150,
                "free_shipping_applies_to": "specific",
                "free_shipping_regions": ["Peninsular"],
                "free_shipping_categories": ["apparel"],
            }
        }
    )


class CollectionSettings(BaseModel):
    enabled: bool = False


class SenderProfile(BaseModel):
    store_name: str = "Rud'Ark Shop"
    phone: str = "01124077231"
    support_email: str = "rudark.my@gmail.com"
    address_line_1: str = "LOT 10846"
    address_line_2: str = "Jalan Besar, Kampung Chulek"
    postcode: str = "31600"
    send_method: Literal["pickup", "dropoff"] = "pickup"


class StorefrontSettingsOut(BaseModel):
    payment_gateway: str
    free_shipping_enabled: bool
    free_shipping_threshold: float
    free_shipping_applies_to: str
    free_shipping_regions: list[str]
    collection_enabled: bool
