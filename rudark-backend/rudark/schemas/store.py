from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StoreCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    loyverse_store_id: str = Field(min_length=1, max_length=64)
    loyverse_payment_type_id: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=30)
    is_default: bool = False
    is_active: bool = True

    @field_validator("name", "loyverse_store_id")
    @classmethod
    def strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Rud'Ark Chulek",
                "loyverse_store_id": "loyverse-store-id",
                "loyverse_payment_type_id": "loyverse-payment-type-id",
                "address": "LOT 10846, Jalan Besar, Kampung Chulek",
                "is_default": True,
            }
        }
    )


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    loyverse_store_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    loyverse_payment_type_id: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=30)
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None


class StoreOut(BaseModel):
    id: str
    name: str
    loyverse_store_id: str
    loyverse_payment_type_id: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    is_default: bool
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
