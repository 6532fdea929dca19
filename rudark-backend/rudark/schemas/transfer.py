from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TransferLineIn(BaseModel):
    product_id: str
    variant_sku: Optional[str] = None
    quantity: int = Field(gt=0, le=10_000)


class TransferCreate(BaseModel):
    from_store_id: str
    to_store_id: str
    notes: Optional[str] = Field(default=None, max_length=255)
    items: list[TransferLineIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "from_store_id": "store-a",
                "to_store_id": "store-b",
                "items": [{"product_id": "product-id", "quantity": 5}],
            }
        }
    )


class ReceivedLineIn(BaseModel):
    item_id: str
    received_quantity: int = Field(ge=0)


class TransferCompleteIn(BaseModel):
    items: list[ReceivedLineIn] = Field(default_factory=list)


class TransferCancelIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class TransferItemOut(BaseModel):
    id: str
    product_id: str
    product_name: str
    variant_sku: Optional[str] = None
    variant_label: Optional[str] = None
    quantity: int
    received_quantity: Optional[int] = None


class TransferOut(BaseModel):
    id: str
    transfer_number: str
    from_store_id: str
    to_store_id: str
    status: str
    notes: Optional[str] = None
    cancelled_reason: Optional[str] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: list[TransferItemOut]
