from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ConsignmentLineIn(BaseModel):
    product_id: str
    variant_sku: Optional[str] = None
    quantity: int = Field(gt=0, le=10_000)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)


class ConsignmentCreate(BaseModel):
    partner_name: str = Field(min_length=1, max_length=120)
    partner_contact: Optional[str] = Field(default=None, max_length=120)
    partner_phone: Optional[str] = Field(default=None, max_length=30)
    notes: Optional[str] = None
    items: list[ConsignmentLineIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "partner_name": "Kedai Outdoor Ipoh",
                "partner_phone": "0125551234",
                "items": [{"product_id": "product-id", "variant_sku": "RD-TSHIRT-01-L", "quantity": 10}],
            }
        }
    )


class SaleLineIn(BaseModel):
    item_id: str
    quantity: int = Field(gt=0)


class RecordSalesIn(BaseModel):
    items: list[SaleLineIn] = Field(min_length=1)


class ReconcileLineIn(BaseModel):
    item_id: str
    quantity_returned: int = Field(default=0, ge=0)
    quantity_lost: int = Field(default=0, ge=0)


class ReconcileIn(BaseModel):
    items: list[ReconcileLineIn] = Field(min_length=1)


class ConsignmentItemOut(BaseModel):
    id: str
    product_id: str
    product_name: str
    variant_sku: Optional[str] = None
    variant_label: Optional[str] = None
    unit_price: float
    quantity_sent: int
    quantity_sold: int
    quantity_returned: int
    quantity_lost: int
    quantity_pending: int


class ConsignmentSummaryOut(BaseModel):
    total_sent: int
    total_sold: int
    total_returned: int
    total_lost: int
    total_pending: int
    value_sent: float
    value_sold: float
    value_returned: float
    value_lost: float
    is_fully_reconciled: bool


class ConsignmentOut(BaseModel):
    id: str
    consignment_number: str
    partner_name: str
    partner_contact: Optional[str] = None
    partner_phone: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    sent_at: Optional[datetime] = None
    reconciled_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: list[ConsignmentItemOut]
    summary: ConsignmentSummaryOut
