from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class StockAuditCreate(BaseModel):
    product_ids: list[str] = Field(min_length=1)
    store_id: Optional[str] = None
    notes: Optional[str] = None


class CountLineIn(BaseModel):
    item_id: str
    counted_quantity: int = Field(ge=0)


class RecordCountsIn(BaseModel):
    items: list[CountLineIn] = Field(min_length=1)


class StockAuditItemOut(BaseModel):
    id: str
    product_id: str
    product_name: str
    variant_sku: Optional[str] = None
    variant_label: Optional[str] = None
    system_quantity: int
    counted_quantity: Optional[int] = None
    discrepancy: Optional[int] = None
    applied: bool


class StockAuditOut(BaseModel):
    id: str
    audit_number: str
    store_id: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    counted_items: int
    discrepancy_items: int
    items: list[StockAuditItemOut]


class StockAuditApplyOut(BaseModel):
    audit: StockAuditOut
    adjustments_posted: int
