from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rudark.schemas.common import PaginationMeta


class StockLineIn(BaseModel):
    product_id: str
    variant_sku: Optional[str] = None


class StockReceiveIn(StockLineIn):
    quantity: int = Field(gt=0, le=100_000)
    reason: Optional[str] = Field(default=None, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=64)
    store_id: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id",
                "variant_sku": "RD-TSHIRT-01-L",
                "quantity": 24,
                "reason": "Supplier delivery",
                "reference": "PO-2026-014",
            }
        }
    )


class StockAdjustIn(StockLineIn):
    target_quantity: Optional[int] = Field(default=None, ge=0)
    delta: Optional[int] = None
    reason: str = Field(min_length=1, max_length=255)

    @model_validator(mode="after")
    def validate_mode(self) -> "StockAdjustIn":
        if (self.target_quantity is None) == (self.delta is None):
            raise ValueError("Provide exactly one of target_quantity or delta")
        if self.delta == 0:
            raise ValueError("delta cannot be zero")
        return self


class StockDamageIn(StockLineIn):
    quantity: int = Field(gt=0, le=100_000)
    reason: str = Field(min_length=1, max_length=255)


class PosSaleIn(StockLineIn):
    quantity: int = Field(gt=0, le=100_000)
    reference: Optional[str] = Field(default=None, max_length=64)


class StockMovementOut(BaseModel):
    id: str
    product_id: str
    variant_id: Optional[str] = None
    product_name: str
    variant_sku: Optional[str] = None
    variant_label: Optional[str] = None
    movement_type: str
    quantity: int
    previous_quantity: int
    new_quantity: int
    reason: Optional[str] = None
    reference: Optional[str] = None
    store_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class StockMovementListOut(BaseModel):
    items: list[StockMovementOut]
    pagination: PaginationMeta


class LowStockItemOut(BaseModel):
    product_id: str
    product_name: str
    sku: str
    variant_sku: Optional[str] = None
    variant_label: Optional[str] = None
    stock_quantity: int
    reserved_quantity: int
    available_quantity: int


class LowStockOut(BaseModel):
    threshold: int
    items: list[LowStockItemOut]


class ArchiveStatsOut(BaseModel):
    active_count: int
    archived_count: int
    oldest_active_at: Optional[datetime] = None
    archivable_count: int
    archive_after_days: int


class ArchiveRunOut(BaseModel):
    archived: int
    cutoff_days: int


class ArchivedMovementOut(StockMovementOut):
    archived_at: Optional[datetime] = None


class ArchivedMovementListOut(BaseModel):
    items: list[ArchivedMovementOut]
    pagination: PaginationMeta


class ArchiveRestoreIn(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=500)


class ArchiveRestoreOut(BaseModel):
    restored: int
