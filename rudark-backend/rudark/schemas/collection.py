from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from rudark.schemas.common import PaginationMeta
from rudark.schemas.order import OrderOut


class CollectionPointCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    address: str = Field(min_length=1, max_length=255)
    postcode: Optional[str] = Field(default=None, max_length=10)
    state: Optional[str] = Field(default=None, max_length=120)
    collection_fee: Decimal = Field(default=Decimal("0"), ge=0)
    operating_hours: Optional[str] = Field(default=None, max_length=255)
    contact_phone: Optional[str] = Field(default=None, max_length=30)
    is_active: bool = True


class CollectionPointUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    address: Optional[str] = Field(default=None, min_length=1, max_length=255)
    postcode: Optional[str] = Field(default=None, max_length=10)
    state: Optional[str] = Field(default=None, max_length=120)
    collection_fee: Optional[Decimal] = Field(default=None, ge=0)
    operating_hours: Optional[str] = Field(default=None, max_length=255)
    contact_phone: Optional[str] = Field(default=None, max_length=30)
    is_active: Optional[bool] = None


class CollectionPointOut(BaseModel):
    id: str
    name: str
    address: str
    postcode: Optional[str] = None
    state: Optional[str] = None
    collection_fee: float
    operating_hours: Optional[str] = None
    contact_phone: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None


class PublicCollectionPointOut(BaseModel):
    id: str
    name: str
    address: str
    postcode: Optional[str] = None
    state: Optional[str] = None
    collection_fee: float
    operating_hours: Optional[str] = None
    contact_phone: Optional[str] = None


class CollectionOrderListOut(BaseModel):
    items: list[OrderOut]
    pagination: PaginationMeta
