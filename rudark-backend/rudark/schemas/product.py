from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rudark.schemas.common import PaginationMeta

ParcelSize = Literal["flyers_s", "flyers_m", "flyers_l", "flyers_xl", "box"]


class VariantCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=100)
    options: dict[str, Any] = Field(default_factory=dict)
    price_override: Optional[Decimal] = Field(default=None, gt=0)
    loyverse_variant_id: Optional[str] = None

    @field_validator("sku")
    @classmethod
    def normalize_sku(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("sku is required")
        return cleaned


class VariantUpdate(BaseModel):
    options: Optional[dict[str, Any]] = None
    price_override: Optional[Decimal] = Field(default=None, gt=0)
    loyverse_variant_id: Optional[str] = None


class ProductCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    web_price: Decimal = Field(gt=0)
    promo_price: Optional[Decimal] = Field(default=None, gt=0)
    category_slug: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_featured: bool = False
    is_active: bool = True
    loyverse_item_id: Optional[str] = None
    loyverse_variant_id: Optional[str] = None
    weight_kg: Optional[Decimal] = Field(default=None, gt=0)
    parcel_size: Optional[ParcelSize] = None
    length_cm: Optional[int] = Field(default=None, gt=0)
    width_cm: Optional[int] = Field(default=None, gt=0)
    height_cm: Optional[int] = Field(default=None, gt=0)
    variants: list[VariantCreate] = Field(default_factory=list)

    @field_validator("sku", "name")
    @classmethod
    def strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("category_slug")
    @classmethod
    def normalize_category(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip().lower()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "sku": "RD-TSHIRT-01",
                "name": "Tactical Tee",
                "web_price": 59.9,
                "promo_price": 49.9,
                "category_slug": "apparel",
                "images": ["https://cdn.rudark.my/tee.jpg"],
                "weight_kg": 0.3,
                "parcel_size": "flyers_m",
                "variants": [
                    {"sku": "RD-TSHIRT-01-M", "options": {"Size": "M"}},
                    {"sku": "RD-TSHIRT-01-L", "options": {"Size": "L"}},
                ],
            }
        }
    )


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    web_price: Optional[Decimal] = Field(default=None, gt=0)
    promo_price: Optional[Decimal] = Field(default=None, gt=0)
    clear_promo_price: bool = False
    category_slug: Optional[str] = None
    images: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    loyverse_item_id: Optional[str] = None
    loyverse_variant_id: Optional[str] = None
    weight_kg: Optional[Decimal] = Field(default=None, gt=0)
    parcel_size: Optional[ParcelSize] = None
    length_cm: Optional[int] = Field(default=None, gt=0)
    width_cm: Optional[int] = Field(default=None, gt=0)
    height_cm: Optional[int] = Field(default=None, gt=0)

    @field_validator("category_slug")
    @classmethod
    def normalize_category(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip().lower()
        return cleaned or None


class VariantOut(BaseModel):
    id: str
    sku: str
    options: dict[str, Any]
    label: str
    price: float
    price_override: Optional[float] = None
    stock_quantity: int
    reserved_quantity: int
    available_quantity: int
    loyverse_variant_id: Optional[str] = None


class ProductOut(BaseModel):
    id: str
    sku: str
    name: str
    description: Optional[str] = None
    price: float
    web_price: float
    promo_price: Optional[float] = None
    category_slug: Optional[str] = None
    images: list[str]
    tags: list[str]
    stock_status: str
    is_featured: bool
    is_active: bool
    stock_quantity: int
    reserved_quantity: int
    available_quantity: int
    loyverse_item_id: Optional[str] = None
    loyverse_variant_id: Optional[str] = None
    last_stock_sync: Optional[datetime] = None
    weight_kg: Optional[float] = None
    parcel_size: Optional[str] = None
    length_cm: Optional[int] = None
    width_cm: Optional[int] = None
    height_cm: Optional[int] = None
    variants: list[VariantOut]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductListOut(BaseModel):
    items: list[ProductOut]
    pagination: PaginationMeta


class PublicVariantOut(BaseModel):
    sku: str
    options: dict[str, Any]
    label: str
    price: float
    available_quantity: int


class PublicProductOut(BaseModel):
    id: str
    sku: str
    name: str
    description: Optional[str] = None
    price: float
    web_price: float
    promo_price: Optional[float] = None
    category_slug: Optional[str] = None
    images: list[str]
    tags: list[str]
    stock_status: str
    is_featured: bool
    available_quantity: int
    weight_kg: Optional[float] = None
    variants: list[PublicVariantOut]


class PublicProductListOut(BaseModel):
    items: list[PublicProductOut]
    pagination: PaginationMeta
