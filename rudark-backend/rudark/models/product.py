from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rudark.core.id_utils import generate_uuid
from rudark.db.base import Base

STOCK_STATUSES = {"IN_STOCK", "LOW_STOCK", "OUT_OF_STOCK", "ARCHIVED"}
PARCEL_SIZES = ("flyers_s", "flyers_m", "flyers_l", "flyers_xl", "box")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    web_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    promo_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    category_slug: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    images: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    stock_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="OUT_OF_STOCK", server_default="OUT_OF_STOCK"
    )
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")

    loyverse_item_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    loyverse_variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Parent totals; equal to the variant sums whenever variants exist.
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_stock_sync: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 3), nullable=True)
    parcel_size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    length_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    width_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    variants: Mapped[list["ProductVariant"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.sku",
    )

    __table_args__ = (
        Index("ix_products_category_created_at", "category_slug", "created_at"),
    )


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    options: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    price_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    loyverse_variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    product: Mapped[Product] = relationship(back_populates="variants")

    @property
    def label(self) -> str:
        return " / ".join(str(value) for value in (self.options or {}).values())
