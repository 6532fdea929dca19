from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rudark.core.id_utils import generate_uuid
from rudark.db.base import Base


class Order(Base):
    """
    A storefront order. Rows are never deleted; every change is a status
    transition or an integration side effect recorded on the row.
    """
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # ORD-<epoch ms>
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="PENDING", server_default="PENDING")

    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    customer_phone: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    delivery_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default="delivery", server_default="delivery"
    )
    shipping_provider: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    shipping_service: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    collection_point_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("collection_points.id"), nullable=True
    )
    collection_point_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    collection_point_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    collection_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    refunded_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    promo_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    free_shipping: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    payment_gateway: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    payment_environment: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    checkout_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    payment_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    payment_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payment_reviewed_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    payment_rejection_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    stock_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    stock_deducted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    stock_deducted_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    loyverse_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    loyverse_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    loyverse_receipt_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    shipping_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True, index=True)
    parcel_shipment_key: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    tracking_no: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    tracking_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    tracking_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shipping_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    collected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    __table_args__ = (
        Index("ix_orders_status_created_at", "status", "created_at"),
        Index("ix_orders_delivery_method_shipping_status", "delivery_method", "shipping_status"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    order_id: Mapped[str] = mapped_column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    variant_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("product_variants.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    variant_sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    selected_options: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    loyverse_variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    category_slug: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 3), nullable=True)
    parcel_size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    length_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    width_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height_cm: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    order: Mapped[Order] = relationship(back_populates="items")


class OrderRefund(Base):
    __tablename__ = "order_refunds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    order_id: Mapped[str] = mapped_column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    refund_type: Mapped[str] = mapped_column(String(10), nullable=False)  # FULL | PARTIAL
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # [{order_item_id, quantity, return_to_stock}]
    items_json: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
