from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rudark.core.id_utils import generate_uuid
from rudark.db.base import Base

AUDIT_STATUSES = {"IN_PROGRESS", "REVIEWING", "COMPLETED", "CANCELLED"}


class StockAudit(Base):
    __tablename__ = "stock_audits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    audit_number: Mapped[str] = mapped_column(String(24), nullable=False, unique=True)
    store_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("stores.id"), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="IN_PROGRESS", server_default="IN_PROGRESS"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    items: Mapped[list["StockAuditItem"]] = relationship(
        back_populates="audit",
        cascade="all, delete-orphan",
        order_by="StockAuditItem.position",
    )


class StockAuditItem(Base):
    __tablename__ = "stock_audit_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    audit_id: Mapped[str] = mapped_column(String(36), ForeignKey("stock_audits.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    variant_label: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    system_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discrepancy: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    audit: Mapped[StockAudit] = relationship(back_populates="items")
