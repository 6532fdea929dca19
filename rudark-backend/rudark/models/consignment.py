from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rudark.core.id_utils import generate_uuid
from rudark.db.base import Base

CONSIGNMENT_STATUSES = {"DRAFT", "ACTIVE", "RECONCILING", "CLOSED", "CANCELLED"}


class Consignment(Base):
    __tablename__ = "consignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    consignment_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)  # CON-2026-001
    partner_name: Mapped[str] = mapped_column(String(120), nullable=False)
    partner_contact: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    partner_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT", server_default="DRAFT")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    items: Mapped[list["ConsignmentItem"]] = relationship(
        back_populates="consignment",
        cascade="all, delete-orphan",
        order_by="ConsignmentItem.position",
    )


class ConsignmentItem(Base):
    __tablename__ = "consignment_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    consignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("consignments.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    variant_label: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity_sent: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    quantity_returned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    quantity_lost: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    consignment: Mapped[Consignment] = relationship(back_populates="items")

    @property
    def quantity_pending(self) -> int:
        return self.quantity_sent - self.quantity_sold - self.quantity_returned - self.quantity_lost
