from dataclasses import dataclass

from sqlalchemy.orm import Session

from rudark.core.id_utils import generate_document_number
from rudark.core.timeutils import utcnow
from rudark.models.product import Product
from rudark.models.store import Store
from rudark.models.transfer import StockTransfer, StockTransferItem
from rudark.services.stock_service import find_variant_by_sku, record_stock_movement

MAX_TRANSFER_ITEMS = 50


class TransferError(ValueError):
    pass


@dataclass(frozen=True)
class TransferLine:
    product_id: str
    quantity: int
    variant_sku: str | None = None


def create_transfer(
    db: Session,
    *,
    from_store_id: str,
    to_store_id: str,
    lines: list[TransferLine],
    notes: str | None = None,
    actor: str | None = None,
) -> StockTransfer:
    if not lines:
        raise TransferError("Transfer needs at least one item")
    if len(lines) > MAX_TRANSFER_ITEMS:
        raise TransferError(f"A transfer can hold at most {MAX_TRANSFER_ITEMS} items")
    if from_store_id == to_store_id:
        raise TransferError("Source and destination stores must differ")
    for store_id in (from_store_id, to_store_id):
        if db.get(Store, store_id) is None:
            raise TransferError(f"Store not found: {store_id}")

    transfer = StockTransfer(
        transfer_number=generate_document_number("TRF"),
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        status="PENDING",
        notes=notes,
        created_by=actor,
    )
    for position, line in enumerate(lines):
        if line.quantity <= 0:
            raise TransferError("Quantity must be greater than 0")
        product = db.get(Product, line.product_id)
        if product is None:
            raise TransferError(f"Product not found: {line.product_id}")
        variant = find_variant_by_sku(product, line.variant_sku)
        if product.variants and variant is None:
            raise TransferError(f"{product.name}: a valid variant_sku is required")
        transfer.items.append(
            StockTransferItem(
                position=position,
                product_id=product.id,
                product_name=product.name,
                variant_sku=variant.sku if variant else None,
                variant_label=variant.label if variant else None,
                quantity=line.quantity,
            )
        )
    db.add(transfer)
    return transfer


def approve_transfer(db: Session, transfer: StockTransfer, *, actor: str | None) -> StockTransfer:
    if transfer.status != "PENDING":
        raise TransferError(f"Only PENDING transfers can be approved (current: {transfer.status})")
    for item in transfer.items:
        record_stock_movement(
            db,
            product_id=item.product_id,
            variant_sku=item.variant_sku,
            movement_type="TRANSFER_OUT",
            quantity=-item.quantity,
            reason=f"Transfer {transfer.transfer_number} out",
            reference=transfer.transfer_number,
            store_id=transfer.from_store_id,
            created_by=actor,
        )
    transfer.status = "IN_TRANSIT"
    transfer.approved_by = actor
    transfer.approved_at = utcnow()
    return transfer


def complete_transfer(
    db: Session,
    transfer: StockTransfer,
    *,
    received: dict[str, int] | None = None,
    actor: str | None,
) -> StockTransfer:
    if transfer.status != "IN_TRANSIT":
        raise TransferError(f"Only IN_TRANSIT transfers can be completed (current: {transfer.status})")
    received = received or {}
    for item in transfer.items:
        quantity = received.get(item.id, item.quantity)
        if quantity < 0 or quantity > item.quantity:
            raise TransferError(f"{item.product_name}: received quantity must be between 0 and {item.quantity}")
        item.received_quantity = quantity
        if quantity == 0:
            continue
        record_stock_movement(
            db,
            product_id=item.product_id,
            variant_sku=item.variant_sku,
            movement_type="TRANSFER_IN",
            quantity=quantity,
            reason=f"Transfer {transfer.transfer_number} in",
            reference=transfer.transfer_number,
            store_id=transfer.to_store_id,
            created_by=actor,
        )
    transfer.status = "COMPLETED"
    transfer.completed_at = utcnow()
    return transfer


def cancel_transfer(
    db: Session,
    transfer: StockTransfer,
    *,
    reason: str | None,
    actor: str | None,
) -> StockTransfer:
    if transfer.status in {"COMPLETED", "CANCELLED"}:
        raise TransferError(f"Cannot cancel a {transfer.status} transfer")
    if transfer.status == "IN_TRANSIT":
        for item in transfer.items:
            record_stock_movement(
                db,
                product_id=item.product_id,
                variant_sku=item.variant_sku,
                movement_type="ADJUST",
                quantity=item.quantity,
                reason=f"Transfer {transfer.transfer_number} cancelled",
                reference=transfer.transfer_number,
                store_id=transfer.from_store_id,
                created_by=actor,
            )
    transfer.status = "CANCELLED"
    transfer.cancelled_reason = reason
    return transfer
