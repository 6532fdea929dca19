from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rudark.core.id_utils import generate_document_number
from rudark.core.timeutils import utcnow
from rudark.models.product import Product
from rudark.models.stock_audit import StockAudit, StockAuditItem
from rudark.services.stock_service import record_stock_movement

MAX_AUDIT_PRODUCTS = 200


class AuditError(ValueError):
    pass


def create_audit(
    db: Session,
    *,
    product_ids: list[str],
    store_id: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> StockAudit:
    unique_ids = list(dict.fromkeys(product_ids))
    if not unique_ids:
        raise AuditError("Audit needs at least one product")
    if len(unique_ids) > MAX_AUDIT_PRODUCTS:
        raise AuditError(f"An audit can cover at most {MAX_AUDIT_PRODUCTS} products")

    products = {
        product.id: product
        for product in db.execute(
            select(Product).options(selectinload(Product.variants)).where(Product.id.in_(unique_ids))
        ).scalars()
    }
    missing = [product_id for product_id in unique_ids if product_id not in products]
    if missing:
        raise AuditError(f"Product not found: {', '.join(missing)}")

    audit = StockAudit(
        audit_number=generate_document_number("AUD"),
        store_id=store_id,
        status="IN_PROGRESS",
        notes=notes,
        created_by=actor,
    )
    position = 0
    for product_id in unique_ids:
        product = products[product_id]
        targets = product.variants or [None]
        for variant in targets:
            audit.items.append(
                StockAuditItem(
                    position=position,
                    product_id=product.id,
                    product_name=product.name,
                    variant_sku=variant.sku if variant else None,
                    variant_label=variant.label if variant else None,
                    system_quantity=(variant.stock_quantity if variant else product.stock_quantity) or 0,
                    applied=False,
                )
            )
            position += 1
    db.add(audit)
    return audit


def record_counts(audit: StockAudit, counts: dict[str, int]) -> StockAudit:
    if audit.status != "IN_PROGRESS":
        raise AuditError(f"Counts can only be recorded while IN_PROGRESS (current: {audit.status})")
    by_id = {item.id: item for item in audit.items}
    for item_id, counted in counts.items():
        item = by_id.get(item_id)
        if item is None:
            raise AuditError(f"Audit item not found: {item_id}")
        if counted < 0:
            raise AuditError("Counted quantity cannot be negative")
        item.counted_quantity = counted
        item.discrepancy = counted - item.system_quantity
    return audit


def submit_audit(audit: StockAudit) -> StockAudit:
    if audit.status != "IN_PROGRESS":
        raise AuditError(f"Only IN_PROGRESS audits can be submitted (current: {audit.status})")
    uncounted = [item for item in audit.items if item.counted_quantity is None]
    if uncounted:
        raise AuditError(f"{len(uncounted)} items have not been counted")
    audit.status = "REVIEWING"
    return audit


def apply_audit(db: Session, audit: StockAudit, *, actor: str | None) -> int:
    """Posts ADJUST movements for unapplied discrepancies. Returns the number posted."""
    if audit.status != "REVIEWING":
        raise AuditError(f"Only REVIEWING audits can be applied (current: {audit.status})")
    applied = 0
    for item in audit.items:
        if item.applied or not item.discrepancy:
            continue
        record_stock_movement(
            db,
            product_id=item.product_id,
            variant_sku=item.variant_sku,
            movement_type="ADJUST",
            quantity=item.discrepancy,
            reason=f"Stock audit {audit.audit_number}",
            reference=audit.audit_number,
            store_id=audit.store_id,
            created_by=actor,
        )
        item.applied = True
        applied += 1
    audit.status = "COMPLETED"
    audit.completed_at = utcnow()
    return applied


def cancel_audit(audit: StockAudit) -> StockAudit:
    if audit.status in {"COMPLETED", "CANCELLED"}:
        raise AuditError(f"Cannot cancel a {audit.status} audit")
    audit.status = "CANCELLED"
    return audit
