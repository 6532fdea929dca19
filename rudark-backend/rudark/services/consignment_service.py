from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.money import ZERO_MONEY, to_money
from rudark.core.timeutils import utcnow
from rudark.models.consignment import Consignment, ConsignmentItem
from rudark.models.product import Product
from rudark.services.checkout_service import effective_unit_price
from rudark.services.stock_service import find_variant_by_sku, record_stock_movement


class ConsignmentError(ValueError):
    pass


@dataclass(frozen=True)
class ConsignmentLine:
    product_id: str
    quantity: int
    variant_sku: str | None = None
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class ReconcileLine:
    item_id: str
    quantity_returned: int = 0
    quantity_lost: int = 0


def next_consignment_number(db: Session, *, year: int | None = None) -> str:
    year = year or utcnow().year
    prefix = f"CON-{year}-"
    numbers = db.execute(
        select(Consignment.consignment_number).where(Consignment.consignment_number.like(f"{prefix}%"))
    ).scalars().all()
    highest = max((int(number.rsplit("-", 1)[1]) for number in numbers), default=0)
    return f"{prefix}{highest + 1:03d}"


def _require_status(consignment: Consignment, *allowed: str) -> None:
    if consignment.status not in allowed:
        raise ConsignmentError(
            f"Consignment is {consignment.status}; expected {' or '.join(allowed)}"
        )


def _item(consignment: Consignment, item_id: str) -> ConsignmentItem:
    for item in consignment.items:
        if item.id == item_id:
            return item
    raise ConsignmentError(f"Consignment item not found: {item_id}")


def create_consignment(
    db: Session,
    *,
    partner_name: str,
    lines: list[ConsignmentLine],
    partner_contact: str | None = None,
    partner_phone: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
) -> Consignment:
    if not lines:
        raise ConsignmentError("Consignment needs at least one item")
    consignment = Consignment(
        consignment_number=next_consignment_number(db),
        partner_name=partner_name.strip(),
        partner_contact=partner_contact,
        partner_phone=partner_phone,
        notes=notes,
        status="DRAFT",
        created_by=actor,
    )
    for position, line in enumerate(lines):
        if line.quantity <= 0:
            raise ConsignmentError("Quantity must be greater than 0")
        product = db.get(Product, line.product_id)
        if product is None:
            raise ConsignmentError(f"Product not found: {line.product_id}")
        variant = find_variant_by_sku(product, line.variant_sku)
        if line.variant_sku and variant is None:
            raise ConsignmentError(f"Variant not found: {line.variant_sku}")
        if product.variants and variant is None:
            raise ConsignmentError(f"{product.name}: variant_sku is required")
        consignment.items.append(
            ConsignmentItem(
                position=position,
                product_id=product.id,
                product_name=product.name,
                variant_sku=variant.sku if variant else None,
                variant_label=variant.label if variant else None,
                unit_price=(
                    to_money(line.unit_price)
                    if line.unit_price is not None
                    else effective_unit_price(product, variant)
                ),
                quantity_sent=line.quantity,
                quantity_sold=0,
                quantity_returned=0,
                quantity_lost=0,
            )
        )
    db.add(consignment)
    return consignment


def send_consignment(db: Session, consignment: Consignment, *, actor: str | None) -> Consignment:
    _require_status(consignment, "DRAFT")
    for item in consignment.items:
        record_stock_movement(
            db,
            product_id=item.product_id,
            variant_sku=item.variant_sku,
            movement_type="TRANSFER_OUT",
            quantity=-item.quantity_sent,
            reason=f"Consignment to {consignment.partner_name}",
            reference=consignment.consignment_number,
            created_by=actor,
        )
    consignment.status = "ACTIVE"
    consignment.sent_at = utcnow()
    return consignment


def record_sales(consignment: Consignment, sales: dict[str, int]) -> Consignment:
    _require_status(consignment, "ACTIVE", "RECONCILING")
    for item_id, quantity in sales.items():
        item = _item(consignment, item_id)
        if quantity <= 0:
            raise ConsignmentError("Sold quantity must be greater than 0")
        if quantity > item.quantity_pending:
            raise ConsignmentError(
                f"{item.product_name}: Only {item.quantity_pending} pending (you recorded {quantity})"
            )
        item.quantity_sold += quantity
    return consignment


def reconcile_consignment(
    db: Session,
    consignment: Consignment,
    lines: list[ReconcileLine],
    *,
    actor: str | None,
) -> Consignment:
    """Returned units go back on the shelf; lost units are only counted, their stock already left on send."""
    _require_status(consignment, "ACTIVE", "RECONCILING")
    for line in lines:
        item = _item(consignment, line.item_id)
        if line.quantity_returned < 0 or line.quantity_lost < 0:
            raise ConsignmentError("Quantities cannot be negative")
        if line.quantity_returned + line.quantity_lost > item.quantity_pending:
            raise ConsignmentError(
                f"{item.product_name}: Only {item.quantity_pending} pending"
            )
        if line.quantity_returned:
            record_stock_movement(
                db,
                product_id=item.product_id,
                variant_sku=item.variant_sku,
                movement_type="TRANSFER_IN",
                quantity=line.quantity_returned,
                reason=f"Consignment return from {consignment.partner_name}",
                reference=consignment.consignment_number,
                created_by=actor,
            )
        item.quantity_returned += line.quantity_returned
        item.quantity_lost += line.quantity_lost

    consignment.reconciled_at = utcnow()
    if is_fully_reconciled(consignment):
        consignment.status = "CLOSED"
        consignment.closed_at = utcnow()
    else:
        consignment.status = "RECONCILING"
    return consignment


def close_consignment(consignment: Consignment) -> Consignment:
    _require_status(consignment, "ACTIVE", "RECONCILING")
    outstanding = sum(item.quantity_pending for item in consignment.items)
    if outstanding:
        raise ConsignmentError(f"Consignment still has {outstanding} units outstanding")
    consignment.status = "CLOSED"
    consignment.closed_at = utcnow()
    return consignment


def cancel_consignment(db: Session, consignment: Consignment, *, actor: str | None) -> Consignment:
    _require_status(consignment, "DRAFT", "ACTIVE", "RECONCILING")
    if consignment.status != "DRAFT":
        for item in consignment.items:
            pending = item.quantity_pending
            if pending <= 0:
                continue
            record_stock_movement(
                db,
                product_id=item.product_id,
                variant_sku=item.variant_sku,
                movement_type="TRANSFER_IN",
                quantity=pending,
                reason=f"Consignment {consignment.consignment_number} cancelled",
                reference=consignment.consignment_number,
                created_by=actor,
            )
            item.quantity_returned += pending
    consignment.status = "CANCELLED"
    return consignment


def is_fully_reconciled(consignment: Consignment) -> bool:
    return all(item.quantity_pending == 0 for item in consignment.items)


def consignment_summary(consignment: Consignment) -> dict[str, Any]:
    totals = {"sent": 0, "sold": 0, "returned": 0, "lost": 0}
    values = {"sent": ZERO_MONEY, "sold": ZERO_MONEY, "returned": ZERO_MONEY, "lost": ZERO_MONEY}
    for item in consignment.items:
        price = to_money(item.unit_price)
        for key, quantity in (
            ("sent", item.quantity_sent),
            ("sold", item.quantity_sold),
            ("returned", item.quantity_returned),
            ("lost", item.quantity_lost),
        ):
            totals[key] += quantity
            values[key] += price * quantity
    pending = totals["sent"] - totals["sold"] - totals["returned"] - totals["lost"]
    return {
        "total_sent": totals["sent"],
        "total_sold": totals["sold"],
        "total_returned": totals["returned"],
        "total_lost": totals["lost"],
        "total_pending": pending,
        "value_sent": to_money(values["sent"]),
        "value_sold": to_money(values["sold"]),
        "value_returned": to_money(values["returned"]),
        "value_lost": to_money(values["lost"]),
        "is_fully_reconciled": pending == 0,
    }
