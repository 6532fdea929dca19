"""
Reservation lifecycle for checkout stock.

reserve -> (deduct on payment | release on expiry/failure/cancel)
restore is used after a deduction when goods come back (refund, return).
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from sqlalchemy.orm import Session

from rudark.models.product import Product, ProductVariant
from rudark.services.stock_service import (
    StockError,
    find_variant_by_options,
    lock_products,
    recompute_parent_totals,
    record_stock_movement,
)


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    selected_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReservedLine:
    line: CartLine
    product: Product
    variant: ProductVariant | None


class StockLine(Protocol):
    product_id: str
    variant_id: str | None
    variant_sku: str | None
    quantity: int


def _options_label(options: dict[str, Any] | None) -> str:
    if not options:
        return ""
    return " / ".join(str(value) for value in options.values())


def _options_pairs(options: dict[str, Any]) -> str:
    return ", ".join(f"{key}: {value}" for key, value in options.items())


def reserve_stock(db: Session, lines: list[CartLine]) -> list[ReservedLine]:
    """
    All-or-nothing: every line is validated against available stock
    (stock - reserved) before any reservation is written.
    """
    products = lock_products(db, [line.product_id for line in lines])

    errors: list[str] = []
    resolved: list[ReservedLine] = []
    requested: dict[str, int] = {}
    for line in lines:
        product = products.get(line.product_id)
        if product is None or not product.is_active or product.stock_status == "ARCHIVED":
            errors.append(f"{product.name if product else line.product_id}: Product not found")
            continue

        variant = find_variant_by_options(product, line.selected_options)
        if product.variants and variant is None:
            if line.selected_options:
                errors.append(f"{product.name} ({_options_pairs(line.selected_options)}): Variant not found")
            else:
                errors.append(f"{product.name}: Please select valid options")
            continue

        target = variant or product
        key = target.id
        requested[key] = requested.get(key, 0) + line.quantity
        available = (target.stock_quantity or 0) - (target.reserved_quantity or 0)
        if requested[key] > available:
            label = _options_label(line.selected_options) if variant else ""
            name = f"{product.name} ({label})" if label else product.name
            errors.append(
                f"{name}: Only {max(available, 0)} available (you requested {requested[key]})"
            )
            continue
        resolved.append(ReservedLine(line=line, product=product, variant=variant))

    if errors:
        raise StockError("; ".join(errors))

    for reserved in resolved:
        target = reserved.variant or reserved.product
        target.reserved_quantity = (target.reserved_quantity or 0) + reserved.line.quantity
    for product in {reserved.product.id: reserved.product for reserved in resolved}.values():
        recompute_parent_totals(product)
    return resolved


def _target(product: Product, variant_id: str | None):
    if variant_id:
        for variant in product.variants:
            if variant.id == variant_id:
                return variant
    return product


def release_reserved_stock(db: Session, items: Iterable[StockLine]) -> None:
    items = list(items)
    products = lock_products(db, [item.product_id for item in items])
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            continue
        target = _target(product, item.variant_id)
        target.reserved_quantity = max(0, (target.reserved_quantity or 0) - item.quantity)
    for product in products.values():
        recompute_parent_totals(product)


def deduct_stock(
    db: Session,
    items: Iterable[StockLine],
    *,
    reference: str,
    created_by: str | None = "system",
    release_reservation: bool = True,
) -> list[str]:
    """
    Turns a reservation into a sale: reserved goes down, a SALE movement takes the stock.

    Both counts are clamped at zero. If stock on hand fell below the sold
    quantity after the reservation was taken (POS sync, damage entry), the
    sale takes what is left and a shortfall message is returned for the line.
    Pass release_reservation=False when the reservation was already given back,
    e.g. a payment landing on an expired order.
    """
    items = list(items)
    products = lock_products(db, [item.product_id for item in items])
    missing = [item.product_id for item in items if item.product_id not in products]
    if missing:
        raise StockError(f"Product not found: {', '.join(sorted(set(missing)))}")
    for item in items:
        product = products[item.product_id]
        if product.variants and not item.variant_sku:
            raise StockError(f"{product.name}: variant is required")

    shortfalls: list[str] = []
    for item in items:
        product = products[item.product_id]
        target = _target(product, item.variant_id)
        if release_reservation:
            target.reserved_quantity = max(0, (target.reserved_quantity or 0) - item.quantity)
        on_hand = max(0, target.stock_quantity or 0)
        taken = min(item.quantity, on_hand)
        if taken > 0:
            record_stock_movement(
                db,
                product_id=product.id,
                product=product,
                variant_sku=item.variant_sku,
                movement_type="SALE",
                quantity=-taken,
                reason=f"Web order {reference}",
                reference=reference,
                created_by=created_by,
            )
        else:
            recompute_parent_totals(product)
        if taken < item.quantity:
            name = f"{product.name} ({item.variant_sku})" if item.variant_sku else product.name
            shortfalls.append(
                f"{name}: short by {item.quantity - taken} (on hand {on_hand}, sold {item.quantity})"
            )
    return shortfalls


def restore_stock(
    db: Session,
    items: Iterable[tuple[StockLine, int]],
    *,
    reason: str,
    reference: str,
    created_by: str | None = None,
) -> int:
    """Puts (item, quantity) pairs back on the shelf with RETURN movements."""
    restored = 0
    pairs = [(item, qty) for item, qty in items if qty > 0]
    products = lock_products(db, [item.product_id for item, _ in pairs])
    for item, qty in pairs:
        product = products.get(item.product_id)
        if product is None:
            continue
        record_stock_movement(
            db,
            product_id=product.id,
            product=product,
            variant_sku=item.variant_sku,
            movement_type="RETURN",
            quantity=qty,
            reason=reason,
            reference=reference,
            created_by=created_by,
        )
        restored += qty
    return restored
