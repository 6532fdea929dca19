from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.config import settings
from rudark.models.product import Product, ProductVariant
from rudark.models.stock import MOVEMENT_TYPES, StockMovement

POSITIVE_TYPES = {"RECEIVE", "TRANSFER_IN", "RETURN"}
NEGATIVE_TYPES = {"DAMAGE", "TRANSFER_OUT", "SALE"}


class StockError(ValueError):
    pass


def find_variant_by_options(product: Product, options: dict[str, Any] | None) -> ProductVariant | None:
    if not options or not product.variants:
        return None
    for variant in product.variants:
        variant_options = variant.options or {}
        if all(variant_options.get(key) == value for key, value in options.items()):
            return variant
    return None


def find_variant_by_sku(product: Product, variant_sku: str | None) -> ProductVariant | None:
    if not variant_sku:
        return None
    wanted = variant_sku.strip().lower()
    for variant in product.variants:
        if variant.sku.lower() == wanted:
            return variant
    return None


def recompute_parent_totals(product: Product) -> None:
    if product.variants:
        product.stock_quantity = sum(v.stock_quantity or 0 for v in product.variants)
        product.reserved_quantity = sum(v.reserved_quantity or 0 for v in product.variants)
    refresh_stock_status(product)


def refresh_stock_status(product: Product) -> None:
    if product.stock_status == "ARCHIVED":
        return
    available = (product.stock_quantity or 0) - (product.reserved_quantity or 0)
    if available <= 0:
        product.stock_status = "OUT_OF_STOCK"
    elif available <= settings.low_stock_threshold:
        product.stock_status = "LOW_STOCK"
    else:
        product.stock_status = "IN_STOCK"


def lock_products(db: Session, product_ids: list[str]) -> dict[str, Product]:
    """Loads products (and their variants) with row locks where the backend supports them."""
    unique_ids = sorted(set(product_ids))
    if not unique_ids:
        return {}
    products = db.execute(
        select(Product).where(Product.id.in_(unique_ids)).with_for_update()
    ).scalars().all()
    db.execute(
        select(ProductVariant).where(ProductVariant.product_id.in_(unique_ids)).with_for_update()
    ).scalars().all()
    return {product.id: product for product in products}


def _validate_sign(movement_type: str, quantity: int) -> None:
    if movement_type not in MOVEMENT_TYPES:
        allowed = ", ".join(sorted(MOVEMENT_TYPES))
        raise StockError(f"Invalid movement type. Allowed: {allowed}")
    if quantity == 0:
        raise StockError("Quantity cannot be zero")
    if movement_type in POSITIVE_TYPES and quantity < 0:
        raise StockError(f"{movement_type} quantity must be positive")
    if movement_type in NEGATIVE_TYPES and quantity > 0:
        raise StockError(f"{movement_type} quantity must be negative")


def record_stock_movement(
    db: Session,
    *,
    product_id: str,
    movement_type: str,
    quantity: int,
    variant_sku: str | None = None,
    reason: str | None = None,
    reference: str | None = None,
    store_id: str | None = None,
    created_by: str | None = None,
    product: Product | None = None,
) -> StockMovement:
    """
    Applies a signed quantity delta to a product (or one of its variants) and
    appends the movement row. Caller owns the transaction.
    """
    movement_type = movement_type.strip().upper()
    _validate_sign(movement_type, quantity)

    if product is None:
        product = lock_products(db, [product_id]).get(product_id)
    if product is None:
        raise StockError("Product not found")

    variant: ProductVariant | None = None
    if variant_sku:
        variant = find_variant_by_sku(product, variant_sku)
        if variant is None:
            raise StockError(f"Variant not found: {variant_sku}")
    elif product.variants:
        raise StockError("variant_sku is required for products with variants")

    target = variant or product
    previous_quantity = target.stock_quantity or 0
    new_quantity = previous_quantity + quantity
    if new_quantity < 0:
        raise StockError(
            f"Cannot reduce stock below 0. Current: {previous_quantity}, Adjustment: {quantity}"
        )
    target.stock_quantity = new_quantity
    recompute_parent_totals(product)

    movement = StockMovement(
        product_id=product.id,
        variant_id=variant.id if variant else None,
        product_name=product.name,
        variant_sku=variant.sku if variant else None,
        variant_label=variant.label if variant else None,
        movement_type=movement_type,
        quantity=quantity,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        reason=reason,
        reference=reference,
        store_id=store_id,
        created_by=created_by,
    )
    db.add(movement)
    return movement


def current_quantity(product: Product, variant_sku: str | None = None) -> int:
    if variant_sku:
        variant = find_variant_by_sku(product, variant_sku)
        if variant is None:
            raise StockError(f"Variant not found: {variant_sku}")
        return variant.stock_quantity or 0
    return product.stock_quantity or 0
