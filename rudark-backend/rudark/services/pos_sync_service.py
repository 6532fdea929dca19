import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rudark.core.observability import log_event
from rudark.core.timeutils import utcnow
from rudark.models.product import Product
from rudark.services.payment_provider import ProviderError
from rudark.services.pos_provider import PosClient, get_pos_client
from rudark.services.stock_service import StockError, recompute_parent_totals
from rudark.services.store_service import get_default_store


@dataclass(frozen=True)
class PosSyncSummary:
    updated: int
    skipped: int
    total: int


def build_sku_map(items: Iterable[dict[str, Any]]) -> dict[str, tuple[str, str | None]]:
    """SKU -> (variant_id, item_id) across every POS item."""
    mapping: dict[str, tuple[str, str | None]] = {}
    for item in items:
        for variant in item.get("variants") or []:
            sku = (variant.get("sku") or "").strip()
            if sku and variant.get("variant_id"):
                mapping[sku.lower()] = (variant["variant_id"], item.get("id"))
    return mapping


def build_inventory_map(levels: Iterable[dict[str, Any]]) -> dict[str, int]:
    # Without a store filter the levels of every store add up.
    inventory: dict[str, int] = {}
    for level in levels:
        variant_id = level.get("variant_id")
        if variant_id:
            inventory[variant_id] = inventory.get(variant_id, 0) + int(level.get("in_stock") or 0)
    return inventory


def sync_stock_from_pos(db: Session, *, client: PosClient | None = None) -> PosSyncSummary:
    """Overwrites local stock with POS counts. Reserved quantities are left alone. Caller commits."""
    client = client or get_pos_client()
    store = get_default_store(db)
    sku_map = build_sku_map(client.iter_items())
    inventory = build_inventory_map(
        client.iter_inventory(store_id=store.loyverse_store_id if store else None)
    )

    products = db.execute(select(Product).options(selectinload(Product.variants))).scalars().all()
    updated = skipped = 0
    now = utcnow()
    for product in products:
        touched = False
        if product.variants:
            for variant in product.variants:
                mapped = sku_map.get(variant.sku.lower())
                variant_id = variant.loyverse_variant_id or (mapped[0] if mapped else None)
                if not variant_id or variant_id not in inventory:
                    continue
                variant.loyverse_variant_id = variant_id
                variant.stock_quantity = max(0, inventory[variant_id])
                if mapped and not product.loyverse_item_id:
                    product.loyverse_item_id = mapped[1]
                touched = True
        else:
            mapped = sku_map.get(product.sku.lower())
            variant_id = product.loyverse_variant_id or (mapped[0] if mapped else None)
            if variant_id and variant_id in inventory:
                product.loyverse_variant_id = variant_id
                product.stock_quantity = max(0, inventory[variant_id])
                if mapped and not product.loyverse_item_id:
                    product.loyverse_item_id = mapped[1]
                touched = True

        if touched:
            recompute_parent_totals(product)
            product.last_stock_sync = now
            updated += 1
        else:
            skipped += 1

    summary = PosSyncSummary(updated=updated, skipped=skipped, total=len(products))
    log_event("pos_stock_sync", updated=updated, skipped=skipped, total=len(products))
    return summary


def push_stock_to_pos(db: Session, product_id: str, *, client: PosClient | None = None) -> int:
    """Sets POS in_stock to the local quantity at the default store. Returns the number of levels sent."""
    client = client or get_pos_client()
    product = db.execute(
        select(Product).options(selectinload(Product.variants)).where(Product.id == product_id)
    ).scalar_one_or_none()
    if product is None:
        raise StockError("Product not found")
    store = get_default_store(db)
    if store is None:
        raise ProviderError("No default store configured for POS sync")

    if product.variants:
        levels = [
            {
                "variant_id": variant.loyverse_variant_id,
                "store_id": store.loyverse_store_id,
                "in_stock": variant.stock_quantity or 0,
            }
            for variant in product.variants
            if variant.loyverse_variant_id
        ]
    elif product.loyverse_variant_id:
        levels = [
            {
                "variant_id": product.loyverse_variant_id,
                "store_id": store.loyverse_store_id,
                "in_stock": product.stock_quantity or 0,
            }
        ]
    else:
        levels = []

    if not levels:
        log_event("pos_stock_push_skipped", level=logging.WARNING, product_id=product.id)
        return 0
    client.update_inventory(levels)
    product.last_stock_sync = utcnow()
    return len(levels)
