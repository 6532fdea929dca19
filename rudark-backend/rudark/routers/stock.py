from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from rudark.core.api_docs import error_responses
from rudark.core.config import settings
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_owner, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.product import Product
from rudark.models.stock import StockMovement
from rudark.models.store import Store
from rudark.schemas.common import PaginationMeta
from rudark.schemas.stock import (
    ArchivedMovementListOut,
    ArchivedMovementOut,
    ArchiveRestoreIn,
    ArchiveRestoreOut,
    ArchiveRunOut,
    ArchiveStatsOut,
    LowStockItemOut,
    LowStockOut,
    PosSaleIn,
    StockAdjustIn,
    StockDamageIn,
    StockMovementListOut,
    StockMovementOut,
    StockReceiveIn,
)
from rudark.services.archive_service import (
    archive_old_movements,
    archive_stats,
    export_archived,
    list_archived,
    restore_archived,
)
from rudark.services.audit_service import log_audit_event
from rudark.services.stock_service import (
    StockError,
    current_quantity,
    lock_products,
    record_stock_movement,
)

router = APIRouter(prefix="/stock", tags=["stock"])
MAX_MOVEMENT_PAGE_SIZE = 200


def _movement_out(movement: Any) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        product_id=movement.product_id,
        variant_id=movement.variant_id,
        product_name=movement.product_name,
        variant_sku=movement.variant_sku,
        variant_label=movement.variant_label,
        movement_type=movement.movement_type,
        quantity=movement.quantity,
        previous_quantity=movement.previous_quantity,
        new_quantity=movement.new_quantity,
        reason=movement.reason,
        reference=movement.reference,
        store_id=movement.store_id,
        created_by=movement.created_by,
        created_at=movement.created_at,
    )


def _locked_product(db: Session, product_id: str) -> Product:
    product = lock_products(db, [product_id]).get(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _ensure_store(db: Session, store_id: str | None) -> None:
    if store_id and db.get(Store, store_id) is None:
        raise HTTPException(status_code=404, detail="Store not found")


def _apply(
    db: Session,
    actor: AdminUser,
    *,
    product: Product,
    variant_sku: str | None,
    movement_type: str,
    quantity: int,
    reason: str | None,
    reference: str | None = None,
    store_id: str | None = None,
) -> StockMovementOut:
    try:
        movement = record_stock_movement(
            db,
            product_id=product.id,
            product=product,
            variant_sku=variant_sku,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            reference=reference,
            store_id=store_id,
            created_by=actor.id,
        )
    except StockError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.flush()
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=f"stock.{movement_type.lower()}",
        target_type="product",
        target_id=product.id,
        metadata_json={
            "movement_id": movement.id,
            "variant_sku": movement.variant_sku,
            "quantity": quantity,
            "new_quantity": movement.new_quantity,
        },
    )
    db.commit()
    db.refresh(movement)
    return _movement_out(movement)


@router.get(
    "/movements",
    response_model=StockMovementListOut,
    summary="List stock movements",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_movements(
    product_id: str | None = Query(default=None),
    movement_type: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_MOVEMENT_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date cannot be after end_date")
    filters = []
    if product_id:
        filters.append(StockMovement.product_id == product_id)
    if movement_type:
        filters.append(StockMovement.movement_type == movement_type.strip().upper())
    if start_date:
        filters.append(StockMovement.created_at >= start_date)
    if end_date:
        filters.append(StockMovement.created_at <= end_date)

    total = int(db.execute(select(func.count(StockMovement.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(StockMovement)
        .where(*filters)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return StockMovementListOut(
        items=[_movement_out(row) for row in rows],
        pagination=PaginationMeta.page(total=total, limit=limit, offset=offset, count=len(rows)),
    )


@router.get(
    "/products/{product_id}/history",
    response_model=list[StockMovementOut],
    summary="Movement history for one product",
    responses=error_responses(401, 403, 404, 500),
)
def product_history(
    product_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    if db.get(Product, product_id) is None:
        raise HTTPException(status_code=404, detail="Product not found")
    rows = db.execute(
        select(StockMovement)
        .where(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
    ).scalars().all()
    return [_movement_out(row) for row in rows]


@router.post(
    "/receive",
    response_model=StockMovementOut,
    status_code=201,
    summary="Receive stock",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def receive_stock(
    payload: StockReceiveIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    _ensure_store(db, payload.store_id)
    product = _locked_product(db, payload.product_id)
    return _apply(
        db,
        actor,
        product=product,
        variant_sku=payload.variant_sku,
        movement_type="RECEIVE",
        quantity=payload.quantity,
        reason=payload.reason or "Stock received",
        reference=payload.reference,
        store_id=payload.store_id,
    )


@router.post(
    "/adjust",
    response_model=StockMovementOut,
    status_code=201,
    summary="Adjust stock",
    description="Sets stock to `target_quantity` or moves it by `delta`.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def adjust_stock(
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    product = _locked_product(db, payload.product_id)
    if payload.target_quantity is not None:
        try:
            current = current_quantity(product, payload.variant_sku)
        except StockError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        delta = payload.target_quantity - current
        if delta == 0:
            raise HTTPException(status_code=400, detail="Stock is already at the target quantity")
    else:
        delta = payload.delta
    return _apply(
        db,
        actor,
        product=product,
        variant_sku=payload.variant_sku,
        movement_type="ADJUST",
        quantity=delta,
        reason=payload.reason,
    )


@router.post(
    "/damage",
    response_model=StockMovementOut,
    status_code=201,
    summary="Write off damaged stock",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def damage_stock(
    payload: StockDamageIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    product = _locked_product(db, payload.product_id)
    return _apply(
        db,
        actor,
        product=product,
        variant_sku=payload.variant_sku,
        movement_type="DAMAGE",
        quantity=-payload.quantity,
        reason=payload.reason,
    )


@router.post(
    "/pos-sale",
    response_model=StockMovementOut,
    status_code=201,
    summary="Record an in-store POS sale",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def pos_sale(
    payload: PosSaleIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    product = _locked_product(db, payload.product_id)
    return _apply(
        db,
        actor,
        product=product,
        variant_sku=payload.variant_sku,
        movement_type="SALE",
        quantity=-payload.quantity,
        reason="POS sale",
        reference=payload.reference,
    )


@router.get(
    "/low-stock",
    response_model=LowStockOut,
    summary="Products and variants at or below the low-stock threshold",
    responses=error_responses(401, 403, 422, 500),
)
def low_stock(
    threshold: int | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    limit = settings.low_stock_threshold if threshold is None else threshold
    products = db.execute(
        select(Product)
        .options(selectinload(Product.variants))
        .where(Product.stock_status != "ARCHIVED")
        .order_by(Product.name.asc())
    ).scalars().all()

    items: list[LowStockItemOut] = []
    for product in products:
        targets = product.variants or [None]
        for variant in targets:
            source = variant or product
            stock = source.stock_quantity or 0
            reserved = source.reserved_quantity or 0
            available = max(0, stock - reserved)
            if available > limit:
                continue
            items.append(
                LowStockItemOut(
                    product_id=product.id,
                    product_name=product.name,
                    sku=product.sku,
                    variant_sku=variant.sku if variant else None,
                    variant_label=variant.label if variant else None,
                    stock_quantity=stock,
                    reserved_quantity=reserved,
                    available_quantity=available,
                )
            )
    items.sort(key=lambda item: (item.available_quantity, item.product_name))
    return LowStockOut(threshold=limit, items=items)


@router.get(
    "/archive/stats",
    response_model=ArchiveStatsOut,
    summary="Movement archive stats",
    responses=error_responses(401, 403, 500),
)
def get_archive_stats(
    days: int = Query(default=settings.stock_archive_days, ge=1),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_manager),
):
    stats = archive_stats(db, days=days)
    return ArchiveStatsOut(
        active_count=stats.active_count,
        archived_count=stats.archived_count,
        oldest_active_at=stats.oldest_active_at,
        archivable_count=stats.archivable_count,
        archive_after_days=days,
    )


@router.post(
    "/archive/run",
    response_model=ArchiveRunOut,
    summary="Archive old stock movements",
    responses=error_responses(401, 403, 422, 500),
)
def run_archive(
    days: int = Query(default=settings.stock_archive_days, ge=30),
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_owner),
):
    archived = archive_old_movements(db, days=days)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="stock.archive.run",
        target_type="stock_movement",
        metadata_json={"archived": archived, "days": days},
    )
    db.commit()
    return ArchiveRunOut(archived=archived, cutoff_days=days)


def _archived_out(row: Any) -> ArchivedMovementOut:
    return ArchivedMovementOut(**_movement_out(row).model_dump(), archived_at=row.archived_at)


@router.get(
    "/archive",
    response_model=ArchivedMovementListOut,
    summary="List archived movements",
    responses=error_responses(401, 403, 422, 500),
)
def get_archived(
    limit: int = Query(default=50, ge=1, le=MAX_MOVEMENT_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_manager),
):
    rows, total = list_archived(db, limit=limit, offset=offset)
    return ArchivedMovementListOut(
        items=[_archived_out(row) for row in rows],
        pagination=PaginationMeta.page(total=total, limit=limit, offset=offset, count=len(rows)),
    )


@router.get(
    "/archive/export",
    response_model=list[ArchivedMovementOut],
    summary="Export archived movements",
    description="Returns at most 1000 rows, newest first.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def export_archive(
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_manager),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date cannot be after end_date")
    return [_archived_out(row) for row in export_archived(db, start=start_date, end=end_date)]


@router.post(
    "/archive/restore",
    response_model=ArchiveRestoreOut,
    summary="Restore archived movements",
    responses=error_responses(401, 403, 422, 500),
)
def restore_archive(
    payload: ArchiveRestoreIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_owner),
):
    restored = restore_archived(db, payload.ids)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="stock.archive.restore",
        target_type="stock_movement",
        metadata_json={"restored": restored, "requested": len(payload.ids)},
    )
    db.commit()
    return ArchiveRestoreOut(restored=restored)
