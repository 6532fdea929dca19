from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.config import settings
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager
from rudark.models.admin_user import AdminUser
from rudark.schemas.maintenance import BatchOut, CleanupOut, ExpiredCountOut, PosPushOut, PosSyncOut
from rudark.services.audit_service import log_audit_event
from rudark.services.cleanup_service import (
    check_expired_reservations,
    cleanup_expired_reservations,
    cleanup_stale_orders,
)
from rudark.services.order_admin_service import check_deliveries, sync_pending_tracking
from rudark.services.payment_provider import ProviderError
from rudark.services.pos_sync_service import push_stock_to_pos, sync_stock_from_pos
from rudark.services.stock_service import StockError

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def _log(db: Session, actor: AdminUser, action: str, target_id: str | None = None, **metadata) -> None:
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=action,
        target_type="maintenance",
        target_id=target_id,
        metadata_json=metadata or None,
    )


@router.post(
    "/reservations/cleanup",
    response_model=CleanupOut,
    summary="Expire old reservations",
    description="PENDING orders older than the cutoff become EXPIRED and release their reserved stock.",
    responses=error_responses(401, 403, 422, 500),
)
def cleanup_reservations(
    minutes: int = Query(default=settings.reservation_expiry_minutes, ge=1),
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    summary = cleanup_expired_reservations(db, minutes=minutes)
    _log(db, actor, "maintenance.reservations_cleanup", minutes=minutes, **asdict(summary))
    db.commit()
    return CleanupOut(**asdict(summary))


@router.get(
    "/reservations/expired",
    response_model=ExpiredCountOut,
    summary="Count expired reservations",
    responses=error_responses(401, 403, 422, 500),
)
def expired_reservations(
    minutes: int = Query(default=settings.reservation_expiry_minutes, ge=1),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_manager),
):
    return ExpiredCountOut(minutes=minutes, expired_orders=check_expired_reservations(db, minutes=minutes))


@router.post(
    "/orders/cleanup-stale",
    response_model=CleanupOut,
    summary="Cancel stale unpaid orders",
    description="Orders are cancelled, never deleted.",
    responses=error_responses(401, 403, 422, 500),
)
def cleanup_stale(
    days: int = Query(default=settings.stale_order_days, ge=1),
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    summary = cleanup_stale_orders(db, days=days)
    _log(db, actor, "maintenance.stale_orders_cleanup", days=days, **asdict(summary))
    db.commit()
    return CleanupOut(**asdict(summary))


@router.post(
    "/tracking/sync",
    response_model=BatchOut,
    summary="Sync pending tracking numbers",
    responses=error_responses(401, 403, 500),
)
def tracking_sync(
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    summary = sync_pending_tracking(db)
    _log(db, actor, "maintenance.tracking_sync", checked=summary.checked, updated=summary.updated)
    db.commit()
    return BatchOut(**asdict(summary))


@router.post(
    "/deliveries/check",
    response_model=BatchOut,
    summary="Check shipped orders for delivery",
    responses=error_responses(401, 403, 500),
)
def deliveries_check(
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    summary = check_deliveries(db)
    _log(db, actor, "maintenance.delivery_check", checked=summary.checked, updated=summary.updated)
    db.commit()
    return BatchOut(**asdict(summary))


@router.post(
    "/pos/sync-stock",
    response_model=PosSyncOut,
    summary="Pull stock levels from Loyverse",
    description="Overwrites local stock quantities. Reserved quantities are kept.",
    responses=error_responses(401, 403, 500, 502),
)
def pos_sync_stock(
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    try:
        summary = sync_stock_from_pos(db)
    except ProviderError as exc:
        db.rollback()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    _log(db, actor, "maintenance.pos_sync", **asdict(summary))
    db.commit()
    return PosSyncOut(**asdict(summary))


@router.post(
    "/pos/push-stock/{product_id}",
    response_model=PosPushOut,
    summary="Push one product's stock to Loyverse",
    responses=error_responses(401, 403, 404, 500, 502),
)
def pos_push_stock(
    product_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    try:
        sent = push_stock_to_pos(db, product_id)
    except StockError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ProviderError as exc:
        db.rollback()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    _log(db, actor, "maintenance.pos_push", target_id=product_id, levels_sent=sent)
    db.commit()
    return PosPushOut(product_id=product_id, levels_sent=sent)
