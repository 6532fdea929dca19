from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.stock_audit import AUDIT_STATUSES, StockAudit
from rudark.models.store import Store
from rudark.schemas.stock_audit import (
    RecordCountsIn,
    StockAuditApplyOut,
    StockAuditCreate,
    StockAuditItemOut,
    StockAuditOut,
)
from rudark.services.audit_service import log_audit_event
from rudark.services.stock_audit_service import (
    AuditError,
    apply_audit,
    cancel_audit,
    create_audit,
    record_counts,
    submit_audit,
)
from rudark.services.stock_service import StockError

router = APIRouter(prefix="/stock-audits", tags=["stock-audits"])


def _audit_out(audit: StockAudit) -> StockAuditOut:
    return StockAuditOut(
        id=audit.id,
        audit_number=audit.audit_number,
        store_id=audit.store_id,
        status=audit.status,
        notes=audit.notes,
        created_by=audit.created_by,
        completed_at=audit.completed_at,
        created_at=audit.created_at,
        counted_items=sum(1 for item in audit.items if item.counted_quantity is not None),
        discrepancy_items=sum(1 for item in audit.items if item.discrepancy),
        items=[
            StockAuditItemOut(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product_name,
                variant_sku=item.variant_sku,
                variant_label=item.variant_label,
                system_quantity=item.system_quantity,
                counted_quantity=item.counted_quantity,
                discrepancy=item.discrepancy,
                applied=item.applied,
            )
            for item in audit.items
        ],
    )


def _audit_or_404(db: Session, audit_id: str) -> StockAudit:
    audit = db.execute(
        select(StockAudit)
        .options(selectinload(StockAudit.items))
        .where(StockAudit.id == audit_id)
        .with_for_update()
    ).scalar_one_or_none()
    if not audit:
        raise HTTPException(status_code=404, detail="Stock audit not found")
    return audit


def _log(db: Session, actor: AdminUser, action: str, audit: StockAudit, **metadata) -> None:
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=action,
        target_type="stock_audit",
        target_id=audit.id,
        metadata_json={"audit_number": audit.audit_number, "status": audit.status, **metadata},
    )


@router.post(
    "",
    response_model=StockAuditOut,
    status_code=201,
    summary="Start stock audit",
    description="Snapshots the current system quantity of every product and variant in scope.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create(
    payload: StockAuditCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    if payload.store_id and db.get(Store, payload.store_id) is None:
        raise HTTPException(status_code=400, detail="Store not found")
    try:
        audit = create_audit(
            db,
            product_ids=payload.product_ids,
            store_id=payload.store_id,
            notes=payload.notes,
            actor=actor.id,
        )
    except AuditError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.flush()
    _log(db, actor, "stock_audit.create", audit, items=len(audit.items))
    db.commit()
    return _audit_out(_audit_or_404(db, audit.id))


@router.get(
    "",
    response_model=list[StockAuditOut],
    summary="List stock audits",
    responses=error_responses(400, 401, 403, 500),
)
def list_audits(
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    stmt = select(StockAudit).options(selectinload(StockAudit.items))
    if status:
        normalized = status.strip().upper()
        if normalized not in AUDIT_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        stmt = stmt.where(StockAudit.status == normalized)
    rows = db.execute(stmt.order_by(StockAudit.created_at.desc(), StockAudit.audit_number.desc())).scalars().all()
    return [_audit_out(row) for row in rows]


@router.get(
    "/{audit_id}",
    response_model=StockAuditOut,
    summary="Get stock audit",
    responses=error_responses(401, 403, 404, 500),
)
def get_audit(
    audit_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _audit_out(_audit_or_404(db, audit_id))


@router.post(
    "/{audit_id}/counts",
    response_model=StockAuditOut,
    summary="Record counted quantities",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def counts(
    audit_id: str,
    payload: RecordCountsIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    audit = _audit_or_404(db, audit_id)
    try:
        record_counts(audit, {line.item_id: line.counted_quantity for line in payload.items})
    except AuditError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _log(db, actor, "stock_audit.count", audit, items=len(payload.items))
    db.commit()
    return _audit_out(_audit_or_404(db, audit.id))


@router.post(
    "/{audit_id}/submit",
    response_model=StockAuditOut,
    summary="Submit audit for review",
    responses=error_responses(400, 401, 403, 404, 500),
)
def submit(
    audit_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    audit = _audit_or_404(db, audit_id)
    try:
        submit_audit(audit)
    except AuditError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _log(db, actor, "stock_audit.submit", audit)
    db.commit()
    return _audit_out(_audit_or_404(db, audit.id))


@router.post(
    "/{audit_id}/apply",
    response_model=StockAuditApplyOut,
    summary="Apply audit discrepancies",
    description="Posts one ADJUST movement per discrepancy not yet applied.",
    responses=error_responses(400, 401, 403, 404, 500),
)
def apply(
    audit_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    audit = _audit_or_404(db, audit_id)
    try:
        posted = apply_audit(db, audit, actor=actor.id)
    except (AuditError, StockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _log(db, actor, "stock_audit.apply", audit, adjustments_posted=posted)
    db.commit()
    return StockAuditApplyOut(audit=_audit_out(_audit_or_404(db, audit.id)), adjustments_posted=posted)


@router.post(
    "/{audit_id}/cancel",
    response_model=StockAuditOut,
    summary="Cancel stock audit",
    responses=error_responses(400, 401, 403, 404, 500),
)
def cancel(
    audit_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    audit = _audit_or_404(db, audit_id)
    try:
        cancel_audit(audit)
    except AuditError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _log(db, actor, "stock_audit.cancel", audit)
    db.commit()
    return _audit_out(_audit_or_404(db, audit.id))
