from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.consignment import CONSIGNMENT_STATUSES, Consignment
from rudark.schemas.consignment import (
    ConsignmentCreate,
    ConsignmentItemOut,
    ConsignmentOut,
    ConsignmentSummaryOut,
    ReconcileIn,
    RecordSalesIn,
)
from rudark.services.audit_service import log_audit_event
from rudark.services.consignment_service import (
    ConsignmentError,
    ConsignmentLine,
    ReconcileLine,
    cancel_consignment,
    close_consignment,
    consignment_summary,
    create_consignment,
    reconcile_consignment,
    record_sales,
    send_consignment,
)
from rudark.services.stock_service import StockError

router = APIRouter(prefix="/consignments", tags=["consignments"])


def _consignment_out(consignment: Consignment) -> ConsignmentOut:
    summary = consignment_summary(consignment)
    return ConsignmentOut(
        id=consignment.id,
        consignment_number=consignment.consignment_number,
        partner_name=consignment.partner_name,
        partner_contact=consignment.partner_contact,
        partner_phone=consignment.partner_phone,
        status=consignment.status,
        notes=consignment.notes,
        created_by=consignment.created_by,
        sent_at=consignment.sent_at,
        reconciled_at=consignment.reconciled_at,
        closed_at=consignment.closed_at,
        created_at=consignment.created_at,
        items=[
            ConsignmentItemOut(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product_name,
                variant_sku=item.variant_sku,
                variant_label=item.variant_label,
                unit_price=float(item.unit_price),
                quantity_sent=item.quantity_sent,
                quantity_sold=item.quantity_sold,
                quantity_returned=item.quantity_returned,
                quantity_lost=item.quantity_lost,
                quantity_pending=item.quantity_pending,
            )
            for item in consignment.items
        ],
        summary=ConsignmentSummaryOut(**summary),
    )


def _consignment_or_404(db: Session, consignment_id: str) -> Consignment:
    consignment = db.execute(
        select(Consignment)
        .options(selectinload(Consignment.items))
        .where(Consignment.id == consignment_id)
        .with_for_update()
    ).scalar_one_or_none()
    if not consignment:
        raise HTTPException(status_code=404, detail="Consignment not found")
    return consignment


def _commit(db: Session, actor: AdminUser, action: str, consignment: Consignment, **metadata) -> ConsignmentOut:
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=action,
        target_type="consignment",
        target_id=consignment.id,
        metadata_json={
            "consignment_number": consignment.consignment_number,
            "status": consignment.status,
            **metadata,
        },
    )
    db.commit()
    return _consignment_out(_consignment_or_404(db, consignment.id))


@router.post(
    "",
    response_model=ConsignmentOut,
    status_code=201,
    summary="Create consignment (draft)",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create(
    payload: ConsignmentCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    try:
        consignment = create_consignment(
            db,
            partner_name=payload.partner_name,
            partner_contact=payload.partner_contact,
            partner_phone=payload.partner_phone,
            notes=payload.notes,
            lines=[
                ConsignmentLine(
                    product_id=line.product_id,
                    variant_sku=line.variant_sku,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in payload.items
            ],
            actor=actor.id,
        )
    except ConsignmentError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.flush()
    return _commit(db, actor, "consignment.create", consignment, items=len(payload.items))


@router.get(
    "",
    response_model=list[ConsignmentOut],
    summary="List consignments",
    responses=error_responses(400, 401, 403, 500),
)
def list_consignments(
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    stmt = select(Consignment).options(selectinload(Consignment.items))
    if status:
        normalized = status.strip().upper()
        if normalized not in CONSIGNMENT_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        stmt = stmt.where(Consignment.status == normalized)
    rows = db.execute(
        stmt.order_by(Consignment.created_at.desc(), Consignment.consignment_number.desc())
    ).scalars().all()
    return [_consignment_out(row) for row in rows]


@router.get(
    "/{consignment_id}",
    response_model=ConsignmentOut,
    summary="Get consignment",
    responses=error_responses(401, 403, 404, 500),
)
def get_consignment(
    consignment_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _consignment_out(_consignment_or_404(db, consignment_id))


@router.post(
    "/{consignment_id}/send",
    response_model=ConsignmentOut,
    summary="Send consignment to partner",
    description="Moves the goods out of stock with TRANSFER_OUT movements.",
    responses=error_responses(400, 401, 403, 404, 500),
)
def send(
    consignment_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    consignment = _consignment_or_404(db, consignment_id)
    try:
        send_consignment(db, consignment, actor=actor.id)
    except (ConsignmentError, StockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "consignment.send", consignment)


@router.post(
    "/{consignment_id}/sales",
    response_model=ConsignmentOut,
    summary="Record partner sales",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def sales(
    consignment_id: str,
    payload: RecordSalesIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    consignment = _consignment_or_404(db, consignment_id)
    totals: dict[str, int] = {}
    for line in payload.items:
        totals[line.item_id] = totals.get(line.item_id, 0) + line.quantity
    try:
        record_sales(consignment, totals)
    except ConsignmentError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "consignment.sales", consignment, units=sum(totals.values()))


@router.post(
    "/{consignment_id}/reconcile",
    response_model=ConsignmentOut,
    summary="Reconcile returns and losses",
    description="Returned units come back with TRANSFER_IN. Closes the consignment once nothing is pending.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def reconcile(
    consignment_id: str,
    payload: ReconcileIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    consignment = _consignment_or_404(db, consignment_id)
    try:
        reconcile_consignment(
            db,
            consignment,
            [
                ReconcileLine(
                    item_id=line.item_id,
                    quantity_returned=line.quantity_returned,
                    quantity_lost=line.quantity_lost,
                )
                for line in payload.items
            ],
            actor=actor.id,
        )
    except (ConsignmentError, StockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "consignment.reconcile", consignment)


@router.post(
    "/{consignment_id}/close",
    response_model=ConsignmentOut,
    summary="Close consignment",
    responses=error_responses(400, 401, 403, 404, 500),
)
def close(
    consignment_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    consignment = _consignment_or_404(db, consignment_id)
    try:
        close_consignment(consignment)
    except ConsignmentError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "consignment.close", consignment)


@router.post(
    "/{consignment_id}/cancel",
    response_model=ConsignmentOut,
    summary="Cancel consignment",
    description="Any units still with the partner are returned to stock.",
    responses=error_responses(400, 401, 403, 404, 500),
)
def cancel(
    consignment_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    consignment = _consignment_or_404(db, consignment_id)
    try:
        cancel_consignment(db, consignment, actor=actor.id)
    except (ConsignmentError, StockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "consignment.cancel", consignment)
