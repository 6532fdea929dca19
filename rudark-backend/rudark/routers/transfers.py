from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.transfer import TRANSFER_STATUSES, StockTransfer
from rudark.schemas.transfer import (
    TransferCancelIn,
    TransferCompleteIn,
    TransferCreate,
    TransferItemOut,
    TransferOut,
)
from rudark.services.audit_service import log_audit_event
from rudark.services.stock_service import StockError
from rudark.services.transfer_service import (
    TransferError,
    TransferLine,
    approve_transfer,
    cancel_transfer,
    complete_transfer,
    create_transfer,
)

router = APIRouter(prefix="/transfers", tags=["transfers"])


def _transfer_out(transfer: StockTransfer) -> TransferOut:
    return TransferOut(
        id=transfer.id,
        transfer_number=transfer.transfer_number,
        from_store_id=transfer.from_store_id,
        to_store_id=transfer.to_store_id,
        status=transfer.status,
        notes=transfer.notes,
        cancelled_reason=transfer.cancelled_reason,
        created_by=transfer.created_by,
        approved_by=transfer.approved_by,
        approved_at=transfer.approved_at,
        completed_at=transfer.completed_at,
        created_at=transfer.created_at,
        items=[
            TransferItemOut(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product_name,
                variant_sku=item.variant_sku,
                variant_label=item.variant_label,
                quantity=item.quantity,
                received_quantity=item.received_quantity,
            )
            for item in transfer.items
        ],
    )


def _transfer_or_404(db: Session, transfer_id: str) -> StockTransfer:
    transfer = db.execute(
        select(StockTransfer)
        .options(selectinload(StockTransfer.items))
        .where(StockTransfer.id == transfer_id)
        .with_for_update()
    ).scalar_one_or_none()
    if not transfer:
        raise HTTPException(status_code=404, detail="Transfer not found")
    return transfer


def _commit(db: Session, actor: AdminUser, action: str, transfer: StockTransfer, **metadata) -> TransferOut:
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=action,
        target_type="stock_transfer",
        target_id=transfer.id,
        metadata_json={"transfer_number": transfer.transfer_number, "status": transfer.status, **metadata},
    )
    db.commit()
    return _transfer_out(_transfer_or_404(db, transfer.id))


@router.post(
    "",
    response_model=TransferOut,
    status_code=201,
    summary="Create stock transfer",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    try:
        transfer = create_transfer(
            db,
            from_store_id=payload.from_store_id,
            to_store_id=payload.to_store_id,
            notes=payload.notes,
            lines=[
                TransferLine(product_id=line.product_id, variant_sku=line.variant_sku, quantity=line.quantity)
                for line in payload.items
            ],
            actor=actor.id,
        )
    except TransferError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.flush()
    return _commit(db, actor, "transfer.create", transfer, items=len(payload.items))


@router.get(
    "",
    response_model=list[TransferOut],
    summary="List stock transfers",
    responses=error_responses(400, 401, 403, 500),
)
def list_transfers(
    status: str | None = Query(default=None),
    store_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    stmt = select(StockTransfer).options(selectinload(StockTransfer.items))
    if status:
        normalized = status.strip().upper()
        if normalized not in TRANSFER_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        stmt = stmt.where(StockTransfer.status == normalized)
    if store_id:
        stmt = stmt.where(
            (StockTransfer.from_store_id == store_id) | (StockTransfer.to_store_id == store_id)
        )
    rows = db.execute(
        stmt.order_by(StockTransfer.created_at.desc(), StockTransfer.transfer_number.desc())
    ).scalars().all()
    return [_transfer_out(row) for row in rows]


@router.get(
    "/{transfer_id}",
    response_model=TransferOut,
    summary="Get stock transfer",
    responses=error_responses(401, 403, 404, 500),
)
def get_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _transfer_out(_transfer_or_404(db, transfer_id))


@router.post(
    "/{transfer_id}/approve",
    response_model=TransferOut,
    summary="Approve and dispatch transfer",
    description="Deducts stock at the source store with TRANSFER_OUT movements.",
    responses=error_responses(400, 401, 403, 404, 500),
)
def approve(
    transfer_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    transfer = _transfer_or_404(db, transfer_id)
    try:
        approve_transfer(db, transfer, actor=actor.id)
    except (TransferError, StockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "transfer.approve", transfer)


@router.post(
    "/{transfer_id}/complete",
    response_model=TransferOut,
    summary="Receive transfer",
    description="Items not listed are received in full.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def complete(
    transfer_id: str,
    payload: TransferCompleteIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_staff),
):
    transfer = _transfer_or_404(db, transfer_id)
    try:
        complete_transfer(
            db,
            transfer,
            received={line.item_id: line.received_quantity for line in payload.items},
            actor=actor.id,
        )
    except (TransferError, StockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "transfer.complete", transfer)


@router.post(
    "/{transfer_id}/cancel",
    response_model=TransferOut,
    summary="Cancel transfer",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def cancel(
    transfer_id: str,
    payload: TransferCancelIn,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    transfer = _transfer_or_404(db, transfer_id)
    try:
        cancel_transfer(db, transfer, reason=payload.reason, actor=actor.id)
    except (TransferError, StockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _commit(db, actor, "transfer.cancel", transfer, reason=payload.reason)
