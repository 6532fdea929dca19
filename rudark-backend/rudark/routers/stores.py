from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.stock_audit import StockAudit
from rudark.models.store import Store
from rudark.models.transfer import StockTransfer
from rudark.schemas.store import StoreCreate, StoreOut, StoreUpdate
from rudark.services.audit_service import log_audit_event
from rudark.services.store_service import get_default_store, unset_other_defaults

router = APIRouter(prefix="/stores", tags=["stores"])


def _store_out(store: Store) -> StoreOut:
    return StoreOut(
        id=store.id,
        name=store.name,
        loyverse_store_id=store.loyverse_store_id,
        loyverse_payment_type_id=store.loyverse_payment_type_id,
        address=store.address,
        phone=store.phone,
        is_default=store.is_default,
        is_active=store.is_active,
        created_at=store.created_at,
        updated_at=store.updated_at,
    )


def _store_or_404(db: Session, store_id: str) -> Store:
    store = db.get(Store, store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    return store


@router.post(
    "",
    response_model=StoreOut,
    status_code=201,
    summary="Create store",
    responses=error_responses(401, 403, 422, 500),
)
def create_store(
    payload: StoreCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    store = Store(**payload.model_dump())
    db.add(store)
    db.flush()
    if store.is_default:
        unset_other_defaults(db, store.id)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="store.create",
        target_type="store",
        target_id=store.id,
        metadata_json={"name": store.name, "is_default": store.is_default},
    )
    db.commit()
    db.refresh(store)
    return _store_out(store)


@router.get(
    "",
    response_model=list[StoreOut],
    summary="List stores",
    responses=error_responses(401, 403, 500),
)
def list_stores(
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    rows = db.execute(
        select(Store).order_by(Store.is_default.desc(), Store.name.asc())
    ).scalars().all()
    return [_store_out(store) for store in rows]


@router.get(
    "/default",
    response_model=StoreOut,
    summary="Get default store",
    description="Falls back to the first active store when none is marked default.",
    responses=error_responses(401, 403, 404, 500),
)
def default_store(
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    store = get_default_store(db)
    if not store:
        raise HTTPException(status_code=404, detail="No active store configured")
    return _store_out(store)


@router.get(
    "/{store_id}",
    response_model=StoreOut,
    summary="Get store",
    responses=error_responses(401, 403, 404, 500),
)
def get_store(
    store_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _store_out(_store_or_404(db, store_id))


@router.patch(
    "/{store_id}",
    response_model=StoreOut,
    summary="Update store",
    responses=error_responses(401, 403, 404, 422, 500),
)
def update_store(
    store_id: str,
    payload: StoreUpdate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    store = _store_or_404(db, store_id)
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(store, field, value)
    if store.is_default:
        unset_other_defaults(db, store.id)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="store.update",
        target_type="store",
        target_id=store.id,
        metadata_json={"fields": sorted(changes)},
    )
    db.commit()
    db.refresh(store)
    return _store_out(store)


@router.delete(
    "/{store_id}",
    status_code=204,
    summary="Delete store",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_store(
    store_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    store = _store_or_404(db, store_id)
    if store.is_default:
        raise HTTPException(status_code=409, detail="Cannot delete the default store")
    transfers = db.execute(
        select(func.count(StockTransfer.id)).where(
            or_(StockTransfer.from_store_id == store.id, StockTransfer.to_store_id == store.id)
        )
    ).scalar_one()
    audits = db.execute(
        select(func.count(StockAudit.id)).where(StockAudit.store_id == store.id)
    ).scalar_one()
    if transfers or audits:
        raise HTTPException(status_code=409, detail="Store has transfers or audits; deactivate it instead")
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="store.delete",
        target_type="store",
        target_id=store.id,
        metadata_json={"name": store.name},
    )
    db.delete(store)
    db.commit()
    return Response(status_code=204)
