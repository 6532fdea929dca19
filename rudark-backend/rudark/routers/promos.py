from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.promo import Promo
from rudark.schemas.promo import PromoCreate, PromoOut, PromoUpdate, PromoValidateIn, PromoValidateOut
from rudark.services.audit_service import log_audit_event
from rudark.services.promo_service import PromoError, get_promo_by_code, validate_promo

router = APIRouter(prefix="/promos", tags=["promos"])
public_router = APIRouter(prefix="/public/promos", tags=["promos"])


def _promo_out(promo: Promo) -> PromoOut:
    return PromoOut(
        id=promo.id,
        code=promo.code,
        promo_type=promo.promo_type,
        value=float(promo.value),
        min_spend=float(promo.min_spend or 0),
        usage_limit=promo.usage_limit,
        usage_count=promo.usage_count or 0,
        active=promo.active,
        created_at=promo.created_at,
        updated_at=promo.updated_at,
    )


def _promo_or_404(db: Session, promo_id: str) -> Promo:
    promo = db.get(Promo, promo_id)
    if not promo:
        raise HTTPException(status_code=404, detail="Promo not found")
    return promo


def _audit(db: Session, actor: AdminUser, action: str, promo: Promo, **metadata) -> None:
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=action,
        target_type="promo",
        target_id=promo.id,
        metadata_json={"code": promo.code, **metadata},
    )


@router.post(
    "",
    response_model=PromoOut,
    status_code=201,
    summary="Create promo code",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_promo(
    payload: PromoCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    if get_promo_by_code(db, payload.code):
        raise HTTPException(status_code=409, detail="Promo code already exists")
    promo = Promo(**payload.model_dump(), usage_count=0)
    db.add(promo)
    db.flush()
    _audit(db, actor, "promo.create", promo, promo_type=promo.promo_type, value=str(promo.value))
    db.commit()
    db.refresh(promo)
    return _promo_out(promo)


@router.get(
    "",
    response_model=list[PromoOut],
    summary="List promo codes",
    responses=error_responses(401, 403, 500),
)
def list_promos(
    active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    stmt = select(Promo)
    if active is not None:
        stmt = stmt.where(Promo.active.is_(active))
    rows = db.execute(stmt.order_by(Promo.created_at.desc(), Promo.code.asc())).scalars().all()
    return [_promo_out(promo) for promo in rows]


@router.get(
    "/{promo_id}",
    response_model=PromoOut,
    summary="Get promo code",
    responses=error_responses(401, 403, 404, 500),
)
def get_promo(
    promo_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _promo_out(_promo_or_404(db, promo_id))


@router.patch(
    "/{promo_id}",
    response_model=PromoOut,
    summary="Update promo code",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_promo(
    promo_id: str,
    payload: PromoUpdate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    promo = _promo_or_404(db, promo_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"clear_usage_limit"})
    if "code" in changes and changes["code"] != promo.code:
        existing = get_promo_by_code(db, changes["code"])
        if existing and existing.id != promo.id:
            raise HTTPException(status_code=409, detail="Promo code already exists")
    for field, value in changes.items():
        setattr(promo, field, value)
    if payload.clear_usage_limit:
        promo.usage_limit = None
    if promo.promo_type == "PERCENTAGE" and promo.value > 100:
        db.rollback()
        raise HTTPException(status_code=400, detail="Percentage promos cannot exceed 100")
    _audit(db, actor, "promo.update", promo, fields=sorted(changes))
    db.commit()
    db.refresh(promo)
    return _promo_out(promo)


@router.post(
    "/{promo_id}/toggle",
    response_model=PromoOut,
    summary="Toggle promo active flag",
    responses=error_responses(401, 403, 404, 500),
)
def toggle_promo(
    promo_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    promo = _promo_or_404(db, promo_id)
    promo.active = not promo.active
    _audit(db, actor, "promo.toggle", promo, active=promo.active)
    db.commit()
    db.refresh(promo)
    return _promo_out(promo)


@router.delete(
    "/{promo_id}",
    status_code=204,
    summary="Delete promo code",
    responses=error_responses(401, 403, 404, 500),
)
def delete_promo(
    promo_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    promo = _promo_or_404(db, promo_id)
    _audit(db, actor, "promo.delete", promo, usage_count=promo.usage_count)
    db.delete(promo)
    db.commit()
    return Response(status_code=204)


@public_router.post(
    "/validate",
    response_model=PromoValidateOut,
    summary="Check a promo code against a cart total",
    responses=error_responses(400, 422, 500),
)
def validate(payload: PromoValidateIn, db: Session = Depends(get_db)):
    try:
        quote = validate_promo(db, payload.code, payload.cart_total)
    except PromoError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PromoValidateOut(
        valid=True,
        code=quote.promo.code,
        promo_type=quote.promo.promo_type,
        discount=float(quote.discount),
        message=f"RM{quote.discount:.2f} off applied",
    )
