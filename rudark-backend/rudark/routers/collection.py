from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.collection import CollectionPoint
from rudark.models.order import Order
from rudark.routers.orders import _order_out
from rudark.schemas.collection import (
    CollectionOrderListOut,
    CollectionPointCreate,
    CollectionPointOut,
    CollectionPointUpdate,
    PublicCollectionPointOut,
)
from rudark.schemas.common import PaginationMeta
from rudark.schemas.order import CollectionStatsOut
from rudark.services.audit_service import log_audit_event
from rudark.services.order_admin_service import collection_stats, list_collection_orders
from rudark.services.shop_settings_service import get_collection_settings

router = APIRouter(prefix="/collection-points", tags=["collection"])
orders_router = APIRouter(prefix="/collection-orders", tags=["collection"])
public_router = APIRouter(prefix="/public/collection-points", tags=["collection"])


def _point_out(point: CollectionPoint) -> CollectionPointOut:
    return CollectionPointOut(
        id=point.id,
        name=point.name,
        address=point.address,
        postcode=point.postcode,
        state=point.state,
        collection_fee=float(point.collection_fee or 0),
        operating_hours=point.operating_hours,
        contact_phone=point.contact_phone,
        is_active=point.is_active,
        created_at=point.created_at,
    )


def _point_or_404(db: Session, point_id: str) -> CollectionPoint:
    point = db.get(CollectionPoint, point_id)
    if not point:
        raise HTTPException(status_code=404, detail="Collection point not found")
    return point


@router.post(
    "",
    response_model=CollectionPointOut,
    status_code=201,
    summary="Create collection point",
    responses=error_responses(401, 403, 422, 500),
)
def create_point(
    payload: CollectionPointCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    point = CollectionPoint(**payload.model_dump())
    db.add(point)
    db.flush()
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="collection_point.create",
        target_type="collection_point",
        target_id=point.id,
        metadata_json={"name": point.name, "collection_fee": str(point.collection_fee)},
    )
    db.commit()
    db.refresh(point)
    return _point_out(point)


@router.get(
    "",
    response_model=list[CollectionPointOut],
    summary="List collection points",
    responses=error_responses(401, 403, 500),
)
def list_points(
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    rows = db.execute(select(CollectionPoint).order_by(CollectionPoint.name.asc())).scalars().all()
    return [_point_out(point) for point in rows]


@router.patch(
    "/{point_id}",
    response_model=CollectionPointOut,
    summary="Update collection point",
    responses=error_responses(401, 403, 404, 422, 500),
)
def update_point(
    point_id: str,
    payload: CollectionPointUpdate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    point = _point_or_404(db, point_id)
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(point, field, value)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="collection_point.update",
        target_type="collection_point",
        target_id=point.id,
        metadata_json={"fields": sorted(changes)},
    )
    db.commit()
    db.refresh(point)
    return _point_out(point)


@router.delete(
    "/{point_id}",
    response_model=CollectionPointOut,
    summary="Delete collection point",
    description="Points referenced by orders are deactivated instead of deleted.",
    responses=error_responses(401, 403, 404, 500),
)
def delete_point(
    point_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    point = _point_or_404(db, point_id)
    referenced = db.execute(
        select(func.count(Order.id)).where(Order.collection_point_id == point.id)
    ).scalar_one()
    out = _point_out(point)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="collection_point.deactivate" if referenced else "collection_point.delete",
        target_type="collection_point",
        target_id=point.id,
        metadata_json={"name": point.name, "orders": referenced},
    )
    if referenced:
        point.is_active = False
        out = out.model_copy(update={"is_active": False})
    else:
        db.delete(point)
    db.commit()
    return out


@public_router.get(
    "",
    response_model=list[PublicCollectionPointOut],
    summary="Active collection points",
    description="Empty when self collection is switched off in shop settings.",
    responses=error_responses(500),
)
def public_points(db: Session = Depends(get_db)):
    if not get_collection_settings(db).enabled:
        return []
    rows = db.execute(
        select(CollectionPoint)
        .where(CollectionPoint.is_active.is_(True))
        .order_by(CollectionPoint.name.asc())
    ).scalars().all()
    return [
        PublicCollectionPointOut(
            id=point.id,
            name=point.name,
            address=point.address,
            postcode=point.postcode,
            state=point.state,
            collection_fee=float(point.collection_fee or 0),
            operating_hours=point.operating_hours,
            contact_phone=point.contact_phone,
        )
        for point in rows
    ]


@orders_router.get(
    "",
    response_model=CollectionOrderListOut,
    summary="List self-collection orders",
    responses=error_responses(401, 403, 422, 500),
)
def collection_orders(
    shipping_status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    rows, total = list_collection_orders(
        db,
        shipping_status=shipping_status,
        limit=limit,
        offset=offset,
    )
    return CollectionOrderListOut(
        items=[_order_out(order) for order in rows],
        pagination=PaginationMeta.page(total=total, limit=limit, offset=offset, count=len(rows)),
    )


@orders_router.get(
    "/stats",
    response_model=CollectionStatsOut,
    summary="Self-collection stats",
    responses=error_responses(401, 403, 500),
)
def get_collection_stats(
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    stats = collection_stats(db)
    return CollectionStatsOut(**{**stats, "revenue": float(stats["revenue"])})
