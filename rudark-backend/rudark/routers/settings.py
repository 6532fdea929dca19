from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager
from rudark.models.admin_user import AdminUser
from rudark.schemas.settings import StorefrontSettingsOut
from rudark.services.audit_service import log_audit_event
from rudark.services.shop_settings_service import (
    SETTINGS_DOCUMENTS,
    get_collection_settings,
    get_payment_settings,
    get_settings_document,
    get_shipping_settings,
    update_settings_document,
)

router = APIRouter(prefix="/settings", tags=["settings"])
public_router = APIRouter(prefix="/public/settings", tags=["settings"])

# Only owners may edit these.
OWNER_ONLY_DOCUMENTS = {"payment"}


def _document_key(key: str) -> str:
    normalized = key.strip().lower()
    if normalized not in SETTINGS_DOCUMENTS:
        raise HTTPException(status_code=404, detail=f"Unknown settings document: {key}")
    return normalized


@router.get(
    "/{key}",
    response_model=dict[str, Any],
    summary="Read a settings document",
    description="Documents: payment, shipping, collection, sender. Defaults are returned when nothing is stored.",
    responses=error_responses(401, 403, 404, 500),
)
def read_settings(
    key: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_manager),
):
    return get_settings_document(db, _document_key(key)).model_dump(mode="json")


@router.patch(
    "/{key}",
    response_model=dict[str, Any],
    summary="Update a settings document",
    description="The body is merged into the stored document; nested objects merge key by key.",
    responses=error_responses(401, 403, 404, 422, 500),
)
def patch_settings(
    key: str,
    patch: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    normalized = _document_key(key)
    if normalized in OWNER_ONLY_DOCUMENTS and actor.role != "owner":
        raise HTTPException(status_code=403, detail="Only the owner can change payment settings")
    try:
        updated = update_settings_document(db, normalized, patch)
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(
            status_code=422,
            detail=[
                {
                    "field": ".".join(str(part) for part in err.get("loc", [])) or "body",
                    "message": err.get("msg", "Invalid value"),
                    "type": err.get("type"),
                }
                for err in exc.errors()
            ],
        ) from exc
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=f"settings.{normalized}.update",
        target_type="shop_settings",
        target_id=normalized,
        metadata_json={"fields": sorted(patch)},
    )
    db.commit()
    return updated.model_dump(mode="json")


@public_router.get(
    "",
    response_model=StorefrontSettingsOut,
    summary="Storefront-facing shop settings",
    responses=error_responses(500),
)
def storefront_settings(db: Session = Depends(get_db)):
    payment = get_payment_settings(db)
    shipping = get_shipping_settings(db)
    return StorefrontSettingsOut(
        payment_gateway=payment.enabled_gateway,
        free_shipping_enabled=shipping.free_shipping_enabled,
        free_shipping_threshold=float(shipping.free_shipping_threshold),
        free_shipping_applies_to=shipping.free_shipping_applies_to,
        free_shipping_regions=list(shipping.free_shipping_regions),
        collection_enabled=get_collection_settings(db).enabled,
    )
