from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.category import Category
from rudark.schemas.category import (
    CategoryCreate,
    CategoryOut,
    CategoryPublicOut,
    CategoryUpdate,
    SubcategoryOut,
)
from rudark.services.audit_service import log_audit_event
from rudark.services.category_service import (
    CategoryConflict,
    CategoryError,
    create_category,
    delete_category,
    list_categories,
    product_counts,
    update_category,
)

router = APIRouter(prefix="/categories", tags=["categories"])
public_router = APIRouter(prefix="/public/categories", tags=["categories"])


def _subcategories_out(category: Category) -> list[SubcategoryOut]:
    return [SubcategoryOut(name=item["name"], slug=item["slug"]) for item in category.subcategories or []]


def _category_out(category: Category, counts: dict[str, int]) -> CategoryOut:
    return CategoryOut(
        id=category.id,
        name=category.name,
        slug=category.slug,
        description=category.description,
        image_url=category.image_url,
        sort_order=category.sort_order,
        subcategories=_subcategories_out(category),
        is_active=category.is_active,
        product_count=counts.get(category.slug, 0),
        created_at=category.created_at,
        updated_at=category.updated_at,
    )


def _category_or_404(db: Session, category_id: str) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def _http_error(exc: CategoryError) -> HTTPException:
    status_code = 409 if isinstance(exc, CategoryConflict) else 400
    return HTTPException(status_code=status_code, detail=str(exc))


def _audit(db: Session, actor: AdminUser, action: str, category: Category, **metadata) -> None:
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action=action,
        target_type="category",
        target_id=category.id,
        metadata_json={"slug": category.slug, **metadata},
    )


@router.post(
    "",
    response_model=CategoryOut,
    status_code=201,
    summary="Create category",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def add_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    try:
        category = create_category(db, payload)
    except CategoryError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    _audit(db, actor, "category.create", category, name=category.name)
    db.commit()
    db.refresh(category)
    return _category_out(category, {})


@router.get(
    "",
    response_model=list[CategoryOut],
    summary="List categories in menu order",
    responses=error_responses(401, 403, 500),
)
def list_all_categories(
    active_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    counts = product_counts(db)
    return [_category_out(category, counts) for category in list_categories(db, active_only=active_only)]


@router.get(
    "/{category_id}",
    response_model=CategoryOut,
    summary="Get category",
    responses=error_responses(401, 403, 404, 500),
)
def get_category(
    category_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _category_out(_category_or_404(db, category_id), product_counts(db))


@router.patch(
    "/{category_id}",
    response_model=CategoryOut,
    summary="Update category",
    description="Renaming the slug moves every product in the category to the new slug.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def edit_category(
    category_id: str,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    category = _category_or_404(db, category_id)
    previous_slug = category.slug
    try:
        changed = update_category(db, category, payload)
    except CategoryError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    _audit(db, actor, "category.update", category, fields=changed, previous_slug=previous_slug)
    db.commit()
    db.refresh(category)
    return _category_out(category, product_counts(db))


@router.delete(
    "/{category_id}",
    status_code=204,
    summary="Delete category",
    responses=error_responses(400, 401, 403, 404, 500),
)
def remove_category(
    category_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    category = _category_or_404(db, category_id)
    _audit(db, actor, "category.delete", category, name=category.name)
    try:
        delete_category(db, category)
    except CategoryError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    db.commit()
    return Response(status_code=204)


@public_router.get(
    "",
    response_model=list[CategoryPublicOut],
    summary="Storefront category menu",
    responses=error_responses(500),
)
def category_menu(db: Session = Depends(get_db)):
    return [
        CategoryPublicOut(
            name=category.name,
            slug=category.slug,
            description=category.description,
            image_url=category.image_url,
            subcategories=_subcategories_out(category),
        )
        for category in list_categories(db, active_only=True)
    ]
