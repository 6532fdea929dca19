import re
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rudark.models.category import Category
from rudark.models.product import Product
from rudark.schemas.category import CategoryCreate, CategoryUpdate, SubcategoryIn

NULLABLE_FIELDS = {"description", "image_url"}


class CategoryError(ValueError):
    pass


class CategoryConflict(CategoryError):
    pass


def slugify(value: str | None) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")


def get_category_by_slug(db: Session, slug: str | None) -> Category | None:
    normalized = (slug or "").strip().lower()
    if not normalized:
        return None
    return db.execute(select(Category).where(Category.slug == normalized)).scalar_one_or_none()


def ensure_category(db: Session, slug: str | None) -> None:
    """Products may only point at a category that exists."""
    if slug is None:
        return
    if get_category_by_slug(db, slug) is None:
        raise CategoryError(f"Unknown category '{slug}'")


def product_counts(db: Session) -> dict[str, int]:
    rows = db.execute(
        select(Product.category_slug, func.count(Product.id))
        .where(Product.category_slug.is_not(None))
        .group_by(Product.category_slug)
    ).all()
    return {slug: count for slug, count in rows}


def _subcategories(items: list[SubcategoryIn]) -> list[dict[str, Any]]:
    seen: set[str] = set()
    result = []
    for item in items:
        slug = slugify(item.slug or item.name)
        if not slug:
            raise CategoryError(f"Subcategory '{item.name}' needs a slug")
        if slug in seen:
            raise CategoryError(f"Duplicate subcategory '{slug}'")
        seen.add(slug)
        result.append({"name": item.name, "slug": slug})
    return result


def _claim_slug(db: Session, raw: str, *, current: Category | None = None) -> str:
    slug = slugify(raw)
    if not slug:
        raise CategoryError("Category slug must contain letters or digits")
    existing = get_category_by_slug(db, slug)
    if existing is not None and existing is not current:
        raise CategoryConflict(f"Category slug '{slug}' already exists")
    return slug


def create_category(db: Session, payload: CategoryCreate) -> Category:
    slug = _claim_slug(db, payload.slug or payload.name)
    sort_order = payload.sort_order
    if sort_order is None:
        # New categories go to the end of the menu.
        highest = db.execute(select(func.max(Category.sort_order))).scalar()
        sort_order = 0 if highest is None else highest + 1
    category = Category(
        name=payload.name,
        slug=slug,
        description=payload.description,
        image_url=payload.image_url,
        sort_order=sort_order,
        subcategories=_subcategories(payload.subcategories),
        is_active=payload.is_active,
    )
    db.add(category)
    db.flush()
    return category


def update_category(db: Session, category: Category, payload: CategoryUpdate) -> list[str]:
    """Applies the changes and returns the changed field names. A slug change moves products along."""
    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True, exclude={"slug", "subcategories"}).items()
        if value is not None or field in NULLABLE_FIELDS
    }
    for field, value in changes.items():
        setattr(category, field, value)
    changed = sorted(changes)

    if payload.subcategories is not None:
        category.subcategories = _subcategories(payload.subcategories)
        changed.append("subcategories")

    if payload.slug is not None:
        slug = _claim_slug(db, payload.slug, current=category)
        if slug != category.slug:
            db.execute(
                update(Product)
                .where(Product.category_slug == category.slug)
                .values(category_slug=slug)
                .execution_options(synchronize_session="fetch")
            )
            category.slug = slug
            changed.append("slug")
    db.flush()
    return changed


def delete_category(db: Session, category: Category) -> None:
    in_use = product_counts(db).get(category.slug, 0)
    if in_use:
        raise CategoryError(f"Category '{category.slug}' is still used by {in_use} product(s)")
    db.delete(category)
    db.flush()


def list_categories(db: Session, *, active_only: bool = False) -> list[Category]:
    stmt = select(Category)
    if active_only:
        stmt = stmt.where(Category.is_active.is_(True))
    return list(db.execute(stmt.order_by(Category.sort_order.asc(), Category.name.asc())).scalars())
