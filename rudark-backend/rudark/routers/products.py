from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from rudark.core.api_docs import error_responses
from rudark.core.deps import get_db
from rudark.core.permissions import require_manager, require_staff
from rudark.models.admin_user import AdminUser
from rudark.models.order import OrderItem
from rudark.models.product import Product, ProductVariant
from rudark.schemas.common import PaginationMeta
from rudark.schemas.product import (
    ProductCreate,
    ProductListOut,
    ProductOut,
    ProductUpdate,
    PublicProductListOut,
    PublicProductOut,
    PublicVariantOut,
    VariantCreate,
    VariantOut,
    VariantUpdate,
)
from rudark.services.audit_service import log_audit_event
from rudark.services.category_service import CategoryError, ensure_category
from rudark.services.checkout_service import effective_unit_price
from rudark.services.stock_service import recompute_parent_totals

router = APIRouter(prefix="/products", tags=["products"])
public_router = APIRouter(prefix="/catalog", tags=["catalog"])
MAX_PRODUCT_PAGE_SIZE = 200


def _available(target) -> int:
    return max(0, (target.stock_quantity or 0) - (target.reserved_quantity or 0))


def _variant_out(product: Product, variant: ProductVariant) -> VariantOut:
    return VariantOut(
        id=variant.id,
        sku=variant.sku,
        options=variant.options or {},
        label=variant.label,
        price=float(effective_unit_price(product, variant)),
        price_override=float(variant.price_override) if variant.price_override is not None else None,
        stock_quantity=variant.stock_quantity or 0,
        reserved_quantity=variant.reserved_quantity or 0,
        available_quantity=_available(variant),
        loyverse_variant_id=variant.loyverse_variant_id,
    )


def _product_out(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        sku=product.sku,
        name=product.name,
        description=product.description,
        price=float(effective_unit_price(product)),
        web_price=float(product.web_price),
        promo_price=float(product.promo_price) if product.promo_price is not None else None,
        category_slug=product.category_slug,
        images=list(product.images or []),
        tags=list(product.tags or []),
        stock_status=product.stock_status,
        is_featured=product.is_featured,
        is_active=product.is_active,
        stock_quantity=product.stock_quantity or 0,
        reserved_quantity=product.reserved_quantity or 0,
        available_quantity=_available(product),
        loyverse_item_id=product.loyverse_item_id,
        loyverse_variant_id=product.loyverse_variant_id,
        last_stock_sync=product.last_stock_sync,
        weight_kg=float(product.weight_kg) if product.weight_kg is not None else None,
        parcel_size=product.parcel_size,
        length_cm=product.length_cm,
        width_cm=product.width_cm,
        height_cm=product.height_cm,
        variants=[_variant_out(product, variant) for variant in product.variants],
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


def _public_product_out(product: Product) -> PublicProductOut:
    return PublicProductOut(
        id=product.id,
        sku=product.sku,
        name=product.name,
        description=product.description,
        price=float(effective_unit_price(product)),
        web_price=float(product.web_price),
        promo_price=float(product.promo_price) if product.promo_price is not None else None,
        category_slug=product.category_slug,
        images=list(product.images or []),
        tags=list(product.tags or []),
        stock_status=product.stock_status,
        is_featured=product.is_featured,
        available_quantity=_available(product),
        weight_kg=float(product.weight_kg) if product.weight_kg is not None else None,
        variants=[
            PublicVariantOut(
                sku=variant.sku,
                options=variant.options or {},
                label=variant.label,
                price=float(effective_unit_price(product, variant)),
                available_quantity=_available(variant),
            )
            for variant in product.variants
        ],
    )


def _product_or_404(db: Session, product_id: str) -> Product:
    product = db.execute(
        select(Product).options(selectinload(Product.variants)).where(Product.id == product_id)
    ).scalar_one_or_none()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _assert_sku_free(db: Session, sku: str) -> None:
    lowered = sku.lower()
    taken = db.execute(
        select(Product.id).where(func.lower(Product.sku) == lowered)
    ).scalar_one_or_none() or db.execute(
        select(ProductVariant.id).where(func.lower(ProductVariant.sku) == lowered)
    ).scalar_one_or_none()
    if taken:
        raise HTTPException(status_code=409, detail=f"SKU already exists: {sku}")


def _assert_category(db: Session, slug: str | None) -> None:
    try:
        ensure_category(db, slug)
    except CategoryError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post(
    "",
    response_model=ProductOut,
    status_code=201,
    summary="Create product",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    _assert_sku_free(db, payload.sku)
    _assert_category(db, payload.category_slug)
    seen: set[str] = set()
    for variant in payload.variants:
        if variant.sku.lower() in seen:
            raise HTTPException(status_code=409, detail=f"Duplicate variant SKU: {variant.sku}")
        seen.add(variant.sku.lower())
        _assert_sku_free(db, variant.sku)

    product = Product(
        **payload.model_dump(exclude={"variants"}),
        stock_quantity=0,
        reserved_quantity=0,
        stock_status="OUT_OF_STOCK",
    )
    for variant in payload.variants:
        product.variants.append(
            ProductVariant(
                sku=variant.sku,
                options=variant.options,
                price_override=variant.price_override,
                loyverse_variant_id=variant.loyverse_variant_id,
                stock_quantity=0,
                reserved_quantity=0,
            )
        )
    db.add(product)
    db.flush()
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="product.create",
        target_type="product",
        target_id=product.id,
        metadata_json={"sku": product.sku, "variants": len(payload.variants)},
    )
    db.commit()
    return _product_out(_product_or_404(db, product.id))


@router.get(
    "",
    response_model=ProductListOut,
    summary="List products (admin)",
    responses=error_responses(401, 403, 422, 500),
)
def list_products(
    q: str | None = Query(default=None, description="Search by name or SKU"),
    category: str | None = Query(default=None),
    include_archived: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=MAX_PRODUCT_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    filters = []
    if q and q.strip():
        term = f"%{q.strip()}%"
        filters.append(or_(Product.name.ilike(term), Product.sku.ilike(term)))
    if category:
        filters.append(Product.category_slug == category.strip().lower())
    if not include_archived:
        filters.append(Product.stock_status != "ARCHIVED")

    total = int(db.execute(select(func.count(Product.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Product)
        .options(selectinload(Product.variants))
        .where(*filters)
        .order_by(Product.created_at.desc(), Product.sku.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return ProductListOut(
        items=[_product_out(product) for product in rows],
        pagination=PaginationMeta.page(total=total, limit=limit, offset=offset, count=len(rows)),
    )


@router.get(
    "/{product_id}",
    response_model=ProductOut,
    summary="Get product (admin)",
    responses=error_responses(401, 403, 404, 500),
)
def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    _: AdminUser = Depends(require_staff),
):
    return _product_out(_product_or_404(db, product_id))


@router.patch(
    "/{product_id}",
    response_model=ProductOut,
    summary="Update product",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    product = _product_or_404(db, product_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"clear_promo_price"})
    if "category_slug" in changes:
        _assert_category(db, payload.category_slug)
    for field, value in changes.items():
        setattr(product, field, value)
    if payload.clear_promo_price:
        product.promo_price = None
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="product.update",
        target_type="product",
        target_id=product.id,
        metadata_json={"fields": sorted(changes) + (["promo_price"] if payload.clear_promo_price else [])},
    )
    db.commit()
    return _product_out(_product_or_404(db, product.id))


@router.post(
    "/{product_id}/archive",
    response_model=ProductOut,
    summary="Archive product",
    description="Hides the product from the storefront. Stock history is kept.",
    responses=error_responses(401, 403, 404, 500),
)
def archive_product(
    product_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    product = _product_or_404(db, product_id)
    product.stock_status = "ARCHIVED"
    product.is_active = False
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="product.archive",
        target_type="product",
        target_id=product.id,
    )
    db.commit()
    return _product_out(_product_or_404(db, product.id))


@router.post(
    "/{product_id}/variants",
    response_model=ProductOut,
    status_code=201,
    summary="Add variant",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def add_variant(
    product_id: str,
    payload: VariantCreate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    product = _product_or_404(db, product_id)
    _assert_sku_free(db, payload.sku)
    if not product.variants and (product.stock_quantity or product.reserved_quantity):
        raise HTTPException(
            status_code=409,
            detail="Product has stock at product level; adjust it to 0 before adding variants",
        )
    product.variants.append(
        ProductVariant(
            sku=payload.sku,
            options=payload.options,
            price_override=payload.price_override,
            loyverse_variant_id=payload.loyverse_variant_id,
            stock_quantity=0,
            reserved_quantity=0,
        )
    )
    recompute_parent_totals(product)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="product.variant.create",
        target_type="product",
        target_id=product.id,
        metadata_json={"sku": payload.sku, "options": payload.options},
    )
    db.commit()
    return _product_out(_product_or_404(db, product.id))


@router.patch(
    "/{product_id}/variants/{variant_id}",
    response_model=ProductOut,
    summary="Update variant",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_variant(
    product_id: str,
    variant_id: str,
    payload: VariantUpdate,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    product = _product_or_404(db, product_id)
    variant = next((v for v in product.variants if v.id == variant_id), None)
    if variant is None:
        raise HTTPException(status_code=404, detail="Variant not found")
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(variant, field, value)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="product.variant.update",
        target_type="product",
        target_id=product.id,
        metadata_json={"variant_sku": variant.sku, "fields": sorted(changes)},
    )
    db.commit()
    return _product_out(_product_or_404(db, product.id))


@router.delete(
    "/{product_id}/variants/{variant_id}",
    response_model=ProductOut,
    summary="Remove variant",
    responses=error_responses(401, 403, 404, 409, 500),
)
def remove_variant(
    product_id: str,
    variant_id: str,
    db: Session = Depends(get_db),
    actor: AdminUser = Depends(require_manager),
):
    product = _product_or_404(db, product_id)
    variant = next((v for v in product.variants if v.id == variant_id), None)
    if variant is None:
        raise HTTPException(status_code=404, detail="Variant not found")
    if variant.reserved_quantity:
        raise HTTPException(status_code=409, detail="Variant has reserved stock in open orders")
    ordered = db.execute(
        select(func.count(OrderItem.id)).where(OrderItem.variant_id == variant.id)
    ).scalar_one()
    if ordered:
        raise HTTPException(status_code=409, detail="Variant appears in orders; archive the product instead")
    product.variants.remove(variant)
    recompute_parent_totals(product)
    log_audit_event(
        db,
        actor_admin_id=actor.id,
        action="product.variant.delete",
        target_type="product",
        target_id=product.id,
        metadata_json={"variant_sku": variant.sku, "stock_quantity": variant.stock_quantity},
    )
    db.commit()
    return _product_out(_product_or_404(db, product.id))


@public_router.get(
    "/products",
    response_model=PublicProductListOut,
    summary="Storefront product listing",
    responses=error_responses(422, 500),
)
def list_public_products(
    category: str | None = Query(default=None),
    featured: bool | None = Query(default=None),
    q: str | None = Query(default=None),
    limit: int = Query(default=24, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    filters = [Product.is_active.is_(True), Product.stock_status != "ARCHIVED"]
    if category:
        filters.append(Product.category_slug == category.strip().lower())
    if featured is not None:
        filters.append(Product.is_featured.is_(featured))
    if q and q.strip():
        term = f"%{q.strip()}%"
        filters.append(or_(Product.name.ilike(term), Product.sku.ilike(term)))

    total = int(db.execute(select(func.count(Product.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Product)
        .options(selectinload(Product.variants))
        .where(*filters)
        .order_by(Product.is_featured.desc(), Product.created_at.desc(), Product.sku.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return PublicProductListOut(
        items=[_public_product_out(product) for product in rows],
        pagination=PaginationMeta.page(total=total, limit=limit, offset=offset, count=len(rows)),
    )


@public_router.get(
    "/products/{sku}",
    response_model=PublicProductOut,
    summary="Storefront product detail",
    responses=error_responses(404, 500),
)
def get_public_product(sku: str, db: Session = Depends(get_db)):
    product = db.execute(
        select(Product)
        .options(selectinload(Product.variants))
        .where(
            func.lower(Product.sku) == sku.strip().lower(),
            Product.is_active.is_(True),
            Product.stock_status != "ARCHIVED",
        )
    ).scalar_one_or_none()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return _public_product_out(product)
