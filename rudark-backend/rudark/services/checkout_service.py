import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from rudark.core.id_utils import generate_order_id
from rudark.core.money import ZERO_MONEY, to_money
from rudark.core.observability import log_event
from rudark.models.collection import CollectionPoint
from rudark.models.order import Order, OrderItem
from rudark.models.product import Product, ProductVariant
from rudark.models.promo import Promo
from rudark.schemas.checkout import CheckoutCreateIn
from rudark.schemas.settings import PaymentSettings
from rudark.services.order_state import transition_order
from rudark.services.payment_provider import (
    PaymentCustomer,
    PaymentInitRequest,
    PaymentInitResult,
    PaymentLine,
    ProviderError,
    get_payment_provider,
)
from rudark.services.promo_service import redeem_promo, validate_promo
from rudark.services.shop_settings_service import (
    get_collection_settings,
    get_payment_settings,
    get_shipping_settings,
    qualifies_for_free_shipping,
)
from rudark.services.stock_validation import CartLine, release_reserved_stock, reserve_stock


class CheckoutError(ValueError):
    pass


@dataclass(frozen=True)
class PlacedOrder:
    order: Order
    request: PaymentInitRequest
    payment_settings: PaymentSettings
    promo: Promo | None = None


@dataclass(frozen=True)
class CheckoutOutcome:
    order: Order
    payment: PaymentInitResult | None
    payment_error: str | None = None


def effective_unit_price(product: Product, variant: ProductVariant | None = None) -> Decimal:
    if variant is not None and variant.price_override is not None:
        return to_money(variant.price_override)
    if product.promo_price is not None:
        return to_money(product.promo_price)
    return to_money(product.web_price)


def _allocate_order_id(db: Session) -> str:
    # Two checkouts inside the same millisecond would share an id.
    order_id = generate_order_id()
    number = int(order_id.split("-", 1)[1])
    while db.get(Order, order_id) is not None:
        number += 1
        order_id = f"ORD-{number}"
    return order_id


def _collection_point(db: Session, payload: CheckoutCreateIn) -> CollectionPoint:
    if not get_collection_settings(db).enabled:
        raise CheckoutError("Self collection is not available")
    if not payload.collection_point_id:
        raise CheckoutError("Please choose a collection point")
    point = db.get(CollectionPoint, payload.collection_point_id)
    if point is None or not point.is_active:
        raise CheckoutError("Collection point is not available")
    return point


def place_order(db: Session, payload: CheckoutCreateIn) -> PlacedOrder:
    """
    Reserves stock, prices the cart from the database and creates the PENDING
    order. Caller commits before start_payment so the product row locks are
    not held across the gateway call.
    """
    if not payload.items:
        raise CheckoutError("Cart is empty")

    reserved = reserve_stock(
        db,
        [
            CartLine(
                product_id=item.product_id,
                quantity=item.quantity,
                selected_options=item.selected_options,
            )
            for item in payload.items
        ],
    )

    subtotal = ZERO_MONEY
    order_items: list[OrderItem] = []
    for position, line in enumerate(reserved):
        product, variant = line.product, line.variant
        unit_price = effective_unit_price(product, variant)
        line_total = to_money(unit_price * line.line.quantity)
        subtotal += line_total
        order_items.append(
            OrderItem(
                position=position,
                product_id=product.id,
                variant_id=variant.id if variant else None,
                name=product.name,
                sku=product.sku,
                variant_sku=variant.sku if variant else None,
                selected_options=line.line.selected_options or None,
                quantity=line.line.quantity,
                unit_price=unit_price,
                line_total=line_total,
                loyverse_variant_id=(variant.loyverse_variant_id if variant else product.loyverse_variant_id),
                category_slug=product.category_slug,
                weight_kg=product.weight_kg,
                parcel_size=product.parcel_size,
                length_cm=product.length_cm,
                width_cm=product.width_cm,
                height_cm=product.height_cm,
            )
        )
    subtotal = to_money(subtotal)

    shipping_cost = ZERO_MONEY
    collection_fee = ZERO_MONEY
    free_shipping = False
    point: CollectionPoint | None = None
    if payload.delivery_method == "self_collection":
        point = _collection_point(db, payload)
        collection_fee = to_money(point.collection_fee)
    else:
        free_shipping = qualifies_for_free_shipping(
            get_shipping_settings(db),
            subtotal=subtotal,
            categories=[item.category_slug for item in order_items],
            region=payload.region,
        )
        if not free_shipping:
            if payload.shipping is None:
                raise CheckoutError("Please select a shipping option")
            shipping_cost = to_money(payload.shipping.price)

    promo = None
    discount = ZERO_MONEY
    if payload.promo_code:
        quote = validate_promo(db, payload.promo_code, subtotal)
        promo, discount = quote.promo, quote.discount

    total = max(ZERO_MONEY, to_money(subtotal + shipping_cost + collection_fee - discount))
    customer = payload.customer
    order = Order(
        id=_allocate_order_id(db),
        status="PENDING",
        customer_name=customer.name,
        customer_email=str(customer.email),
        customer_phone=customer.phone,
        address=point.address if point else customer.address,
        postcode=point.postcode if point else customer.postcode,
        city=customer.city,
        state=customer.state,
        delivery_method=payload.delivery_method,
        shipping_provider=payload.shipping.provider_code.lower() if payload.shipping and not point else None,
        shipping_service=payload.shipping.service_type if payload.shipping and not point else None,
        collection_point_id=point.id if point else None,
        collection_point_name=point.name if point else None,
        collection_point_address=point.address if point else None,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        collection_fee=collection_fee,
        discount_amount=discount,
        total_amount=total,
        promo_code=promo.code if promo else None,
        free_shipping=free_shipping,
        stock_reserved=True,
        note=payload.note,
    )
    order.items = order_items
    db.add(order)
    db.flush()

    payment_settings = get_payment_settings(db)
    gateway = payment_settings.enabled_gateway
    order.payment_gateway = gateway
    request = PaymentInitRequest(
        order_id=order.id,
        customer=PaymentCustomer(
            email=order.customer_email,
            phone=order.customer_phone,
            full_name=order.customer_name,
            street_address=order.address or "",
            city=order.city or "",
            zip_code=order.postcode or "",
            state=order.state or "",
        ),
        lines=[
            PaymentLine(name=item.name, unit_price=item.unit_price, quantity=item.quantity)
            for item in order_items
        ],
        items_subtotal=subtotal,
        discount=discount,
        shipping_cost=shipping_cost + collection_fee,
        total=total,
        environment=payment_settings.chip.environment,
        brand_id=payment_settings.chip.brand_id,
        instructions=payment_settings.manual.payment_instructions,
    )
    return PlacedOrder(order=order, request=request, payment_settings=payment_settings, promo=promo)


def start_payment(db: Session, placed: PlacedOrder) -> CheckoutOutcome:
    """
    Hands a committed order to its gateway. Caller commits, including when
    payment initialisation fails.
    """
    order, payment_settings, promo = placed.order, placed.payment_settings, placed.promo
    gateway = order.payment_gateway
    try:
        result = get_payment_provider(gateway).initialize_checkout(placed.request)
    except ProviderError as exc:
        release_reserved_stock(db, order.items)
        order.stock_reserved = False
        order.payment_status = "failed"
        transition_order(order, "PAYMENT_FAILED", reason=str(exc))
        log_event(
            "checkout_payment_init_failed",
            level=logging.ERROR,
            order_id=order.id,
            gateway=gateway,
            error=str(exc),
        )
        return CheckoutOutcome(order=order, payment=None, payment_error=str(exc))

    order.payment_reference = result.payment_reference
    order.checkout_url = result.checkout_url
    order.payment_status = "pending"
    if gateway == "chip":
        order.payment_environment = payment_settings.chip.environment
    if result.status == "PENDING_PAYMENT":
        transition_order(order, "PENDING_PAYMENT")
        order.payment_instructions = result.instructions
        order.requires_approval = payment_settings.manual.require_admin_approval
    if promo is not None:
        redeem_promo(promo)

    log_event(
        "checkout_created",
        order_id=order.id,
        gateway=gateway,
        total=str(order.total_amount),
        items=len(order.items),
    )
    return CheckoutOutcome(order=order, payment=result)
