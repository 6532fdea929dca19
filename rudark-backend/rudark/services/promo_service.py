from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.money import ZERO_MONEY, to_money
from rudark.models.promo import Promo


class PromoError(ValueError):
    pass


@dataclass(frozen=True)
class PromoQuote:
    promo: Promo
    discount: Decimal


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def get_promo_by_code(db: Session, code: str) -> Promo | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.execute(select(Promo).where(Promo.code == normalized)).scalar_one_or_none()


def compute_discount(promo: Promo, cart_total: Decimal) -> Decimal:
    if promo.promo_type == "PERCENTAGE":
        discount = to_money(cart_total * to_money(promo.value) / Decimal("100"))
    else:
        discount = to_money(promo.value)
    return min(discount, to_money(cart_total))


def validate_promo(db: Session, code: str, cart_total: Decimal) -> PromoQuote:
    promo = get_promo_by_code(db, code)
    if promo is None:
        raise PromoError("Invalid promo code")
    if not promo.active:
        raise PromoError("Promo code is inactive")
    if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
        raise PromoError("Promo code usage limit reached")
    min_spend = to_money(promo.min_spend or ZERO_MONEY)
    if to_money(cart_total) < min_spend:
        raise PromoError(f"Minimum spend of RM{min_spend:.2f} required")
    return PromoQuote(promo=promo, discount=compute_discount(promo, cart_total))


def redeem_promo(promo: Promo) -> None:
    promo.usage_count = (promo.usage_count or 0) + 1
