from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO_MONEY
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal | int | float | str) -> int:
    """Gateway amounts are integer cents."""
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))
