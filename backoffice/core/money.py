from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO_MONEY
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def line_amount(quantity: int, unit_price: Decimal | int | float | str) -> Decimal:
    return to_money(to_money(unit_price) * quantity)


def money_out(value: Decimal | int | float | str | None) -> float:
    return float(to_money(value))
