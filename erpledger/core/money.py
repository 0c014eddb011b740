from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")
# Largest value a Numeric(12, 2) column holds.
MAX_MONEY = Decimal("9999999999.99")

QUANTITY_QUANT = Decimal("0.001")
ZERO_QUANTITY = Decimal("0.000")
# Largest value a Numeric(14, 3) column holds.
MAX_QUANTITY = Decimal("99999999999.999")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_quantity(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO_QUANTITY
    return Decimal(str(value)).quantize(QUANTITY_QUANT, rounding=ROUND_HALF_UP)


def has_excess_precision(value: Decimal | int | float | str, quant: Decimal) -> bool:
    """True when `value` is not representable at `quant`, including values too large to quantize."""
    try:
        raw = Decimal(str(value))
        return raw != raw.quantize(quant, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return True
