from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce to a 2-decimal Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, bool):
        raise ValueError("Not an amount")
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Not an amount: {value!r}")


def half(value) -> Decimal:
    return (to_money(value) / 2).quantize(CENT, rounding=ROUND_HALF_UP)
