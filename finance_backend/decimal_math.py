from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")

Numeric = Decimal | int | float | str


def to_decimal(value: Numeric) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Booleans are not monetary values.")
    return Decimal(str(value))


def add(a: Numeric, b: Numeric) -> Decimal:
    return to_decimal(a) + to_decimal(b)


def sub(a: Numeric, b: Numeric) -> Decimal:
    return to_decimal(a) - to_decimal(b)


def mul(a: Numeric, b: Numeric) -> Decimal:
    return to_decimal(a) * to_decimal(b)


def div(a: Numeric, b: Numeric) -> Decimal:
    divisor = to_decimal(b)
    if divisor == ZERO:
        raise ZeroDivisionError("Division of a monetary value by zero.")
    return to_decimal(a) / divisor


def compare(a: Numeric, b: Numeric) -> int:
    """Return -1, 0 or 1 as ``a`` is less than, equal to or greater than ``b``."""
    left = to_decimal(a)
    right = to_decimal(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def round_money(value: Numeric) -> Decimal:
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_number_safe(value: Numeric) -> float:
    """Convert a decimal to a float for serialization only.

    This loses precision. The result must never flow back into arithmetic
    that ends up in stored state; call it at the point a report value is
    returned and nowhere else.
    """
    return float(to_decimal(value))


def money_out(value: Numeric) -> float:
    """Round to cents and hand the value to the presentation layer."""
    return to_number_safe(round_money(value))


def percent_of(part: Numeric, whole: Numeric, cap: Numeric | None = HUNDRED) -> Decimal:
    whole_value = to_decimal(whole)
    if whole_value == ZERO:
        return ZERO
    percentage = div(mul(part, HUNDRED), whole_value)
    if cap is not None and percentage > to_decimal(cap):
        return to_decimal(cap)
    return percentage
