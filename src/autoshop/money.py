from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from .errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: object, field: str = "amount") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number.")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() first so 0.1 stays 0.1 instead of its binary expansion
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"{field} must be a number, got {value!r}.") from e
    if not d.is_finite():
        raise ValidationError(f"{field} must be finite.")
    return d


def to_int(value: object, field: str = "value") -> int:
    """Parse a whole number. Fractions are rejected, never truncated."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    try:
        d = to_decimal(value, field)
    except ValidationError:
        raise ValidationError(f"{field} must be an integer, got {value!r}.") from None
    if d != d.to_integral_value():
        raise ValidationError(f"{field} must be a whole number, got {value!r}.")
    return int(d)


def round2(value: object) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[object]) -> Decimal:
    total = ZERO
    for v in values:
        total += to_decimal(v)
    return round2(total)


def percent_of(amount: object, rate: object) -> Decimal:
    return round2(to_decimal(amount) * to_decimal(rate, "rate") / HUNDRED)


def line_total(quantity: object, unit_price: object) -> Decimal:
    return round2(to_decimal(quantity, "quantity") * to_decimal(unit_price, "unit_price"))


def has_cents_only(value: Decimal) -> bool:
    return value == value.quantize(CENT)
