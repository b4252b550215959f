"""Money helpers. All amounts are ``Decimal`` rounded half-up to cents."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Union

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number | None) -> Decimal:
    """Coerce a stored or user-supplied amount into ``Decimal``.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def round2(value: Number | None) -> Decimal:
    """Round to two decimal places, half-up."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def sum_rounded(values: Iterable[Number | None]) -> Decimal:
    """Sum amounts, rounding after every addition so totals never drift."""
    total = ZERO
    for value in values:
        total = round2(total + to_decimal(value))
    return total
