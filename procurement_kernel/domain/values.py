"""
Values -- Decimal money and unit-aware quantity helpers.

Responsibility:
    Single place where external numbers become ``Decimal`` and where
    quantities are checked against their unit of measure.  Line totals and
    order totals are computed here so every writer uses the same arithmetic.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Money and quantities are Decimal, never float.
    - Count units carry integral quantities; fractional units (kg, l, ...)
      accept decimals.
    - Rounding happens only in ``round_money`` for presentation.

Failure modes:
    - InvalidQuantity for non-numeric, non-finite, negative or
      wrongly-fractional quantities.
    - ValueError from ``to_decimal`` for values that are not numbers.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from procurement_kernel.exceptions import InvalidQuantity

ZERO = Decimal("0")
_CENT = Decimal("0.01")

DEFAULT_FRACTIONAL_UNITS: frozenset[str] = frozenset({"kg", "g", "l", "L", "ml"})


def to_decimal(value: Any) -> Decimal:
    """Convert an external number to Decimal.

    Floats go through ``str()`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion.  Booleans, NaN and infinities are refused.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Not a number: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def is_fractional_unit(unit: str, fractional_units: Iterable[str] | None = None) -> bool:
    units = DEFAULT_FRACTIONAL_UNITS if fractional_units is None else fractional_units
    return unit in units


def validate_quantity(
    value: Any,
    unit: str,
    fractional_units: Iterable[str] | None = None,
    *,
    allow_zero: bool = False,
) -> Decimal:
    """Return ``value`` as a Decimal valid for ``unit`` or raise InvalidQuantity."""
    if not unit or not str(unit).strip():
        raise InvalidQuantity(value, unit, "unit is required")
    try:
        qty = to_decimal(value)
    except ValueError as e:
        raise InvalidQuantity(value, unit, str(e)) from e
    if qty < ZERO:
        raise InvalidQuantity(value, unit, "quantity must not be negative")
    if qty == ZERO and not allow_zero:
        raise InvalidQuantity(value, unit, "quantity must be greater than zero")
    if not is_fractional_unit(unit, fractional_units) and qty != qty.to_integral_value():
        raise InvalidQuantity(value, unit, "count units require whole quantities")
    return qty


def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """Unrounded ``quantity * unit_price``."""
    return quantity * unit_price


def sum_totals(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO)


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half-up. Presentation only; never stored."""
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def decimal_to_str(value: Decimal) -> str:
    """Stable text form used in stored documents and payload hashes."""
    if value == ZERO:
        return "0"
    normalized = value.normalize()
    # normalize() turns 100 into 1E+2
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")
