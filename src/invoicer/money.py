"""Exact decimal arithmetic for invoice amounts."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Iterable, Union

Number = Union[int, float]


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    """Convert user or wire input to Decimal; raises ValueError on garbage."""
    if isinstance(value, bool):
        raise ValueError("Boolean is not a number")
    if isinstance(value, str):
        value = value.strip()
    try:
        dec = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a number: {value!r}") from exc
    if not dec.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return dec


def to_number(value: Decimal) -> Number:
    """Collapse a Decimal into the JSON-friendly int/float it represents."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def line_amount(quantity: Number, unit_price: Number) -> Decimal:
    return to_decimal(quantity) * to_decimal(unit_price)


def sum_amounts(pairs: Iterable[tuple[Number, Number]]) -> Number:
    """Sum quantity * unit price over (quantity, unit_price) pairs."""
    total = Decimal(0)
    for quantity, unit_price in pairs:
        total += line_amount(quantity, unit_price)
    return to_number(total)


def format_amount(value: Number) -> str:
    return f"{to_decimal(value):,.2f}"
