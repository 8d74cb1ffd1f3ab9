"""Ordinal numbers for segments.

Chapters and episodes may be fractional (``12.5`` for a half chapter), so
every ordinal flowing through retrieval, clustering and range math is a
:class:`~decimal.Decimal`. ``to_ordinal`` is the single entry point that
normalises raw values (DB rows, LLM JSON, CLI args). ``floor_ordinal`` is
the only place integer truncation happens.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any

ZERO = Decimal(0)


def to_ordinal(value: Any) -> Decimal:
    """Normalise ``value`` into a Decimal ordinal.

    Floats go through ``repr`` so that ``12.5`` stays ``Decimal('12.5')``
    rather than its binary expansion.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"invalid ordinal: {value!r}")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"invalid ordinal: {value!r}") from exc
    else:
        raise ValueError(f"invalid ordinal: {value!r}")
    if not result.is_finite():
        raise ValueError(f"invalid ordinal: {value!r}")
    return result


def floor_ordinal(value: Any) -> int:
    """Truncate an ordinal towards negative infinity (``12.5`` -> ``12``)."""
    return int(to_ordinal(value).to_integral_value(rounding=ROUND_FLOOR))


def midpoint(start: Any, end: Any) -> Decimal:
    """Integer midpoint of a range, ``floor((start + end) / 2)``."""
    return Decimal(floor_ordinal((to_ordinal(start) + to_ordinal(end)) / 2))


def format_ordinal(value: Any) -> str:
    """Render ``12`` / ``12.5`` without trailing zeros or exponents."""
    number = to_ordinal(value)
    if number == number.to_integral_value():
        return str(int(number))
    return format(number.normalize(), "f")


def ordinal_json(value: Any):
    """JSON-friendly form: int for whole numbers, float otherwise."""
    number = to_ordinal(value)
    if number == number.to_integral_value():
        return int(number)
    return float(number)
