"""
Money Helpers.

Amounts live as ``Decimal`` in the domain and as integer minor units
(paise, cents) in SQLite, so ledger arithmetic inside SQL never touches
binary floating point.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

__all__ = ["TWO_PLACES", "from_minor_units", "round_money", "to_minor_units"]

TWO_PLACES: Decimal = Decimal("0.01")
_MINOR_PER_MAJOR: int = 100

MoneyInput = Union[Decimal, int, float, str]


def round_money(amount: Optional[MoneyInput]) -> Decimal:
    """Quantize *amount* to two places, rounding half up.

    Floats go through ``str`` first so ``0.1`` stays ``0.10``.
    """
    if amount is None:
        return Decimal("0.00")
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: MoneyInput) -> int:
    """``Decimal("12.34")`` -> ``1234``."""
    return int(round_money(amount) * _MINOR_PER_MAJOR)


def from_minor_units(value: Optional[int]) -> Decimal:
    """``1234`` -> ``Decimal("12.34")``; ``None`` reads as zero."""
    if value is None:
        return Decimal("0.00")
    return (Decimal(int(value)) / _MINOR_PER_MAJOR).quantize(TWO_PLACES)
