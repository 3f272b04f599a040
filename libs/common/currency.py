"""Money helpers for BrewHub.

All amounts are stored as ``Numeric(10, 2)`` and handled in Python as
``Decimal``. Floats never enter price arithmetic.

Usage:
    from libs.common.currency import to_money

    line_total = to_money(unit_price * quantity)
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

# ─── constants ───────────────────────────────────────────────────────────────

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


# ─── helpers ─────────────────────────────────────────────────────────────────


def to_money(value: Union[Decimal, int, str]) -> Decimal:
    """Quantize to two decimal places (round half-up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values) -> Decimal:
    """Sum an iterable of amounts, starting from ``0.00``."""
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)
