"""Read-only projections of the book used by consumers."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional

from .types import LadderRow, PriceLevel, Spread

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


def ladder(levels: Iterable[PriceLevel], depth: Optional[int] = None) -> List[LadderRow]:
    """Running totals and depth percentages for levels already in side order."""
    rows = []
    cumulative = _ZERO
    for i, (price, qty) in enumerate(levels):
        if depth is not None and i >= depth:
            break
        cumulative += qty
        rows.append((price, qty, cumulative))

    max_cumulative = rows[-1][2] if rows else Decimal(1)
    return [
        LadderRow(price, qty, cum, float(_HUNDRED * cum / max_cumulative))
        for price, qty, cum in rows
    ]


def spread(best_bid: Optional[PriceLevel], best_ask: Optional[PriceLevel]) -> Spread:
    if best_bid is None or best_ask is None:
        return Spread(_ZERO, 0.0)
    absolute = best_ask.price - best_bid.price
    if best_ask.price == 0:
        return Spread(absolute, 0.0)
    return Spread(absolute, float(_HUNDRED * absolute / best_ask.price))
