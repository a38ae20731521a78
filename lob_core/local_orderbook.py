from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Tuple

from sortedcontainers import SortedDict

from .types import PriceLevel, Side


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        out = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a decimal number: {value!r}") from exc
    if not out.is_finite():
        raise ValueError(f"not a finite decimal: {value!r}")
    return out


def checked_changes(changes: Iterable[Tuple[Decimal, Decimal]]) -> List[Tuple[Decimal, Decimal]]:
    """Convert ``(price, qty)`` pairs up front, raising ValueError on the first bad one."""
    out: List[Tuple[Decimal, Decimal]] = []
    for entry in changes:
        try:
            price, qty = entry
        except (TypeError, ValueError) as exc:
            raise ValueError(f"level is not a (price, qty) pair: {entry!r}") from exc
        p = to_decimal(price)
        q = to_decimal(qty)
        if q < 0:
            raise ValueError(f"negative quantity {qty!r} at price {price!r}")
        out.append((p, q))
    return out


@dataclass
class LocalOrderBook:
    """In-memory L2 book keyed by exact decimal price.

    Bids and asks both live in ascending ``SortedDict`` containers; bids are
    read in reverse so the best level always comes first. A zero quantity is a
    deletion and is never stored.
    """

    bids: SortedDict = field(default_factory=SortedDict)
    asks: SortedDict = field(default_factory=SortedDict)
    watermark: int = 0
    baseline_verified: bool = False

    def _side(self, side: Side) -> SortedDict:
        return self.bids if side is Side.BID else self.asks

    @staticmethod
    def _set_level(book: SortedDict, price: Decimal, qty: Decimal) -> None:
        if qty == 0:
            book.pop(price, None)
        else:
            book[price] = qty

    def apply_changes(self, side: Side, changes: Iterable[Tuple[Decimal, Decimal]]) -> None:
        """Upsert levels in order; later entries for the same price win.

        All pairs are checked before the first one is written, so a bad level
        leaves the side untouched.
        """
        book = self._side(side)
        for price, qty in checked_changes(changes):
            self._set_level(book, price, qty)

    def snapshot_with(self, side: Side, levels: Iterable[Tuple[Decimal, Decimal]]) -> None:
        """Replace one side wholesale; a bad level leaves the previous contents untouched."""
        fresh = SortedDict()
        for price, qty in checked_changes(levels):
            self._set_level(fresh, price, qty)
        if side is Side.BID:
            self.bids = fresh
        else:
            self.asks = fresh

    def advance_watermark(self, value: int) -> None:
        value = int(value)
        if value < self.watermark:
            raise ValueError(f"watermark cannot move backwards ({self.watermark} -> {value})")
        self.watermark = value

    def clear(self) -> None:
        self.bids.clear()
        self.asks.clear()
        self.watermark = 0
        self.baseline_verified = False

    def iter_levels(self, side: Side) -> Iterator[PriceLevel]:
        items = reversed(self.bids.items()) if side is Side.BID else self.asks.items()
        for price, qty in items:
            yield PriceLevel(price, qty)

    def top_levels(self, side: Side, n: int) -> List[PriceLevel]:
        if n <= 0:
            return []
        return list(islice(self.iter_levels(side), n))

    def depth(self, side: Side) -> int:
        return len(self._side(side))

    def quantity_at(self, side: Side, price) -> Optional[Decimal]:
        return self._side(side).get(to_decimal(price))

    @property
    def best_bid(self) -> Optional[PriceLevel]:
        if not self.bids:
            return None
        price, qty = self.bids.peekitem(-1)
        return PriceLevel(price, qty)

    @property
    def best_ask(self) -> Optional[PriceLevel]:
        if not self.asks:
            return None
        price, qty = self.asks.peekitem(0)
        return PriceLevel(price, qty)

    def levels(self) -> Tuple[List[PriceLevel], List[PriceLevel]]:
        return list(self.iter_levels(Side.BID)), list(self.iter_levels(Side.ASK))
