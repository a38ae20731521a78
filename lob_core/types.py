from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import NamedTuple, Optional, Sequence, Tuple


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"


class PriceLevel(NamedTuple):
    price: Decimal
    quantity: Decimal


Change = Tuple[Decimal, Decimal]


@dataclass(frozen=True)
class DeltaEvent:
    range_start: int
    range_end: int
    bid_changes: Sequence[Change] = ()
    ask_changes: Sequence[Change] = ()
    event_time_ms: int = 0

    def changes(self, side: Side) -> Sequence[Change]:
        return self.bid_changes if side is Side.BID else self.ask_changes


@dataclass(frozen=True)
class SnapshotEvent:
    watermark: int
    bid_levels: Sequence[Change] = ()
    ask_levels: Sequence[Change] = ()

    def levels(self, side: Side) -> Sequence[Change]:
        return self.bid_levels if side is Side.BID else self.ask_levels


@dataclass(frozen=True)
class TradeEvent:
    trade_id: int
    price: Decimal
    quantity: Decimal
    timestamp_ms: int
    is_taker_buy: bool

    @property
    def side(self) -> str:
        return "buy" if self.is_taker_buy else "sell"


class LadderRow(NamedTuple):
    price: Decimal
    quantity: Decimal
    cumulative_quantity: Decimal
    depth_percentage: float


class Spread(NamedTuple):
    absolute: Decimal
    percentage_of_ask: float


@dataclass(frozen=True)
class BookView:
    """Everything a consumer needs to draw one frame of the book."""

    bids: list
    asks: list
    spread: Spread
    watermark: int
    provisional: bool
    phase: str = ""
    best_bid: Optional[PriceLevel] = None
    best_ask: Optional[PriceLevel] = None
