"""Core book synchronization logic: pure, no sockets or HTTP."""

from .errors import BookSyncError, MalformedEvent, SequenceGap, SnapshotUnavailable, TransportUnavailable
from .local_orderbook import LocalOrderBook
from .sequence_gate import GateDecision, classify
from .sync_engine import OrderBookSyncEngine, SyncPhase, SyncResult
from .trade_ledger import TradeLedger
from .types import BookView, DeltaEvent, LadderRow, PriceLevel, Side, SnapshotEvent, Spread, TradeEvent

__all__ = [
    "BookSyncError",
    "BookView",
    "DeltaEvent",
    "GateDecision",
    "LadderRow",
    "LocalOrderBook",
    "MalformedEvent",
    "OrderBookSyncEngine",
    "PriceLevel",
    "SequenceGap",
    "Side",
    "SnapshotEvent",
    "SnapshotUnavailable",
    "Spread",
    "SyncPhase",
    "SyncResult",
    "TradeEvent",
    "TradeLedger",
    "TransportUnavailable",
    "classify",
]
