from __future__ import annotations

from typing import Any

from lob_core.errors import MalformedEvent
from lob_core.types import DeltaEvent, SnapshotEvent, TradeEvent

from .base import ExchangeAdapter, StreamEvent, parse_decimal, parse_int, parse_levels, parse_optional_int


class BinanceAdapter(ExchangeAdapter):
    """Binance spot: diff depth @100ms plus aggregate trades."""

    name = "binance"
    rest_base_url = "https://api.binance.com"
    depth_path = "/api/v3/depth"
    ws_base_url = "wss://stream.binance.com:9443"
    max_snapshot_limit = 5000

    def normalize_symbol(self, symbol: str) -> str:
        return symbol.replace("/", "").replace("-", "").strip().upper()

    def ws_url(self, symbol: str) -> str:
        sym = self.normalize_symbol(symbol).lower()
        return f"{self.ws_base_url}/stream?streams={sym}@depth@100ms/{sym}@aggTrade"

    def parse_ws_message(self, payload: Any) -> StreamEvent | None:
        if not isinstance(payload, dict):
            raise MalformedEvent(f"expected a JSON object, got {type(payload).__name__}")
        # Combined stream format: {stream: "...", data: {...}}
        data = payload.get("data", payload)
        if not isinstance(data, dict):
            raise MalformedEvent("combined stream 'data' is not an object")
        kind = data.get("e")
        if kind == "depthUpdate":
            return self.parse_depth(data)
        if kind in ("aggTrade", "trade"):
            return self.parse_trade(data)
        if kind is None and "result" in data and "id" in data:
            return None  # subscription ack
        if kind is None:
            raise MalformedEvent(f"message without event type: {sorted(data)[:6]}")
        return None

    def _range_start(self, data: dict) -> int:
        return parse_int(data, "U")

    def parse_depth(self, data: dict) -> DeltaEvent:
        start = self._range_start(data)
        end = parse_int(data, "u")
        if end < start:
            raise MalformedEvent(f"depth update with u={end} < U={start}")
        return DeltaEvent(
            range_start=start,
            range_end=end,
            bid_changes=parse_levels(data.get("b"), "bids"),
            ask_changes=parse_levels(data.get("a"), "asks"),
            event_time_ms=parse_optional_int(data, "E"),
        )

    def parse_trade(self, data: dict) -> TradeEvent:
        id_key = "a" if data.get("e") == "aggTrade" else "t"
        maker = data.get("m")
        if not isinstance(maker, bool):
            raise MalformedEvent(f"trade field 'm' is not a boolean: {maker!r}")
        price = parse_decimal(data.get("p"), "trade price")
        qty = parse_decimal(data.get("q"), "trade qty")
        if price <= 0 or qty < 0:
            raise MalformedEvent(f"trade with price={price} qty={qty}")
        return TradeEvent(
            trade_id=parse_int(data, id_key),
            price=price,
            quantity=qty,
            timestamp_ms=parse_int(data, "T"),
            is_taker_buy=not maker,
        )

    def parse_snapshot(self, payload: Any) -> SnapshotEvent:
        if not isinstance(payload, dict):
            raise MalformedEvent("snapshot payload must be a dict")
        if "bids" not in payload or "asks" not in payload or "lastUpdateId" not in payload:
            raise MalformedEvent("snapshot payload missing required keys")
        return SnapshotEvent(
            watermark=parse_int(payload, "lastUpdateId"),
            bid_levels=parse_levels(payload["bids"], "bids"),
            ask_levels=parse_levels(payload["asks"], "asks"),
        )


class BinanceFuturesAdapter(BinanceAdapter):
    """Binance USD-M futures.

    Futures diff events are not contiguous in ``U``; continuity is carried by
    ``pu`` (the previous event's ``u``), so the range start is taken as
    ``pu + 1`` when present.
    """

    name = "binance_futures"
    rest_base_url = "https://fapi.binance.com"
    depth_path = "/fapi/v1/depth"
    ws_base_url = "wss://fstream.binance.com"
    max_snapshot_limit = 1000

    def _range_start(self, data: dict) -> int:
        if data.get("pu") is None:
            return parse_int(data, "U")
        return min(parse_int(data, "pu") + 1, parse_int(data, "U"))
