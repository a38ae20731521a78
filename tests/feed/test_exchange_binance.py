from __future__ import annotations

from decimal import Decimal

import pytest

from lob_core.errors import MalformedEvent
from lob_core.types import DeltaEvent, TradeEvent
from lob_feed.exchanges import get_adapter
from lob_feed.exchanges.binance import BinanceAdapter, BinanceFuturesAdapter
from tests._events import agg_trade_frame, depth_frame


def test_binance_adapter_parses_combined_depth_frame():
    adapter = BinanceAdapter()

    ev = adapter.parse_ws_message(depth_frame(10, 11, bids=[("100.10", "1")], asks=[("101", "0")]))

    assert isinstance(ev, DeltaEvent)
    assert (ev.range_start, ev.range_end) == (10, 11)
    assert ev.bid_changes == [(Decimal("100.1"), Decimal("1"))]
    assert ev.ask_changes == [(Decimal("101"), Decimal("0"))]
    assert ev.event_time_ms == 1_700_000_000_000


def test_binance_adapter_parses_agg_trade_and_raw_trade():
    adapter = BinanceAdapter()

    ev = adapter.parse_ws_message(agg_trade_frame(42, price="100.5", qty="0.1", maker=True))
    assert isinstance(ev, TradeEvent)
    assert ev.trade_id == 42
    assert ev.price == Decimal("100.5")
    assert ev.quantity == Decimal("0.1")
    assert ev.is_taker_buy is False

    raw = {"e": "trade", "E": 200, "t": 7, "T": 201, "p": "99", "q": "2", "m": False}
    ev = adapter.parse_ws_message(raw)
    assert ev.trade_id == 7
    assert ev.timestamp_ms == 201
    assert ev.is_taker_buy is True


def test_control_frames_are_ignored():
    adapter = BinanceAdapter()
    assert adapter.parse_ws_message({"result": None, "id": 1}) is None
    assert adapter.parse_ws_message({"stream": "x", "data": {"e": "kline"}}) is None


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"stream": "btcusdt@depth", "data": "nope"},
        {"foo": 1},
        {"e": "depthUpdate", "u": 5, "b": [], "a": []},
        {"e": "depthUpdate", "U": 9, "u": 5, "b": [], "a": []},
        {"e": "depthUpdate", "U": 1, "u": 2, "b": [["abc", "1"]], "a": []},
        {"e": "depthUpdate", "U": 1, "u": 2, "b": [["100", "-1"]], "a": []},
        {"e": "depthUpdate", "U": 1, "u": 2, "b": [["100"]], "a": []},
        {"e": "depthUpdate", "U": 1, "u": 2, "b": {"100": "1"}, "a": []},
        {"e": "aggTrade", "a": 1, "p": "100", "q": "1", "T": 1, "m": "yes"},
        {"e": "aggTrade", "a": None, "p": "100", "q": "1", "T": 1, "m": True},
        {"e": "aggTrade", "a": 1, "p": "0", "q": "1", "T": 1, "m": True},
    ],
)
def test_malformed_payloads_raise(payload):
    with pytest.raises(MalformedEvent):
        BinanceAdapter().parse_ws_message(payload)


def test_parse_snapshot_validates_payload():
    adapter = BinanceAdapter()
    snap = adapter.parse_snapshot({"lastUpdateId": "10", "bids": [["100", "1"]], "asks": [["101", "2"]]})
    assert snap.watermark == 10
    assert snap.bid_levels == [(Decimal("100"), Decimal("1"))]

    with pytest.raises(MalformedEvent, match="missing"):
        adapter.parse_snapshot({"bids": [], "asks": []})
    with pytest.raises(MalformedEvent):
        adapter.parse_snapshot({"lastUpdateId": "x", "bids": [], "asks": []})
    with pytest.raises(MalformedEvent):
        adapter.parse_snapshot(["not", "a", "dict"])


def test_futures_adapter_uses_previous_final_id_for_continuity():
    adapter = BinanceFuturesAdapter()
    frame = depth_frame(120, 130)
    frame["data"]["pu"] = 110

    ev = adapter.parse_ws_message(frame)

    assert (ev.range_start, ev.range_end) == (111, 130)
    assert "fstream.binance.com" in adapter.ws_url("btcusdt")
    assert adapter.normalize_limit(5000) == 1000


def test_adapter_registry_and_urls():
    assert isinstance(get_adapter("Binance"), BinanceAdapter)
    assert isinstance(get_adapter("binance_futures"), BinanceFuturesAdapter)
    with pytest.raises(RuntimeError, match="Unknown exchange"):
        get_adapter("nasdaq")

    adapter = BinanceAdapter()
    assert adapter.normalize_symbol("btc-usdt") == "BTCUSDT"
    assert adapter.ws_url("BTCUSDT").endswith("streams=btcusdt@depth@100ms/btcusdt@aggTrade")


def test_event_time_is_optional_but_must_be_numeric():
    adapter = BinanceAdapter()
    frame = depth_frame(1, 2)
    del frame["data"]["E"]
    assert adapter.parse_ws_message(frame).event_time_ms == 0

    frame = depth_frame(1, 2)
    frame["data"]["E"] = "soon"
    with pytest.raises(MalformedEvent, match="'E'"):
        adapter.parse_ws_message(frame)
