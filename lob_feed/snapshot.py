from __future__ import annotations

import logging

import requests

from lob_core.errors import MalformedEvent, SnapshotUnavailable
from lob_core.types import SnapshotEvent

from .exchanges.base import ExchangeAdapter
from .settings import BINANCE_REST_BASE_URL, SNAPSHOT_TIMEOUT_S

log = logging.getLogger("lob_feed.snapshot")

# Binance answers 429 when over the request weight and 418 once the IP is banned.
RATE_LIMIT_STATUSES = (418, 429)
RATE_LIMIT_CODE = -1003


class BinanceRestClient:
    def __init__(
        self,
        base_url: str | None = None,
        depth_path: str = "/api/v3/depth",
        timeout_s: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or BINANCE_REST_BASE_URL or "https://api.binance.com").rstrip("/")
        self.depth_path = depth_path
        self.timeout_s = SNAPSHOT_TIMEOUT_S if timeout_s is None else float(timeout_s)
        self.session = session or requests.Session()

    def get_order_book(self, symbol: str, limit: int) -> dict:
        url = f"{self.base_url}{self.depth_path}"
        resp = self.session.get(url, params={"symbol": symbol, "limit": limit}, timeout=self.timeout_s)
        if resp.status_code in RATE_LIMIT_STATUSES:
            raise SnapshotUnavailable(
                f"rate limited (HTTP {resp.status_code})", rate_limited=True, status=resp.status_code
            )
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and "code" in payload and "lastUpdateId" not in payload:
            code = payload.get("code")
            raise SnapshotUnavailable(
                f"exchange error {code}: {payload.get('msg', '')}",
                rate_limited=code == RATE_LIMIT_CODE,
                status=resp.status_code,
            )
        resp.raise_for_status()
        if payload is None:
            raise SnapshotUnavailable("snapshot response is not JSON", status=resp.status_code)
        return payload

    def close(self) -> None:
        self.session.close()


def make_rest_client(adapter: ExchangeAdapter, timeout_s: float | None = None) -> BinanceRestClient:
    return BinanceRestClient(
        base_url=BINANCE_REST_BASE_URL or adapter.rest_base_url,
        depth_path=adapter.depth_path,
        timeout_s=timeout_s,
    )


def fetch_snapshot(client, adapter: ExchangeAdapter, symbol: str, limit: int) -> SnapshotEvent:
    """Single snapshot attempt; every failure surfaces as SnapshotUnavailable."""
    symbol = adapter.normalize_symbol(symbol)
    limit = adapter.normalize_limit(limit)
    try:
        payload = client.get_order_book(symbol=symbol, limit=limit)
    except SnapshotUnavailable:
        raise
    except requests.RequestException as exc:
        raise SnapshotUnavailable(f"REST snapshot failed: {exc}") from exc
    try:
        snapshot = adapter.parse_snapshot(payload)
    except MalformedEvent as exc:
        raise SnapshotUnavailable(f"Invalid snapshot payload: {exc}") from exc
    log.debug(
        "Fetched snapshot %s lastUpdateId=%d bids=%d asks=%d",
        symbol,
        snapshot.watermark,
        len(snapshot.bid_levels),
        len(snapshot.ask_levels),
    )
    return snapshot
