from __future__ import annotations

import argparse
import asyncio
import logging
import time
from typing import Any, Callable, Optional, Set

from lob_core.errors import MalformedEvent, SnapshotUnavailable, TransportUnavailable
from lob_core.sync_engine import OrderBookSyncEngine, SyncResult
from lob_core.types import BookView, TradeEvent

from . import settings
from .exchanges import get_adapter
from .exchanges.base import ExchangeAdapter
from .logging_config import setup_logging
from .snapshot import fetch_snapshot, make_rest_client
from .ws_stream import BookStream

log = logging.getLogger("lob_feed.feed")

_TRANSPORT_DOWN = ("ws_close", "ws_error", "ws_run_exception", "ws_ping_timeout", "ws_session_expired")


class BookFeed:
    """Drives an OrderBookSyncEngine from a live stream and a REST snapshot.

    Everything runs on one event loop: stream frames are handled in arrival
    order on the stream task, snapshot fetches run in a worker thread behind
    ``asyncio.wait_for`` and hand their result back on the loop, and a tick
    task polls the engine for degraded-mode retries and logs heartbeats.
    """

    def __init__(
        self,
        symbol: str = settings.SYMBOL,
        adapter: Optional[ExchangeAdapter] = None,
        rest_client=None,
        stream_factory: Callable[..., Any] = BookStream,
        depth: int = settings.DEPTH_LEVELS,
        snapshot_limit: int = settings.SNAPSHOT_LIMIT,
        snapshot_timeout_s: float = settings.SNAPSHOT_TIMEOUT_S,
        retry_cooldown_s: float = settings.SNAPSHOT_RETRY_COOLDOWN_S,
        max_buffer_events: int = settings.MAX_BUFFER_EVENTS,
        trade_capacity: int = settings.TRADE_LEDGER_CAPACITY,
        heartbeat_s: float = settings.HEARTBEAT_SEC,
        tick_interval_s: float = settings.TICK_INTERVAL_S,
        on_view: Optional[Callable[[BookView], None]] = None,
    ) -> None:
        self.adapter = adapter or get_adapter(settings.EXCHANGE)
        self.symbol = self.adapter.normalize_symbol(symbol)
        self.rest_client = rest_client if rest_client is not None else make_rest_client(self.adapter, snapshot_timeout_s)
        self.depth = int(depth)
        self.snapshot_limit = int(snapshot_limit)
        self.snapshot_timeout_s = float(snapshot_timeout_s)
        self.heartbeat_s = float(heartbeat_s)
        self.tick_interval_s = max(0.01, float(tick_interval_s))
        self.on_view = on_view

        self.engine = OrderBookSyncEngine(
            request_snapshot=self._on_snapshot_request,
            max_buffer_size=max_buffer_events,
            retry_cooldown_s=retry_cooldown_s,
            trade_capacity=trade_capacity,
        )
        self.stream = stream_factory(
            ws_url=self.adapter.ws_url(self.symbol),
            on_message=self.on_message,
            on_open=self.on_open,
            on_status=self.on_status,
            on_malformed=self.engine.note_malformed,
            insecure_tls=settings.INSECURE_TLS,
            ping_interval_s=settings.WS_PING_INTERVAL_S,
            ping_timeout_s=settings.WS_PING_TIMEOUT_S,
            reconnect_backoff_s=settings.WS_RECONNECT_BACKOFF_S,
            reconnect_backoff_max_s=settings.WS_RECONNECT_BACKOFF_MAX_S,
            max_session_s=settings.WS_MAX_SESSION_S,
            open_timeout_s=settings.WS_OPEN_TIMEOUT_S,
        )

        self.depth_msg_count = 0
        self.trade_msg_count = 0
        self.transport_errors = 0
        self._snapshot_tasks: Set[asyncio.Task] = set()
        self._last_hb = 0.0
        self._t0 = time.monotonic()

    # ------------------------------------------------------------------
    # snapshot collaborator

    def _on_snapshot_request(self, epoch: int) -> None:
        task = asyncio.get_running_loop().create_task(self._fetch_snapshot(epoch))
        self._snapshot_tasks.add(task)
        task.add_done_callback(self._snapshot_tasks.discard)

    async def _fetch_snapshot(self, epoch: int) -> SyncResult:
        log.info("Snapshot request epoch=%d symbol=%s limit=%d", epoch, self.symbol, self.snapshot_limit)
        try:
            snapshot = await asyncio.wait_for(
                asyncio.to_thread(fetch_snapshot, self.rest_client, self.adapter, self.symbol, self.snapshot_limit),
                timeout=self.snapshot_timeout_s,
            )
        except asyncio.TimeoutError:
            err = SnapshotUnavailable(f"snapshot timed out after {self.snapshot_timeout_s:.1f}s")
            result = self.engine.snapshot_failed(err, epoch)
        except SnapshotUnavailable as exc:
            if exc.rate_limited:
                log.warning("Snapshot rate limited (status=%s); building book from deltas", exc.status)
            result = self.engine.snapshot_failed(exc, epoch)
        except Exception as exc:
            log.exception("Snapshot fetch epoch=%d crashed", epoch)
            result = self.engine.snapshot_failed(SnapshotUnavailable(f"unexpected snapshot error: {exc}"), epoch)
        else:
            result = self.engine.adopt_snapshot(snapshot, epoch)
        log.info("Snapshot epoch=%d -> %s %s", epoch, result.action, result.details)
        return result

    # ------------------------------------------------------------------
    # stream callbacks

    def on_open(self, open_count: int) -> None:
        if open_count == 1:
            self.engine.start()
            return
        # Deltas may have been missed while disconnected.
        result = self.engine.resync("ws_reconnect")
        log.info("Stream reopened (#%d): %s %s", open_count, result.action, result.details)

    def on_status(self, typ: str, details: dict) -> None:
        if typ in _TRANSPORT_DOWN:
            self.transport_errors += 1
            log.warning("%s", TransportUnavailable(f"{typ}: {details}"))
        elif typ == "ws_reconnect_wait":
            log.info("Reconnecting in %.1fs", details.get("sleep_s", 0.0))
        else:
            log.debug("WS status %s %s", typ, details)

    def on_message(self, payload: Any, recv_ms: int) -> None:
        try:
            event = self.adapter.parse_ws_message(payload)
        except MalformedEvent as exc:
            self.engine.note_malformed(str(exc))
            return
        if event is None:
            return
        if isinstance(event, TradeEvent):
            self.trade_msg_count += 1
            self.engine.feed_trade(event)
            return
        self.depth_msg_count += 1
        result = self.engine.feed_depth_event(event)
        if result.action == "gap":
            log.warning("Sequence gap (%d so far): %s", self.engine.gap_count, result.details)
        if self.on_view is not None and result.action in ("applied", "synced", "degraded"):
            self.on_view(self.engine.book_view(self.depth))

    # ------------------------------------------------------------------
    # periodic work

    def heartbeat(self, force: bool = False) -> None:
        now = time.monotonic()
        if not force and now - self._last_hb < self.heartbeat_s:
            return
        self._last_hb = now
        stats = self.engine.stats()
        view = self.engine.book_view(1)
        log.info(
            "HEARTBEAT uptime=%.0fs phase=%s verified=%s lastUpdateId=%d buffer=%d "
            "best_bid=%s best_ask=%s spread=%s (%.4f%%) depth_msgs=%d trade_msgs=%d "
            "gaps=%d resyncs=%d malformed=%d overflow=%d",
            now - self._t0,
            stats["phase"],
            stats["verified"],
            stats["watermark"],
            stats["buffer"],
            view.best_bid.price if view.best_bid else "-",
            view.best_ask.price if view.best_ask else "-",
            view.spread.absolute,
            view.spread.percentage_of_ask,
            self.depth_msg_count,
            self.trade_msg_count,
            stats["gaps"],
            stats["resyncs"],
            stats["malformed"],
            stats["overflow"],
        )

    def tick(self, now: Optional[float] = None) -> None:
        self.engine.poll(now)
        self.heartbeat()

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval_s)
            try:
                self.tick()
            except Exception:
                log.exception("Tick failed")

    async def run(self) -> None:
        tick_task = asyncio.create_task(self._tick_loop())
        try:
            await self.stream.run_async()
        finally:
            tick_task.cancel()
            for task in list(self._snapshot_tasks):
                task.cancel()
            self.heartbeat(force=True)
            self.engine.shutdown()
            log.info("Feed stopped.")

    def stop(self) -> None:
        self.stream.close()


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Keep a locally synchronized order book for one instrument.")
    p.add_argument("--symbol", default=settings.SYMBOL)
    p.add_argument("--exchange", default=settings.EXCHANGE)
    p.add_argument("--depth", type=int, default=settings.DEPTH_LEVELS)
    p.add_argument("--log-level", default=settings.LOG_LEVEL)
    p.add_argument("--log-dir", default=settings.LOG_DIR, help="empty string for console-only logging")
    return p


def main(argv: Optional[list] = None) -> None:
    args = build_arg_parser().parse_args(argv)
    adapter = get_adapter(args.exchange)
    symbol = adapter.normalize_symbol(args.symbol)
    log_path = setup_logging(args.log_level, symbol=symbol, base_dir=args.log_dir or None)
    log.info("Starting feed exchange=%s symbol=%s depth=%d log=%s", adapter.name, symbol, args.depth, log_path)

    feed = BookFeed(symbol=symbol, adapter=adapter, depth=args.depth)
    try:
        asyncio.run(feed.run())
    except KeyboardInterrupt:
        log.info("Interrupted.")
    except Exception:
        log.exception("Feed crashed")
        raise


if __name__ == "__main__":
    main()
