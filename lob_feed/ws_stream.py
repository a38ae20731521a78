from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import random
import ssl
import time
from typing import Any, Callable, Optional

from websockets.asyncio.client import connect as ws_connect  # type: ignore
from websockets.exceptions import ConnectionClosed  # type: ignore


class BookStream:
    """Async websocket session delivering decoded frames to one callback.

    Reconnects with jittered exponential backoff, keeps the connection alive
    with its own ping loop and rolls the session over before the exchange's
    24h hard limit. Callback errors are logged and never end the session.

    ``on_open`` receives the running count of successful opens; anything past
    the first means the frame sequence has a hole in it.
    """

    def __init__(
        self,
        ws_url: str,
        on_message: Callable[[Any, int], None],
        on_open: Optional[Callable[[int], None]] = None,
        on_status: Optional[Callable[[str, dict], None]] = None,
        on_malformed: Optional[Callable[[str], None]] = None,
        insecure_tls: bool = False,
        ping_interval_s: int = 20,
        ping_timeout_s: int = 60,
        reconnect_backoff_s: float = 1.0,
        reconnect_backoff_max_s: float = 30.0,
        max_session_s: float = 23 * 3600 + 50 * 60,
        open_timeout_s: float = 10.0,
        recv_poll_timeout_s: float = 5.0,
        max_queue: int = 256,
    ):
        self.ws_url = ws_url
        self.on_message = on_message
        self.on_open_cb = on_open
        self.on_status_cb = on_status
        self.on_malformed_cb = on_malformed
        self.insecure_tls = insecure_tls

        self.ping_interval_s = max(0, int(ping_interval_s))
        self.ping_timeout_s = max(1, int(ping_timeout_s))
        self.reconnect_backoff_s = max(0.0, float(reconnect_backoff_s))
        self.reconnect_backoff_max_s = max(self.reconnect_backoff_s, float(reconnect_backoff_max_s))
        self.max_session_s = max(0.0, float(max_session_s))
        self.open_timeout_s = max(0.1, float(open_timeout_s))
        self.recv_poll_timeout_s = max(0.01, float(recv_poll_timeout_s))
        self.max_queue = max(1, int(max_queue))

        self.open_count = 0
        self._ws = None
        self._stop = False
        self._log = logging.getLogger("lob_feed.ws_stream")

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def _emit_status(self, typ: str, details: dict) -> None:
        if self.on_status_cb is None:
            return
        try:
            self.on_status_cb(typ, details)
        except Exception:
            self._log.exception("Status callback error (type=%s)", typ)

    # ------------------------------------------------------------------
    # keepalive

    async def _ping_once(self) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            pong_waiter = await ws.ping(os.urandom(4))
            await asyncio.wait_for(pong_waiter, timeout=self.ping_timeout_s)
        except Exception as exc:
            self._emit_status("ws_ping_timeout", {"error": str(exc), "timeout_s": self.ping_timeout_s})
            with contextlib.suppress(Exception):
                await ws.close()
            return False
        return True

    async def _ping_loop(self) -> None:
        if self.ping_interval_s <= 0:
            return
        while not self._stop and self._ws is not None:
            await asyncio.sleep(self.ping_interval_s)
            if self._stop or not await self._ping_once():
                return

    # ------------------------------------------------------------------
    # frames

    def _dispatch(self, raw) -> None:
        recv_ms = int(time.time() * 1000)
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            self._log.warning("Undecodable WS frame: %s", exc)
            if self.on_malformed_cb:
                try:
                    self.on_malformed_cb(f"invalid json: {exc}")
                except Exception:
                    self._log.exception("Malformed callback error")
            return
        try:
            self.on_message(payload, recv_ms)
        except Exception:
            self._log.exception("Message callback error")

    async def _read_loop(self, ws, session_deadline: float) -> None:
        while not self._stop:
            remaining = session_deadline - time.monotonic()
            if remaining <= 0:
                self._emit_status("ws_session_expired", {"max_session_s": self.max_session_s})
                return
            try:
                frame = await asyncio.wait_for(ws.recv(), timeout=min(self.recv_poll_timeout_s, remaining))
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as exc:
                self._emit_status("ws_close", {"code": getattr(exc, "code", None), "msg": str(exc)})
                return
            except Exception as exc:
                self._emit_status("ws_error", {"error": str(exc)})
                return
            if frame is None:
                return
            self._dispatch(frame)

    # ------------------------------------------------------------------
    # connection lifecycle

    def _connect_kwargs(self) -> dict:
        # Keepalive is ours (_ping_loop); the library's own pinger stays off.
        kwargs = {
            "ping_interval": None,
            "ping_timeout": None,
            "open_timeout": self.open_timeout_s,
            "close_timeout": 5,
            "max_queue": self.max_queue,
        }
        if self.insecure_tls:
            ctx = ssl.create_default_context()
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            kwargs["ssl"] = ctx
        return kwargs

    def _backoff(self, attempt: int) -> float:
        if self.reconnect_backoff_s <= 0.0:
            return 0.0
        delay = min(self.reconnect_backoff_max_s, self.reconnect_backoff_s * (2 ** max(0, attempt - 1)))
        return delay * random.uniform(0.7, 1.3)

    async def _session(self, ws) -> None:
        deadline = time.monotonic() + self.max_session_s
        self._ws = ws
        self.open_count += 1
        self._emit_status("ws_connect", {"open_count": self.open_count, "url": self.ws_url})
        if self.on_open_cb:
            self.on_open_cb(self.open_count)

        pinger = asyncio.create_task(self._ping_loop())
        try:
            await self._read_loop(ws, deadline)
        finally:
            pinger.cancel()
            with contextlib.suppress(BaseException):
                await pinger

    async def run_async(self) -> None:
        """Connect, read until closed, reconnect; returns once close() is called."""
        self._stop = False
        failures = 0
        while not self._stop:
            opened_before = self.open_count
            try:
                async with ws_connect(self.ws_url, **self._connect_kwargs()) as ws:
                    await self._session(ws)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._emit_status("ws_run_exception", {"error": str(exc)})
                self._log.exception("WebSocket run exception")
            finally:
                self._ws = None

            if self._stop:
                break
            # Only consecutive failed opens grow the delay.
            failures = 1 if self.open_count > opened_before else failures + 1
            delay = self._backoff(failures)
            self._emit_status("ws_reconnect_wait", {"sleep_s": float(delay), "attempt": failures})
            await asyncio.sleep(delay)

    def run(self) -> None:
        """Blocking entry point for callers without an event loop."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.run_async())
            return
        raise RuntimeError("BookStream.run() cannot be called from an active event loop; await run_async().")

    def close(self) -> None:
        self._stop = True
        ws = self._ws
        if ws is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.create_task(ws.close())
