from __future__ import annotations

import os
from typing import Callable, Optional, TypeVar

_N = TypeVar("_N", int, float)

_TRUE = ("1", "true", "yes", "y", "on")


def _env_number(name: str, default: _N, cast: Callable[[str], _N], minimum: Optional[_N]) -> _N:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _env_int(name: str, default: int, minimum: Optional[int] = None) -> int:
    return _env_number(name, default, int, minimum)


def _env_float(name: str, default: float, minimum: Optional[float] = None) -> float:
    return _env_number(name, default, float, minimum)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE


def _env_str(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip()
    return raw or default


SYMBOL = _env_str("SYMBOL", "BTCUSDT")
EXCHANGE = _env_str("EXCHANGE", "binance")
LOG_LEVEL = _env_str("LOG_LEVEL", "INFO")
LOG_DIR = _env_str("LOG_DIR", "logs")

DEPTH_LEVELS = _env_int("DEPTH_LEVELS", 20, minimum=1)
HEARTBEAT_SEC = _env_float("HEARTBEAT_SEC", 30.0, minimum=0.0)
TICK_INTERVAL_S = _env_float("TICK_INTERVAL_S", 1.0, minimum=0.01)

# Snapshot fetch: one attempt per request, retries come from the engine cooldown.
SNAPSHOT_LIMIT = _env_int("SNAPSHOT_LIMIT", 1000, minimum=1)
SNAPSHOT_TIMEOUT_S = _env_float("SNAPSHOT_TIMEOUT_S", 10.0, minimum=0.1)
SNAPSHOT_RETRY_COOLDOWN_S = _env_float("SNAPSHOT_RETRY_COOLDOWN_S", 30.0, minimum=0.0)
BINANCE_REST_BASE_URL = os.getenv("BINANCE_REST_BASE_URL") or None

# Deltas held while a snapshot is outstanding; past this the oldest are dropped.
MAX_BUFFER_EVENTS = _env_int("MAX_BUFFER_EVENTS", 5000, minimum=1)
TRADE_LEDGER_CAPACITY = _env_int("TRADE_LEDGER_CAPACITY", 50, minimum=1)

# WS keepalive/reconnect
WS_PING_INTERVAL_S = _env_int("WS_PING_INTERVAL_S", 20, minimum=0)
WS_PING_TIMEOUT_S = _env_int("WS_PING_TIMEOUT_S", 60, minimum=1)
WS_RECONNECT_BACKOFF_S = _env_float("WS_RECONNECT_BACKOFF_S", 1.0, minimum=0.0)
WS_RECONNECT_BACKOFF_MAX_S = _env_float("WS_RECONNECT_BACKOFF_MAX_S", 30.0, minimum=0.0)
# Binance drops connections at 24h; roll over a little before that.
WS_MAX_SESSION_S = _env_float("WS_MAX_SESSION_S", float(23 * 3600 + 50 * 60), minimum=1.0)
WS_OPEN_TIMEOUT_S = _env_float("WS_OPEN_TIMEOUT_S", 10.0, minimum=0.1)

INSECURE_TLS = _env_bool("INSECURE_TLS", False)
