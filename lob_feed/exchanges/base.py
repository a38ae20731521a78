from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, List, Tuple, Union

from lob_core.errors import MalformedEvent
from lob_core.local_orderbook import to_decimal
from lob_core.types import DeltaEvent, SnapshotEvent, TradeEvent

StreamEvent = Union[DeltaEvent, TradeEvent]


def parse_int(payload: dict, key: str) -> int:
    value = payload.get(key)
    if value is None or isinstance(value, bool):
        raise MalformedEvent(f"field {key!r} missing or not an integer: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedEvent(f"field {key!r} is not an integer: {value!r}") from exc


def parse_optional_int(payload: dict, key: str, default: int = 0) -> int:
    if payload.get(key) is None:
        return default
    return parse_int(payload, key)


def parse_decimal(value: Any, label: str) -> Decimal:
    if isinstance(value, bool):
        raise MalformedEvent(f"{label} is not a number: {value!r}")
    try:
        return to_decimal(value)
    except ValueError as exc:
        raise MalformedEvent(f"{label} is not a number: {value!r}") from exc


def parse_levels(raw: Any, label: str) -> List[Tuple[Decimal, Decimal]]:
    """Validate ``[[price, qty], ...]`` into decimal pairs."""
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise MalformedEvent(f"{label} must be a list of [price, qty]")
    out: List[Tuple[Decimal, Decimal]] = []
    for entry in raw:
        if not isinstance(entry, (list, tuple)) or len(entry) < 2:
            raise MalformedEvent(f"{label} entry is not [price, qty]: {entry!r}")
        price = parse_decimal(entry[0], f"{label} price")
        qty = parse_decimal(entry[1], f"{label} qty")
        if price <= 0:
            raise MalformedEvent(f"{label} price must be positive: {entry[0]!r}")
        if qty < 0:
            raise MalformedEvent(f"{label} qty must be non-negative: {entry[1]!r}")
        out.append((price, qty))
    return out


class ExchangeAdapter(ABC):
    """Wire format of one venue: URLs plus validation of raw payloads."""

    name: str
    rest_base_url: str
    depth_path: str
    max_snapshot_limit: int = 1000

    @abstractmethod
    def normalize_symbol(self, symbol: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def ws_url(self, symbol: str) -> str:
        raise NotImplementedError

    def normalize_limit(self, limit: int) -> int:
        return max(1, min(int(limit), self.max_snapshot_limit))

    @abstractmethod
    def parse_ws_message(self, payload: Any) -> StreamEvent | None:
        """Typed event, None for control frames, MalformedEvent otherwise."""
        raise NotImplementedError

    @abstractmethod
    def parse_snapshot(self, payload: Any) -> SnapshotEvent:
        raise NotImplementedError
