from __future__ import annotations

import logging
from collections import deque
from typing import Iterator, List, Optional, Set

from .types import TradeEvent

DEFAULT_CAPACITY = 50

log = logging.getLogger("lob_core.trade_ledger")


class TradeLedger:
    """Bounded, newest-first list of recent trades.

    The ledger only reports which trades are new since a consumer last looked;
    how long a consumer highlights them is up to the consumer.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if int(capacity) <= 0:
            raise ValueError(f"capacity must be positive (got {capacity!r})")
        self.capacity = int(capacity)
        self._trades: deque[TradeEvent] = deque(maxlen=self.capacity)
        self.duplicate_count = 0

    def __len__(self) -> int:
        return len(self._trades)

    def __iter__(self) -> Iterator[TradeEvent]:
        return iter(self._trades)

    @property
    def head_id(self) -> Optional[int]:
        return self._trades[0].trade_id if self._trades else None

    @property
    def tail_id(self) -> Optional[int]:
        return self._trades[-1].trade_id if self._trades else None

    def record(self, trade: TradeEvent) -> bool:
        """Prepend a trade, dropping the oldest past capacity.

        Ids must keep increasing; a replayed or reordered id is ignored so the
        head-to-tail ordering stays strictly decreasing.
        """
        head = self.head_id
        if head is not None and trade.trade_id <= head:
            self.duplicate_count += 1
            log.debug("Ignoring out-of-order trade id=%s head=%s", trade.trade_id, head)
            return False
        self._trades.appendleft(trade)
        return True

    def diff_new_since(self, previous_head_id: Optional[int]) -> Set[int]:
        new_ids: Set[int] = set()
        for trade in self._trades:
            if previous_head_id is not None and trade.trade_id == previous_head_id:
                break
            new_ids.add(trade.trade_id)
        return new_ids

    def snapshot(self) -> List[TradeEvent]:
        return list(self._trades)

    def clear(self) -> None:
        self._trades.clear()
