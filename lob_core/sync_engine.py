from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Iterable, List, Optional, Set

from .errors import BookSyncError, SequenceGap, SnapshotUnavailable
from .local_orderbook import LocalOrderBook, checked_changes
from .sequence_gate import GateDecision, classify
from .trade_ledger import DEFAULT_CAPACITY, TradeLedger
from .types import BookView, DeltaEvent, LadderRow, Side, SnapshotEvent, Spread, TradeEvent
from . import views

log = logging.getLogger("lob_core.sync_engine")


class SyncPhase(str, Enum):
    AWAITING_BASELINE = "awaiting_baseline"
    FETCHING_SNAPSHOT = "fetching_snapshot"
    SYNCED = "synced"
    RESYNCING = "resyncing"
    STOPPED = "stopped"


_BUFFERING_PHASES = (SyncPhase.AWAITING_BASELINE, SyncPhase.FETCHING_SNAPSHOT, SyncPhase.RESYNCING)


@dataclass
class SyncResult:
    action: str  # "buffered" | "synced" | "applied" | "stale" | "gap" | "resync" | "degraded" | "dropped" | "ignored"
    details: str = ""
    error: Optional[BookSyncError] = None


class OrderBookSyncEngine:
    """Pure state machine reconciling a REST snapshot with a diff-depth stream.

    This module is I/O-free. Snapshot requests go out through the
    ``request_snapshot(epoch)`` hook and come back through ``adopt_snapshot``
    or ``snapshot_failed`` carrying the same epoch; anything carrying another
    epoch is a leftover from an abandoned request and is discarded.

    Key behaviors:
      - buffer deltas (bounded, oldest dropped) until a snapshot resolves
      - on snapshot: install it, drain the buffer through the sequence gate
      - on snapshot failure: fold the buffer blindly and run degraded
      - once synced: apply, discard stale, resync on gap
      - degraded: retry the snapshot after a cooldown without pausing deltas
    """

    def __init__(
        self,
        request_snapshot: Optional[Callable[[int], None]] = None,
        max_buffer_size: int = 5000,
        retry_cooldown_s: float = 30.0,
        trade_capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.request_snapshot = request_snapshot
        self.max_buffer_size = max(1, int(max_buffer_size))
        self.retry_cooldown_s = max(0.0, float(retry_cooldown_s))
        self.clock = clock

        self.book = LocalOrderBook()
        self.trades = TradeLedger(trade_capacity)
        self.phase = SyncPhase.AWAITING_BASELINE
        self.buffer: Deque[DeltaEvent] = deque()

        self.epoch = 0
        self.pending_epoch: Optional[int] = None
        self.retry_at: Optional[float] = None
        # Highest range_end thrown away by buffer overflow since the last snapshot request.
        self._dropped_through: Optional[int] = None

        self.applied_count = 0
        self.stale_count = 0
        self.gap_count = 0
        self.resync_count = 0
        self.degraded_count = 0
        self.overflow_count = 0
        self.malformed_count = 0
        self.snapshot_count = 0

    # ------------------------------------------------------------------
    # transitions

    def start(self) -> int:
        """Enter AwaitingBaseline and issue the initial snapshot request."""
        if self.phase is SyncPhase.STOPPED:
            self.book = LocalOrderBook()
            self.trades = TradeLedger(self.trades.capacity)
            self.phase = SyncPhase.AWAITING_BASELINE
        if self.phase is not SyncPhase.AWAITING_BASELINE:
            raise RuntimeError(f"start() called in phase {self.phase.value}")
        log.info("Awaiting baseline; requesting initial snapshot")
        return self._issue_request()

    def _issue_request(self) -> int:
        self.epoch += 1
        self.pending_epoch = self.epoch
        self.retry_at = None
        if self.phase is SyncPhase.AWAITING_BASELINE:
            self.phase = SyncPhase.FETCHING_SNAPSHOT
        if self.request_snapshot is not None:
            self.request_snapshot(self.epoch)
        return self.epoch

    def _set_phase(self, new_phase: SyncPhase, reason: str) -> None:
        if self.phase is new_phase:
            return
        log.info("Phase %s -> %s (%s)", self.phase.value, new_phase.value, reason)
        self.phase = new_phase

    def _buffer(self, delta: DeltaEvent) -> None:
        self.buffer.append(delta)
        if len(self.buffer) > self.max_buffer_size:
            dropped = self.buffer.popleft()
            self.overflow_count += 1
            if self._dropped_through is None:
                log.warning(
                    "Delta buffer full (%d); dropping oldest events, baseline will be degraded",
                    self.max_buffer_size,
                )
            self._dropped_through = max(self._dropped_through or 0, dropped.range_end)

    def _apply(self, book: LocalOrderBook, delta: DeltaEvent) -> None:
        book.apply_changes(Side.BID, delta.bid_changes)
        book.apply_changes(Side.ASK, delta.ask_changes)
        book.advance_watermark(max(book.watermark, delta.range_end))

    def _begin_resync(self, reason: str, carry: Iterable[DeltaEvent] = ()) -> None:
        self.resync_count += 1
        self.book.baseline_verified = False
        self.buffer.clear()
        self._dropped_through = None
        for delta in carry:
            self._buffer(delta)
        log.warning("Resync triggered: %s", reason)
        self._set_phase(SyncPhase.RESYNCING, reason)
        self._issue_request()

    def resync(self, reason: str) -> SyncResult:
        """Force a fresh baseline, e.g. after the transport lost continuity."""
        if self.phase is SyncPhase.STOPPED:
            return SyncResult("ignored", "stopped")
        if self.phase is not SyncPhase.SYNCED:
            return SyncResult("buffered", f"snapshot already pending ({reason})")
        self._begin_resync(reason)
        return SyncResult("resync", reason)

    @staticmethod
    def _candidate_book(snapshot: SnapshotEvent) -> LocalOrderBook:
        candidate = LocalOrderBook()
        candidate.snapshot_with(Side.BID, snapshot.bid_levels)
        candidate.snapshot_with(Side.ASK, snapshot.ask_levels)
        candidate.watermark = int(snapshot.watermark)
        if candidate.watermark < 0:
            raise ValueError(f"negative lastUpdateId {snapshot.watermark!r}")
        return candidate

    def adopt_snapshot(self, snapshot: SnapshotEvent, epoch: int) -> SyncResult:
        """Install a snapshot and reconcile the buffered deltas against it."""
        if self.phase is SyncPhase.STOPPED or epoch != self.pending_epoch:
            log.info("Discarding snapshot for epoch %s (pending=%s)", epoch, self.pending_epoch)
            return SyncResult("ignored", f"stale_epoch={epoch}")
        try:
            candidate = self._candidate_book(snapshot)
        except (TypeError, ValueError) as exc:
            self.note_malformed(f"snapshot: {exc}")
            return self.snapshot_failed(SnapshotUnavailable(f"invalid snapshot: {exc}"), epoch)
        self.pending_epoch = None

        # Deltas lost to overflow past the snapshot id cannot be reconciled.
        verified = self._dropped_through is None or self._dropped_through <= candidate.watermark
        candidate.baseline_verified = verified

        applied = stale = 0
        gap_at: Optional[int] = None
        pending = list(self.buffer)
        for i, delta in enumerate(pending):
            decision = classify(candidate.watermark, candidate.baseline_verified, delta)
            if decision is GateDecision.STALE:
                stale += 1
                continue
            if decision is GateDecision.GAP:
                gap_at = i
                break
            self._apply(candidate, delta)
            applied += 1

        if candidate.watermark < self.book.watermark:
            log.warning(
                "Snapshot lastUpdateId=%d cannot catch up with book watermark=%d",
                snapshot.watermark,
                self.book.watermark,
            )
            return self._fall_back(f"snapshot_behind lastUpdateId={snapshot.watermark}")

        self.book = candidate
        self.buffer.clear()
        self._dropped_through = None
        self.snapshot_count += 1
        self.applied_count += applied
        self.stale_count += stale
        log.info(
            "Snapshot adopted lastUpdateId=%d verified=%s drained applied=%d stale=%d",
            snapshot.watermark,
            verified,
            applied,
            stale,
        )

        if gap_at is not None:
            delta = pending[gap_at]
            gap = SequenceGap(candidate.watermark, delta.range_start, delta.range_end)
            self.gap_count += 1
            reason = f"{gap} during drain"
            self._begin_resync(reason, carry=pending[gap_at:])
            return SyncResult("gap", reason, gap)

        self._set_phase(SyncPhase.SYNCED, "snapshot_loaded")
        if not verified:
            self.degraded_count += 1
            self.retry_at = self.clock() + self.retry_cooldown_s
            return SyncResult("degraded", f"buffer_overflow lastUpdateId={candidate.watermark}")
        return SyncResult("synced", f"lastUpdateId={self.book.watermark}")

    def snapshot_failed(self, error: object, epoch: int) -> SyncResult:
        """Snapshot fetch failed, timed out or was rate limited."""
        if self.phase is SyncPhase.STOPPED or epoch != self.pending_epoch:
            log.info("Discarding snapshot failure for epoch %s (pending=%s)", epoch, self.pending_epoch)
            return SyncResult("ignored", f"stale_epoch={epoch}")
        self.pending_epoch = None
        log.warning("Snapshot unavailable: %s", error)
        return self._fall_back(str(error))

    def _fall_back(self, reason: str) -> SyncResult:
        self.retry_at = self.clock() + self.retry_cooldown_s

        if self.phase is SyncPhase.SYNCED:
            # Upgrade attempt from degraded mode: the book is already live.
            self.buffer.clear()
            self._dropped_through = None
            return SyncResult("degraded", f"upgrade_failed {reason}")

        folded = 0
        for delta in self.buffer:
            self._apply(self.book, delta)
            folded += 1
        self.book.baseline_verified = False
        self.buffer.clear()
        self._dropped_through = None
        self.degraded_count += 1
        self.applied_count += folded
        log.warning(
            "Running degraded: folded %d buffered deltas, watermark=%d (%s)",
            folded,
            self.book.watermark,
            reason,
        )
        self._set_phase(SyncPhase.SYNCED, "degraded")
        return SyncResult("degraded", f"watermark={self.book.watermark} {reason}")

    def poll(self, now: Optional[float] = None) -> Optional[int]:
        """Issue the cooldown re-attempt for a verified snapshot when it is due."""
        if self.phase is not SyncPhase.SYNCED or self.book.baseline_verified:
            return None
        if self.pending_epoch is not None or self.retry_at is None:
            return None
        now = self.clock() if now is None else now
        if now < self.retry_at:
            return None
        self.buffer.clear()
        self._dropped_through = None
        log.info("Retrying snapshot to upgrade degraded book (watermark=%d)", self.book.watermark)
        return self._issue_request()

    def shutdown(self) -> None:
        self.epoch += 1
        self.pending_epoch = None
        self.retry_at = None
        self.buffer.clear()
        self._dropped_through = None
        self.book = LocalOrderBook()
        self.trades.clear()
        self._set_phase(SyncPhase.STOPPED, "shutdown")

    # ------------------------------------------------------------------
    # inbound events

    def feed_depth_event(self, delta: DeltaEvent) -> SyncResult:
        """Feed one diff-depth event."""
        if self.phase is SyncPhase.STOPPED:
            return SyncResult("ignored", "stopped")
        if delta.range_end < delta.range_start:
            self.note_malformed(f"range_end {delta.range_end} < range_start {delta.range_start}")
            return SyncResult("dropped", "bad_range")
        try:
            checked_changes(delta.bid_changes)
            checked_changes(delta.ask_changes)
        except ValueError as exc:
            # Rejected before buffering so neither the live book nor a later fold sees it.
            self.note_malformed(f"U={delta.range_start} u={delta.range_end}: {exc}")
            return SyncResult("dropped", f"bad_levels {exc}")

        if self.phase in _BUFFERING_PHASES:
            self._buffer(delta)
            return SyncResult("buffered", self.phase.value)

        if self.pending_epoch is not None:
            # Degraded book with an upgrade snapshot in flight: keep a copy so
            # the snapshot can be reconciled against everything after it.
            self._buffer(delta)

        decision = classify(self.book.watermark, self.book.baseline_verified, delta)
        if decision is GateDecision.STALE:
            self.stale_count += 1
            return SyncResult("stale", f"u={delta.range_end} last={self.book.watermark}")
        if decision is GateDecision.GAP:
            gap = SequenceGap(self.book.watermark, delta.range_start, delta.range_end)
            self.gap_count += 1
            self._begin_resync(str(gap), carry=[delta])
            return SyncResult("gap", str(gap), gap)

        self._apply(self.book, delta)
        self.applied_count += 1
        log.debug("Applied U=%d u=%d", delta.range_start, delta.range_end)
        return SyncResult("applied", f"lastUpdateId={self.book.watermark}")

    def feed_trade(self, trade: TradeEvent) -> bool:
        if self.phase is SyncPhase.STOPPED:
            return False
        return self.trades.record(trade)

    def note_malformed(self, reason: str) -> None:
        self.malformed_count += 1
        log.warning("Dropping malformed event: %s", reason)

    # ------------------------------------------------------------------
    # read API

    def is_baseline_verified(self) -> bool:
        return self.book.baseline_verified

    def watermark(self) -> int:
        return self.book.watermark

    def current_ladder(self, side: Side, depth: int) -> List[LadderRow]:
        return views.ladder(self.book.top_levels(side, depth))

    def current_spread(self) -> Spread:
        return views.spread(self.book.best_bid, self.book.best_ask)

    def recent_trades(self):
        return self.trades.snapshot()

    def new_trade_ids_since(self, previous_head_id: Optional[int]) -> Set[int]:
        return self.trades.diff_new_since(previous_head_id)

    def book_view(self, depth: int) -> BookView:
        return BookView(
            bids=self.current_ladder(Side.BID, depth),
            asks=self.current_ladder(Side.ASK, depth),
            spread=self.current_spread(),
            watermark=self.book.watermark,
            provisional=not self.book.baseline_verified,
            phase=self.phase.value,
            best_bid=self.book.best_bid,
            best_ask=self.book.best_ask,
        )

    def stats(self) -> dict:
        return {
            "phase": self.phase.value,
            "verified": self.book.baseline_verified,
            "watermark": self.book.watermark,
            "buffer": len(self.buffer),
            "epoch": self.epoch,
            "applied": self.applied_count,
            "stale": self.stale_count,
            "gaps": self.gap_count,
            "resyncs": self.resync_count,
            "degraded": self.degraded_count,
            "overflow": self.overflow_count,
            "malformed": self.malformed_count,
            "snapshots": self.snapshot_count,
        }
