"""Error taxonomy for book synchronization.

None of these are fatal: each one maps to a recovery path in the engine or in
the feed that drives it.
"""

from __future__ import annotations

from typing import Optional


class BookSyncError(Exception):
    pass


class TransportUnavailable(BookSyncError):
    """No live stream connection; the transport reconnects on its own."""


class SnapshotUnavailable(BookSyncError):
    """Snapshot fetch failed, timed out or was rate limited."""

    def __init__(self, message: str, *, rate_limited: bool = False, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited
        self.status = status


class SequenceGap(BookSyncError):
    def __init__(self, watermark: int, range_start: int, range_end: int) -> None:
        super().__init__(f"gap U={range_start} u={range_end} last={watermark}")
        self.watermark = watermark
        self.range_start = range_start
        self.range_end = range_end


class MalformedEvent(BookSyncError):
    """Payload could not be validated into a typed event."""
