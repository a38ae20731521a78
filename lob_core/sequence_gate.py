from __future__ import annotations

from enum import Enum

from .types import DeltaEvent


class GateDecision(str, Enum):
    STALE = "stale"
    APPLY = "apply"
    GAP = "gap"


def classify(watermark: int, baseline_verified: bool, delta: DeltaEvent) -> GateDecision:
    """Decide what to do with a diff-depth event given the current watermark.

      - stale: the event is fully covered by state already applied
      - gap:   a verified baseline exists and the stream skipped ids
      - apply: everything else; without a verified baseline there is no floor
               to check against, so gaps are not detected
    """
    if delta.range_end <= watermark:
        return GateDecision.STALE
    if baseline_verified and delta.range_start > watermark + 1:
        return GateDecision.GAP
    return GateDecision.APPLY
