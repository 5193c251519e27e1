"""Snapshot freshness classification for auto-recalculation."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from chipledger.domain.models.ranking import RankingSnapshot


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"


class AutoRecalculationPolicy:
    """
    A snapshot is FRESH while younger than ``threshold_seconds``. A missing
    snapshot, or one at or past the threshold, is STALE.
    """

    def __init__(self, threshold_seconds: float) -> None:
        if threshold_seconds <= 0:
            raise ValueError("threshold_seconds must be positive")
        self.threshold_seconds = float(threshold_seconds)

    def classify(self, snapshot: Optional[RankingSnapshot], now: datetime) -> Freshness:
        if snapshot is None:
            return Freshness.STALE
        if snapshot.age_seconds(now) >= self.threshold_seconds:
            return Freshness.STALE
        return Freshness.FRESH

    def needs_recalculation(self, snapshot: Optional[RankingSnapshot], now: datetime) -> bool:
        return self.classify(snapshot, now) is Freshness.STALE
