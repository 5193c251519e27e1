"""Ranking aggregation, snapshots and staleness-driven recalculation."""

from chipledger.modules.ranking.aggregator import RankingAggregator, rank_users
from chipledger.modules.ranking.policy import AutoRecalculationPolicy, Freshness
from chipledger.modules.ranking.service import (
    RECALCULATED_EVENT,
    RECALCULATION_FAILED_EVENT,
    RankingService,
)
from chipledger.modules.ranking.snapshot_store import RankingSnapshotStore

__all__ = [
    "AutoRecalculationPolicy",
    "Freshness",
    "RECALCULATED_EVENT",
    "RECALCULATION_FAILED_EVENT",
    "RankingAggregator",
    "RankingService",
    "RankingSnapshotStore",
    "rank_users",
]
