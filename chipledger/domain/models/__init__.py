"""Typed domain records for ChipLedger documents."""

from chipledger.domain.models.base import DomainValidationError
from chipledger.domain.models.ledger import ChipDirection, ChipHistoryEntry, DailySummary
from chipledger.domain.models.ranking import (
    RankingEntry,
    RankingResult,
    RankingSnapshot,
    RankingType,
    snapshot_key,
)
from chipledger.domain.models.user import UserRecord

__all__ = [
    "DomainValidationError",
    "ChipDirection",
    "ChipHistoryEntry",
    "DailySummary",
    "RankingEntry",
    "RankingResult",
    "RankingSnapshot",
    "RankingType",
    "UserRecord",
    "snapshot_key",
]
