"""
Ranking records.

Snapshot document id is derived deterministically:

- monthly: ``monthly_{year}_{month:02d}``
- yearly:  ``yearly_{year}``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from chipledger.core.store.base import Document
from chipledger.core.time_utils import Clock, coerce_to_datetime
from chipledger.domain.models.base import (
    DomainValidationError,
    coerce_int,
    coerce_text,
    validate_range,
)

RANKINGS_COLLECTION = "rankings"


class RankingType(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: Any) -> "RankingType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise DomainValidationError(
                f"ranking type must be 'monthly' or 'yearly', got {value!r}",
                field="type",
            ) from None


def snapshot_key(ranking_type: RankingType, year: int, month: Optional[int] = None) -> str:
    """
    Raises
    ------
    DomainValidationError
        For a monthly key without a month in 1..12.
    """
    ranking_type = RankingType.parse(ranking_type)
    if ranking_type is RankingType.YEARLY:
        return f"yearly_{year}"
    if month is None:
        raise DomainValidationError("monthly ranking requires a month", field="month")
    validate_range(month, 1, 12, "month")
    return f"monthly_{year}_{month:02d}"


@dataclass(frozen=True)
class RankingEntry:
    rank: int
    user_id: str
    username: str
    display_name: str
    total: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RankingEntry":
        return cls(
            rank=coerce_int(data.get("rank")),
            user_id=coerce_text(data.get("userId")),
            username=coerce_text(data.get("username")),
            display_name=coerce_text(data.get("displayName")),
            total=coerce_int(data.get("total")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "userId": self.user_id,
            "username": self.username,
            "displayName": self.display_name,
            "total": self.total,
        }


@dataclass(frozen=True)
class RankingResult:
    """A live computation. ``source`` is the cache tier the users came from."""

    updated_at: datetime
    entries: List[RankingEntry] = field(default_factory=list)
    source: str = "server"


@dataclass(frozen=True)
class RankingSnapshot:
    """A stored ranking, overwritten wholesale on every recalculation."""

    id: str
    type: RankingType
    year: int
    month: Optional[int]
    entries: List[RankingEntry]
    updated_at: datetime
    updated_by: str

    @classmethod
    def from_document(cls, document: Document, clock: Optional[Clock] = None) -> "RankingSnapshot":
        data = document.data
        raw_entries = data.get("entries")
        entries = [
            RankingEntry.from_mapping(item)
            for item in (raw_entries if isinstance(raw_entries, list) else [])
            if isinstance(item, Mapping)
        ]
        month = data.get("month")
        return cls(
            id=document.id,
            type=RankingType.parse(data.get("type")),
            year=coerce_int(data.get("year")),
            month=coerce_int(month) if month is not None else None,
            entries=entries,
            updated_at=coerce_to_datetime(data.get("updatedAt"), clock=clock),
            updated_by=coerce_text(data.get("updatedBy")),
        )

    def age_seconds(self, now: datetime) -> float:
        return (now - self.updated_at).total_seconds()
