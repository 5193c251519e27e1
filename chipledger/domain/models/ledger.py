"""
Ledger records: chip history entries and daily summaries.

History entries are append-only. Daily summaries exist once per
(user, calendar day) and are accumulated in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from chipledger.core.store.base import Document
from chipledger.core.time_utils import Clock, coerce_to_datetime
from chipledger.domain.models.base import DomainValidationError, coerce_int, coerce_text

HISTORY_COLLECTION = "chipHistory"
DAILY_SUMMARY_COLLECTION = "dailySummary"


class ChipDirection(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"

    @classmethod
    def parse(cls, value: Any) -> "ChipDirection":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise DomainValidationError(
                f"direction must be 'add' or 'subtract', got {value!r}",
                field="direction",
            ) from None

    @property
    def sign(self) -> int:
        return 1 if self is ChipDirection.ADD else -1

    def apply(self, balance: int, amount: int) -> int:
        """New balance after applying ``amount``, clamped at zero."""
        return max(0, balance + self.sign * amount)


@dataclass(frozen=True)
class ChipHistoryEntry:
    """
    One applied mutation.

    ``change_amount`` is what actually happened to the balance
    (``new_amount - previous_amount``); ``requested_amount`` is the signed
    delta the operator asked for. They differ only when a subtraction was
    clamped at zero.
    """

    id: str
    user_id: str
    username: str
    previous_amount: int
    new_amount: int
    change_amount: int
    requested_amount: int
    type: ChipDirection
    reason: str
    staff_email: str
    timestamp: datetime
    date: str

    @classmethod
    def from_document(cls, document: Document, clock: Optional[Clock] = None) -> "ChipHistoryEntry":
        data = document.data
        previous = coerce_int(data.get("previousAmount"))
        new = coerce_int(data.get("newAmount"))
        try:
            direction = ChipDirection.parse(data.get("type"))
        except DomainValidationError:
            direction = ChipDirection.ADD if new >= previous else ChipDirection.SUBTRACT
        change = coerce_int(data.get("changeAmount"), new - previous)
        timestamp = coerce_to_datetime(data.get("timestamp"), clock=clock)
        return cls(
            id=document.id,
            user_id=coerce_text(data.get("userId")),
            username=coerce_text(data.get("username")),
            previous_amount=previous,
            new_amount=new,
            change_amount=change,
            requested_amount=coerce_int(data.get("requestedAmount"), change),
            type=direction,
            reason=coerce_text(data.get("reason")),
            staff_email=coerce_text(data.get("staffEmail")),
            timestamp=timestamp,
            date=coerce_text(data.get("date")) or timestamp.date().isoformat(),
        )


@dataclass(frozen=True)
class DailySummary:
    id: str
    user_id: str
    username: str
    date: str
    start_chips: int
    end_chips: int
    net_change: int
    transactions: int
    last_updated: Optional[datetime] = None

    @classmethod
    def from_document(cls, document: Document, clock: Optional[Clock] = None) -> "DailySummary":
        data = document.data
        return cls(
            id=document.id,
            user_id=coerce_text(data.get("userId")),
            username=coerce_text(data.get("username")),
            date=coerce_text(data.get("date")),
            start_chips=coerce_int(data.get("startChips")),
            end_chips=coerce_int(data.get("endChips")),
            net_change=coerce_int(data.get("netChange")),
            transactions=coerce_int(data.get("transactions")),
            last_updated=coerce_to_datetime(data.get("lastUpdated"), clock=clock),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "date": self.date,
            "startChips": self.start_chips,
            "endChips": self.end_chips,
            "netChange": self.net_change,
            "transactions": self.transactions,
        }
