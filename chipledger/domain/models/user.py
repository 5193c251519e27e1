"""
User record: the typed view of a ``users`` document.

Stored shape (camelCase)::

    username, displayName, chips, totalEarnings, totalLosses,
    monthlyTotals {"YYYY-MM": int}, lastUpdated, createdAt, notes, role

``chips`` is a balance and never negative; ``monthlyTotals`` values are net
signed changes for a period and may be negative.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from chipledger.core.store.base import Document
from chipledger.core.time_utils import Clock, coerce_to_datetime
from chipledger.domain.models.base import (
    coerce_int,
    coerce_period_totals,
    coerce_text,
)

USERS_COLLECTION = "users"
DEFAULT_ROLE = "staff"


def fallback_username(user_id: str) -> str:
    return f"user_{user_id}"


def sorted_by_username(users: Iterable["UserRecord"]) -> List["UserRecord"]:
    """Stable listing order. Nameless users sort under their fallback name."""
    return sorted(users, key=lambda user: (user.username, user.id))


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str
    display_name: str = ""
    chips: int = 0
    total_earnings: int = 0
    total_losses: int = 0
    monthly_totals: Dict[str, int] = field(default_factory=dict)
    last_updated: Optional[datetime] = None
    created_at: Optional[datetime] = None
    notes: str = ""
    role: str = DEFAULT_ROLE

    @classmethod
    def from_document(cls, document: Document, clock: Optional[Clock] = None) -> "UserRecord":
        data = document.data
        username = coerce_text(data.get("username")).strip()
        return cls(
            id=document.id,
            username=username or fallback_username(document.id),
            display_name=coerce_text(data.get("displayName")),
            chips=max(0, coerce_int(data.get("chips"))),
            total_earnings=max(0, coerce_int(data.get("totalEarnings"))),
            total_losses=max(0, coerce_int(data.get("totalLosses"))),
            monthly_totals=coerce_period_totals(data.get("monthlyTotals")),
            last_updated=coerce_to_datetime(data.get("lastUpdated"), clock=clock),
            created_at=coerce_to_datetime(data.get("createdAt"), clock=clock),
            notes=coerce_text(data.get("notes")),
            role=coerce_text(data.get("role"), DEFAULT_ROLE) or DEFAULT_ROLE,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "displayName": self.display_name,
            "chips": self.chips,
            "totalEarnings": self.total_earnings,
            "totalLosses": self.total_losses,
            "monthlyTotals": dict(self.monthly_totals),
            "lastUpdated": self.last_updated,
            "createdAt": self.created_at,
            "notes": self.notes,
            "role": self.role,
        }

    @property
    def label(self) -> str:
        """Display name, or the username when no display name is set."""
        return self.display_name or self.username

    def same_balances(self, other: "UserRecord", period: str) -> bool:
        """True when both views agree on every field a chip mutation changes."""
        return (
            self.chips == other.chips
            and self.total_earnings == other.total_earnings
            and self.total_losses == other.total_losses
            and self.monthly_total(period) == other.monthly_total(period)
        )

    def monthly_total(self, period: str) -> int:
        return self.monthly_totals.get(period, 0)

    def yearly_total(self, year: int) -> int:
        prefix = f"{year}-"
        return sum(
            amount for period, amount in self.monthly_totals.items()
            if period.startswith(prefix)
        )
