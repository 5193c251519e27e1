"""
Ledger journal: chip history entries and daily summaries.

Shared by the ledger mutator and user registration so every balance change,
including initial chips, leaves the same trail.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from logging import Logger
from typing import Optional

from chipledger.core.store.base import DocumentStore, Filter, Increment
from chipledger.core.time_utils import date_key
from chipledger.domain.models.ledger import (
    DAILY_SUMMARY_COLLECTION,
    HISTORY_COLLECTION,
    ChipDirection,
)


class LedgerJournal:
    def __init__(self, store: DocumentStore, logger: Logger) -> None:
        self._store = store
        self.log = logger

    async def append_history(
        self,
        *,
        user_id: str,
        username: str,
        previous_amount: int,
        new_amount: int,
        requested_amount: int,
        direction: ChipDirection,
        reason: str,
        staff_email: str,
        moment: datetime,
        tz: tzinfo,
    ) -> str:
        """Append one immutable history entry. Returns its id."""
        entry_id = await self._store.add(
            HISTORY_COLLECTION,
            {
                "userId": user_id,
                "username": username,
                "previousAmount": previous_amount,
                "newAmount": new_amount,
                "changeAmount": new_amount - previous_amount,
                "requestedAmount": requested_amount,
                "type": direction.value,
                "reason": reason,
                "staffEmail": staff_email,
                "timestamp": self._store.server_timestamp(),
                "date": date_key(moment, tz),
            },
        )
        self.log.debug(
            "Chip history appended",
            extra={"user_id": user_id, "history_id": entry_id},
        )
        return entry_id

    async def upsert_daily_summary(
        self,
        *,
        user_id: str,
        username: str,
        start_chips: int,
        end_chips: int,
        net_change: int,
        moment: datetime,
        tz: tzinfo,
        transactions: int = 1,
    ) -> Optional[str]:
        """
        Create the (user, day) summary on the first mutation of the day,
        otherwise accumulate into it. Counters use store-side increments so
        interleaved mutations on the same day are not lost.
        """
        day = date_key(moment, tz)
        existing = await self._store.query_from_server(
            DAILY_SUMMARY_COLLECTION,
            [Filter("userId", "==", user_id), Filter("date", "==", day)],
            limit=1,
        )

        if not existing:
            summary_id = await self._store.add(
                DAILY_SUMMARY_COLLECTION,
                {
                    "userId": user_id,
                    "username": username,
                    "date": day,
                    "startChips": start_chips,
                    "endChips": end_chips,
                    "netChange": net_change,
                    "transactions": transactions,
                    "createdAt": self._store.server_timestamp(),
                    "lastUpdated": self._store.server_timestamp(),
                },
            )
            self.log.debug(
                "Daily summary created",
                extra={"user_id": user_id, "date": day, "summary_id": summary_id},
            )
            return summary_id

        summary_id = existing[0].id
        await self._store.update(
            DAILY_SUMMARY_COLLECTION,
            summary_id,
            {
                "endChips": end_chips,
                "netChange": Increment(net_change),
                "transactions": Increment(transactions),
                "lastUpdated": self._store.server_timestamp(),
            },
        )
        self.log.debug(
            "Daily summary updated",
            extra={"user_id": user_id, "date": day, "summary_id": summary_id},
        )
        return summary_id
