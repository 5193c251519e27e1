"""
LedgerService: chip balance mutations and ledger reads.

Purpose
-------
Apply a signed chip delta to one user and keep every derived figure in step:
lifetime earnings/losses, the per-month running total, the history trail,
the daily summary, the read caches and the stored rankings.

Mutation sequence (``apply_delta``)
-----------------------------------
1. Read the user; unknown user -> ``False``.
2. New balance = current +/- amount, clamped at zero.
3. Lifetime ``totalEarnings`` / ``totalLosses`` grow by the requested amount.
4. ``monthlyTotals[period]`` moves by the signed requested amount through a
   store-side increment, never a client read-modify-write.
5. Persist the user fields with a server timestamp.
6. Append the history entry.
7. Upsert the daily summary.
8. Refresh caches: drop ``user_{username}``, ``history_{id}`` and
   ``summary_{id}``; patch the ``all_users`` memory slot when it was not just
   fetched from the server.
9. Publish ``ledger.chips_changed``; the ranking module recomputes the
   current month and year in the background.

Steps 1-5 decide the result. Steps 6-9 are best-effort: failures are logged
with the traceback and never turn a successful balance change into ``False``.
Validation failures return ``False``; store I/O failures in steps 1-5 raise
`StoreError`.

Configuration Keys
------------------
- ledger.timezone             : str (default "UTC")
- ledger.history_limit        : int (default 10)
- ledger.summary_days         : int (default 7)
- ledger.recent_changes_limit : int (default 10)
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

from chipledger.core.cache.service import CacheSource, TieredReadCache
from chipledger.core.logging.logger import LogContext, get_logger
from chipledger.core.store.base import (
    SERVER_TIMESTAMP,
    Document,
    DocumentStore,
    Filter,
    Increment,
    OrderBy,
)
from chipledger.core.time_utils import period_key
from chipledger.domain.models.base import DomainValidationError
from chipledger.domain.models.ledger import (
    DAILY_SUMMARY_COLLECTION,
    HISTORY_COLLECTION,
    ChipDirection,
    ChipHistoryEntry,
    DailySummary,
)
from chipledger.domain.models.user import USERS_COLLECTION, UserRecord
from chipledger.modules.ledger.journal import LedgerJournal
from chipledger.modules.shared.base_service import BaseService
from chipledger.modules.shared.exceptions import NotFoundError, ValidationError
from chipledger.modules.shared.validators import (
    validate_amount,
    validate_identifier,
    validate_limit,
    validate_text,
)

CHIPS_CHANGED_EVENT = "ledger.chips_changed"
ALL_USERS_CACHE_KEY = "all_users"


def user_cache_key(username: str) -> str:
    return f"user_{username}"


def history_cache_key(user_id: str) -> str:
    return f"history_{user_id}"


def summary_cache_key(user_id: str) -> str:
    return f"summary_{user_id}"


class LedgerService(BaseService):
    def __init__(
        self,
        store: DocumentStore,
        cache: TieredReadCache,
        config_manager,
        event_bus,
        clock=None,
        journal: Optional[LedgerJournal] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, get_logger(__name__), clock)
        self._store = store
        self._cache = cache
        self._journal = journal or LedgerJournal(store, self.log)

    # ========================================================================
    # MUTATION
    # ========================================================================

    async def apply_delta(
        self,
        user_id: str,
        amount: int,
        direction: Any,
        reason: str,
        actor: str,
    ) -> bool:
        """
        Apply ``amount`` to the user's balance in ``direction``.

        Returns ``False`` for invalid input or an unknown user.

        Raises
        ------
        StoreError
            If reading or writing the user record fails.
        """
        try:
            user_id = validate_identifier(user_id, "user_id")
            amount = validate_amount(amount)
            reason = validate_text(reason, "reason")
            actor = validate_text(actor, "actor")
            chip_direction = ChipDirection.parse(direction)
        except (ValidationError, DomainValidationError) as exc:
            self.log.info(
                "Chip mutation rejected",
                extra={"user_id": user_id, "reason_code": "validation", "error": str(exc)},
            )
            return False

        async with LogContext(actor=actor, user_id=user_id, operation="apply_delta"):
            try:
                document = await self._load_user_document(user_id)
            except NotFoundError as exc:
                self.log.warning("Chip mutation for unknown user", extra=exc.details)
                return False

            user = UserRecord.from_document(document, clock=self._clock)
            if not isinstance(document.data.get("username"), str) or not document.data[
                "username"
            ].strip():
                self.log.warning(
                    "Stored user has no valid username, using fallback",
                    extra={"user_id": user_id, "username": user.username},
                )

            moment = self.now()
            tz = self.ledger_timezone()
            period = period_key(moment, tz)
            signed = chip_direction.sign * amount
            new_chips = chip_direction.apply(user.chips, amount)

            update: Dict[str, Any] = {
                "chips": new_chips,
                "lastUpdated": SERVER_TIMESTAMP,
                f"monthlyTotals.{period}": Increment(signed),
            }
            if chip_direction is ChipDirection.ADD:
                update["totalEarnings"] = Increment(amount)
            else:
                update["totalLosses"] = Increment(amount)

            await self._store.update(USERS_COLLECTION, user_id, update)

            self.log_operation(
                "apply_delta",
                user_id=user_id,
                direction=chip_direction.value,
                requested_amount=amount,
                previous_chips=user.chips,
                new_chips=new_chips,
                period=period,
                clamped=new_chips != user.chips + signed,
            )

            await self._run_secondary_effects(
                user=user,
                raw=document,
                new_chips=new_chips,
                signed=signed,
                amount=amount,
                direction=chip_direction,
                reason=reason,
                actor=actor,
                moment=moment,
                period=period,
            )

        return True

    async def _load_user_document(self, user_id: str) -> Document:
        document = await self._store.get(USERS_COLLECTION, user_id)
        if document is None:
            raise NotFoundError("User", user_id)
        return document

    async def _run_secondary_effects(
        self,
        *,
        user: UserRecord,
        raw: Document,
        new_chips: int,
        signed: int,
        amount: int,
        direction: ChipDirection,
        reason: str,
        actor: str,
        moment: datetime,
        period: str,
    ) -> None:
        tz = self.ledger_timezone()

        try:
            await self._journal.append_history(
                user_id=user.id,
                username=user.username,
                previous_amount=user.chips,
                new_amount=new_chips,
                requested_amount=signed,
                direction=direction,
                reason=reason,
                staff_email=actor,
                moment=moment,
                tz=tz,
            )
        except Exception as exc:
            self.log_error("append_history", exc, user_id=user.id)

        try:
            await self._journal.upsert_daily_summary(
                user_id=user.id,
                username=user.username,
                start_chips=user.chips,
                end_chips=new_chips,
                net_change=signed,
                moment=moment,
                tz=tz,
            )
        except Exception as exc:
            self.log_error("upsert_daily_summary", exc, user_id=user.id)

        try:
            await self._refresh_caches(
                user=user,
                raw=raw,
                new_chips=new_chips,
                signed=signed,
                amount=amount,
                direction=direction,
                moment=moment,
                period=period,
            )
        except Exception as exc:
            self.log_error("refresh_caches", exc, user_id=user.id)

        local = moment.astimezone(tz)
        try:
            await self.emit_event(
                CHIPS_CHANGED_EVENT,
                {
                    "user_id": user.id,
                    "username": user.username,
                    "previous_amount": user.chips,
                    "new_amount": new_chips,
                    "requested_amount": signed,
                    "direction": direction.value,
                    "actor": actor,
                    "period": period,
                    "year": local.year,
                    "month": local.month,
                    "occurred_at": moment.isoformat(),
                },
            )
        except Exception as exc:
            self.log_error("publish_chips_changed", exc, user_id=user.id)

    async def _refresh_caches(
        self,
        *,
        user: UserRecord,
        raw: Document,
        new_chips: int,
        signed: int,
        amount: int,
        direction: ChipDirection,
        moment: datetime,
        period: str,
    ) -> None:
        self._cache.clear(user_cache_key(user.username))
        self._cache.clear(history_cache_key(user.id))
        self._cache.clear(summary_cache_key(user.id))

        result = await self._cache.get(USERS_COLLECTION, (), ALL_USERS_CACHE_KEY)
        if result.source is CacheSource.SERVER:
            # Fetched after the write, already current
            return

        cached = next((doc for doc in result.documents if doc.id == user.id), None)
        if cached is None or not UserRecord.from_document(cached).same_balances(user, period):
            # Only the state this mutation read may be patched
            self._cache.clear(ALL_USERS_CACHE_KEY)
            self.log.debug(
                "Dropped all-users cache after mutation",
                extra={"user_id": user.id, "source": result.source.value},
            )
            return

        patched: List[Document] = []
        for doc in result.documents:
            if doc is not cached:
                patched.append(doc)
                continue
            data = copy.deepcopy(doc.data)
            data["chips"] = new_chips
            if direction is ChipDirection.ADD:
                data["totalEarnings"] = user.total_earnings + amount
            else:
                data["totalLosses"] = user.total_losses + amount
            data["lastUpdated"] = moment
            totals = data.get("monthlyTotals")
            totals = dict(totals) if isinstance(totals, dict) else {}
            previous = totals.get(period, 0)
            totals[period] = (previous if isinstance(previous, int) else 0) + signed
            data["monthlyTotals"] = totals
            patched.append(Document(id=doc.id, data=data))

        self._cache.update_memory(ALL_USERS_CACHE_KEY, patched)
        self.log.debug(
            "Patched all-users cache after mutation",
            extra={"user_id": user.id, "source": result.source.value},
        )

    # ========================================================================
    # READS
    # ========================================================================

    async def get_chip_history(
        self,
        user_id: str,
        limit: Optional[int] = None,
        force_refresh: bool = False,
    ) -> List[ChipHistoryEntry]:
        """Newest first. Invalid input yields an empty list."""
        if limit is None:
            limit = self.get_config_int("ledger.history_limit", 10)
        try:
            user_id = validate_identifier(user_id, "user_id")
            limit = validate_limit(limit)
        except ValidationError as exc:
            self.log.info("Chip history request rejected", extra={"error": str(exc)})
            return []

        result = await self._cache.get(
            HISTORY_COLLECTION,
            [Filter("userId", "==", user_id)],
            history_cache_key(user_id),
            force_refresh=force_refresh,
        )
        entries = [
            ChipHistoryEntry.from_document(doc, clock=self._clock)
            for doc in result.documents
        ]
        entries.sort(key=lambda entry: entry.timestamp, reverse=True)
        return entries[:limit]

    async def get_daily_summaries(
        self,
        user_id: str,
        days: Optional[int] = None,
        force_refresh: bool = False,
    ) -> List[DailySummary]:
        """Newest date first. Invalid input yields an empty list."""
        if days is None:
            days = self.get_config_int("ledger.summary_days", 7)
        try:
            user_id = validate_identifier(user_id, "user_id")
            days = validate_limit(days, "days")
        except ValidationError as exc:
            self.log.info("Daily summary request rejected", extra={"error": str(exc)})
            return []

        result = await self._cache.get(
            DAILY_SUMMARY_COLLECTION,
            [Filter("userId", "==", user_id)],
            summary_cache_key(user_id),
            force_refresh=force_refresh,
        )
        summaries = [
            DailySummary.from_document(doc, clock=self._clock) for doc in result.documents
        ]
        summaries.sort(key=lambda summary: summary.date, reverse=True)
        return summaries[:days]

    async def get_recent_changes(self, limit: Optional[int] = None) -> List[ChipHistoryEntry]:
        """Latest history entries across all users, always from the server."""
        if limit is None:
            limit = self.get_config_int("ledger.recent_changes_limit", 10)
        try:
            limit = validate_limit(limit)
        except ValidationError as exc:
            self.log.info("Recent changes request rejected", extra={"error": str(exc)})
            return []

        documents = await self._store.query_from_server(
            HISTORY_COLLECTION,
            order_by=OrderBy("timestamp", descending=True),
            limit=limit,
        )
        return [ChipHistoryEntry.from_document(doc, clock=self._clock) for doc in documents]
