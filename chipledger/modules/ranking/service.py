"""
RankingService: ranking recalculation, snapshot reads and auto-refresh.

Purpose
-------
Front the ranking aggregator and the snapshot store with the operations the
application calls:

- ``recalc_monthly`` / ``recalc_yearly``: recompute from a forced server
  read and overwrite the stored snapshot
- ``get_stored`` / ``get_computed``: snapshot lookup and live computation
- ``read``: snapshot read governed by a staleness threshold; a stale or
  missing snapshot is recomputed once before the read returns
- ``ensure_fresh_current``: the dashboard's check for the current month and
  year

Responsibilities
----------------
- Recompute the current month and year after every chip mutation, as a LOW
  priority background listener on ``ledger.chips_changed``
- Publish ``ranking.recalculation_failed`` and fall back to the last stored
  snapshot when an auto-recalculation fails

Error policy
------------
Invalid input returns ``False``/``None``. `RankingComputationError` and
`StoreError` propagate from ``recalc_*`` and ``get_*``; ``read`` absorbs them
into the failure event.

Configuration Keys
------------------
- ranking.snapshot_limit                             : int (default 50)
- ranking.default_limit                              : int (default 20)
- ranking.auto_recalc.interactive_threshold_seconds  : int (default 43200)
- ranking.auto_recalc.dashboard_threshold_seconds    : int (default 3600)
- ranking.auto_recalc.actor                          : str (default "system")
- ranking.recalculate_on_change                      : bool (default True)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from chipledger.core.cache.service import TieredReadCache
from chipledger.core.event.types import EventPayload, ListenerPriority
from chipledger.core.exceptions import StoreError
from chipledger.core.logging.logger import LogContext, get_logger
from chipledger.core.store.base import DocumentStore
from chipledger.domain.models.base import DomainValidationError
from chipledger.domain.models.ranking import (
    RankingResult,
    RankingSnapshot,
    RankingType,
    snapshot_key,
)
from chipledger.modules.ledger.service import CHIPS_CHANGED_EVENT
from chipledger.modules.ranking.aggregator import RankingAggregator
from chipledger.modules.ranking.policy import AutoRecalculationPolicy
from chipledger.modules.ranking.snapshot_store import RankingSnapshotStore
from chipledger.modules.shared.base_service import BaseService
from chipledger.modules.shared.exceptions import RankingComputationError, ValidationError
from chipledger.modules.shared.validators import (
    validate_limit,
    validate_month,
    validate_text,
    validate_year,
)

RECALCULATION_FAILED_EVENT = "ranking.recalculation_failed"
RECALCULATED_EVENT = "ranking.recalculated"
CHIPS_CHANGED_LISTENER_ID = "ranking.recalculate_on_chips_changed"

DEFAULT_SNAPSHOT_LIMIT = 50
DEFAULT_RESULT_LIMIT = 20
INTERACTIVE_THRESHOLD_SECONDS = 12 * 60 * 60
DASHBOARD_THRESHOLD_SECONDS = 60 * 60


def _is_monthly(ranking_type: Any) -> bool:
    try:
        return RankingType.parse(ranking_type) is RankingType.MONTHLY
    except DomainValidationError:
        return False


class RankingService(BaseService):
    def __init__(
        self,
        store: DocumentStore,
        cache: TieredReadCache,
        config_manager,
        event_bus,
        clock=None,
        aggregator: Optional[RankingAggregator] = None,
        snapshots: Optional[RankingSnapshotStore] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, get_logger(__name__), clock)
        self._aggregator = aggregator or RankingAggregator(cache, clock=self._clock)
        self._snapshots = snapshots or RankingSnapshotStore(store, clock=self._clock)

    # ========================================================================
    # EVENT WIRING
    # ========================================================================

    def register_listeners(self) -> Optional[str]:
        """Subscribe the post-mutation recalculation, unless disabled."""
        if not self.get_config("ranking.recalculate_on_change", True):
            self.log.info("Post-mutation ranking recalculation disabled")
            return None
        return self._events.subscribe(
            CHIPS_CHANGED_EVENT,
            self._on_chips_changed,
            priority=ListenerPriority.LOW,
            identifier=CHIPS_CHANGED_LISTENER_ID,
        )

    async def _on_chips_changed(self, payload: EventPayload) -> None:
        year = payload.get("year")
        month = payload.get("month")
        actor = payload.get("actor") or self._auto_actor()

        # Failures stay here; the mutation that triggered us already succeeded
        try:
            await self.recalc_monthly(year, month, actor)
        except Exception as exc:
            self.log_error("recalc_monthly_after_change", exc, year=year, month=month)
        try:
            await self.recalc_yearly(year, actor)
        except Exception as exc:
            self.log_error("recalc_yearly_after_change", exc, year=year)

    # ========================================================================
    # RECALCULATION
    # ========================================================================

    async def recalc_monthly(self, year: int, month: int, actor: str) -> bool:
        """
        Recompute and store one month's ranking.

        Returns False for invalid input or when there is nothing to rank.

        Raises
        ------
        RankingComputationError
            If the user fetch fails.
        StoreError
            If the snapshot write fails.
        """
        try:
            year = validate_year(year)
            month = validate_month(month)
            actor = validate_text(actor, "actor")
        except ValidationError as exc:
            self.log.info("Monthly recalculation rejected", extra={"error": str(exc)})
            return False
        return await self._recalculate(RankingType.MONTHLY, year, month, actor)

    async def recalc_yearly(self, year: int, actor: str) -> bool:
        """
        Recompute and store one year's ranking.

        Raises
        ------
        RankingComputationError
            If the user fetch fails.
        StoreError
            If the snapshot write fails.
        """
        try:
            year = validate_year(year)
            actor = validate_text(actor, "actor")
        except ValidationError as exc:
            self.log.info("Yearly recalculation rejected", extra={"error": str(exc)})
            return False
        return await self._recalculate(RankingType.YEARLY, year, None, actor)

    async def _recalculate(
        self, ranking_type: RankingType, year: int, month: Optional[int], actor: str
    ) -> bool:
        limit = self.get_config_int("ranking.snapshot_limit", DEFAULT_SNAPSHOT_LIMIT)
        key = snapshot_key(ranking_type, year, month)

        async with LogContext(actor=actor, operation="recalculate_ranking"):
            result = await self._compute(ranking_type, year, month, limit, force_refresh=True)
            if not result.entries:
                self.log.warning(
                    "Ranking has no entries, snapshot not stored",
                    extra={"snapshot_key": key},
                )
                return False

            await self._snapshots.store(ranking_type, year, month, result.entries, actor)
            self.log_operation(
                "recalculate_ranking",
                snapshot_key=key,
                entries=len(result.entries),
                updated_by=actor,
            )

        await self.emit_event(
            RECALCULATED_EVENT,
            {
                "type": ranking_type.value,
                "year": year,
                "month": month,
                "snapshot_key": key,
                "entries": len(result.entries),
                "updated_by": actor,
            },
        )
        return True

    async def _compute(
        self,
        ranking_type: RankingType,
        year: int,
        month: Optional[int],
        limit: int,
        force_refresh: bool,
    ) -> RankingResult:
        if ranking_type is RankingType.MONTHLY:
            return await self._aggregator.compute_monthly(year, month, limit, force_refresh)
        return await self._aggregator.compute_yearly(year, limit, force_refresh)

    # ========================================================================
    # READS
    # ========================================================================

    def _normalize(
        self, ranking_type: Any, year: Any, month: Any
    ) -> tuple[RankingType, int, Optional[int]]:
        """
        Raises
        ------
        ValidationError
            For an unknown type, a bad year or a monthly request without a
            valid month.
        """
        try:
            parsed = RankingType.parse(ranking_type)
        except DomainValidationError as exc:
            raise ValidationError("type", str(exc)) from exc
        year = validate_year(year)
        if parsed is RankingType.MONTHLY:
            return parsed, year, validate_month(month)
        return parsed, year, None

    async def get_stored(
        self, ranking_type: Any, year: int, month: Optional[int] = None
    ) -> Optional[RankingSnapshot]:
        try:
            parsed, year, month = self._normalize(ranking_type, year, month)
        except ValidationError as exc:
            self.log.info("Stored ranking request rejected", extra={"error": str(exc)})
            return None
        return await self._snapshots.retrieve(parsed, year, month)

    async def get_computed(
        self,
        ranking_type: Any,
        year: Optional[int] = None,
        month: Optional[int] = None,
        limit: Optional[int] = None,
        force_refresh: bool = False,
    ) -> Optional[RankingResult]:
        """
        Live ranking without touching the stored snapshot. ``year`` and
        ``month`` default to the current ledger period.
        """
        local_now = self.now().astimezone(self.ledger_timezone())
        if year is None:
            year = local_now.year
        if month is None and _is_monthly(ranking_type):
            month = local_now.month
        if limit is None:
            limit = self.get_config_int("ranking.default_limit", DEFAULT_RESULT_LIMIT)

        try:
            parsed, year, month = self._normalize(ranking_type, year, month)
            limit = validate_limit(limit)
        except ValidationError as exc:
            self.log.info("Computed ranking request rejected", extra={"error": str(exc)})
            return None
        return await self._compute(parsed, year, month, limit, force_refresh)

    async def read(
        self,
        ranking_type: Any,
        year: int,
        month: Optional[int],
        threshold_seconds: float,
    ) -> Optional[RankingSnapshot]:
        """
        Serve the stored snapshot, recomputing it first when it is missing or
        older than ``threshold_seconds``.

        A failed recomputation publishes ``ranking.recalculation_failed`` and
        returns the previous snapshot, which may be stale or None.
        """
        try:
            parsed, year, month = self._normalize(ranking_type, year, month)
        except ValidationError as exc:
            self.log.info("Ranking read rejected", extra={"error": str(exc)})
            return None

        policy = AutoRecalculationPolicy(threshold_seconds)
        snapshot = await self._snapshots.retrieve(parsed, year, month)
        if not policy.needs_recalculation(snapshot, self.now()):
            return snapshot

        key = snapshot_key(parsed, year, month)
        self.log.info(
            "Ranking snapshot stale, recalculating",
            extra={
                "snapshot_key": key,
                "threshold_seconds": threshold_seconds,
                "age_seconds": round(snapshot.age_seconds(self.now())) if snapshot else None,
            },
        )

        try:
            stored = await self._recalculate(parsed, year, month, self._auto_actor())
        except (RankingComputationError, StoreError) as exc:
            self.log_error("auto_recalculate", exc, snapshot_key=key)
            await self.emit_event(
                RECALCULATION_FAILED_EVENT,
                {
                    "type": parsed.value,
                    "year": year,
                    "month": month,
                    "snapshot_key": key,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "serving_stale": snapshot is not None,
                },
            )
            return snapshot

        if not stored:
            return snapshot
        return await self._snapshots.retrieve(parsed, year, month)

    async def read_interactive(
        self, ranking_type: Any, year: int, month: Optional[int] = None
    ) -> Optional[RankingSnapshot]:
        threshold = self.get_config_int(
            "ranking.auto_recalc.interactive_threshold_seconds", INTERACTIVE_THRESHOLD_SECONDS
        )
        return await self.read(ranking_type, year, month, threshold)

    async def ensure_fresh_current(self) -> Dict[str, Optional[RankingSnapshot]]:
        """Dashboard check: current month and current year in the ledger timezone."""
        threshold = self.get_config_int(
            "ranking.auto_recalc.dashboard_threshold_seconds", DASHBOARD_THRESHOLD_SECONDS
        )
        local_now = self.now().astimezone(self.ledger_timezone())
        return {
            RankingType.MONTHLY.value: await self.read(
                RankingType.MONTHLY, local_now.year, local_now.month, threshold
            ),
            RankingType.YEARLY.value: await self.read(
                RankingType.YEARLY, local_now.year, None, threshold
            ),
        }

    def _auto_actor(self) -> str:
        return str(self.get_config("ranking.auto_recalc.actor", "system") or "system")
