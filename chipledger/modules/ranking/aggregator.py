"""
Ranking aggregation over the users collection.

Pure read and compute: users come from the tiered read cache (the shared
``all_users`` slot, fetched unordered and sorted by username here so users
without a stored username still rank), totals come from each user's
``monthlyTotals`` map. Users with a zero or negative total are kept.
"""

from __future__ import annotations

from typing import Callable, List, Optional

from chipledger.core.cache.service import TieredReadCache
from chipledger.core.logging.logger import get_logger
from chipledger.core.time_utils import Clock, SystemClock, format_period
from chipledger.domain.models.ranking import RankingEntry, RankingResult, RankingType
from chipledger.domain.models.user import USERS_COLLECTION, UserRecord, sorted_by_username
from chipledger.modules.ledger.service import ALL_USERS_CACHE_KEY
from chipledger.modules.shared.exceptions import RankingComputationError

logger = get_logger(__name__)


def rank_users(
    users: List[UserRecord],
    total_of: Callable[[UserRecord], int],
    limit: int,
) -> List[RankingEntry]:
    """
    Sort descending by total and assign 1-based ranks by position.

    ``sorted`` is stable, so ties keep the fetch order.
    """
    ordered = sorted(users, key=total_of, reverse=True)
    return [
        RankingEntry(
            rank=index + 1,
            user_id=user.id,
            username=user.username,
            display_name=user.label,
            total=total_of(user),
        )
        for index, user in enumerate(ordered[:limit])
    ]


class RankingAggregator:
    def __init__(self, cache: TieredReadCache, clock: Optional[Clock] = None) -> None:
        self._cache = cache
        self._clock = clock or SystemClock()

    async def _fetch_users(self, ranking_type: RankingType, force_refresh: bool):
        try:
            result = await self._cache.get(
                USERS_COLLECTION, (), ALL_USERS_CACHE_KEY, force_refresh=force_refresh
            )
        except Exception as exc:
            logger.error(
                "Ranking user fetch failed",
                extra={"ranking_type": ranking_type.value, "force_refresh": force_refresh},
                exc_info=True,
            )
            raise RankingComputationError(ranking_type.value, exc) from exc

        users = sorted_by_username(
            UserRecord.from_document(doc, clock=self._clock) for doc in result.documents
        )
        return users, result.source.value

    async def compute_monthly(
        self, year: int, month: int, limit: int, force_refresh: bool = False
    ) -> RankingResult:
        """
        Raises
        ------
        RankingComputationError
            If the user fetch fails.
        """
        users, source = await self._fetch_users(RankingType.MONTHLY, force_refresh)
        period = format_period(year, month)
        entries = rank_users(users, lambda user: user.monthly_total(period), limit)
        logger.debug(
            "Computed monthly ranking",
            extra={"period": period, "users": len(users), "entries": len(entries), "source": source},
        )
        return RankingResult(updated_at=self._clock.now(), entries=entries, source=source)

    async def compute_yearly(
        self, year: int, limit: int, force_refresh: bool = False
    ) -> RankingResult:
        """
        Raises
        ------
        RankingComputationError
            If the user fetch fails.
        """
        users, source = await self._fetch_users(RankingType.YEARLY, force_refresh)
        entries = rank_users(users, lambda user: user.yearly_total(year), limit)
        logger.debug(
            "Computed yearly ranking",
            extra={"year": year, "users": len(users), "entries": len(entries), "source": source},
        )
        return RankingResult(updated_at=self._clock.now(), entries=entries, source=source)
