"""
Persisted ranking snapshots in the ``rankings`` collection.

Every store is a full overwrite of the snapshot document; repeated stores of
the same period are idempotent apart from ``updatedAt``/``updatedBy``.
Absence is reported as ``None``. `StoreError` propagates.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Union

from chipledger.core.logging.logger import get_logger
from chipledger.core.store.base import SERVER_TIMESTAMP, DocumentStore
from chipledger.core.time_utils import Clock
from chipledger.domain.models.ranking import (
    RANKINGS_COLLECTION,
    RankingEntry,
    RankingSnapshot,
    RankingType,
    snapshot_key,
)

logger = get_logger(__name__)

EntryLike = Union[RankingEntry, Mapping[str, Any]]


def _entry_dict(entry: EntryLike) -> Dict[str, Any]:
    if isinstance(entry, RankingEntry):
        return entry.to_dict()
    return RankingEntry.from_mapping(entry).to_dict()


class RankingSnapshotStore:
    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None) -> None:
        self._store = store
        self._clock = clock

    async def store(
        self,
        ranking_type: RankingType,
        year: int,
        month: Optional[int],
        entries: Iterable[EntryLike],
        updated_by: str,
    ) -> bool:
        """
        Overwrite the snapshot for one period.

        Raises
        ------
        DomainValidationError
            For a monthly snapshot without a valid month.
        StoreError
            If the write fails.
        """
        ranking_type = RankingType.parse(ranking_type)
        key = snapshot_key(ranking_type, year, month)

        document: Dict[str, Any] = {"type": ranking_type.value, "year": year}
        if ranking_type is RankingType.MONTHLY:
            document["month"] = month
        document["entries"] = [_entry_dict(entry) for entry in entries]
        document["updatedAt"] = SERVER_TIMESTAMP
        document["updatedBy"] = updated_by

        await self._store.set(RANKINGS_COLLECTION, key, document)
        logger.info(
            "Ranking snapshot stored",
            extra={
                "snapshot_key": key,
                "entries": len(document["entries"]),
                "updated_by": updated_by,
            },
        )
        return True

    async def retrieve(
        self, ranking_type: RankingType, year: int, month: Optional[int] = None
    ) -> Optional[RankingSnapshot]:
        ranking_type = RankingType.parse(ranking_type)
        key = snapshot_key(ranking_type, year, month)
        document = await self._store.get(RANKINGS_COLLECTION, key)
        if document is None:
            logger.debug("Ranking snapshot not found", extra={"snapshot_key": key})
            return None
        return RankingSnapshot.from_document(document, clock=self._clock)
