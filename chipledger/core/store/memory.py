"""
In-process document store.

Backs local runs and the unit test suite. Documents live in insertion-ordered
dicts per collection; every read returns deep copies so callers can never
mutate stored state by accident.

The persistent cache tier is emulated with per-query result snapshots: a
server query records its result, `query_from_cache` replays it, and any write
to a collection drops that collection's snapshots.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from chipledger.core.exceptions import CacheMissError
from chipledger.core.logging.logger import get_logger
from chipledger.core.store.base import (
    Document,
    DocumentStore,
    Filter,
    OrderBy,
    apply_partial,
    merge_document,
    missing_document,
    query_signature,
    resolve_document,
    run_query,
)
from chipledger.core.time_utils import Clock, SystemClock

logger = get_logger(__name__)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._snapshots: Dict[str, Tuple[str, List[Document]]] = {}
        # Serializes read-modify-write so increments stay atomic across awaits
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return Document(id=doc_id, data=copy.deepcopy(data))

    def _all(self, collection: str) -> List[Document]:
        return [
            Document(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
        ]

    async def query_from_server(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        results = run_query(self._all(collection), filters, order_by, limit)
        signature = query_signature(collection, filters, order_by, limit)
        self._snapshots[signature] = (collection, copy.deepcopy(results))
        return results

    async def query_from_cache(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        signature = query_signature(collection, filters, order_by, limit)
        snapshot = self._snapshots.get(signature)
        if snapshot is None:
            raise CacheMissError(collection)
        return copy.deepcopy(snapshot[1])

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def _invalidate_snapshots(self, collection: str) -> None:
        stale = [sig for sig, (coll, _) in self._snapshots.items() if coll == collection]
        for sig in stale:
            del self._snapshots[sig]

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        merge: bool = False,
    ) -> None:
        async with self._write_lock:
            docs = self._collections.setdefault(collection, {})
            now = self._clock.now()
            if merge and doc_id in docs:
                docs[doc_id] = merge_document(docs[doc_id], data, now)
            else:
                docs[doc_id] = resolve_document(data, now)
            self._invalidate_snapshots(collection)

    async def update(
        self, collection: str, doc_id: str, partial: Mapping[str, Any]
    ) -> None:
        async with self._write_lock:
            docs = self._collections.get(collection, {})
            if doc_id not in docs:
                raise missing_document("update", collection, doc_id)
            docs[doc_id] = apply_partial(docs[doc_id], partial, self._clock.now())
            self._invalidate_snapshots(collection)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        await self.set(collection, doc_id, data)
        return doc_id

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    def cached_query_count(self) -> int:
        return len(self._snapshots)
