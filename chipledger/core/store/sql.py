"""
SQL-backed document store.

Purpose
-------
Persist ChipLedger documents in one relational table through
`DatabaseService`, so the ledger can run against PostgreSQL (or SQLite for
local runs and integration tests).

Responsibilities
----------------
- Map the `DocumentStore` contract onto the `documents` table
- Apply writes inside `DatabaseService.get_transaction()` with a row lock so
  `Increment` sentinels are atomic relative to the stored value
- Warm and invalidate the Redis persistent query cache when one is attached
- Translate SQLAlchemy failures into `StoreError`

Non-Responsibilities
--------------------
- Engine lifecycle (DatabaseService)
- Cache tier selection (TieredReadCache)

Notes
-----
Timestamps are stored inside the JSON body as UTC ISO-8601 strings and come
back as strings; the typed record boundary coerces them. Filtering and
ordering run in process over one collection, which is fine for a bounded
number of documents per collection.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from chipledger.core.database.models import DocumentRow
from chipledger.core.database.service import (
    DatabaseNotInitializedError,
    DatabaseService,
)
from chipledger.core.exceptions import CacheMissError, StoreError
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
from chipledger.core.store.query_cache import RedisQueryCache
from chipledger.core.time_utils import Clock, SystemClock

logger = get_logger(__name__)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return value


@contextmanager
def _store_errors(operation: str, target: str) -> Iterator[None]:
    try:
        yield
    except StoreError:
        raise
    except (SQLAlchemyError, DatabaseNotInitializedError) as exc:
        logger.error(
            "Document store operation failed",
            extra={"operation": operation, "target": target, "error": str(exc)},
            exc_info=True,
        )
        raise StoreError(operation, target, exc) from exc


class SqlDocumentStore(DocumentStore):
    """`DocumentStore` over the `documents` table."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        query_cache: Optional[RedisQueryCache] = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._query_cache = query_cache

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with _store_errors("get", f"{collection}/{doc_id}"):
            async with DatabaseService.get_session() as session:
                row = await session.get(DocumentRow, (collection, doc_id))
                if row is None:
                    return None
                return Document(id=row.doc_id, data=dict(row.data or {}))

    async def query_from_server(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with _store_errors("query", collection):
            async with DatabaseService.get_session() as session:
                result = await session.execute(
                    select(DocumentRow)
                    .where(DocumentRow.collection == collection)
                    .order_by(DocumentRow.created_at, DocumentRow.doc_id)
                )
                rows = result.scalars().all()
                documents = [
                    Document(id=row.doc_id, data=dict(row.data or {})) for row in rows
                ]

        results = run_query(documents, filters, order_by, limit)

        if self._query_cache is not None:
            signature = query_signature(collection, filters, order_by, limit)
            await self._query_cache.put(collection, signature, results)

        return results

    async def query_from_cache(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        if self._query_cache is None:
            raise CacheMissError(collection, reason="no persistent cache configured")
        signature = query_signature(collection, filters, order_by, limit)
        return await self._query_cache.get(collection, signature)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def _invalidate(self, collection: str) -> None:
        if self._query_cache is not None:
            await self._query_cache.invalidate(collection)

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        merge: bool = False,
    ) -> None:
        with _store_errors("set", f"{collection}/{doc_id}"):
            async with DatabaseService.get_transaction() as session:
                row = await session.get(
                    DocumentRow, (collection, doc_id), with_for_update=True
                )
                now = self._clock.now()
                if row is None:
                    session.add(
                        DocumentRow(
                            collection=collection,
                            doc_id=doc_id,
                            data=_encode(resolve_document(data, now)),
                        )
                    )
                elif merge:
                    row.data = _encode(merge_document(row.data or {}, data, now))
                else:
                    row.data = _encode(resolve_document(data, now))
        await self._invalidate(collection)

    async def update(
        self, collection: str, doc_id: str, partial: Mapping[str, Any]
    ) -> None:
        with _store_errors("update", f"{collection}/{doc_id}"):
            async with DatabaseService.get_transaction() as session:
                row = await session.get(
                    DocumentRow, (collection, doc_id), with_for_update=True
                )
                if row is None:
                    raise missing_document("update", collection, doc_id)
                updated: Dict[str, Any] = apply_partial(
                    row.data or {}, partial, self._clock.now()
                )
                row.data = _encode(updated)
        await self._invalidate(collection)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with _store_errors("add", collection):
            async with DatabaseService.get_transaction() as session:
                session.add(
                    DocumentRow(
                        collection=collection,
                        doc_id=doc_id,
                        data=_encode(resolve_document(data, self._clock.now())),
                    )
                )
        await self._invalidate(collection)
        return doc_id
