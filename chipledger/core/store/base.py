"""
Document store contract for ChipLedger.

Purpose
-------
Define the small read/write/query interface the ledger and ranking layers
consume, independent of the backend that implements it.

Responsibilities
----------------
- `DocumentStore` abstract base class (get / query / set / update / add /
  increment / server_timestamp, plus the three query tiers).
- Query primitives: `Filter`, `OrderBy`.
- Write sentinels: `SERVER_TIMESTAMP` (resolved to the store's clock at write
  time) and `Increment(delta)` (atomic relative update of a numeric field).
- Backend-neutral helpers for dotted field paths, sentinel resolution and
  in-process query evaluation.

Query tiers
-----------
- `query_from_server`: authoritative read; refreshes the persistent cache.
- `query_from_cache`: served from the persistent local cache only; raises
  `CacheMissError` when it cannot answer.
- `query`: tier-agnostic read (backends treat it as a server read).

Error model
-----------
Every I/O failure surfaces as `StoreError(operation, target)`. Absence is not
an error: `get` returns None.
"""

from __future__ import annotations

import copy
import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from chipledger.core.exceptions import StoreError


# ============================================================================
# Sentinels
# ============================================================================


class _ServerTimestamp:
    """Marker replaced by the store's current time when a write is applied."""

    _instance: Optional["_ServerTimestamp"] = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomic numeric increment applied against the stored value."""

    delta: int


# ============================================================================
# Query primitives
# ============================================================================

_OPERATORS = ("==", "!=", "<", "<=", ">", ">=")


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator '{self.op}'")

    def matches(self, data: Mapping[str, Any]) -> bool:
        found, current = get_path(data, self.field)
        if not found:
            return False
        left, right = _comparable(current), _comparable(self.value)
        try:
            if self.op == "==":
                return left == right
            if self.op == "!=":
                return left != right
            if self.op == "<":
                return left < right
            if self.op == "<=":
                return left <= right
            if self.op == ">":
                return left > right
            return left >= right
        except TypeError:
            return False


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Document:
    """A stored record: its id plus an untyped string-keyed map."""

    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        found, value = get_path(self.data, key)
        return value if found else default


# ============================================================================
# Helpers
# ============================================================================


def get_path(data: Mapping[str, Any], path: str) -> Tuple[bool, Any]:
    """Resolve a dotted path. Returns ``(found, value)``."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return False, None
        current = current[part]
    return True, current


def _set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def _resolve(value: Any, existing: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Increment):
        base = existing if isinstance(existing, (int, float)) and not isinstance(existing, bool) else 0
        return base + value.delta
    if isinstance(value, dict):
        existing_map = existing if isinstance(existing, dict) else {}
        return {k: _resolve(v, existing_map.get(k), now) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v, None, now) for v in value]
    return copy.deepcopy(value)


def resolve_document(data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    """Resolve sentinels in a full document written without merge."""
    return {key: _resolve(value, None, now) for key, value in data.items()}


def merge_document(
    existing: Mapping[str, Any], data: Mapping[str, Any], now: datetime
) -> Dict[str, Any]:
    """Deep-merge ``data`` into a copy of ``existing`` (``set(merge=True)``)."""
    merged = copy.deepcopy(dict(existing))
    for key, value in data.items():
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[key] = merge_document(current, value, now)
        else:
            merged[key] = _resolve(value, current, now)
    return merged


def apply_partial(
    existing: Mapping[str, Any], partial: Mapping[str, Any], now: datetime
) -> Dict[str, Any]:
    """Apply an ``update`` payload whose keys may be dotted paths."""
    updated = copy.deepcopy(dict(existing))
    for path, value in partial.items():
        _, current = get_path(updated, path)
        _set_path(updated, path, _resolve(value, current, now))
    return updated


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value


def _sort_key(value: Any) -> Tuple[int, Any]:
    value = _comparable(value)
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, json.dumps(value, sort_keys=True, default=str))


def run_query(
    documents: Iterable[Document],
    filters: Sequence[Filter] = (),
    order_by: Optional[OrderBy] = None,
    limit: Optional[int] = None,
) -> List[Document]:
    """
    Evaluate a query in process.

    Documents missing the ``order_by`` field are excluded, matching the
    behavior of hosted document databases. Sorting is stable, so ties keep
    their insertion order.
    """
    results = [doc for doc in documents if all(f.matches(doc.data) for f in filters)]

    if order_by is not None:
        results = [doc for doc in results if get_path(doc.data, order_by.field)[0]]
        results.sort(
            key=lambda doc: _sort_key(get_path(doc.data, order_by.field)[1]),
            reverse=order_by.descending,
        )

    if limit is not None:
        results = results[: max(0, limit)]

    return results


def query_signature(
    collection: str,
    filters: Sequence[Filter] = (),
    order_by: Optional[OrderBy] = None,
    limit: Optional[int] = None,
) -> str:
    """Stable hash identifying a query, used as a persistent cache key."""
    payload = {
        "collection": collection,
        "filters": [[f.field, f.op, _comparable(f.value)] for f in filters],
        "order_by": [order_by.field, order_by.descending] if order_by else None,
        "limit": limit,
    }
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


# ============================================================================
# Contract
# ============================================================================


class DocumentStore(ABC):
    """Async document store consumed by the ledger and ranking layers."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def query_from_server(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    async def query_from_cache(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        return await self.query_from_server(collection, filters, order_by, limit)

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        merge: bool = False,
    ) -> None:
        ...

    @abstractmethod
    async def update(
        self, collection: str, doc_id: str, partial: Mapping[str, Any]
    ) -> None:
        ...

    @abstractmethod
    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        ...

    async def increment(
        self, collection: str, doc_id: str, field_path: str, delta: int
    ) -> None:
        await self.update(collection, doc_id, {field_path: Increment(delta)})

    def server_timestamp(self) -> _ServerTimestamp:
        return SERVER_TIMESTAMP

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


def missing_document(operation: str, collection: str, doc_id: str) -> StoreError:
    return StoreError(operation, f"{collection}/{doc_id}", reason="document not found")
