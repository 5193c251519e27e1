"""
Tiered read cache for ChipLedger (memory -> persistent cache -> server).

Purpose
-------
Serve collection queries from the cheapest tier that is still fresh, and tell
the caller which tier answered. Ledger reads, user listings and ranking
recomputation all go through it.

Tier selection
--------------
1. Memory: not forced, and the memory slot for ``cache_key`` is younger
   than ``expiry``. Source ``memory``.
2. Forced refresh: straight to the server. Source ``server``.
3. The key's last server fetch is younger than ``expiry``: try the store's
   persistent cache. Source ``cache``; a `CacheMissError` falls through to
   the server.
4. Otherwise the server. Source ``server``.

Server reads refresh the memory slot, the last-fetch timestamp and the status
record. Persistent-cache reads refresh the memory slot and the status record
but not the last-fetch timestamp, so the persistent tier can never extend its
own lifetime. Memory hits only update the status record.

Non-Responsibilities
--------------------
- Cross-process coordination. Each process owns its own memory tier; the
  worst outcome of two racing fetches for one key is a redundant server read.
- Store error handling. `StoreError` from a server read propagates.

Configuration Keys
------------------
- cache.expiry_seconds : int (default 28800, eight hours)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from chipledger.core.config.manager import ConfigManager
from chipledger.core.exceptions import CacheMissError
from chipledger.core.logging.logger import get_logger
from chipledger.core.store.base import Document, DocumentStore, Filter, OrderBy
from chipledger.core.time_utils import Clock, SystemClock

logger = get_logger(__name__)

DEFAULT_EXPIRY_SECONDS = 8 * 60 * 60


class CacheSource(str, Enum):
    MEMORY = "memory"
    CACHE = "cache"
    SERVER = "server"


@dataclass(frozen=True)
class CacheResult:
    documents: List[Document]
    source: CacheSource


@dataclass(frozen=True)
class CacheStatus:
    source: CacheSource
    timestamp: datetime
    age_seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "timestamp": self.timestamp.isoformat(),
            "age_seconds": self.age_seconds,
        }


@dataclass
class _MemoryEntry:
    documents: List[Document]
    timestamp: datetime


class TieredReadCache:
    """
    Process-wide read cache with an injected store and clock.

    Mutable state is only touched between awaits, so no lock is needed on a
    single event loop.
    """

    def __init__(
        self,
        store: DocumentStore,
        config_manager: Optional[type[ConfigManager]] = None,
        clock: Optional[Clock] = None,
        expiry_seconds: Optional[float] = None,
    ) -> None:
        self._store = store
        self._config_manager = config_manager or ConfigManager
        self._clock = clock or SystemClock()
        self._expiry_override = expiry_seconds

        self._memory: Dict[str, _MemoryEntry] = {}
        self._last_fetch: Dict[str, datetime] = {}
        self._status: Dict[str, tuple[CacheSource, datetime]] = {}

        self._stats: Dict[str, int] = {
            "memory_hits": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "server_fetches": 0,
        }

    @property
    def expiry(self) -> float:
        """Default freshness window in seconds."""
        if self._expiry_override is not None:
            return float(self._expiry_override)
        return float(
            self._config_manager.get("cache.expiry_seconds", DEFAULT_EXPIRY_SECONDS)
        )

    def _age(self, moment: datetime, now: datetime) -> float:
        return (now - moment).total_seconds()

    # ========================================================================
    # READ
    # ========================================================================

    async def get(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        cache_key: str = "",
        expiry: Optional[float] = None,
        force_refresh: bool = False,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> CacheResult:
        if not cache_key:
            raise ValueError("cache_key must be a non-empty string")

        window = self.expiry if expiry is None else float(expiry)
        now = self._clock.now()

        entry = self._memory.get(cache_key)
        if not force_refresh and entry is not None and self._age(entry.timestamp, now) < window:
            self._status[cache_key] = (CacheSource.MEMORY, entry.timestamp)
            self._stats["memory_hits"] += 1
            logger.debug(
                "Cache hit (memory)",
                extra={
                    "cache_key": cache_key,
                    "remaining_seconds": round(
                        window - self._age(entry.timestamp, now)
                    ),
                },
            )
            return CacheResult(list(entry.documents), CacheSource.MEMORY)

        last_fetch = self._last_fetch.get(cache_key)
        persistent_valid = last_fetch is not None and self._age(last_fetch, now) < window

        if not force_refresh and persistent_valid:
            try:
                documents = await self._store.query_from_cache(
                    collection, filters, order_by, limit
                )
            except CacheMissError as exc:
                self._stats["cache_misses"] += 1
                logger.debug(
                    "Persistent cache miss, falling back to server",
                    extra={"cache_key": cache_key, "reason": exc.reason},
                )
            else:
                self._memory[cache_key] = _MemoryEntry(documents, now)
                self._status[cache_key] = (CacheSource.CACHE, now)
                self._stats["cache_hits"] += 1
                logger.debug(
                    "Cache hit (persistent)",
                    extra={"cache_key": cache_key, "collection": collection},
                )
                return CacheResult(list(documents), CacheSource.CACHE)

        documents = await self._store.query_from_server(
            collection, filters, order_by, limit
        )
        self._last_fetch[cache_key] = now
        self._memory[cache_key] = _MemoryEntry(documents, now)
        self._status[cache_key] = (CacheSource.SERVER, now)
        self._stats["server_fetches"] += 1
        logger.debug(
            "Fetched from server",
            extra={
                "cache_key": cache_key,
                "collection": collection,
                "force_refresh": force_refresh,
                "document_count": len(documents),
            },
        )
        return CacheResult(list(documents), CacheSource.SERVER)

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def update_memory(self, cache_key: str, documents: List[Document]) -> None:
        """Replace a memory slot and treat it as freshly fetched."""
        now = self._clock.now()
        self._memory[cache_key] = _MemoryEntry(list(documents), now)
        self._last_fetch[cache_key] = now
        self._status[cache_key] = (CacheSource.MEMORY, now)
        logger.debug("Memory cache updated", extra={"cache_key": cache_key})

    def evict_memory(self, cache_key: Optional[str] = None) -> None:
        """
        Drop memory slots but keep last-fetch timestamps, so the next read of
        a still-valid key is answered by the persistent tier.
        """
        if cache_key is not None:
            self._memory.pop(cache_key, None)
        else:
            self._memory.clear()
        logger.debug("Memory tier evicted", extra={"cache_key": cache_key or "*"})

    def clear(self, cache_key: Optional[str] = None) -> None:
        """Drop one key, or every key when ``cache_key`` is None."""
        if cache_key is not None:
            self._memory.pop(cache_key, None)
            self._last_fetch.pop(cache_key, None)
            self._status.pop(cache_key, None)
            logger.debug("Cache cleared", extra={"cache_key": cache_key})
            return

        count = len(set(self._memory) | set(self._last_fetch) | set(self._status))
        self._memory.clear()
        self._last_fetch.clear()
        self._status.clear()
        logger.info("All cache entries cleared", extra={"cleared_keys": count})

    # ========================================================================
    # INTROSPECTION
    # ========================================================================

    def get_status(self) -> Dict[str, CacheStatus]:
        now = self._clock.now()
        return {
            key: CacheStatus(
                source=source,
                timestamp=timestamp,
                age_seconds=round(self._age(timestamp, now)),
            )
            for key, (source, timestamp) in self._status.items()
        }

    def get_stats(self) -> Dict[str, Any]:
        lookups = sum(self._stats.values()) - self._stats["cache_misses"]
        hits = self._stats["memory_hits"] + self._stats["cache_hits"]
        return {
            **self._stats,
            "keys": len(self._memory),
            "hit_rate": round(hits / lookups * 100, 2) if lookups else 0.0,
        }
