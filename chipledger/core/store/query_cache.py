"""
Redis-backed persistent query cache for the SQL document store.

Every server query writes its result set here; `query_from_cache` replays it.
Invalidation is generational: each collection owns a counter key, snapshot
keys embed the counter value, and a write bumps the counter so older
snapshots are never read again and simply expire.

Key layout
----------
- ``{prefix}:{collection}:gen``                       -> int counter
- ``{prefix}:{collection}:{generation}:{signature}``  -> JSON result set
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from chipledger.core.config.manager import ConfigManager
from chipledger.core.exceptions import CacheMissError, RedisConnectionError
from chipledger.core.logging.logger import get_logger
from chipledger.core.redis.service import RedisService
from chipledger.core.store.base import Document

logger = get_logger(__name__)


class RedisQueryCache:
    def __init__(
        self,
        prefix: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._prefix = prefix or ConfigManager.get(
            "cache.persistent.key_prefix", "chipledger:query"
        )
        self._ttl_seconds = int(
            ttl_seconds
            if ttl_seconds is not None
            else ConfigManager.get("cache.expiry_seconds", 28800)
        )

    def _generation_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:gen"

    async def _generation(self, collection: str) -> int:
        raw = await RedisService.get(self._generation_key(collection))
        return int(raw) if raw is not None else 0

    async def get(self, collection: str, signature: str) -> List[Document]:
        """
        Replay a cached result set.

        Raises
        ------
        CacheMissError
            When nothing is cached for the query or Redis is unavailable.
        """
        try:
            generation = await self._generation(collection)
            payload = await RedisService.get_json(
                f"{self._prefix}:{collection}:{generation}:{signature}"
            )
        except RedisConnectionError as exc:
            raise CacheMissError(collection, reason="persistent cache unavailable") from exc

        if not isinstance(payload, list):
            raise CacheMissError(collection)

        return [Document(id=item["id"], data=item["data"]) for item in payload]

    async def put(
        self, collection: str, signature: str, documents: List[Document]
    ) -> None:
        payload: List[Dict[str, Any]] = [
            {"id": doc.id, "data": doc.data} for doc in documents
        ]
        try:
            generation = await self._generation(collection)
            await RedisService.set_json(
                f"{self._prefix}:{collection}:{generation}:{signature}",
                payload,
                ttl_seconds=self._ttl_seconds,
            )
        except RedisConnectionError as exc:
            # Server reads must not fail because the cache could not be warmed
            logger.warning(
                "Failed to write persistent query cache",
                extra={"collection": collection, "error": str(exc)},
            )

    async def invalidate(self, collection: str) -> None:
        try:
            await RedisService.incr(self._generation_key(collection))
        except RedisConnectionError as exc:
            logger.warning(
                "Failed to invalidate persistent query cache",
                extra={"collection": collection, "error": str(exc)},
            )
