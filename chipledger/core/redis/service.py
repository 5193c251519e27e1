"""
RedisService: async Redis client for ChipLedger.

Redis only backs the persistent query cache of the SQL document store, so
the surface is small: string get/set with TTL, counters and JSON documents.
Every redis-py failure is re-raised as `RedisConnectionError`, which the
query cache turns into a cache miss.

Configuration Keys
------------------
- core.redis.url                  : str (falls back to Config.REDIS_URL)
- core.redis.default_ttl_seconds  : int (default 28800)
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from chipledger.core.config.config import Config
from chipledger.core.config.manager import ConfigManager
from chipledger.core.exceptions import RedisConnectionError
from chipledger.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RedisService:
    _client: Optional[Redis] = None
    _lock: asyncio.Lock = asyncio.Lock()

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Connect and PING. A second call is a no-op.

        Raises:
            RedisConnectionError: If the server cannot be reached
        """
        async with cls._lock:
            if cls._client is not None:
                return

            url = url or ConfigManager.get("core.redis.url") or Config.REDIS_URL
            client = Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
            )
            try:
                await client.ping()
            except RedisError as exc:
                await client.aclose()
                raise RedisConnectionError("initialize", exc) from exc

            cls._client = client
            logger.info("Redis connected", extra={"url_scheme": url.split(":", 1)[0]})

    @classmethod
    async def shutdown(cls) -> None:
        client, cls._client = cls._client, None
        if client is not None:
            await client.aclose()
            logger.info("Redis connection closed")

    @classmethod
    async def health_check(cls) -> bool:
        if cls._client is None:
            return False
        try:
            return bool(await cls._client.ping())
        except RedisError as exc:
            logger.warning("Redis health check failed", extra={"error": str(exc)})
            return False

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._client is not None

    @classmethod
    def client(cls) -> Redis:
        if cls._client is None:
            raise RedisConnectionError("client", RuntimeError("RedisService is not initialized"))
        return cls._client

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    @classmethod
    async def _run(cls, command: str, key: str, call: Callable[[Redis], Awaitable[T]]) -> T:
        client = cls.client()
        started = time.monotonic()
        try:
            result = await call(client)
        except RedisError as exc:
            logger.warning(
                "Redis command failed",
                extra={"command": command, "key": key, "error": str(exc)},
            )
            raise RedisConnectionError(f"{command} {key}", exc) from exc
        logger.debug(
            "Redis command",
            extra={
                "command": command,
                "key": key,
                "latency_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return result

    @classmethod
    async def get(cls, key: str) -> Optional[str]:
        return await cls._run("GET", key, lambda c: c.get(key))

    @classmethod
    async def set(cls, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        if ttl_seconds is None:
            ttl_seconds = int(ConfigManager.get("core.redis.default_ttl_seconds", 28800))
        return bool(await cls._run("SET", key, lambda c: c.set(key, value, ex=ttl_seconds)))

    @classmethod
    async def incr(cls, key: str, amount: int = 1) -> int:
        return int(await cls._run("INCRBY", key, lambda c: c.incrby(key, amount)))

    @classmethod
    async def get_json(cls, key: str) -> Optional[Any]:
        raw = await cls.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring undecodable JSON value", extra={"key": key})
            return None

    @classmethod
    async def set_json(cls, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        payload = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        return await cls.set(key, payload, ttl_seconds=ttl_seconds)
