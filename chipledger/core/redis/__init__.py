"""Async Redis client used by the persistent query cache."""

from chipledger.core.redis.service import RedisService

__all__ = ["RedisService"]
