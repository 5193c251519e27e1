"""Tiered read cache (memory, persistent cache, server)."""

from chipledger.core.cache.service import (
    CacheResult,
    CacheSource,
    CacheStatus,
    TieredReadCache,
)

__all__ = ["CacheResult", "CacheSource", "CacheStatus", "TieredReadCache"]
