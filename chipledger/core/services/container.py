"""
ServiceContainer: builds the ChipLedger object graph once.

One document store (picked from ``STORE_BACKEND`` unless injected), one
`TieredReadCache` shared by the ledger, user and ranking services, and the
ranking service's chip-change listener on the bus. Database and Redis
connections are opened by `ApplicationContext` before this runs.

Every domain service takes ``(store, cache, config_manager, event_bus, clock)``.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, TypeVar

from chipledger.core.cache.service import TieredReadCache
from chipledger.core.config.config import Config, StoreBackend
from chipledger.core.config.manager import ConfigManager
from chipledger.core.store.base import DocumentStore
from chipledger.core.store.memory import InMemoryDocumentStore
from chipledger.core.store.query_cache import RedisQueryCache
from chipledger.core.store.sql import SqlDocumentStore
from chipledger.core.time_utils import Clock, SystemClock
from chipledger.modules.ledger.service import CHIPS_CHANGED_EVENT, LedgerService
from chipledger.modules.ranking.service import RankingService
from chipledger.modules.users.service import UserService

if TYPE_CHECKING:
    from logging import Logger

    from chipledger.core.event.bus import EventBus

T = TypeVar("T")


class ServiceContainer:
    """
    Usage:
        container = ServiceContainer(ConfigManager, event_bus, logger)
        await container.initialize()

        await container.ledger.apply_delta(user_id, 50, "add", "bonus", "staff@example.com")
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        *,
        store: Optional[DocumentStore] = None,
        clock: Optional[Clock] = None,
        persistent_cache: bool = False,
    ) -> None:
        """
        Args:
            store: Injected store; otherwise built from ``Config.store_backend()``
            clock: Shared by the store, cache and services
            persistent_cache: Put the Redis query cache in front of the SQL store
        """
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._logger = logger
        self._store = store
        self._clock = clock or SystemClock()
        self._persistent_cache = persistent_cache

        self._cache: Optional[TieredReadCache] = None
        self._ledger: Optional[LedgerService] = None
        self._users: Optional[UserService] = None
        self._ranking: Optional[RankingService] = None
        self._ranking_listener_id: Optional[str] = None

        self._initialized = False
        self._build_times: Dict[str, float] = {}

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def _build_store(self) -> DocumentStore:
        backend = Config.store_backend()
        if backend is StoreBackend.SQL:
            query_cache = RedisQueryCache() if self._persistent_cache else None
            return SqlDocumentStore(clock=self._clock, query_cache=query_cache)
        return InMemoryDocumentStore(clock=self._clock)

    def _create(self, name: str, factory: Callable[[], T]) -> T:
        start = time.perf_counter()
        instance = factory()
        self._build_times[name] = time.perf_counter() - start
        return instance

    async def initialize(self) -> None:
        if self._initialized:
            self._logger.warning("Service graph already built")
            return

        started = time.perf_counter()
        self._logger.debug("Building service graph")

        if self._store is None:
            self._store = self._create("store", self._build_store)

        store = self._store
        self._cache = self._create(
            "cache",
            lambda: TieredReadCache(store, self._config_manager, clock=self._clock),
        )
        shared = {
            "store": store,
            "cache": self._cache,
            "config_manager": self._config_manager,
            "event_bus": self._event_bus,
            "clock": self._clock,
        }
        self._ledger = self._create("ledger", lambda: LedgerService(**shared))
        self._users = self._create("users", lambda: UserService(**shared))
        self._ranking = self._create("ranking", lambda: RankingService(**shared))
        self._ranking_listener_id = self._ranking.register_listeners()

        self._initialized = True
        self._logger.info(
            "Service graph ready",
            extra={
                "store": type(store).__name__,
                "services": len(self._build_times),
                "total_ms": round((time.perf_counter() - started) * 1000, 2),
                "ranking_listener": self._ranking_listener_id,
            },
        )

    async def shutdown(self) -> None:
        """Detach listeners and close the store. Safe to call twice."""
        if not self._initialized:
            return

        if self._ranking_listener_id is not None:
            self._event_bus.unsubscribe(CHIPS_CHANGED_EVENT, self._ranking_listener_id)
            self._ranking_listener_id = None

        if self._store is not None:
            await self._store.close()

        self._initialized = False
        self._logger.info("Service graph released")

    # ========================================================================
    # Accessors
    # ========================================================================

    def _require(self, name: str, value: Optional[T]) -> T:
        if not self._initialized or value is None:
            raise RuntimeError(f"{name} not available: ServiceContainer not initialized")
        return value

    @property
    def store(self) -> DocumentStore:
        return self._require("store", self._store)

    @property
    def cache(self) -> TieredReadCache:
        return self._require("cache", self._cache)

    @property
    def ledger(self) -> LedgerService:
        return self._require("ledger", self._ledger)

    @property
    def users(self) -> UserService:
        return self._require("users", self._users)

    @property
    def ranking(self) -> RankingService:
        return self._require("ranking", self._ranking)

    @property
    def config_manager(self) -> type[ConfigManager]:
        return self._config_manager

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def get_init_stats(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "service_init_ms": {
                name: round(seconds * 1000, 3)
                for name, seconds in self._build_times.items()
            },
        }
