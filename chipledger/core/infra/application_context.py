"""
ApplicationContext: startup and shutdown of the ChipLedger runtime.

Purpose
-------
Initialize and shut down ChipLedger's infrastructure in dependency order and
hand the caller a ready `ServiceContainer`.

Responsibilities
----------------
- Load static configuration and set up logging
- Initialize ConfigManager (YAML tunables)
- For the SQL backend: initialize DatabaseService, ensure the schema and,
  when enabled, RedisService for the persistent query cache
- Create the EventBus and the ServiceContainer
- Coordinate graceful shutdown in reverse order, draining background
  listeners first

Non-Responsibilities
--------------------
- Business logic (domain services)
- HTTP / UI surfaces

Initialization Order
--------------------
    1. Config + logging
    2. ConfigManager
    3. DatabaseService (+ schema), RedisService    [sql backend only]
    4. EventBus
    5. ServiceContainer

Shutdown Order (Reverse)
------------------------
    1. EventBus.shutdown() (drain LOW listeners)
    2. ServiceContainer.shutdown()
    3. RedisService.shutdown(), DatabaseService.shutdown()
    4. Logging
"""

from __future__ import annotations

import time
from typing import Optional

from chipledger.core.config.config import Config, StoreBackend
from chipledger.core.config.manager import ConfigManager
from chipledger.core.database.service import DatabaseService
from chipledger.core.event.bus import EventBus
from chipledger.core.exceptions import RedisConnectionError
from chipledger.core.logging.logger import get_logger, setup_logging, shutdown_logging
from chipledger.core.redis.service import RedisService
from chipledger.core.services.container import ServiceContainer
from chipledger.core.store.base import DocumentStore
from chipledger.core.time_utils import Clock

logger = get_logger(__name__)


class ApplicationContext:
    """
    Usage:
        context = ApplicationContext()
        await context.initialize()
        try:
            await context.container.ledger.apply_delta(...)
        finally:
            await context.shutdown()
    """

    def __init__(
        self,
        *,
        store: Optional[DocumentStore] = None,
        clock: Optional[Clock] = None,
        configure_logging: bool = True,
    ) -> None:
        self._store_override = store
        self._clock = clock
        self._configure_logging = configure_logging

        self._event_bus: Optional[EventBus] = None
        self._container: Optional[ServiceContainer] = None
        self._uses_database = False
        self._uses_redis = False
        self._initialized = False

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    async def initialize(self) -> None:
        """
        Raises:
            RuntimeError: If already initialized or initialization fails
        """
        if self._initialized:
            raise RuntimeError("ApplicationContext.initialize() called twice")

        Config.load()
        if self._configure_logging:
            setup_logging(file_output=not Config.is_testing())

        started = time.perf_counter()
        logger.info("Starting ChipLedger")

        try:
            Config.validate()
            await ConfigManager.initialize(Config.CONFIG_DIR)

            if self._store_override is None and Config.store_backend() is StoreBackend.SQL:
                await DatabaseService.initialize()
                self._uses_database = True
                await DatabaseService.create_schema()
                await self._initialize_redis()

            self._event_bus = EventBus(config_manager=ConfigManager)
            self._container = ServiceContainer(
                ConfigManager,
                self._event_bus,
                get_logger("chipledger.core.services.container"),
                store=self._store_override,
                clock=self._clock,
                persistent_cache=self._uses_redis,
            )
            await self._container.initialize()

        except Exception as exc:
            logger.critical(
                "ChipLedger startup failed",
                extra={"error_type": type(exc).__name__},
                exc_info=True,
            )
            await self._abort_startup()
            raise RuntimeError(f"ChipLedger startup failed: {exc}") from exc

        self._initialized = True
        logger.info(
            "ChipLedger started",
            extra={
                "store_backend": Config.STORE_BACKEND,
                "database": self._uses_database,
                "persistent_cache": self._uses_redis,
                "total_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )

    async def _initialize_redis(self) -> None:
        if not ConfigManager.get("cache.persistent.enabled", True):
            logger.info("Persistent query cache disabled by configuration")
            return
        try:
            await RedisService.initialize()
        except RedisConnectionError as exc:
            # Memory and server tiers still work without Redis
            logger.warning(
                "Redis unavailable, running without persistent query cache",
                extra={"error": str(exc)},
            )
            return
        self._uses_redis = True

    # ========================================================================
    # SHUTDOWN
    # ========================================================================

    async def shutdown(self) -> None:
        if not self._initialized:
            logger.debug("Shutdown requested before startup, ignoring")
            return

        logger.info("Stopping ChipLedger")

        if self._event_bus is not None:
            try:
                await self._event_bus.shutdown(
                    timeout=float(ConfigManager.get("core.event.shutdown_timeout_seconds", 10.0))
                )
            except Exception as exc:
                logger.error(
                    "Event bus shutdown failed", extra={"error": str(exc)}, exc_info=True
                )

        if self._container is not None:
            try:
                await self._container.shutdown()
            except Exception as exc:
                logger.error(
                    "Service graph release failed",
                    extra={"error": str(exc)},
                    exc_info=True,
                )

        await self._shutdown_backends()

        self._initialized = False
        logger.info("ChipLedger stopped")
        if self._configure_logging:
            shutdown_logging()

    async def _shutdown_backends(self) -> None:
        if self._uses_redis:
            try:
                await RedisService.shutdown()
            except Exception as exc:
                logger.error(
                    "Redis shutdown failed", extra={"error": str(exc)}, exc_info=True
                )
            self._uses_redis = False

        if self._uses_database:
            try:
                await DatabaseService.shutdown()
            except Exception as exc:
                logger.error(
                    "Database shutdown failed", extra={"error": str(exc)}, exc_info=True
                )
            self._uses_database = False

    async def _abort_startup(self) -> None:
        logger.warning("Releasing partially started components")
        if self._event_bus is not None:
            try:
                await self._event_bus.shutdown(timeout=0)
            except Exception:
                logger.debug("Event bus cleanup failed while aborting startup", exc_info=True)
        if self._container is not None:
            try:
                await self._container.shutdown()
            except Exception:
                logger.debug("Container cleanup failed while aborting startup", exc_info=True)
        await self._shutdown_backends()

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def container(self) -> ServiceContainer:
        if self._container is None or not self._initialized:
            raise RuntimeError("ServiceContainer not available: ApplicationContext not initialized")
        return self._container

    @property
    def event_bus(self) -> EventBus:
        if self._event_bus is None or not self._initialized:
            raise RuntimeError("EventBus not available: ApplicationContext not initialized")
        return self._event_bus

    @property
    def is_initialized(self) -> bool:
        return self._initialized
