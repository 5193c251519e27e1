"""
Pytest Configuration and Fixtures for ChipLedger Tests
======================================================

Purpose
-------
Shared fixtures for the unit and integration suites.

Responsibilities
----------------
- Test environment variables and a clean ConfigManager per test
- A manual clock so cache expiry and snapshot staleness are explicit
- In-memory store, tiered cache, event bus and the three domain services
- Testcontainers for PostgreSQL and Redis (skipped when Docker is absent)
- Small factories for user documents

Architecture Notes
------------------
- Unit tests run against `InMemoryDocumentStore` (fast, isolated)
- Integration tests use SQLite through aiosqlite, or real PostgreSQL/Redis
  through testcontainers
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Generator, Optional

import pytest
import pytest_asyncio

from chipledger.core.cache.service import TieredReadCache
from chipledger.core.config.config import Config
from chipledger.core.config.manager import ConfigManager
from chipledger.core.event.bus import EventBus
from chipledger.core.logging.logger import clear_log_context, get_logger
from chipledger.core.store.base import SERVER_TIMESTAMP
from chipledger.core.store.memory import InMemoryDocumentStore
from chipledger.core.time_utils import ManualClock
from chipledger.domain.models.user import USERS_COLLECTION
from chipledger.modules.ledger.service import LedgerService
from chipledger.modules.ranking.service import RankingService
from chipledger.modules.users.service import UserService

logger = get_logger(__name__)

# Mid-month so that small clock moves never cross a period boundary
TEST_NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config):
    """Configure the test environment before chipledger reads it."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ["LOG_LEVEL"] = "DEBUG"
    os.environ["STORE_BACKEND"] = "memory"
    Config.load()


# ============================================================================
# CORE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def config_manager(tmp_path) -> AsyncGenerator[type[ConfigManager], None]:
    """
    ConfigManager loaded with built-in defaults only.

    Scope: function (overrides never leak between tests)
    """
    ConfigManager.reset()
    await ConfigManager.initialize(tmp_path)
    ConfigManager.set("ledger.timezone", "UTC")
    yield ConfigManager
    ConfigManager.reset()
    clear_log_context()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(TEST_NOW)


@pytest.fixture
def store(clock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest_asyncio.fixture
async def event_bus(config_manager) -> AsyncGenerator[EventBus, None]:
    bus = EventBus(config_manager=config_manager)
    yield bus
    await bus.shutdown(timeout=1.0)


@pytest.fixture
def cache(store, config_manager, clock) -> TieredReadCache:
    return TieredReadCache(store, config_manager, clock=clock)


@pytest.fixture
def ledger_service(store, cache, config_manager, event_bus, clock) -> LedgerService:
    return LedgerService(store, cache, config_manager, event_bus, clock=clock)


@pytest.fixture
def user_service(store, cache, config_manager, event_bus, clock) -> UserService:
    return UserService(store, cache, config_manager, event_bus, clock=clock)


@pytest.fixture
def ranking_service(store, cache, config_manager, event_bus, clock) -> RankingService:
    return RankingService(store, cache, config_manager, event_bus, clock=clock)


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """EventBus double that records publishes."""
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock(return_value="listener-id")
    return mock_bus


# ============================================================================
# FACTORIES
# ============================================================================


def make_user_document(
    username: str,
    chips: int = 0,
    monthly_totals: Optional[Dict[str, int]] = None,
    display_name: str = "",
    **extra: Any,
) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "username": username,
        "displayName": display_name,
        "chips": chips,
        "totalEarnings": 0,
        "totalLosses": 0,
        "lastUpdated": SERVER_TIMESTAMP,
        "createdAt": SERVER_TIMESTAMP,
        "notes": "",
        "role": "staff",
    }
    if monthly_totals is not None:
        document["monthlyTotals"] = dict(monthly_totals)
    document.update(extra)
    return document


@pytest.fixture
def seed_user(store):
    """
    Insert a user document directly into the store.

    Usage:
        user_id = await seed_user("alice", chips=100, monthly_totals={"2025-06": 10})
    """

    async def _seed(username: str, chips: int = 0, **kwargs: Any) -> str:
        return await store.add(USERS_COLLECTION, make_user_document(username, chips, **kwargs))

    return _seed


# ============================================================================
# TESTCONTAINERS FIXTURES (Integration Tests)
# ============================================================================


def _docker_available() -> bool:
    try:
        import docker

        docker.from_env().ping()
    except Exception:
        return False
    return True


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    PostgreSQL testcontainer.

    Scope: session (container persists across all tests)
    """
    if not _docker_available():
        pytest.skip("Docker is not available")
    from testcontainers.postgres import PostgresContainer

    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    container.start()
    yield container
    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest.fixture(scope="session")
def redis_container() -> Generator[Any, None, None]:
    """
    Redis testcontainer.

    Scope: session (container persists across all tests)
    """
    if not _docker_available():
        pytest.skip("Docker is not available")
    from testcontainers.redis import RedisContainer

    logger.info("Starting Redis testcontainer...")
    container = RedisContainer(image="redis:7-alpine")
    container.start()
    yield container
    logger.info("Stopping Redis testcontainer...")
    container.stop()
