"""
Integration Tests for the SQL Document Store
============================================

Purpose
-------
Exercise `SqlDocumentStore` through `DatabaseService` against a real
database: a SQLite file through aiosqlite for every run, and PostgreSQL
through testcontainers when Docker is available.

Test Coverage
-------------
- Schema creation and health check
- CRUD, merge and overwrite semantics
- Increment sentinels and server timestamps
- Atomic concurrent increments (SQLite write lock, PostgreSQL row locks)
- The ledger and ranking services running on the SQL store
"""

import asyncio

import pytest

from chipledger.core.cache.service import TieredReadCache
from chipledger.core.database.service import DatabaseNotInitializedError, DatabaseService
from chipledger.core.exceptions import CacheMissError, StoreError
from chipledger.core.store.base import SERVER_TIMESTAMP, Filter, Increment, OrderBy
from chipledger.core.store.sql import SqlDocumentStore
from chipledger.domain.models.ranking import RankingType
from chipledger.domain.models.user import USERS_COLLECTION
from chipledger.modules.ledger.service import LedgerService
from chipledger.modules.ranking.service import RankingService
from tests.conftest import TEST_NOW, make_user_document


@pytest.fixture
async def sqlite_store(tmp_path, clock):
    await DatabaseService.initialize(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await DatabaseService.create_schema()
    yield SqlDocumentStore(clock=clock)
    await DatabaseService.shutdown()


@pytest.fixture
async def postgres_store(postgres_container, clock):
    await DatabaseService.initialize(postgres_container.get_connection_url())
    await DatabaseService.create_schema()
    yield SqlDocumentStore(clock=clock)
    await DatabaseService.shutdown()


# ============================================================================
# SQLITE
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestSqlDocumentStore:
    async def test_health_check(self, sqlite_store):
        assert await DatabaseService.health_check() is True

    async def test_add_get_round_trip(self, sqlite_store):
        # Arrange
        doc_id = await sqlite_store.add(
            USERS_COLLECTION, make_user_document("alice", chips=10)
        )

        # Act
        document = await sqlite_store.get(USERS_COLLECTION, doc_id)

        # Assert
        assert document.data["username"] == "alice"
        assert document.data["chips"] == 10
        # Timestamps are stored as UTC ISO-8601 strings
        assert document.data["createdAt"] == TEST_NOW.isoformat()

    async def test_get_missing(self, sqlite_store):
        assert await sqlite_store.get(USERS_COLLECTION, "missing") is None

    async def test_update_with_increment(self, sqlite_store):
        doc_id = await sqlite_store.add(USERS_COLLECTION, {"monthlyTotals": {"2025-06": 5}})

        await sqlite_store.update(
            USERS_COLLECTION,
            doc_id,
            {"monthlyTotals.2025-06": Increment(-15), "lastUpdated": SERVER_TIMESTAMP},
        )
        await sqlite_store.increment(USERS_COLLECTION, doc_id, "totalLosses", 15)

        data = (await sqlite_store.get(USERS_COLLECTION, doc_id)).data
        assert data["monthlyTotals"] == {"2025-06": -10}
        assert data["totalLosses"] == 15
        assert data["lastUpdated"] == TEST_NOW.isoformat()

    async def test_concurrent_increments_are_atomic(self, sqlite_store):
        doc_id = await sqlite_store.add(USERS_COLLECTION, {"monthlyTotals": {}})

        await asyncio.gather(
            *(
                sqlite_store.increment(USERS_COLLECTION, doc_id, "monthlyTotals.2025-06", 1)
                for _ in range(10)
            )
        )

        data = (await sqlite_store.get(USERS_COLLECTION, doc_id)).data
        assert data["monthlyTotals"]["2025-06"] == 10

    async def test_update_missing_document(self, sqlite_store):
        with pytest.raises(StoreError):
            await sqlite_store.update(USERS_COLLECTION, "ghost", {"chips": 1})

    async def test_set_overwrite_and_merge(self, sqlite_store):
        await sqlite_store.set("rankings", "yearly_2025", {"entries": [1, 2], "year": 2025})
        await sqlite_store.set("rankings", "yearly_2025", {"entries": [3]})
        assert (await sqlite_store.get("rankings", "yearly_2025")).data == {"entries": [3]}

        await sqlite_store.set("rankings", "yearly_2025", {"year": 2025}, merge=True)
        assert (await sqlite_store.get("rankings", "yearly_2025")).data == {
            "entries": [3],
            "year": 2025,
        }

    async def test_query_filters_and_orders(self, sqlite_store):
        for name, chips in (("carol", 5), ("alice", 50), ("bob", 20)):
            await sqlite_store.add(USERS_COLLECTION, make_user_document(name, chips=chips))

        by_name = await sqlite_store.query_from_server(
            USERS_COLLECTION, order_by=OrderBy("username")
        )
        rich = await sqlite_store.query_from_server(
            USERS_COLLECTION,
            [Filter("chips", ">=", 20)],
            OrderBy("chips", descending=True),
        )

        assert [d.data["username"] for d in by_name] == ["alice", "bob", "carol"]
        assert [d.data["username"] for d in rich] == ["alice", "bob"]

    async def test_cache_tier_without_redis_misses(self, sqlite_store):
        with pytest.raises(CacheMissError):
            await sqlite_store.query_from_cache(USERS_COLLECTION)

    async def test_operations_before_initialize_raise_store_error(self, clock):
        store = SqlDocumentStore(clock=clock)

        with pytest.raises(StoreError) as exc_info:
            await store.get(USERS_COLLECTION, "x")

        assert isinstance(exc_info.value.original_error, DatabaseNotInitializedError)

    async def test_session_before_initialize_raises(self):
        with pytest.raises(DatabaseNotInitializedError):
            async with DatabaseService.get_transaction():
                pass


@pytest.mark.integration
@pytest.mark.database
class TestServicesOnSql:
    async def test_mutation_and_recalculation(
        self, sqlite_store, config_manager, event_bus, clock
    ):
        # Arrange
        cache = TieredReadCache(sqlite_store, config_manager, clock=clock)
        ledger = LedgerService(sqlite_store, cache, config_manager, event_bus, clock=clock)
        ranking = RankingService(sqlite_store, cache, config_manager, event_bus, clock=clock)
        alice = await sqlite_store.add(USERS_COLLECTION, make_user_document("alice", chips=100))
        await sqlite_store.add(
            USERS_COLLECTION, make_user_document("bob", monthly_totals={"2025-06": 20})
        )

        # Act
        assert await ledger.apply_delta(alice, 30, "add", "win", "staff@example.com")
        assert await ranking.recalc_monthly(2025, 6, "staff@example.com")

        # Assert
        user = (await sqlite_store.get(USERS_COLLECTION, alice)).data
        assert user["chips"] == 130
        assert user["monthlyTotals"] == {"2025-06": 30}

        snapshot = await ranking.get_stored(RankingType.MONTHLY, 2025, 6)
        assert [(e.username, e.total) for e in snapshot.entries] == [("alice", 30), ("bob", 20)]
        assert snapshot.updated_at == TEST_NOW

        history = await ledger.get_chip_history(alice)
        assert history[0].timestamp == TEST_NOW

    async def test_concurrent_mutations_conserve_totals(
        self, sqlite_store, config_manager, event_bus, clock
    ):
        # Arrange
        cache = TieredReadCache(sqlite_store, config_manager, clock=clock)
        ledger = LedgerService(sqlite_store, cache, config_manager, event_bus, clock=clock)
        alice = await sqlite_store.add(USERS_COLLECTION, make_user_document("alice"))

        # Act
        results = await asyncio.gather(
            *(ledger.apply_delta(alice, 10, "add", "win", "staff@example.com") for _ in range(5))
        )

        # Assert
        assert results == [True] * 5
        user = (await sqlite_store.get(USERS_COLLECTION, alice)).data
        assert user["monthlyTotals"] == {"2025-06": 50}
        assert user["totalEarnings"] == 50


# ============================================================================
# POSTGRESQL (testcontainers)
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
@pytest.mark.docker
class TestPostgresDocumentStore:
    async def test_concurrent_increments_are_atomic(self, postgres_store):
        doc_id = await postgres_store.add(USERS_COLLECTION, {"monthlyTotals": {}})

        await asyncio.gather(
            *(
                postgres_store.increment(USERS_COLLECTION, doc_id, "monthlyTotals.2025-06", 1)
                for _ in range(10)
            )
        )

        data = (await postgres_store.get(USERS_COLLECTION, doc_id)).data
        assert data["monthlyTotals"]["2025-06"] == 10

    async def test_json_body_round_trip(self, postgres_store):
        doc_id = await postgres_store.add(
            USERS_COLLECTION,
            make_user_document("zoe", chips=3, monthly_totals={"2025-06": -4}),
        )

        data = (await postgres_store.get(USERS_COLLECTION, doc_id)).data

        assert data["monthlyTotals"] == {"2025-06": -4}
        assert data["role"] == "staff"
