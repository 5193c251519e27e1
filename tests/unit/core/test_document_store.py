"""
Unit tests for the document store contract and the in-memory backend.
"""

import asyncio

import pytest

from chipledger.core.exceptions import CacheMissError, StoreError
from chipledger.core.store.base import (
    SERVER_TIMESTAMP,
    Document,
    Filter,
    Increment,
    OrderBy,
    apply_partial,
    merge_document,
    query_signature,
    run_query,
)
from tests.conftest import TEST_NOW


def _docs(*rows):
    return [Document(id=str(index), data=row) for index, row in enumerate(rows)]


@pytest.mark.unit
class TestQueryEvaluation:
    def test_filter_equality(self):
        docs = _docs({"userId": "a"}, {"userId": "b"}, {"userId": "a"})

        result = run_query(docs, [Filter("userId", "==", "a")])

        assert [doc.id for doc in result] == ["0", "2"]

    def test_filter_rejects_unknown_operator(self):
        with pytest.raises(ValueError):
            Filter("chips", "~", 1)

    def test_order_by_descending_with_limit(self):
        docs = _docs({"chips": 5}, {"chips": 50}, {"chips": 20})

        result = run_query(docs, order_by=OrderBy("chips", descending=True), limit=2)

        assert [doc.data["chips"] for doc in result] == [50, 20]

    def test_order_by_excludes_documents_missing_the_field(self):
        docs = _docs({"username": "bob"}, {"chips": 1}, {"username": "al"})

        result = run_query(docs, order_by=OrderBy("username"))

        assert [doc.data["username"] for doc in result] == ["al", "bob"]

    def test_sort_is_stable_for_ties(self):
        docs = _docs({"total": 1, "n": "first"}, {"total": 1, "n": "second"})

        result = run_query(docs, order_by=OrderBy("total"))

        assert [doc.data["n"] for doc in result] == ["first", "second"]

    def test_query_signature_is_stable_and_distinct(self):
        first = query_signature("users", [Filter("username", "==", "a")])
        again = query_signature("users", [Filter("username", "==", "a")])
        other = query_signature("users", [Filter("username", "==", "b")])

        assert first == again
        assert first != other


@pytest.mark.unit
class TestWriteSentinels:
    def test_apply_partial_with_dotted_increment(self):
        existing = {"monthlyTotals": {"2025-06": 10}}

        updated = apply_partial(
            existing, {"monthlyTotals.2025-06": Increment(-30)}, TEST_NOW
        )

        assert updated["monthlyTotals"]["2025-06"] == -20
        # Input is not mutated
        assert existing["monthlyTotals"]["2025-06"] == 10

    def test_increment_on_missing_field_starts_from_zero(self):
        updated = apply_partial({}, {"monthlyTotals.2025-07": Increment(5)}, TEST_NOW)

        assert updated == {"monthlyTotals": {"2025-07": 5}}

    def test_server_timestamp_resolves_to_store_time(self):
        updated = apply_partial({}, {"lastUpdated": SERVER_TIMESTAMP}, TEST_NOW)

        assert updated["lastUpdated"] == TEST_NOW

    def test_merge_keeps_untouched_nested_keys(self):
        merged = merge_document(
            {"monthlyTotals": {"2025-05": 3}, "chips": 1},
            {"monthlyTotals": {"2025-06": 4}},
            TEST_NOW,
        )

        assert merged == {"monthlyTotals": {"2025-05": 3, "2025-06": 4}, "chips": 1}


@pytest.mark.unit
class TestInMemoryDocumentStore:
    async def test_add_and_get(self, store):
        # Arrange
        doc_id = await store.add("users", {"username": "alice", "createdAt": SERVER_TIMESTAMP})

        # Act
        document = await store.get("users", doc_id)

        # Assert
        assert document is not None
        assert document.data["username"] == "alice"
        assert document.data["createdAt"] == TEST_NOW

    async def test_get_missing_returns_none(self, store):
        assert await store.get("users", "nope") is None

    async def test_reads_are_copies(self, store):
        doc_id = await store.add("users", {"monthlyTotals": {"2025-06": 1}})

        document = await store.get("users", doc_id)
        document.data["monthlyTotals"]["2025-06"] = 999

        fresh = await store.get("users", doc_id)
        assert fresh.data["monthlyTotals"]["2025-06"] == 1

    async def test_set_without_merge_overwrites(self, store):
        await store.set("rankings", "monthly_2025_06", {"entries": [1], "extra": True})

        await store.set("rankings", "monthly_2025_06", {"entries": [2]})

        document = await store.get("rankings", "monthly_2025_06")
        assert document.data == {"entries": [2]}

    async def test_update_missing_document_raises_store_error(self, store):
        with pytest.raises(StoreError):
            await store.update("users", "ghost", {"chips": 1})

    async def test_concurrent_increments_are_not_lost(self, store):
        doc_id = await store.add("users", {"monthlyTotals": {}})

        await asyncio.gather(
            *(store.increment("users", doc_id, "monthlyTotals.2025-06", 1) for _ in range(25))
        )

        document = await store.get("users", doc_id)
        assert document.data["monthlyTotals"]["2025-06"] == 25

    async def test_cache_tier_replays_last_server_result(self, store):
        await store.add("users", {"username": "alice"})
        await store.query_from_server("users")

        cached = await store.query_from_cache("users")

        assert [doc.data["username"] for doc in cached] == ["alice"]

    async def test_cache_tier_misses_before_any_server_read(self, store):
        with pytest.raises(CacheMissError):
            await store.query_from_cache("users")

    async def test_write_invalidates_cache_tier(self, store):
        await store.add("users", {"username": "alice"})
        await store.query_from_server("users")

        await store.add("users", {"username": "bob"})

        with pytest.raises(CacheMissError):
            await store.query_from_cache("users")
        assert store.cached_query_count() == 0

    async def test_tier_agnostic_query_reads_server(self, store):
        await store.add("users", {"username": "alice"})

        result = await store.query("users")

        assert len(result) == 1
        assert store.count("users") == 1
