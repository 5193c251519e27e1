"""
Unit tests for LedgerService.

Tests cover:
- Balance, lifetime and monthly counters across add/subtract/clamp
- History trail and daily summaries
- Cache maintenance after a mutation
- The chips-changed event
- Input validation and unknown users
- Best-effort secondary effects vs. propagating core store failures
"""

import asyncio
from datetime import datetime, timezone

import pytest

from chipledger.core.cache.service import CacheSource
from chipledger.core.exceptions import StoreError
from chipledger.domain.models.ledger import ChipDirection
from chipledger.domain.models.user import USERS_COLLECTION
from chipledger.modules.ledger.service import CHIPS_CHANGED_EVENT, LedgerService


async def _user_data(store, user_id):
    document = await store.get(USERS_COLLECTION, user_id)
    return document.data


# ============================================================================
# COUNTERS
# ============================================================================


@pytest.mark.unit
class TestApplyDelta:
    async def test_add_subtract_and_clamp_sequence(self, ledger_service, seed_user, store, clock):
        # Arrange
        user_id = await seed_user("alice", chips=100)

        # Act / Assert: add 50
        assert await ledger_service.apply_delta(user_id, 50, "add", "win", "staff@example.com")
        data = await _user_data(store, user_id)
        assert data["chips"] == 150
        assert data["monthlyTotals"]["2025-06"] == 50
        assert data["totalEarnings"] == 50

        # subtract 30
        clock.advance(minutes=1)
        assert await ledger_service.apply_delta(user_id, 30, "subtract", "loss", "staff@example.com")
        data = await _user_data(store, user_id)
        assert data["chips"] == 120
        assert data["monthlyTotals"]["2025-06"] == 20
        assert data["totalLosses"] == 30

        # subtract more than the balance: chips clamp, totals record the request
        clock.advance(minutes=1)
        assert await ledger_service.apply_delta(user_id, 200, "subtract", "bust", "staff@example.com")
        data = await _user_data(store, user_id)
        assert data["chips"] == 0
        assert data["monthlyTotals"]["2025-06"] == -180
        assert data["totalLosses"] == 230
        assert data["totalEarnings"] == 50
        assert data["lastUpdated"] == clock.now()

    async def test_other_periods_are_untouched(self, ledger_service, seed_user, store):
        user_id = await seed_user("bob", chips=10, monthly_totals={"2025-05": 40})

        await ledger_service.apply_delta(user_id, 5, ChipDirection.ADD, "win", "staff")

        data = await _user_data(store, user_id)
        assert data["monthlyTotals"] == {"2025-05": 40, "2025-06": 5}

    async def test_period_follows_ledger_timezone(
        self, ledger_service, seed_user, store, clock, config_manager
    ):
        # 2025-06-30 20:00 UTC is July 1st in Tokyo
        config_manager.set("ledger.timezone", "Asia/Tokyo")
        clock.set(datetime(2025, 6, 30, 20, 0, tzinfo=timezone.utc))
        user_id = await seed_user("carol", chips=0)

        await ledger_service.apply_delta(user_id, 10, "add", "win", "staff")

        data = await _user_data(store, user_id)
        assert data["monthlyTotals"] == {"2025-07": 10}

    async def test_concurrent_mutations_keep_every_increment(self, ledger_service, seed_user, store):
        user_id = await seed_user("dave", chips=0)

        results = await asyncio.gather(
            *(ledger_service.apply_delta(user_id, 10, "add", "win", "staff") for _ in range(5))
        )

        data = await _user_data(store, user_id)
        assert all(results)
        assert data["monthlyTotals"]["2025-06"] == 50
        assert data["totalEarnings"] == 50

    async def test_missing_username_uses_fallback(self, ledger_service, seed_user, store):
        user_id = await seed_user("", chips=5)

        assert await ledger_service.apply_delta(user_id, 1, "add", "win", "staff")

        history = await ledger_service.get_chip_history(user_id)
        assert history[0].username == f"user_{user_id}"


@pytest.mark.unit
class TestValidation:
    @pytest.mark.parametrize(
        "amount,direction,reason,actor",
        [
            (0, "add", "r", "a"),
            (-5, "add", "r", "a"),
            (True, "add", "r", "a"),
            ("10", "add", "r", "a"),
            (10, "multiply", "r", "a"),
            (10, "add", "  ", "a"),
            (10, "add", "r", ""),
        ],
    )
    async def test_invalid_input_returns_false(
        self, ledger_service, seed_user, store, amount, direction, reason, actor
    ):
        user_id = await seed_user("erin", chips=100)

        assert await ledger_service.apply_delta(user_id, amount, direction, reason, actor) is False
        assert (await _user_data(store, user_id))["chips"] == 100

    async def test_empty_user_id_returns_false(self, ledger_service):
        assert await ledger_service.apply_delta("", 10, "add", "r", "a") is False

    async def test_unknown_user_returns_false(self, ledger_service, store):
        assert await ledger_service.apply_delta("ghost", 10, "add", "r", "a") is False
        assert store.count("chipHistory") == 0


# ============================================================================
# HISTORY & SUMMARIES
# ============================================================================


@pytest.mark.unit
class TestJournal:
    async def test_history_entries_newest_first(self, ledger_service, seed_user, clock):
        user_id = await seed_user("frank", chips=100)
        await ledger_service.apply_delta(user_id, 50, "add", "win", "staff@example.com")
        clock.advance(minutes=1)
        await ledger_service.apply_delta(user_id, 200, "subtract", "bust", "staff@example.com")

        history = await ledger_service.get_chip_history(user_id)

        assert len(history) == 2
        latest = history[0]
        assert latest.type is ChipDirection.SUBTRACT
        assert latest.previous_amount == 150
        assert latest.new_amount == 0
        assert latest.change_amount == -150
        assert latest.requested_amount == -200
        assert latest.reason == "bust"
        assert latest.staff_email == "staff@example.com"
        assert latest.date == "2025-06-15"

    async def test_history_limit(self, ledger_service, seed_user, clock):
        user_id = await seed_user("gina", chips=0)
        for _ in range(3):
            await ledger_service.apply_delta(user_id, 1, "add", "win", "staff")
            clock.advance(seconds=1)

        history = await ledger_service.get_chip_history(user_id, limit=2)

        assert [entry.new_amount for entry in history] == [3, 2]

    async def test_history_cache_is_cleared_by_mutation(self, ledger_service, seed_user, clock):
        user_id = await seed_user("hank", chips=0)
        await ledger_service.apply_delta(user_id, 1, "add", "win", "staff")
        assert len(await ledger_service.get_chip_history(user_id)) == 1

        clock.advance(seconds=1)
        await ledger_service.apply_delta(user_id, 1, "add", "win", "staff")

        assert len(await ledger_service.get_chip_history(user_id)) == 2

    async def test_daily_summary_accumulates_within_a_day(self, ledger_service, seed_user, store):
        user_id = await seed_user("ivy", chips=100)

        await ledger_service.apply_delta(user_id, 50, "add", "w", "staff")
        await ledger_service.apply_delta(user_id, 30, "subtract", "l", "staff")
        await ledger_service.apply_delta(user_id, 200, "subtract", "l", "staff")

        summaries = await ledger_service.get_daily_summaries(user_id)
        assert len(summaries) == 1
        summary = summaries[0]
        assert summary.date == "2025-06-15"
        assert summary.start_chips == 100
        assert summary.end_chips == 0
        assert summary.net_change == -180
        assert summary.transactions == 3

    async def test_daily_summaries_newest_date_first(self, ledger_service, seed_user, clock):
        user_id = await seed_user("jack", chips=0)
        await ledger_service.apply_delta(user_id, 5, "add", "w", "staff")
        clock.advance(days=1)
        await ledger_service.apply_delta(user_id, 7, "add", "w", "staff")

        summaries = await ledger_service.get_daily_summaries(user_id, days=5)

        assert [s.date for s in summaries] == ["2025-06-16", "2025-06-15"]
        assert summaries[0].start_chips == 5

    async def test_recent_changes_across_users(self, ledger_service, seed_user, clock):
        first = await seed_user("kim", chips=0)
        second = await seed_user("lee", chips=0)
        await ledger_service.apply_delta(first, 1, "add", "w", "staff")
        clock.advance(seconds=5)
        await ledger_service.apply_delta(second, 2, "add", "w", "staff")

        recent = await ledger_service.get_recent_changes(limit=1)

        assert [entry.username for entry in recent] == ["lee"]

    async def test_invalid_read_arguments_yield_empty(self, ledger_service):
        assert await ledger_service.get_chip_history("", limit=5) == []
        assert await ledger_service.get_daily_summaries("u1", days=0) == []
        assert await ledger_service.get_recent_changes(limit=-1) == []


# ============================================================================
# CACHE & EVENTS
# ============================================================================


@pytest.mark.unit
class TestSecondaryEffects:
    async def test_all_users_memory_slot_is_patched(self, ledger_service, seed_user, cache):
        # Arrange: the listing is cached in memory before the mutation
        user_id = await seed_user("mona", chips=100, monthly_totals={"2025-06": 5})
        await cache.get(USERS_COLLECTION, cache_key="all_users")

        # Act
        await ledger_service.apply_delta(user_id, 50, "add", "w", "staff")

        # Assert
        result = await cache.get(USERS_COLLECTION, cache_key="all_users")
        assert result.source is CacheSource.MEMORY
        patched = result.documents[0].data
        assert patched["chips"] == 150
        assert patched["totalEarnings"] == 50
        assert patched["monthlyTotals"]["2025-06"] == 55

    async def test_slot_already_holding_the_write_is_dropped(
        self, ledger_service, seed_user, cache, store, mocker
    ):
        # Arrange: another mutation reloads the listing right after this write lands
        user_id = await seed_user("pia", chips=100, monthly_totals={"2025-06": 5})
        await cache.get(USERS_COLLECTION, cache_key="all_users")
        write_user = store.update

        async def write_then_reload(collection, doc_id, partial):
            await write_user(collection, doc_id, partial)
            if collection == USERS_COLLECTION:
                await cache.get(USERS_COLLECTION, cache_key="all_users", force_refresh=True)

        mocker.patch.object(store, "update", side_effect=write_then_reload)

        # Act
        assert await ledger_service.apply_delta(user_id, 50, "add", "w", "staff")

        # Assert: the delta is counted once
        result = await cache.get(USERS_COLLECTION, cache_key="all_users")
        assert result.source is CacheSource.SERVER
        assert result.documents[0].data["monthlyTotals"]["2025-06"] == 55
        assert result.documents[0].data["totalEarnings"] == 50

    async def test_unprimed_listing_is_fetched_after_the_write(
        self, ledger_service, seed_user, cache
    ):
        user_id = await seed_user("nick", chips=10)

        await ledger_service.apply_delta(user_id, 5, "add", "w", "staff")

        status = cache.get_status()["all_users"]
        assert status.source is CacheSource.SERVER
        result = await cache.get(USERS_COLLECTION, cache_key="all_users")
        assert result.documents[0].data["chips"] == 15

    async def test_user_cache_key_is_cleared(self, ledger_service, seed_user, cache):
        user_id = await seed_user("olga", chips=10)
        await cache.get(USERS_COLLECTION, cache_key="user_olga")

        await ledger_service.apply_delta(user_id, 5, "add", "w", "staff")

        assert "user_olga" not in cache.get_status()

    async def test_chips_changed_event_payload(
        self, store, cache, config_manager, clock, mock_event_bus, seed_user
    ):
        service = LedgerService(store, cache, config_manager, mock_event_bus, clock=clock)
        user_id = await seed_user("pat", chips=20)

        await service.apply_delta(user_id, 30, "subtract", "loss", "staff@example.com")

        mock_event_bus.publish.assert_awaited_once()
        event_name, payload = mock_event_bus.publish.await_args.args
        assert event_name == CHIPS_CHANGED_EVENT
        assert payload["user_id"] == user_id
        assert payload["previous_amount"] == 20
        assert payload["new_amount"] == 0
        assert payload["requested_amount"] == -30
        assert payload["direction"] == "subtract"
        assert payload["actor"] == "staff@example.com"
        assert (payload["year"], payload["month"], payload["period"]) == (2025, 6, "2025-06")

    async def test_history_failure_does_not_fail_the_mutation(
        self, ledger_service, seed_user, store, mocker
    ):
        user_id = await seed_user("quin", chips=10)
        mocker.patch.object(
            ledger_service._journal,
            "append_history",
            side_effect=StoreError("add", "chipHistory", reason="quota exceeded"),
        )
        log_error = mocker.spy(ledger_service, "log_error")

        assert await ledger_service.apply_delta(user_id, 5, "add", "w", "staff") is True

        assert (await _user_data(store, user_id))["chips"] == 15
        assert log_error.call_args.args[0] == "append_history"
        # Later effects still ran
        assert len(await ledger_service.get_daily_summaries(user_id)) == 1

    async def test_event_failure_does_not_fail_the_mutation(
        self, store, cache, config_manager, clock, mock_event_bus, seed_user
    ):
        mock_event_bus.publish.side_effect = RuntimeError("bus down")
        service = LedgerService(store, cache, config_manager, mock_event_bus, clock=clock)
        user_id = await seed_user("rita", chips=10)

        assert await service.apply_delta(user_id, 5, "add", "w", "staff") is True

    async def test_core_write_failure_propagates(self, ledger_service, seed_user, store, mocker):
        user_id = await seed_user("sam", chips=10)
        mocker.patch.object(
            store, "update", side_effect=StoreError("update", "users", reason="unavailable")
        )

        with pytest.raises(StoreError):
            await ledger_service.apply_delta(user_id, 5, "add", "w", "staff")

        assert store.count("chipHistory") == 0
