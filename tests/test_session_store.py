"""Tests for SessionStore against a temporary SQLite database."""

import asyncio

import pytest

from mc_presence.db.store import SessionStore
from mc_presence.utils.time import datetime_to_ms

T0 = 1_700_000_000_000


class TestAccounts:
    @pytest.mark.asyncio
    async def test_upsert_creates_account(self, store):
        account = await store.upsert_account("uuid-alice", "Alice", T0)

        assert account.identifier == "uuid-alice"
        assert account.display_name == "Alice"
        assert datetime_to_ms(account.first_seen) == T0
        assert datetime_to_ms(account.last_seen) == T0
        assert account.total_playtime_ms == 0
        assert account.session_count == 0
        assert account.session_start_ms is None

    @pytest.mark.asyncio
    async def test_upsert_updates_name_keeps_first_seen(self, store):
        await store.upsert_account("uuid-alice", "Alice", T0)
        account = await store.upsert_account("uuid-alice", "Alicia", T0 + 5_000)

        assert account.display_name == "Alicia"
        assert datetime_to_ms(account.first_seen) == T0
        assert datetime_to_ms(account.last_seen) == T0 + 5_000
        assert await store.count_accounts() == 1

    @pytest.mark.asyncio
    async def test_get_by_name_prefers_most_recent_holder(self, store):
        await store.upsert_account("uuid-old", "Steve", T0)
        await store.upsert_account("uuid-new", "Steve", T0 + 1_000)

        account = await store.get_account_by_name("Steve")
        assert account.identifier == "uuid-new"
        assert await store.get_account_by_name("Nobody") is None
        assert await store.get_account_by_identifier("uuid-missing") is None

    @pytest.mark.asyncio
    async def test_get_all_accounts_ordered_by_playtime(self, store):
        for identifier, playtime in (("a", 1_000), ("b", 3_000), ("c", 2_000)):
            await store.upsert_account(identifier, identifier.upper(), T0)
            await store.open_session(identifier, T0)
            await store.close_session(identifier, T0 + playtime)

        accounts = await store.get_all_accounts()
        assert [a.identifier for a in accounts] == ["b", "c", "a"]
        assert await store.count_accounts() == 3


class TestSessions:
    @pytest.mark.asyncio
    async def test_open_and_close_session(self, store):
        await store.upsert_account("uuid-alice", "Alice", T0)
        assert await store.open_session("uuid-alice", T0)

        account = await store.get_account_by_identifier("uuid-alice")
        assert account.session_start_ms == T0
        assert account.session_count == 1

        assert await store.close_session("uuid-alice", T0 + 125_000) == 125_000

        account = await store.get_account_by_identifier("uuid-alice")
        assert account.session_start_ms is None
        assert account.total_playtime_ms == 125_000
        assert datetime_to_ms(account.last_seen) == T0 + 125_000

    @pytest.mark.asyncio
    async def test_open_session_unknown_account(self, store):
        assert not await store.open_session("uuid-missing", T0)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, store):
        await store.upsert_account("uuid-alice", "Alice", T0)
        await store.open_session("uuid-alice", T0)

        assert await store.close_session("uuid-alice", T0 + 1_000) == 1_000
        assert await store.close_session("uuid-alice", T0 + 2_000) is None
        assert await store.close_session("uuid-missing", T0) is None

        account = await store.get_account_by_identifier("uuid-alice")
        assert account.total_playtime_ms == 1_000

    @pytest.mark.asyncio
    async def test_close_with_expected_start(self, store):
        await store.upsert_account("uuid-alice", "Alice", T0)
        await store.open_session("uuid-alice", T0 + 10_000)

        assert await store.close_session("uuid-alice", T0 + 20_000, T0) is None
        assert (
            await store.close_session("uuid-alice", T0 + 20_000, T0 + 10_000) == 10_000
        )

    @pytest.mark.asyncio
    async def test_close_before_start_clamps_to_zero(self, store):
        await store.upsert_account("uuid-alice", "Alice", T0)
        await store.open_session("uuid-alice", T0 + 5_000)

        assert await store.close_session("uuid-alice", T0) == 0

    @pytest.mark.asyncio
    async def test_concurrent_closes_credit_once(self, store):
        await store.upsert_account("uuid-alice", "Alice", T0)
        await store.open_session("uuid-alice", T0)

        results = await asyncio.gather(
            *(store.close_session("uuid-alice", T0 + 1_000) for _ in range(3))
        )

        assert [r for r in results if r is not None] == [1_000]
        account = await store.get_account_by_identifier("uuid-alice")
        assert account.total_playtime_ms == 1_000

    @pytest.mark.asyncio
    async def test_refresh_last_seen(self, store):
        await store.upsert_account("uuid-alice", "Alice", T0)
        await store.refresh_last_seen("uuid-alice", T0 + 60_000)

        account = await store.get_account_by_identifier("uuid-alice")
        assert datetime_to_ms(account.last_seen) == T0 + 60_000


class TestStaleSessions:
    @pytest.mark.asyncio
    async def test_stale_boundary(self, store):
        await store.upsert_account("uuid-bob", "Bob", T0)
        await store.open_session("uuid-bob", T0)

        assert await store.get_stale_open_sessions(180_000, T0 + 180_000) == []
        stale = await store.get_stale_open_sessions(180_000, T0 + 180_001)
        assert [a.identifier for a in stale] == ["uuid-bob"]

    @pytest.mark.asyncio
    async def test_closed_sessions_are_never_stale(self, store):
        await store.upsert_account("uuid-bob", "Bob", T0)
        await store.open_session("uuid-bob", T0)
        await store.close_session("uuid-bob", T0 + 1_000)

        assert await store.get_stale_open_sessions(1_000, T0 + 3_600_000) == []

    @pytest.mark.asyncio
    async def test_stale_sessions_oldest_first(self, store):
        for offset, identifier in ((20_000, "late"), (0, "early"), (10_000, "middle")):
            await store.upsert_account(identifier, identifier, T0 + offset)
            await store.open_session(identifier, T0 + offset)

        stale = await store.get_stale_open_sessions(1_000, T0 + 100_000)
        assert [a.identifier for a in stale] == ["early", "middle", "late"]

    @pytest.mark.asyncio
    async def test_open_sessions(self, store):
        await store.upsert_account("a", "A", T0)
        await store.upsert_account("b", "B", T0)
        await store.open_session("a", T0)

        assert [a.identifier for a in await store.get_open_sessions()] == ["a"]


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_heartbeat_single_row(self, store):
        assert await store.get_heartbeat_ms() is None

        await store.upsert_heartbeat(T0)
        await store.upsert_heartbeat(T0 + 60_000)

        assert await store.get_heartbeat_ms() == T0 + 60_000


class TestDurability:
    @pytest.mark.asyncio
    async def test_state_survives_reopen(self, db_path):
        first = SessionStore(f"sqlite:///{db_path}")
        await first.init()
        await first.upsert_account("uuid-alice", "Alice", T0)
        await first.open_session("uuid-alice", T0)
        await first.close()

        second = SessionStore(f"sqlite:///{db_path}")
        await second.init()
        try:
            account = await second.get_account_by_identifier("uuid-alice")
            assert account.session_start_ms == T0
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_close_twice(self, store):
        await store.close()
        await store.close()
