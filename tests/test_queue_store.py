"""
Tests for the SQLite tenant queue store and allowlist.
"""

import asyncio
import sqlite3
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import GUILD_ID, OTHER_GUILD_ID, make_ctx
from guild_music_orchestrator.domain.shared.exceptions import (
    BackendAccessDeniedError,
    BackendMisconfiguredError,
    BackendThrottledError,
    BackendUnavailableError,
)
from guild_music_orchestrator.infrastructure.persistence.database import translate_sqlite_error
from guild_music_orchestrator.infrastructure.persistence.repositories.queue_store import (
    SQLiteTenantQueueStore,
)


class TestEnqueueAndSize:
    @pytest.mark.asyncio
    async def test_enqueue_returns_one_based_rank(self, queue_store):
        ctx = make_ctx()

        assert await queue_store.enqueue(ctx, "first") == 1
        assert await queue_store.enqueue(ctx, "second") == 2
        assert await queue_store.enqueue(ctx, "third") == 3

    @pytest.mark.asyncio
    async def test_size_counts_sequential_enqueues(self, queue_store):
        ctx = make_ctx()
        for i in range(5):
            await queue_store.enqueue(ctx, f"track-{i}")

        assert await queue_store.size(ctx) == 5

    @pytest.mark.asyncio
    async def test_size_of_unknown_guild_is_zero(self, queue_store):
        assert await queue_store.size(make_ctx(OTHER_GUILD_ID)) == 0

    @pytest.mark.asyncio
    async def test_track_ref_round_trips_unchanged(self, queue_store):
        ctx = make_ctx()
        ref = "https://example.com/watch?v=abc&list=xyz ünïcode"
        await queue_store.enqueue(ctx, ref)

        assert await queue_store.peek_head(ctx) == ref


class TestDequeue:
    @pytest.mark.asyncio
    async def test_dequeue_in_enqueue_order(self, queue_store):
        ctx = make_ctx()
        for ref in ("a", "b", "c"):
            await queue_store.enqueue(ctx, ref)

        assert [await queue_store.dequeue_head(ctx) for _ in range(3)] == ["a", "b", "c"]
        assert await queue_store.dequeue_head(ctx) is None

    @pytest.mark.asyncio
    async def test_guilds_do_not_interfere(self, queue_store):
        ctx_a, ctx_b = make_ctx(GUILD_ID), make_ctx(OTHER_GUILD_ID)
        await queue_store.enqueue(ctx_a, "a1")
        await queue_store.enqueue(ctx_b, "b1")
        await queue_store.enqueue(ctx_a, "a2")

        assert await queue_store.dequeue_head(ctx_b) == "b1"
        assert await queue_store.dequeue_head(ctx_a) == "a1"
        assert await queue_store.dequeue_head(ctx_a) == "a2"
        assert await queue_store.size(ctx_b) == 0

    @pytest.mark.asyncio
    async def test_racing_dequeues_take_an_entry_at_most_once(self, queue_store):
        ctx = make_ctx()
        await queue_store.enqueue(ctx, "only")

        results = await asyncio.gather(
            queue_store.dequeue_head(ctx), queue_store.dequeue_head(ctx)
        )

        assert sorted(results, key=lambda r: r is None) == ["only", None]
        assert await queue_store.size(ctx) == 0

    @pytest.mark.asyncio
    async def test_peek_does_not_remove(self, queue_store):
        ctx = make_ctx()
        await queue_store.enqueue(ctx, "a")

        entry = await queue_store.peek_head_entry(ctx)

        assert entry is not None
        assert entry.track_ref == "a"
        assert entry.guild_id == GUILD_ID
        assert await queue_store.size(ctx) == 1

    @pytest.mark.asyncio
    async def test_remove_entry_is_conditional(self, queue_store):
        ctx = make_ctx()
        await queue_store.enqueue(ctx, "a")
        entry = await queue_store.peek_head_entry(ctx)

        assert await queue_store.remove_entry(ctx, entry.sequence_number) is True
        assert await queue_store.remove_entry(ctx, entry.sequence_number) is False


class TestSequenceNumbers:
    @pytest.mark.asyncio
    async def test_sequence_numbers_are_never_reused_after_clear(self, queue_store):
        ctx = make_ctx()
        await queue_store.enqueue(ctx, "a")
        await queue_store.enqueue(ctx, "b")
        before = [e.sequence_number for e in await queue_store.list_entries(ctx)]

        await queue_store.clear_all(ctx)
        await queue_store.enqueue(ctx, "c")
        after = await queue_store.list_entries(ctx)

        assert after[0].sequence_number > max(before)

    @pytest.mark.asyncio
    async def test_list_entries_respects_limit(self, queue_store):
        ctx = make_ctx()
        for i in range(4):
            await queue_store.enqueue(ctx, f"t{i}")

        entries = await queue_store.list_entries(ctx, limit=2)

        assert [e.track_ref for e in entries] == ["t0", "t1"]


class TestClearAll:
    @pytest.mark.asyncio
    async def test_clear_all_removes_every_entry(self, queue_store):
        ctx = make_ctx()
        for i in range(3):
            await queue_store.enqueue(ctx, f"t{i}")
        await queue_store.enqueue(make_ctx(OTHER_GUILD_ID), "other")

        removed = await queue_store.clear_all(ctx)

        assert removed == 3
        assert await queue_store.size(ctx) == 0
        assert await queue_store.size(make_ctx(OTHER_GUILD_ID)) == 1

    @pytest.mark.asyncio
    async def test_clear_all_retries_individual_deletes(self, queue_store, database, monkeypatch):
        ctx = make_ctx()
        for i in range(3):
            await queue_store.enqueue(ctx, f"t{i}")

        real_execute = database.execute
        failures = {"left": 1}

        async def flaky_execute(sql, parameters=()):
            if sql.startswith("DELETE FROM queue_entries") and failures["left"]:
                failures["left"] -= 1
                raise sqlite3.OperationalError("disk I/O hiccup")
            return await real_execute(sql, parameters)

        monkeypatch.setattr(database, "execute", flaky_execute)

        removed = await queue_store.clear_all(ctx)

        assert removed == 3
        assert await queue_store.size(ctx) == 0


class TestAllowlist:
    @pytest.mark.asyncio
    async def test_allow_then_is_allowed(self, queue_store):
        ctx = make_ctx()
        assert await queue_store.is_allowed(ctx) is False

        assert await queue_store.allow(GUILD_ID) is True
        assert await queue_store.allow(GUILD_ID) is False
        assert await queue_store.is_allowed(ctx) is True

    @pytest.mark.asyncio
    async def test_revoke(self, queue_store):
        await queue_store.allow(GUILD_ID)

        assert await queue_store.revoke(GUILD_ID) is True
        assert await queue_store.revoke(GUILD_ID) is False
        assert await queue_store.is_allowed(make_ctx()) is False

    @pytest.mark.asyncio
    async def test_is_allowed_fails_closed_on_backend_error(self):
        database = MagicMock()
        database.fetch_one = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))
        store = SQLiteTenantQueueStore(database)

        assert await store.is_allowed(make_ctx()) is False

    @pytest.mark.asyncio
    async def test_is_allowed_fails_closed_on_unexpected_error(self):
        database = MagicMock()
        database.fetch_one = AsyncMock(side_effect=RuntimeError("boom"))
        store = SQLiteTenantQueueStore(database)

        assert await store.is_allowed(make_ctx()) is False


class TestBackendErrorTranslation:
    @staticmethod
    def _error(code: int | None) -> sqlite3.Error:
        exc = sqlite3.OperationalError("failure")
        if code is not None:
            exc.sqlite_errorcode = code
        return exc

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (5, BackendThrottledError),
            (6, BackendThrottledError),
            (5 | (1 << 8), BackendThrottledError),  # extended code SQLITE_BUSY_RECOVERY
            (3, BackendAccessDeniedError),
            (8, BackendAccessDeniedError),
            (23, BackendAccessDeniedError),
            (14, BackendMisconfiguredError),
            (26, BackendMisconfiguredError),
            (10, BackendUnavailableError),
            (None, BackendUnavailableError),
        ],
    )
    def test_translation(self, code, expected):
        translated = translate_sqlite_error(self._error(code), "enqueue")

        assert type(translated) is expected
        assert translated.operation == "enqueue"

    @pytest.mark.asyncio
    async def test_store_raises_backend_errors(self):
        database = MagicMock()
        database.fetch_one = AsyncMock(side_effect=self._error(5))
        store = SQLiteTenantQueueStore(database)

        with pytest.raises(BackendThrottledError):
            await store.size(make_ctx())
