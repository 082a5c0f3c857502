"""SQLite implementation of the tenant queue store."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from guild_music_orchestrator.domain.music.entities import QueueEntry
from guild_music_orchestrator.domain.music.repository import TenantQueueStore
from guild_music_orchestrator.domain.shared.datetime_utils import from_iso, to_iso, utcnow
from guild_music_orchestrator.domain.shared.messages import LogTemplates

from ..database import translate_sqlite_error

if TYPE_CHECKING:
    from guild_music_orchestrator.application.services.retry_executor import RetryExecutor
    from guild_music_orchestrator.domain.shared.context import CommandContext

    from ..database import Database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _backend(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise translate_sqlite_error(exc, operation) from exc


class SQLiteTenantQueueStore(TenantQueueStore):
    def __init__(self, database: Database, retry_executor: RetryExecutor | None = None) -> None:
        self._db = database
        self._retry = retry_executor

    async def is_allowed(self, ctx: CommandContext) -> bool:
        try:
            async with _backend("is_allowed"):
                row = await self._db.fetch_one(
                    "SELECT 1 AS present FROM guild_allowlist WHERE guild_id = ?",
                    (ctx.guild_id,),
                )
        except Exception as exc:
            logger.error(LogTemplates.ALLOWLIST_CHECK_FAILED, ctx, exc)
            return False
        return row is not None

    async def enqueue(self, ctx: CommandContext, track_ref: str) -> int:
        async with _backend("enqueue"), self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO queue_sequences (guild_id, last_sequence) VALUES (?, 1)
                ON CONFLICT(guild_id) DO UPDATE SET last_sequence = last_sequence + 1
                """,
                (ctx.guild_id,),
            )
            cursor = await conn.execute(
                "SELECT last_sequence FROM queue_sequences WHERE guild_id = ?",
                (ctx.guild_id,),
            )
            row = await cursor.fetchone()
            sequence_number = int(row["last_sequence"])

            await conn.execute(
                """
                INSERT INTO queue_entries (guild_id, sequence_number, track_ref, enqueued_at)
                VALUES (?, ?, ?, ?)
                """,
                (ctx.guild_id, sequence_number, track_ref, to_iso(utcnow())),
            )
            cursor = await conn.execute(
                """
                SELECT COUNT(*) AS rank FROM queue_entries
                WHERE guild_id = ? AND sequence_number <= ?
                """,
                (ctx.guild_id, sequence_number),
            )
            rank_row = await cursor.fetchone()
            rank = int(rank_row["rank"])

        logger.debug(LogTemplates.QUEUE_ENQUEUED, ctx, sequence_number, rank)
        return rank

    async def dequeue_head(self, ctx: CommandContext) -> str | None:
        entry = await self.peek_head_entry(ctx)
        if entry is None:
            return None
        if not await self._delete_entry(ctx, entry.sequence_number, "dequeue_head"):
            logger.debug(LogTemplates.QUEUE_DEQUEUE_LOST_RACE, ctx, entry.sequence_number)
            return None
        logger.debug(LogTemplates.QUEUE_DEQUEUED, ctx, entry.sequence_number)
        return entry.track_ref

    async def peek_head(self, ctx: CommandContext) -> str | None:
        entry = await self.peek_head_entry(ctx)
        return entry.track_ref if entry is not None else None

    async def peek_head_entry(self, ctx: CommandContext) -> QueueEntry | None:
        async with _backend("peek_head"):
            row = await self._db.fetch_one(
                """
                SELECT * FROM queue_entries
                WHERE guild_id = ?
                ORDER BY sequence_number ASC
                LIMIT 1
                """,
                (ctx.guild_id,),
            )
        return self._row_to_entry(row) if row is not None else None

    async def remove_entry(self, ctx: CommandContext, sequence_number: int) -> bool:
        removed = await self._delete_entry(ctx, sequence_number, "remove_entry")
        if removed:
            logger.debug(LogTemplates.QUEUE_ENTRY_REMOVED, ctx, sequence_number)
        return removed

    async def size(self, ctx: CommandContext) -> int:
        async with _backend("size"):
            row = await self._db.fetch_one(
                "SELECT COUNT(*) AS count FROM queue_entries WHERE guild_id = ?",
                (ctx.guild_id,),
            )
        return int(row["count"]) if row else 0

    async def list_entries(self, ctx: CommandContext, limit: int | None = None) -> list[QueueEntry]:
        sql = "SELECT * FROM queue_entries WHERE guild_id = ? ORDER BY sequence_number ASC"
        params: tuple[Any, ...] = (ctx.guild_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (ctx.guild_id, limit)
        async with _backend("list_entries"):
            rows = await self._db.fetch_all(sql, params)
        return [self._row_to_entry(row) for row in rows]

    async def clear_all(self, ctx: CommandContext) -> int:
        async with _backend("clear_all"):
            rows = await self._db.fetch_all(
                "SELECT sequence_number FROM queue_entries WHERE guild_id = ?",
                (ctx.guild_id,),
            )

        removed = 0
        for row in rows:
            sequence_number = int(row["sequence_number"])
            if await self._delete_with_retry(ctx, sequence_number):
                removed += 1

        logger.info(LogTemplates.QUEUE_CLEARED, ctx, removed)
        return removed

    async def allow(self, guild_id: int) -> bool:
        async with _backend("allow"):
            rowcount = await self._db.execute(
                "INSERT OR IGNORE INTO guild_allowlist (guild_id, added_at) VALUES (?, ?)",
                (guild_id, to_iso(utcnow())),
            )
        if rowcount:
            logger.info(LogTemplates.ALLOWLIST_GRANTED, guild_id)
        return rowcount > 0

    async def revoke(self, guild_id: int) -> bool:
        async with _backend("revoke"):
            rowcount = await self._db.execute(
                "DELETE FROM guild_allowlist WHERE guild_id = ?",
                (guild_id,),
            )
        if rowcount:
            logger.info(LogTemplates.ALLOWLIST_REVOKED, guild_id)
        return rowcount > 0

    async def _delete_with_retry(self, ctx: CommandContext, sequence_number: int) -> bool:
        if self._retry is None:
            return await self._delete_entry(ctx, sequence_number, "clear_all")
        return await self._retry.execute_with_retry(
            lambda: self._delete_entry(ctx, sequence_number, "clear_all"),
            context=ctx,
        )

    async def _delete_entry(self, ctx: CommandContext, sequence_number: int, operation: str) -> bool:
        """Conditional delete: exactly one caller observes rowcount == 1."""
        async with _backend(operation):
            rowcount = await self._db.execute(
                "DELETE FROM queue_entries WHERE guild_id = ? AND sequence_number = ?",
                (ctx.guild_id, sequence_number),
            )
        return rowcount == 1

    def _row_to_entry(self, row: dict[str, Any]) -> QueueEntry:
        return QueueEntry(
            guild_id=int(row["guild_id"]),
            sequence_number=int(row["sequence_number"]),
            track_ref=row["track_ref"],
            enqueued_at=from_iso(row["enqueued_at"]),
        )
