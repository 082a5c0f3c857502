"""SQLite database with per-operation connections and WAL mode."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite

from guild_music_orchestrator.domain.shared.constants import SQLiteErrorCodes, SQLPragmas
from guild_music_orchestrator.domain.shared.exceptions import (
    BackendAccessDeniedError,
    BackendError,
    BackendMisconfiguredError,
    BackendThrottledError,
    BackendUnavailableError,
)
from guild_music_orchestrator.domain.shared.messages import ErrorMessages, LogTemplates

if TYPE_CHECKING:
    from ...config.settings import DatabaseSettings

logger = logging.getLogger(__name__)

_THROTTLED = {SQLiteErrorCodes.BUSY, SQLiteErrorCodes.LOCKED}
_ACCESS_DENIED = {SQLiteErrorCodes.PERM, SQLiteErrorCodes.AUTH, SQLiteErrorCodes.READONLY}
_MISCONFIGURED = {SQLiteErrorCodes.CANTOPEN, SQLiteErrorCodes.NOTADB}


def translate_sqlite_error(exc: sqlite3.Error, operation: str) -> BackendError:
    """Tag a driver error with the backend error kind it represents."""
    code = getattr(exc, "sqlite_errorcode", None)
    primary = code & 0xFF if isinstance(code, int) else None
    message = ErrorMessages.BACKEND_OPERATION_FAILED.format(operation=operation, error=exc)
    if primary in _THROTTLED:
        return BackendThrottledError(message, operation=operation)
    if primary in _ACCESS_DENIED:
        return BackendAccessDeniedError(message, operation=operation)
    if primary in _MISCONFIGURED:
        return BackendMisconfiguredError(message, operation=operation)
    return BackendUnavailableError(message, operation=operation)


class Database:
    def __init__(self, url: str, settings: DatabaseSettings | None = None) -> None:
        if url.startswith("sqlite:///"):
            self._db_path = url[10:]  # Remove "sqlite:///"
        else:
            self._db_path = url

        self._initialized = False
        self._keepalive_conn: aiosqlite.Connection | None = None
        self._busy_timeout = settings.busy_timeout_ms if settings else 5000
        self._connection_timeout = settings.connection_timeout_s if settings else 10

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return

        try:
            if self._db_path == ":memory:":
                # The shared in-memory database lives only while some connection is open.
                if self._keepalive_conn is None:
                    self._keepalive_conn = await self._connect()
            else:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            async with self.transaction() as conn:
                await self._ensure_schema(conn)
        except sqlite3.Error as exc:
            raise translate_sqlite_error(exc, "initialize") from exc
        except OSError as exc:
            raise BackendMisconfiguredError(
                ErrorMessages.BACKEND_OPERATION_FAILED.format(operation="initialize", error=exc),
                operation="initialize",
            ) from exc

        self._initialized = True
        logger.info(LogTemplates.DATABASE_INITIALIZED, self._db_path)

    async def _ensure_schema(self, conn: aiosqlite.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS queue_entries (
                guild_id INTEGER NOT NULL,
                sequence_number INTEGER NOT NULL,
                track_ref TEXT NOT NULL,
                enqueued_at TEXT NOT NULL,
                PRIMARY KEY (guild_id, sequence_number)
            )
            """
        )

        # Separate counter so sequence numbers survive clear_all and are never reused.
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS queue_sequences (
                guild_id INTEGER PRIMARY KEY,
                last_sequence INTEGER NOT NULL
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS guild_allowlist (
                guild_id INTEGER PRIMARY KEY,
                added_at TEXT NOT NULL
            )
            """
        )

    async def _connect(self) -> aiosqlite.Connection:
        if self._db_path == ":memory:":
            # Plain ":memory:" is private to one connection; the shared-cache URI is not.
            conn = await aiosqlite.connect(
                "file:guild-music-orchestrator?mode=memory&cache=shared",
                uri=True,
                timeout=self._connection_timeout,
            )
        else:
            conn = await aiosqlite.connect(self._db_path, timeout=self._connection_timeout)
        conn.row_factory = aiosqlite.Row

        for pragma in (
            SQLPragmas.JOURNAL_MODE_WAL,
            SQLPragmas.FOREIGN_KEYS_ON,
            SQLPragmas.BUSY_TIMEOUT.format(timeout=self._busy_timeout),
        ):
            await conn.execute(pragma)
        return conn

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Short-lived connection; closed on exit whatever happens."""
        conn = await self._connect()
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Connection whose work is committed on success and rolled back on error."""
        async with self.connection() as conn:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def execute(self, sql: str, parameters: tuple[Any, ...] = ()) -> int:
        """Run one write statement in its own transaction and return its rowcount."""
        async with self.transaction() as conn:
            cursor = await conn.execute(sql, parameters)
            return cursor.rowcount

    async def fetch_one(self, sql: str, parameters: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        async with self.connection() as conn:
            cursor = await conn.execute(sql, parameters)
            row = await cursor.fetchone()
        return None if row is None else dict(row)

    async def fetch_all(self, sql: str, parameters: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        async with self.connection() as conn:
            cursor = await conn.execute(sql, parameters)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def close(self) -> None:
        """Drop the in-memory keepalive connection, if any; file databases need nothing."""
        keepalive, self._keepalive_conn = self._keepalive_conn, None
        if keepalive is not None:
            await keepalive.close()
        self._initialized = False
        logger.info(LogTemplates.DATABASE_CLOSED)
