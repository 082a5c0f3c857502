"""Dependency Injection Container

Builds the object graph (database, queue store, retry executor, node pool,
orchestrator, dispatcher) lazily and owns its start-up and shutdown order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..domain.shared.messages import ErrorMessages, LogTemplates

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ..application.commands.dispatcher import CommandDispatcher
    from ..application.interfaces.node_connection import NodeConnection
    from ..application.services.playback_orchestrator import PlaybackOrchestrator
    from ..application.services.retry_executor import RetryExecutor
    from ..infrastructure.lavalink.node_pool import NodePool
    from ..infrastructure.persistence.database import Database
    from ..infrastructure.persistence.repositories.queue_store import SQLiteTenantQueueStore
    from .settings import NodeSettings, Settings


@dataclass
class Container:
    """Dependency injection container.

    Components are created on first access. The node pool needs the bot's own
    user id, so it only becomes available once :meth:`initialize` ran.
    """

    settings: Settings
    # Overrides how node connections are built; defaults to Lavalink over HTTP/websocket.
    node_connection_factory: Callable[[NodeSettings], NodeConnection] | None = None

    _identity: int | None = None
    _database: Database | None = None
    _queue_store: SQLiteTenantQueueStore | None = None
    _retry_executor: RetryExecutor | None = None
    _node_pool: NodePool | None = None
    _orchestrator: PlaybackOrchestrator | None = None
    _dispatcher: CommandDispatcher | None = None

    # === Persistence ===

    @property
    def database(self) -> Database:
        if self._database is None:
            from ..infrastructure.persistence.database import Database

            self._database = Database(self.settings.database.url, settings=self.settings.database)
        return self._database

    @property
    def queue_store(self) -> SQLiteTenantQueueStore:
        if self._queue_store is None:
            from ..infrastructure.persistence.repositories.queue_store import (
                SQLiteTenantQueueStore,
            )

            self._queue_store = SQLiteTenantQueueStore(
                self.database, retry_executor=self.retry_executor
            )
        return self._queue_store

    # === Services ===

    @property
    def retry_executor(self) -> RetryExecutor:
        if self._retry_executor is None:
            from ..application.services.retry_executor import RetryExecutor

            self._retry_executor = RetryExecutor(self.settings.retry.to_policy())
        return self._retry_executor

    @property
    def node_pool(self) -> NodePool:
        if self._node_pool is None:
            if self._identity is None:
                raise RuntimeError(ErrorMessages.CONTAINER_NOT_INITIALIZED)
            from ..infrastructure.lavalink.node_pool import NodePool

            lavalink = self.settings.lavalink
            self._node_pool = NodePool(
                lavalink.nodes,
                self.node_connection_factory or self._lavalink_connection,
                reconnect_policy=self.settings.reconnect.to_policy(),
                reconnect_max_attempts=self.settings.reconnect.max_attempts,
                rpc_timeout=lavalink.rpc_timeout_s,
                connect_timeout=lavalink.connect_timeout_s,
            )
        return self._node_pool

    @property
    def orchestrator(self) -> PlaybackOrchestrator:
        if self._orchestrator is None:
            from ..application.services.playback_orchestrator import PlaybackOrchestrator

            self._orchestrator = PlaybackOrchestrator(
                queue_store=self.queue_store,
                node_pool=self.node_pool,
                retry_executor=self.retry_executor,
                max_advance_attempts=self.settings.playback.max_advance_attempts,
            )
        return self._orchestrator

    @property
    def dispatcher(self) -> CommandDispatcher:
        if self._dispatcher is None:
            from ..application.commands.dispatcher import CommandDispatcher

            self._dispatcher = CommandDispatcher(
                orchestrator=self.orchestrator,
                queue_store=self.queue_store,
                retry_executor=self.retry_executor,
            )
        return self._dispatcher

    def _lavalink_connection(self, node: NodeSettings) -> NodeConnection:
        from ..infrastructure.lavalink.connection import LavalinkNodeConnection

        assert self._identity is not None
        lavalink = self.settings.lavalink
        return LavalinkNodeConnection(
            node,
            user_id=self._identity,
            client_name=lavalink.client_name,
            search_prefix=lavalink.search_prefix,
            request_timeout=lavalink.rpc_timeout_s,
        )

    # === Lifecycle ===

    async def initialize(self, identity: int) -> None:
        """Open the database, seed the allowlist and start connecting to nodes.

        Args:
            identity: The bot's own user id, sent to nodes as ``User-Id``.
        """
        self._identity = identity
        await self.database.initialize()

        seeded = 0
        for guild_id in self.settings.allowlist.guild_ids:
            if await self.queue_store.allow(guild_id):
                seeded += 1
        if seeded:
            logger.info(LogTemplates.ALLOWLIST_SEEDED, seeded)

        # Build the orchestrator before nodes start so no event finds the pool without a handler.
        _ = self.orchestrator
        await self.node_pool.start()
        logger.info(LogTemplates.CONTAINER_INITIALIZED)

    async def shutdown(self) -> None:
        """Tear down sessions, stop node connections and close the database."""
        try:
            if self._orchestrator is not None:
                await self._orchestrator.close()
        except Exception as exc:
            logger.warning(
                LogTemplates.CONTAINER_COMPONENT_CLOSE_FAILED, "orchestrator sessions", exc
            )

        try:
            if self._node_pool is not None:
                await self._node_pool.close()
        except Exception as exc:
            logger.warning(LogTemplates.CONTAINER_COMPONENT_CLOSE_FAILED, "node pool", exc)

        if self._database is not None:
            await self._database.close()

        logger.info(LogTemplates.CONTAINER_SHUTDOWN)


def create_container(settings: Settings) -> Container:
    """Create a new dependency injection container."""
    return Container(settings)
