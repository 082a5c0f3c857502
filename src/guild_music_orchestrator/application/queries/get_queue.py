"""Query for retrieving a guild's queue."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from guild_music_orchestrator.domain.music.entities import QueueEntry, TrackMetadata
from guild_music_orchestrator.domain.shared.types import DiscordSnowflake, PositiveInt

if TYPE_CHECKING:
    from ...domain.music.repository import TenantQueueStore
    from ...domain.shared.context import CommandContext
    from ..services.playback_orchestrator import PlaybackOrchestrator
    from ..services.retry_executor import RetryExecutor


class GetQueueQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    guild_id: DiscordSnowflake
    limit: PositiveInt = 10


class QueueInfo(BaseModel):
    guild_id: DiscordSnowflake
    size: int = 0
    head: list[QueueEntry] = Field(default_factory=list)
    current_track: TrackMetadata | None = None

    @property
    def is_empty(self) -> bool:
        return self.size == 0


class GetQueueHandler:
    def __init__(
        self,
        *,
        queue_store: TenantQueueStore,
        orchestrator: PlaybackOrchestrator,
        retry_executor: RetryExecutor,
    ) -> None:
        self._queue_store = queue_store
        self._orchestrator = orchestrator
        self._retry = retry_executor

    async def handle(self, ctx: CommandContext, query: GetQueueQuery) -> QueueInfo:
        size = await self._orchestrator.queue_size(ctx)
        head: list[QueueEntry] = []
        if size:
            head = await self._retry.execute_with_retry(
                lambda: self._queue_store.list_entries(ctx, query.limit), context=ctx
            )

        session = self._orchestrator.get_session(query.guild_id)
        return QueueInfo(
            guild_id=query.guild_id,
            size=size,
            head=head,
            current_track=session.current_track if session is not None else None,
        )
