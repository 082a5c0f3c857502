"""Playback Orchestrator - per-guild state machine tying the queue store to the node pool."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from functools import partial
from typing import TYPE_CHECKING, TypeVar

from ...domain.music.events import NodeEvent, SessionClosed, TrackEnded
from ...domain.music.value_objects import SessionState, TenantState
from ...domain.shared.constants import MAX_TRACK_REF_LENGTH
from ...domain.shared.context import CommandContext
from ...domain.shared.exceptions import (
    OrchestratorError,
    TrackNotFoundError,
    ValidationError,
)
from ...domain.shared.messages import ErrorMessages, LogTemplates
from .playback_models import ClearResult, JoinResult, PlayResult, SkipResult

if TYPE_CHECKING:
    from ...domain.music.entities import Session, TrackMetadata
    from ...domain.music.repository import TenantQueueStore
    from ...infrastructure.lavalink.node_pool import NodePool
    from .retry_executor import RetryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlaybackOrchestrator:
    """Drives each guild between no session, connecting, idle, playing and needs-rebind.

    All mutations for one guild happen under that guild's lock. Node events are
    applied under the same lock, so a track-end notification never interleaves
    with a skip or clear for the same guild.
    """

    def __init__(
        self,
        *,
        queue_store: TenantQueueStore,
        node_pool: NodePool,
        retry_executor: RetryExecutor,
        max_advance_attempts: int = 3,
    ) -> None:
        self._queue_store = queue_store
        self._node_pool = node_pool
        self._retry_executor = retry_executor
        self._max_advance_attempts = max(1, max_advance_attempts)

        self._sessions: dict[int, Session] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self._cancel_events: dict[int, asyncio.Event] = {}
        self._connecting: set[int] = set()

        self._node_pool.set_event_handler(self.on_node_event)

    # ─────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────

    def get_session(self, guild_id: int) -> Session | None:
        return self._sessions.get(guild_id)

    def has_session(self, guild_id: int) -> bool:
        session = self._sessions.get(guild_id)
        return session is not None and session.state.is_live

    def tenant_state(self, guild_id: int) -> TenantState:
        if guild_id in self._connecting:
            return TenantState.CONNECTING
        session = self._sessions.get(guild_id)
        if session is None or session.state == SessionState.CLOSED:
            return TenantState.NO_SESSION
        if session.needs_rebind:
            return TenantState.NEEDS_REBIND
        if session.state == SessionState.CONNECTING:
            return TenantState.CONNECTING
        return TenantState.PLAYING if session.current_track is not None else TenantState.IDLE_CONNECTED

    # ─────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────

    async def join(
        self,
        ctx: CommandContext,
        voice_channel_id: int,
        reply_channel_id: int | None = None,
    ) -> JoinResult:
        async with self._guild_lock(ctx.guild_id):
            existing = self._sessions.get(ctx.guild_id)
            already_connected = existing is not None and existing.is_bound
            session, resumed = await self._ensure_bound(
                ctx, voice_channel_id, reply_channel_id, resume=True
            )
            if not already_connected:
                logger.info(
                    LogTemplates.TENANT_JOINED, ctx, session.voice_channel_id, session.node_id
                )
            return JoinResult(
                session_id=session.session_id,
                node_id=session.node_id,
                voice_channel_id=session.voice_channel_id,
                already_connected=already_connected,
                resumed_track=resumed,
            )

    async def play(
        self,
        ctx: CommandContext,
        query: str,
        voice_channel_id: int | None = None,
        reply_channel_id: int | None = None,
    ) -> PlayResult:
        """Start ``query`` now if nothing is playing, otherwise append it to the queue.

        The query is resolved before anything is enqueued so an unresolvable
        query fails the command without touching the queue.
        """
        query = query.strip()
        if not query:
            raise ValidationError(ErrorMessages.EMPTY_QUERY, field="query")
        if len(query) > MAX_TRACK_REF_LENGTH:
            # Longer refs could be stored but never read back as a QueueEntry.
            raise ValidationError(
                ErrorMessages.QUERY_TOO_LONG.format(max_length=MAX_TRACK_REF_LENGTH), field="query"
            )

        async with self._guild_lock(ctx.guild_id):
            session, _ = await self._ensure_bound(
                ctx, voice_channel_id, reply_channel_id, resume=True
            )
            track = await self._retry(ctx, partial(self._node_pool.load_track, ctx, session, query))

            if session.current_track is None:
                await self._start(ctx, session, track)
                return PlayResult(track=track, started=True)

            rank = await self._retry(ctx, partial(self._queue_store.enqueue, ctx, query))
            logger.info(LogTemplates.TRACK_QUEUED, ctx, track.title, rank)
            return PlayResult(track=track, started=False, position=rank)

    async def skip(self, ctx: CommandContext) -> SkipResult:
        async with self._guild_lock(ctx.guild_id):
            session = self._sessions.get(ctx.guild_id)
            if session is None or session.current_track is None:
                return SkipResult(skipped=False)

            skipped = session.current_track
            playing_here = session.is_bound
            if not playing_here:
                # The interrupted track is dropped, the new binding starts from the queue.
                session, _ = await self._ensure_bound(ctx, None, None, resume=False)

            token = session.bump_skip_token()
            logger.info(LogTemplates.TRACK_SKIPPED, ctx, skipped.title, token)

            try:
                next_track = await self._advance(ctx, session)
            except Exception:
                if playing_here:
                    self._node_pool.restamp(session)
                raise

            if next_track is None:
                if playing_here:
                    await self._retry(ctx, partial(self._node_pool.stop, ctx, session))
                session.current_track = None
                logger.info(LogTemplates.TENANT_IDLE, ctx)

            return SkipResult(skipped=True, skipped_track=skipped, next_track=next_track)

    async def clear(self, ctx: CommandContext) -> ClearResult:
        """Drop every queued entry and stop whatever is playing."""
        async with self._guild_lock(ctx.guild_id):
            removed = await self._retry(ctx, partial(self._queue_store.size, ctx))
            await self._retry(ctx, partial(self._queue_store.clear_all, ctx))

            session = self._sessions.get(ctx.guild_id)
            if session is not None:
                if session.is_bound:
                    await self._retry(ctx, partial(self._node_pool.stop, ctx, session))
                session.current_track = None

            logger.info(LogTemplates.QUEUE_CLEARED_BY_COMMAND, ctx, removed)
            return ClearResult(removed=removed)

    async def queue_size(self, ctx: CommandContext) -> int:
        async with self._guild_lock(ctx.guild_id):
            return await self._retry(ctx, partial(self._queue_store.size, ctx))

    async def leave(self, ctx: CommandContext) -> bool:
        """Destroy the guild's session. Queued entries are kept for the next join."""
        async with self._guild_lock(ctx.guild_id):
            session = self._sessions.pop(ctx.guild_id, None)
            if session is None:
                return False
            session.current_track = None
            await self._node_pool.release_session(ctx, session)
            logger.info(LogTemplates.TENANT_LEFT, ctx)
            return True

    async def teardown(self, ctx: CommandContext) -> None:
        """Cancel pending retries for the guild and destroy its session.

        Used when a guild loses its allowlist entry. Operations that start after
        teardown returns get a fresh cancellation event.
        """
        cancel_event = self._cancel_events.get(ctx.guild_id)
        if cancel_event is not None:
            cancel_event.set()
        try:
            async with self._guild_lock(ctx.guild_id):
                session = self._sessions.pop(ctx.guild_id, None)
                if session is not None:
                    session.current_track = None
                    await self._node_pool.release_session(ctx, session)
        finally:
            if self._cancel_events.get(ctx.guild_id) is cancel_event:
                self._cancel_events.pop(ctx.guild_id, None)
        logger.info(LogTemplates.TENANT_TORN_DOWN, ctx)

    async def close(self) -> None:
        for guild_id in list(self._sessions):
            await self.teardown(CommandContext.for_event(guild_id, "shutdown"))

    # ─────────────────────────────────────────────────────────────────
    # Node events
    # ─────────────────────────────────────────────────────────────────

    async def on_node_event(self, event: NodeEvent) -> None:
        if isinstance(event, TrackEnded):
            await self._on_track_ended(event)
        elif isinstance(event, SessionClosed):
            await self._on_session_closed(event)

    async def _on_track_ended(self, event: TrackEnded) -> None:
        ctx = CommandContext.for_event(event.guild_id, "trackEnded")
        async with self._guild_lock(event.guild_id):
            session = self._sessions.get(event.guild_id)
            stale = self._staleness(session, event)
            if stale is not None:
                logger.debug(LogTemplates.STALE_TRACK_END, ctx, stale)
                return
            if not event.reason.may_start_next:
                logger.debug(LogTemplates.TRACK_END_IGNORED, ctx, event.reason.value)
                return

            if session is None:
                return

            try:
                next_track = await self._advance(ctx, session)
            except OrchestratorError as exc:
                # current_track stays set: later plays keep queueing behind the
                # head and a skip retries the advance.
                logger.error(LogTemplates.ADVANCE_FAILED, ctx, exc)
                return
            if next_track is None:
                session.current_track = None
                logger.info(LogTemplates.TENANT_IDLE, ctx)

    @staticmethod
    def _staleness(session: Session | None, event: TrackEnded) -> str | None:
        if session is None:
            return "no session"
        if session.session_id != event.session_id:
            return "session replaced"
        if not session.is_bound:
            return "session not bound"
        if event.skip_token != session.skip_token:
            return f"skip token {event.skip_token} != {session.skip_token}"
        if session.current_track is None or session.current_track.encoded != event.track_encoded:
            return "track is not current"
        return None

    async def _on_session_closed(self, event: SessionClosed) -> None:
        ctx = CommandContext.for_event(event.guild_id, "sessionClosed")
        async with self._guild_lock(event.guild_id):
            session = self._sessions.get(event.guild_id)
            if session is None or session.session_id != event.session_id:
                return
            if session.is_bound:
                session.transition_to(SessionState.NEEDS_REBIND)
            logger.warning(LogTemplates.SESSION_NEEDS_REBIND, ctx, session.session_id, event.code)

    # ─────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _guild_lock(self, guild_id: int) -> AsyncIterator[None]:
        """Hold the guild's lock. The lock is dropped once unused by a guild without a session."""
        lock = self._locks.setdefault(guild_id, asyncio.Lock())
        self._lock_users[guild_id] = self._lock_users.get(guild_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[guild_id] -= 1
            if not self._lock_users[guild_id]:
                del self._lock_users[guild_id]
                if guild_id not in self._sessions:
                    self._locks.pop(guild_id, None)
                    self._cancel_events.pop(guild_id, None)

    def _cancel_event(self, guild_id: int) -> asyncio.Event:
        return self._cancel_events.setdefault(guild_id, asyncio.Event())

    async def _retry(self, ctx: CommandContext, operation: Callable[[], Awaitable[T]]) -> T:
        return await self._retry_executor.execute_with_retry(
            operation, context=ctx, cancel_event=self._cancel_event(ctx.guild_id)
        )

    async def _ensure_bound(
        self,
        ctx: CommandContext,
        voice_channel_id: int | None,
        reply_channel_id: int | None,
        *,
        resume: bool,
    ) -> tuple[Session, TrackMetadata | None]:
        """Return a bound session for the guild, acquiring or rebinding one if needed.

        The second element is the track that was interrupted by a node loss, if
        any. With ``resume`` it has been restarted on the new binding; without it
        the caller decides what to do with it.
        """
        previous = self._sessions.get(ctx.guild_id)
        if previous is not None and previous.is_bound:
            return previous, None

        if voice_channel_id is None and previous is not None:
            voice_channel_id = previous.voice_channel_id
        if voice_channel_id is None:
            raise ValidationError(ErrorMessages.VOICE_CHANNEL_REQUIRED, field="voice_channel_id")
        if reply_channel_id is None and previous is not None:
            reply_channel_id = previous.reply_channel_id
        interrupted = previous.current_track if previous is not None else None

        self._connecting.add(ctx.guild_id)
        try:
            session = await self._retry(
                ctx,
                partial(
                    self._node_pool.acquire_session,
                    ctx,
                    voice_channel_id,
                    reply_channel_id,
                    previous=previous,
                ),
            )
        finally:
            self._connecting.discard(ctx.guild_id)

        self._sessions[ctx.guild_id] = session
        if previous is not None:
            previous.current_track = None
        if interrupted is None:
            return session, None

        logger.info(LogTemplates.TENANT_REBOUND, ctx, interrupted.title)
        if resume:
            await self._start(ctx, session, interrupted)
        return session, interrupted

    async def _start(self, ctx: CommandContext, session: Session, track: TrackMetadata) -> None:
        await self._retry(ctx, partial(self._node_pool.play, ctx, session, track))
        session.current_track = track
        logger.info(LogTemplates.TRACK_STARTED, ctx, track.title, session.skip_token)

    async def _advance(self, ctx: CommandContext, session: Session) -> TrackMetadata | None:
        """Start the next resolvable queue entry, or return None when there is none.

        An entry is only removed once its track is playing (or it definitively
        failed to resolve), so a node failure while loading or starting leaves
        the queue untouched.
        """
        for _ in range(self._max_advance_attempts):
            entry = await self._retry(ctx, partial(self._queue_store.peek_head_entry, ctx))
            if entry is None:
                return None

            remove = partial(self._queue_store.remove_entry, ctx, entry.sequence_number)
            try:
                track = await self._retry(
                    ctx, partial(self._node_pool.load_track, ctx, session, entry.track_ref)
                )
            except TrackNotFoundError as exc:
                logger.warning(
                    LogTemplates.TRACK_UNRESOLVABLE, ctx, entry.sequence_number, exc.message
                )
                await self._retry(ctx, remove)
                continue

            await self._start(ctx, session, track)
            if not await self._retry(ctx, remove):
                logger.warning(LogTemplates.QUEUE_ENTRY_ALREADY_TAKEN, ctx, entry.sequence_number)
            return track
        return None
