"""Pool of audio nodes.

The pool owns node connectivity: one reconciliation task per node keeps its
control channel open with exponential backoff. Sessions are bound to the
least-loaded connected node. When a node drops, every session bound to it
is marked NEEDS_REBIND; the orchestrator rebinds lazily on the next command.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, TypeVar

from guild_music_orchestrator.application.interfaces.node_connection import (
    NodeConnection,
    NodeSignal,
    RemoteSocketClosed,
    RemoteStats,
    RemoteTrackEnded,
    VoiceState,
)
from guild_music_orchestrator.application.services.retry_models import RetryPolicy
from guild_music_orchestrator.domain.music.entities import NodeInfo, Session, TrackMetadata
from guild_music_orchestrator.domain.music.events import NodeEvent, SessionClosed, TrackEnded
from guild_music_orchestrator.domain.music.value_objects import (
    NodeConnectivity,
    SessionState,
    TrackEndReason,
)
from guild_music_orchestrator.domain.shared.datetime_utils import utcnow
from guild_music_orchestrator.domain.shared.exceptions import (
    NodeTimeoutError,
    NodeUnavailableError,
    OrchestratorError,
)
from guild_music_orchestrator.domain.shared.messages import (
    ErrorMessages,
    LavalinkCloseCodes,
    LogTemplates,
)

if TYPE_CHECKING:
    from guild_music_orchestrator.config.settings import NodeSettings
    from guild_music_orchestrator.domain.shared.context import CommandContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

ConnectionFactory = Callable[["NodeSettings"], NodeConnection]
NodeEventHandler = Callable[[NodeEvent], Awaitable[None]]

# Epoch reported for a track end the pool never saw start; it matches no session.
_UNKNOWN_EPOCH = -1


@dataclass
class _Binding:
    session: Session
    # encoded track -> skip token in force when it started; a player holds one track at a time
    started_epochs: dict[str, int] = field(default_factory=dict)


@dataclass
class _NodeSlot:
    settings: NodeSettings
    connection: NodeConnection
    connectivity: NodeConnectivity = NodeConnectivity.DISCONNECTED
    reconnect_attempts: int = 0
    playing_reported: int = 0
    ever_connected: bool = False
    last_change_at: datetime | None = None
    task: asyncio.Task[None] | None = None

    @property
    def node_id(self) -> str:
        return self.settings.node_id


class NodePool:
    def __init__(
        self,
        nodes: Sequence[NodeSettings],
        connection_factory: ConnectionFactory,
        *,
        reconnect_policy: RetryPolicy | None = None,
        reconnect_max_attempts: int | None = None,
        rpc_timeout: float = 10.0,
        connect_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._nodes: dict[str, _NodeSlot] = {}
        for node_settings in nodes:
            connection = connection_factory(node_settings)
            connection.set_signal_listener(partial(self._on_signal, node_settings.node_id))
            self._nodes[node_settings.node_id] = _NodeSlot(node_settings, connection)

        self._reconnect_policy = reconnect_policy or RetryPolicy(
            base_delay=5.0, max_delay=60.0, jitter=1.0
        )
        self._reconnect_max_attempts = reconnect_max_attempts
        self._rpc_timeout = rpc_timeout
        self._connect_timeout = connect_timeout
        self._sleep = sleep
        self._rng = rng

        self._bindings: dict[int, _Binding] = {}
        self._voice_states: dict[int, VoiceState] = {}
        self._event_handler: NodeEventHandler | None = None
        self._pending_events: set[asyncio.Task[None]] = set()
        self._ready = asyncio.Event()
        self._closing = False

    # ── Lifecycle ───────────────────────────────────────────────────

    def set_event_handler(self, handler: NodeEventHandler | None) -> None:
        self._event_handler = handler

    async def start(self) -> None:
        """Start one reconciliation task per node. Does not wait for connections."""
        self._closing = False
        for slot in self._nodes.values():
            if slot.task is None or slot.task.done():
                slot.task = asyncio.create_task(
                    self._reconcile(slot), name=f"node-reconcile-{slot.node_id}"
                )
        logger.info(LogTemplates.NODE_POOL_STARTED, len(self._nodes))

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until at least one node is connected."""
        try:
            async with asyncio.timeout(timeout):
                await self._ready.wait()
        except TimeoutError:
            return False
        return True

    async def close(self) -> None:
        self._closing = True
        tasks = [slot.task for slot in self._nodes.values() if slot.task is not None]
        tasks.extend(self._pending_events)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for slot in self._nodes.values():
            slot.task = None
            await slot.connection.close()
            self._set_connectivity(slot, NodeConnectivity.DISCONNECTED)

        for binding in self._bindings.values():
            binding.session.transition_to(SessionState.CLOSED)
        self._bindings.clear()
        self._voice_states.clear()
        logger.info(LogTemplates.NODE_POOL_CLOSED)

    # ── Introspection ───────────────────────────────────────────────

    def snapshot(self) -> list[NodeInfo]:
        return [
            NodeInfo(
                node_id=slot.node_id,
                endpoint=slot.connection.endpoint,
                connectivity=slot.connectivity,
                load=self._load(slot.node_id),
                remote_session_id=slot.connection.remote_session_id,
                reconnect_attempts=slot.reconnect_attempts,
                last_change_at=slot.last_change_at,
            )
            for slot in self._nodes.values()
        ]

    def session_for(self, guild_id: int) -> Session | None:
        binding = self._bindings.get(guild_id)
        return binding.session if binding is not None else None

    # ── Sessions ────────────────────────────────────────────────────

    async def acquire_session(
        self,
        ctx: CommandContext,
        voice_channel_id: int,
        reply_channel_id: int | None = None,
        *,
        previous: Session | None = None,
    ) -> Session:
        """Bind the guild to the least-loaded connected node.

        Any earlier binding of the guild is replaced, so at most one live
        session exists per guild. The skip token continues from ``previous``.

        Raises:
            NodeUnavailableError: If no node is connected.
        """
        slot = self._select_node()
        logger.info(LogTemplates.NODE_SELECTED, ctx, slot.node_id, self._load(slot.node_id))

        old = self._bindings.get(ctx.guild_id)
        carried = previous or (old.session if old is not None else None)
        session = Session(
            guild_id=ctx.guild_id,
            node_id=slot.node_id,
            voice_channel_id=voice_channel_id,
            reply_channel_id=reply_channel_id,
            skip_token=carried.skip_token if carried is not None else 0,
        )

        voice = self._voice_states.get(ctx.guild_id)
        try:
            await self._call(
                slot,
                "ensure_player",
                lambda: slot.connection.ensure_player(ctx.guild_id, voice),
            )
        except BaseException:
            session.transition_to(SessionState.CLOSED)
            raise

        if old is not None:
            await self._retire(ctx, old.session, destroy_remote=old.session.node_id != slot.node_id)
        session.transition_to(SessionState.BOUND)
        self._bindings[ctx.guild_id] = _Binding(session)
        logger.info(LogTemplates.SESSION_ACQUIRED, ctx, session.session_id, slot.node_id)
        return session

    async def release_session(self, ctx: CommandContext, session: Session) -> None:
        """Destroy the session and its remote player."""
        binding = self._bindings.get(ctx.guild_id)
        if binding is not None and binding.session.session_id == session.session_id:
            del self._bindings[ctx.guild_id]
        self._voice_states.pop(ctx.guild_id, None)
        await self._retire(ctx, session, destroy_remote=True)

    async def _retire(self, ctx: CommandContext, session: Session, *, destroy_remote: bool) -> None:
        was_bound = session.is_bound
        session.transition_to(SessionState.CLOSED)
        slot = self._nodes.get(session.node_id)
        if not (destroy_remote and was_bound and slot is not None):
            return
        if slot.connectivity != NodeConnectivity.CONNECTED:
            return
        try:
            await self._call(
                slot, "destroy_player", lambda: slot.connection.destroy_player(ctx.guild_id)
            )
        except OrchestratorError as exc:
            logger.warning(LogTemplates.SESSION_RELEASE_FAILED, ctx, exc)
        logger.info(LogTemplates.SESSION_RELEASED, ctx, session.session_id, session.node_id)

    # ── Player RPCs ─────────────────────────────────────────────────

    async def load_track(self, ctx: CommandContext, session: Session, query: str) -> TrackMetadata:
        slot = self._bound_slot(session)
        return await self._call(slot, "load_track", lambda: slot.connection.load_track(query))

    async def play(self, ctx: CommandContext, session: Session, track: TrackMetadata) -> None:
        slot = self._bound_slot(session)
        binding = self._bindings.get(ctx.guild_id)
        if binding is not None and binding.session is session:
            binding.started_epochs = {track.encoded: session.skip_token}
        await self._call(slot, "play", lambda: slot.connection.play(ctx.guild_id, track))

    def restamp(self, session: Session) -> None:
        """Tie the session's current track to its current skip token again.

        Used when a skip bumped the token but could not start a replacement,
        so the track that keeps playing must still advance the queue when it ends.
        """
        binding = self._bindings.get(session.guild_id)
        if binding is None or binding.session is not session or session.current_track is None:
            return
        binding.started_epochs = {session.current_track.encoded: session.skip_token}

    async def stop(self, ctx: CommandContext, session: Session) -> None:
        slot = self._bound_slot(session)
        await self._call(slot, "stop", lambda: slot.connection.stop(ctx.guild_id))

    async def update_voice_state(self, guild_id: int, voice: VoiceState) -> None:
        """Remember the guild's voice credentials and push them to its bound node."""
        self._voice_states[guild_id] = voice
        binding = self._bindings.get(guild_id)
        if binding is None or not binding.session.is_bound:
            logger.debug(LogTemplates.VOICE_STATE_NO_SESSION, guild_id)
            return
        slot = self._nodes[binding.session.node_id]
        if slot.connectivity != NodeConnectivity.CONNECTED:
            return
        await self._call(
            slot, "ensure_player", lambda: slot.connection.ensure_player(guild_id, voice)
        )
        logger.debug(LogTemplates.VOICE_STATE_FORWARDED, guild_id, slot.node_id)

    def _select_node(self) -> _NodeSlot:
        candidates = [
            slot for slot in self._nodes.values() if slot.connectivity == NodeConnectivity.CONNECTED
        ]
        if not candidates:
            raise NodeUnavailableError(ErrorMessages.NO_NODE_CONNECTED)
        return min(
            candidates,
            key=lambda slot: (self._load(slot.node_id), slot.playing_reported, slot.node_id),
        )

    def _load(self, node_id: str) -> int:
        return sum(
            1
            for binding in self._bindings.values()
            if binding.session.node_id == node_id and binding.session.is_bound
        )

    def _bound_slot(self, session: Session) -> _NodeSlot:
        if not session.is_bound:
            raise NodeUnavailableError(
                ErrorMessages.SESSION_NOT_BOUND.format(session_id=session.session_id),
                node_id=session.node_id,
            )
        slot = self._nodes.get(session.node_id)
        if slot is None or slot.connectivity != NodeConnectivity.CONNECTED:
            raise NodeUnavailableError(
                ErrorMessages.NODE_NOT_CONNECTED.format(node_id=session.node_id),
                node_id=session.node_id,
            )
        return slot

    async def _call(self, slot: _NodeSlot, operation: str, rpc: Callable[[], Awaitable[T]]) -> T:
        try:
            async with asyncio.timeout(self._rpc_timeout):
                return await rpc()
        except TimeoutError as exc:
            raise NodeTimeoutError(
                ErrorMessages.NODE_TIMED_OUT.format(
                    node_id=slot.node_id, operation=operation, timeout=self._rpc_timeout
                ),
                node_id=slot.node_id,
            ) from exc

    # ── Node signals ────────────────────────────────────────────────

    def _on_signal(self, node_id: str, signal: NodeSignal) -> None:
        slot = self._nodes.get(node_id)
        if slot is None:
            return
        if isinstance(signal, RemoteStats):
            slot.playing_reported = signal.playing_players
            return

        binding = self._bindings.get(signal.guild_id)
        if binding is None or binding.session.node_id != node_id:
            logger.debug(
                LogTemplates.NODE_EVENT_DROPPED, type(signal).__name__, node_id, signal.guild_id
            )
            return

        session = binding.session
        event: NodeEvent
        if isinstance(signal, RemoteTrackEnded):
            if signal.reason == TrackEndReason.REPLACED:
                # The replacement may be the same encoded track, which keeps the entry.
                epoch = binding.started_epochs.get(signal.track_encoded, _UNKNOWN_EPOCH)
            else:
                epoch = binding.started_epochs.pop(signal.track_encoded, _UNKNOWN_EPOCH)
            event = TrackEnded(
                guild_id=signal.guild_id,
                session_id=session.session_id,
                node_id=node_id,
                skip_token=epoch,
                track_encoded=signal.track_encoded,
                reason=signal.reason,
            )
        elif isinstance(signal, RemoteSocketClosed):
            if session.is_bound:
                session.transition_to(SessionState.NEEDS_REBIND)
            event = SessionClosed(
                guild_id=signal.guild_id,
                session_id=session.session_id,
                node_id=node_id,
                skip_token=session.skip_token,
                code=signal.code,
                reason=signal.reason or LavalinkCloseCodes.describe(signal.code),
                by_remote=signal.by_remote,
            )
        else:
            return
        self._dispatch(event)

    def _dispatch(self, event: NodeEvent) -> None:
        if self._event_handler is None:
            return
        task = asyncio.create_task(self._deliver(self._event_handler, event))
        self._pending_events.add(task)
        task.add_done_callback(self._pending_events.discard)

    async def _deliver(self, handler: NodeEventHandler, event: NodeEvent) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(LogTemplates.NODE_EVENT_HANDLER_FAILED, type(event).__name__)

    async def drain_events(self) -> None:
        """Wait for every event delivered so far to be handled."""
        while self._pending_events:
            await asyncio.gather(*list(self._pending_events), return_exceptions=True)

    # ── Reconciliation ──────────────────────────────────────────────

    def _set_connectivity(self, slot: _NodeSlot, connectivity: NodeConnectivity) -> None:
        slot.connectivity = connectivity
        slot.last_change_at = utcnow()
        if connectivity == NodeConnectivity.CONNECTED:
            slot.ever_connected = True
            self._ready.set()
        elif not any(s.connectivity == NodeConnectivity.CONNECTED for s in self._nodes.values()):
            self._ready.clear()

    async def _reconcile(self, slot: _NodeSlot) -> None:
        attempt = 0
        while not self._closing:
            self._set_connectivity(
                slot,
                NodeConnectivity.RECONNECTING if slot.ever_connected else NodeConnectivity.CONNECTING,
            )
            logger.info(LogTemplates.NODE_CONNECTING, slot.node_id, slot.connection.endpoint)
            try:
                async with asyncio.timeout(self._connect_timeout):
                    await slot.connection.connect()
            except Exception as exc:
                attempt += 1
                slot.reconnect_attempts = attempt
                if (
                    self._reconnect_max_attempts is not None
                    and attempt >= self._reconnect_max_attempts
                ):
                    self._set_connectivity(slot, NodeConnectivity.DISCONNECTED)
                    logger.error(LogTemplates.NODE_GAVE_UP, slot.node_id, attempt)
                    return
                delay = self._reconnect_policy.compute_delay(attempt, self._rng)
                logger.warning(LogTemplates.NODE_CONNECT_FAILED, slot.node_id, attempt, delay, exc)
                await self._sleep(delay)
                continue

            attempt = 0
            slot.reconnect_attempts = 0
            self._set_connectivity(slot, NodeConnectivity.CONNECTED)
            logger.info(
                LogTemplates.NODE_CONNECTED, slot.node_id, slot.connection.remote_session_id
            )

            code = await slot.connection.wait_closed()
            if self._closing:
                break

            self._set_connectivity(slot, NodeConnectivity.RECONNECTING)
            self._on_node_lost(slot, code)
            attempt = 1
            slot.reconnect_attempts = attempt
            await self._sleep(self._reconnect_policy.compute_delay(attempt, self._rng))

    def _on_node_lost(self, slot: _NodeSlot, code: int | None) -> None:
        affected = [
            binding
            for binding in self._bindings.values()
            if binding.session.node_id == slot.node_id and binding.session.is_bound
        ]
        logger.warning(
            LogTemplates.NODE_CLOSED,
            slot.node_id,
            code,
            LavalinkCloseCodes.describe(code),
            len(affected),
        )
        for binding in affected:
            session = binding.session
            session.transition_to(SessionState.NEEDS_REBIND)
            binding.started_epochs.clear()
            self._dispatch(
                SessionClosed(
                    guild_id=session.guild_id,
                    session_id=session.session_id,
                    node_id=slot.node_id,
                    skip_token=session.skip_token,
                    code=code,
                    reason=LavalinkCloseCodes.describe(code),
                    by_remote=True,
                )
            )
