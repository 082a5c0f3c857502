import asyncio

import pytest
import pytest_asyncio

from guild_music_orchestrator.application.interfaces.node_connection import (
    NodeConnection,
    RemoteSocketClosed,
    RemoteTrackEnded,
    VoiceState,
)
from guild_music_orchestrator.domain.music.entities import TrackMetadata
from guild_music_orchestrator.domain.music.value_objects import TrackEndReason
from guild_music_orchestrator.domain.shared.context import CommandContext
from guild_music_orchestrator.domain.shared.exceptions import (
    NodeConnectionError,
    TrackNotFoundError,
)

GUILD_ID = 111111111111111111
OTHER_GUILD_ID = 222222222222222222
USER_ID = 333333333333333333
VOICE_CHANNEL_ID = 444444444444444444
REPLY_CHANNEL_ID = 555555555555555555


async def no_sleep(_delay: float) -> None:
    await asyncio.sleep(0)


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks (reconcile loops, event deliveries) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_ctx(guild_id: int = GUILD_ID, command: str = "test") -> CommandContext:
    return CommandContext(guild_id=guild_id, user_id=USER_ID, command=command)


def make_track(query: str) -> TrackMetadata:
    return TrackMetadata(
        encoded=f"enc:{query}",
        identifier=query,
        title=query.title(),
        author="Tester",
        length_ms=180_000,
    )


# ============================================================================
# Fake node connection
# ============================================================================


class FakeNodeConnection(NodeConnection):
    """In-process stand-in for a Lavalink node.

    Every query resolves to a deterministic track except those listed in
    ``unresolvable``. RPCs are recorded in ``calls``; ``hang`` makes the named
    RPCs block forever and ``failures`` makes them raise once per queued error.
    """

    def __init__(self, settings) -> None:
        self.settings = settings
        self.calls: list[tuple] = []
        self.unresolvable: set[str] = set()
        self.hang: set[str] = set()
        self.failures: dict[str, list[Exception]] = {}
        self.connect_failures = 0
        self.connect_attempts = 0
        self._listener = None
        self._closed = asyncio.Event()
        self._open = False
        self._close_code: int | None = None
        self._remote_session_id: str | None = None

    # ── NodeConnection ──────────────────────────────────────────────

    @property
    def node_id(self) -> str:
        return self.settings.node_id

    @property
    def endpoint(self) -> str:
        return self.settings.rest_url

    @property
    def remote_session_id(self) -> str | None:
        return self._remote_session_id

    @property
    def is_open(self) -> bool:
        return self._open

    def set_signal_listener(self, listener) -> None:
        self._listener = listener

    async def connect(self) -> None:
        self.connect_attempts += 1
        if self.connect_failures:
            self.connect_failures -= 1
            raise NodeConnectionError("connection refused", node_id=self.node_id)
        self._closed = asyncio.Event()
        self._close_code = None
        self._open = True
        self._remote_session_id = f"remote-{self.node_id}-{self.connect_attempts}"

    async def wait_closed(self) -> int | None:
        await self._closed.wait()
        return self._close_code

    async def close(self) -> None:
        self._open = False
        self._closed.set()

    async def load_track(self, query: str) -> TrackMetadata:
        await self._rpc("load_track", query)
        if query in self.unresolvable:
            raise TrackNotFoundError(query)
        return make_track(query)

    async def ensure_player(self, guild_id: int, voice: VoiceState | None = None) -> None:
        await self._rpc("ensure_player", guild_id, voice)

    async def play(self, guild_id: int, track: TrackMetadata) -> None:
        await self._rpc("play", guild_id, track.encoded)

    async def stop(self, guild_id: int) -> None:
        await self._rpc("stop", guild_id)

    async def destroy_player(self, guild_id: int) -> None:
        await self._rpc("destroy_player", guild_id)

    # ── Test helpers ────────────────────────────────────────────────

    async def _rpc(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.hang:
            await asyncio.Event().wait()
        queued = self.failures.get(name)
        if queued:
            raise queued.pop(0)

    def calls_of(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def drop(self, code: int = 1006) -> None:
        """Simulate the control channel going away."""
        self._open = False
        self._close_code = code
        self._closed.set()

    def emit(self, signal) -> None:
        assert self._listener is not None
        self._listener(signal)

    def end_track(
        self, guild_id: int, track: TrackMetadata, reason: TrackEndReason = TrackEndReason.FINISHED
    ) -> None:
        self.emit(RemoteTrackEnded(guild_id=guild_id, track_encoded=track.encoded, reason=reason))

    def close_voice(self, guild_id: int, code: int = 4006) -> None:
        self.emit(RemoteSocketClosed(guild_id=guild_id, code=code, reason="", by_remote=True))


# ============================================================================
# Database / store fixtures
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path):
    """File-backed SQLite database in a temporary directory."""
    from guild_music_orchestrator.infrastructure.persistence.database import Database

    db = Database(f"sqlite:///{tmp_path / 'orchestrator.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def fast_policy():
    from guild_music_orchestrator.application.services.retry_models import RetryPolicy

    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def retry_executor(fast_policy):
    from guild_music_orchestrator.application.services.retry_executor import RetryExecutor

    return RetryExecutor(fast_policy, sleep=no_sleep, rng=lambda: 0.0)


@pytest_asyncio.fixture
async def queue_store(database, retry_executor):
    from guild_music_orchestrator.infrastructure.persistence.repositories.queue_store import (
        SQLiteTenantQueueStore,
    )

    return SQLiteTenantQueueStore(database, retry_executor=retry_executor)


# ============================================================================
# Node pool / orchestrator fixtures
# ============================================================================


@pytest.fixture
def fake_nodes() -> dict[str, FakeNodeConnection]:
    return {}


@pytest.fixture
def node_settings():
    from guild_music_orchestrator.config.settings import NodeSettings

    return [NodeSettings(node_id="alpha", port=2333), NodeSettings(node_id="beta", port=2334)]


@pytest.fixture
def connection_factory(fake_nodes):
    def factory(settings):
        connection = FakeNodeConnection(settings)
        fake_nodes[settings.node_id] = connection
        return connection

    return factory


@pytest_asyncio.fixture
async def node_pool(node_settings, connection_factory):
    from guild_music_orchestrator.infrastructure.lavalink.node_pool import NodePool

    pool = NodePool(
        node_settings,
        connection_factory,
        rpc_timeout=0.5,
        sleep=no_sleep,
        rng=lambda: 0.0,
    )
    await pool.start()
    assert await pool.wait_ready(timeout=1.0)
    await settle()
    yield pool
    await pool.close()


@pytest_asyncio.fixture
async def orchestrator(queue_store, node_pool, retry_executor):
    from guild_music_orchestrator.application.services.playback_orchestrator import (
        PlaybackOrchestrator,
    )

    return PlaybackOrchestrator(
        queue_store=queue_store,
        node_pool=node_pool,
        retry_executor=retry_executor,
        max_advance_attempts=3,
    )


@pytest_asyncio.fixture
async def dispatcher(orchestrator, queue_store, retry_executor):
    from guild_music_orchestrator.application.commands.dispatcher import CommandDispatcher

    await queue_store.allow(GUILD_ID)
    return CommandDispatcher(
        orchestrator=orchestrator,
        queue_store=queue_store,
        retry_executor=retry_executor,
    )


def node_serving(fake_nodes: dict[str, FakeNodeConnection], session) -> FakeNodeConnection:
    return fake_nodes[session.node_id]
