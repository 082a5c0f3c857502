"""
Tests for node selection, session binding and node event translation.
"""

import pytest

from conftest import (
    GUILD_ID,
    OTHER_GUILD_ID,
    VOICE_CHANNEL_ID,
    make_ctx,
    make_track,
    no_sleep,
    settle,
)
from guild_music_orchestrator.application.interfaces.node_connection import (
    RemoteStats,
    RemoteTrackEnded,
    VoiceState,
)
from guild_music_orchestrator.domain.music.events import SessionClosed, TrackEnded
from guild_music_orchestrator.domain.music.value_objects import (
    NodeConnectivity,
    SessionState,
    TrackEndReason,
)
from guild_music_orchestrator.domain.shared.exceptions import (
    NodeServerError,
    NodeTimeoutError,
    NodeUnavailableError,
)
from guild_music_orchestrator.infrastructure.lavalink.node_pool import NodePool

THIRD_GUILD_ID = 666666666666666666


@pytest.fixture
def events(node_pool):
    received = []

    async def handler(event):
        received.append(event)

    node_pool.set_event_handler(handler)
    return received


async def _acquire(pool, guild_id=GUILD_ID, **kwargs):
    return await pool.acquire_session(make_ctx(guild_id), VOICE_CHANNEL_ID, **kwargs)


class TestNodeSelection:
    @pytest.mark.asyncio
    async def test_all_nodes_connect_on_start(self, node_pool):
        snapshot = node_pool.snapshot()

        assert {info.node_id for info in snapshot} == {"alpha", "beta"}
        assert all(info.is_connected for info in snapshot)

    @pytest.mark.asyncio
    async def test_sessions_spread_over_least_loaded_nodes(self, node_pool):
        first = await _acquire(node_pool, GUILD_ID)
        second = await _acquire(node_pool, OTHER_GUILD_ID)
        third = await _acquire(node_pool, THIRD_GUILD_ID)

        assert (first.node_id, second.node_id, third.node_id) == ("alpha", "beta", "alpha")
        loads = {info.node_id: info.load for info in node_pool.snapshot()}
        assert loads == {"alpha": 2, "beta": 1}

    @pytest.mark.asyncio
    async def test_reported_playing_players_break_ties(self, node_pool, fake_nodes):
        fake_nodes["alpha"].emit(RemoteStats(players=5, playing_players=5))

        session = await _acquire(node_pool)

        assert session.node_id == "beta"

    @pytest.mark.asyncio
    async def test_acquire_binds_session_and_creates_player(self, node_pool, fake_nodes):
        session = await _acquire(node_pool)

        assert session.state == SessionState.BOUND
        assert node_pool.session_for(GUILD_ID) is session
        assert fake_nodes["alpha"].calls_of("ensure_player") == [("ensure_player", GUILD_ID, None)]

    @pytest.mark.asyncio
    async def test_failed_player_creation_leaves_no_binding(self, node_pool, fake_nodes):
        for fake in fake_nodes.values():
            fake.failures["ensure_player"] = [NodeServerError("boom")]

        with pytest.raises(NodeServerError):
            await _acquire(node_pool)
        assert node_pool.session_for(GUILD_ID) is None


class TestRebinding:
    @pytest.mark.asyncio
    async def test_rebind_carries_skip_token_and_retires_old_session(self, node_pool, fake_nodes):
        old = await _acquire(node_pool)
        old.bump_skip_token()
        old.bump_skip_token()

        new = await _acquire(node_pool, previous=old)

        assert new.skip_token == 2
        assert new.session_id != old.session_id
        assert old.state == SessionState.CLOSED
        assert node_pool.session_for(GUILD_ID) is new
        # The old binding still counted as load on alpha when the new node was picked.
        assert new.node_id == "beta"
        assert fake_nodes["alpha"].calls_of("destroy_player") == [("destroy_player", GUILD_ID)]

    @pytest.mark.asyncio
    async def test_release_destroys_remote_player(self, node_pool, fake_nodes):
        session = await _acquire(node_pool)

        await node_pool.release_session(make_ctx(), session)

        assert session.state == SessionState.CLOSED
        assert node_pool.session_for(GUILD_ID) is None
        assert fake_nodes["alpha"].calls_of("destroy_player") == [("destroy_player", GUILD_ID)]


class TestNodeAvailability:
    @pytest.mark.asyncio
    async def test_no_connected_node_raises(self, node_settings, connection_factory, fake_nodes):
        pool = NodePool(
            node_settings,
            connection_factory,
            reconnect_max_attempts=2,
            sleep=no_sleep,
            rng=lambda: 0.0,
        )
        for fake in fake_nodes.values():
            fake.connect_failures = 10
        await pool.start()
        await settle()

        try:
            assert await pool.wait_ready(timeout=0.01) is False
            with pytest.raises(NodeUnavailableError):
                await _acquire(pool)
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_reconnect_gives_up_after_max_attempts(
        self, node_settings, connection_factory, fake_nodes
    ):
        pool = NodePool(
            node_settings,
            connection_factory,
            reconnect_max_attempts=2,
            sleep=no_sleep,
            rng=lambda: 0.0,
        )
        for fake in fake_nodes.values():
            fake.connect_failures = 10
        await pool.start()
        await settle()

        try:
            for info in pool.snapshot():
                assert info.connectivity == NodeConnectivity.DISCONNECTED
                assert info.reconnect_attempts == 2
            assert all(fake.connect_attempts == 2 for fake in fake_nodes.values())
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_transient_connect_failure_is_retried(
        self, node_settings, connection_factory, fake_nodes
    ):
        pool = NodePool(node_settings, connection_factory, sleep=no_sleep, rng=lambda: 0.0)
        fake_nodes["alpha"].connect_failures = 2
        await pool.start()
        await settle()

        try:
            assert fake_nodes["alpha"].connect_attempts == 3
            assert all(info.is_connected for info in pool.snapshot())
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_hanging_rpc_times_out(self, node_pool, fake_nodes):
        session = await _acquire(node_pool)
        fake_nodes["alpha"].hang.add("load_track")

        with pytest.raises(NodeTimeoutError):
            await node_pool.load_track(make_ctx(), session, "slow song")

    @pytest.mark.asyncio
    async def test_rpc_on_unbound_session_is_refused(self, node_pool, fake_nodes):
        session = await _acquire(node_pool)
        fake_nodes["alpha"].close_voice(GUILD_ID)

        with pytest.raises(NodeUnavailableError):
            await node_pool.play(make_ctx(), session, make_track("song"))


class TestNodeLoss:
    @pytest.mark.asyncio
    async def test_dropped_node_marks_sessions_for_rebind(self, node_pool, fake_nodes, events):
        session = await _acquire(node_pool)
        untouched = await _acquire(node_pool, OTHER_GUILD_ID)

        fake_nodes["alpha"].drop(code=1006)
        await settle()
        await node_pool.drain_events()

        assert session.state == SessionState.NEEDS_REBIND
        assert untouched.state == SessionState.BOUND
        assert len(events) == 1
        closed = events[0]
        assert isinstance(closed, SessionClosed)
        assert closed.session_id == session.session_id
        assert closed.code == 1006

    @pytest.mark.asyncio
    async def test_dropped_node_reconnects(self, node_pool, fake_nodes):
        fake_nodes["alpha"].drop()
        await settle()

        assert fake_nodes["alpha"].connect_attempts == 2
        assert all(info.is_connected for info in node_pool.snapshot())

    @pytest.mark.asyncio
    async def test_voice_socket_close_marks_session_for_rebind(self, node_pool, fake_nodes, events):
        session = await _acquire(node_pool)

        fake_nodes["alpha"].close_voice(GUILD_ID, code=4006)
        await node_pool.drain_events()

        assert session.needs_rebind
        assert [type(e) for e in events] == [SessionClosed]
        assert events[0].code == 4006


class TestTrackEndEpochs:
    @pytest.mark.asyncio
    async def test_track_end_carries_token_in_force_at_start(self, node_pool, fake_nodes, events):
        session = await _acquire(node_pool)
        track = make_track("song")
        await node_pool.play(make_ctx(), session, track)
        session.bump_skip_token()

        fake_nodes["alpha"].end_track(GUILD_ID, track)
        await node_pool.drain_events()

        assert len(events) == 1
        ended = events[0]
        assert isinstance(ended, TrackEnded)
        assert ended.skip_token == 0
        assert ended.session_id == session.session_id
        assert ended.reason == TrackEndReason.FINISHED

    @pytest.mark.asyncio
    async def test_track_never_started_reports_unknown_epoch(self, node_pool, fake_nodes, events):
        await _acquire(node_pool)

        fake_nodes["alpha"].end_track(GUILD_ID, make_track("ghost"))
        await node_pool.drain_events()

        assert events[0].skip_token == -1

    @pytest.mark.asyncio
    async def test_replaced_end_keeps_epoch_for_same_track(self, node_pool, fake_nodes, events):
        session = await _acquire(node_pool)
        track = make_track("loop")
        session.bump_skip_token()
        await node_pool.play(make_ctx(), session, track)

        fake_nodes["alpha"].end_track(GUILD_ID, track, TrackEndReason.REPLACED)
        fake_nodes["alpha"].end_track(GUILD_ID, track, TrackEndReason.FINISHED)
        fake_nodes["alpha"].end_track(GUILD_ID, track, TrackEndReason.FINISHED)
        await node_pool.drain_events()

        assert [e.skip_token for e in events] == [1, 1, -1]

    @pytest.mark.asyncio
    async def test_restamp_ties_current_track_to_new_token(self, node_pool, fake_nodes, events):
        session = await _acquire(node_pool)
        track = make_track("song")
        await node_pool.play(make_ctx(), session, track)
        session.current_track = track
        session.bump_skip_token()

        node_pool.restamp(session)
        fake_nodes["alpha"].end_track(GUILD_ID, track)
        await node_pool.drain_events()

        assert events[0].skip_token == 1

    @pytest.mark.asyncio
    async def test_signal_for_unbound_guild_is_dropped(self, node_pool, fake_nodes, events):
        fake_nodes["alpha"].emit(
            RemoteTrackEnded(
                guild_id=OTHER_GUILD_ID,
                track_encoded="enc:x",
                reason=TrackEndReason.FINISHED,
            )
        )
        await node_pool.drain_events()

        assert events == []


class TestVoiceState:
    VOICE = VoiceState(session_id="voice-session", token="voice-token", endpoint="voice.example")

    @pytest.mark.asyncio
    async def test_voice_state_is_buffered_until_bound(self, node_pool, fake_nodes):
        await node_pool.update_voice_state(GUILD_ID, self.VOICE)
        assert all(fake.calls == [] for fake in fake_nodes.values())

        await _acquire(node_pool)

        assert fake_nodes["alpha"].calls_of("ensure_player") == [
            ("ensure_player", GUILD_ID, self.VOICE)
        ]

    @pytest.mark.asyncio
    async def test_voice_state_is_forwarded_to_bound_node(self, node_pool, fake_nodes):
        await _acquire(node_pool)

        await node_pool.update_voice_state(GUILD_ID, self.VOICE)

        assert fake_nodes["alpha"].calls_of("ensure_player")[-1] == (
            "ensure_player",
            GUILD_ID,
            self.VOICE,
        )
        assert fake_nodes["beta"].calls == []
