"""Core domain entities for the playback context."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from guild_music_orchestrator.domain.music.value_objects import NodeConnectivity, SessionState
from guild_music_orchestrator.domain.shared.datetime_utils import utcnow
from guild_music_orchestrator.domain.shared.exceptions import InvalidOperationError
from guild_music_orchestrator.domain.shared.types import (
    DiscordSnowflake,
    NonEmptyStr,
    NonNegativeInt,
    SequenceNumber,
    TrackRefStr,
    UtcDatetimeField,
)


class TrackMetadata(BaseModel):
    """A track as resolved by a node. ``encoded`` is the node's opaque handle."""

    model_config = ConfigDict(frozen=True, strict=True)

    encoded: NonEmptyStr
    identifier: NonEmptyStr
    title: NonEmptyStr
    author: str = ""
    length_ms: NonNegativeInt = 0
    uri: str | None = None
    is_stream: bool = False
    source_name: str | None = None

    @property
    def duration_formatted(self) -> str:
        if self.is_stream:
            return "LIVE"
        total = self.length_ms // 1000
        hours, remainder = divmod(total, 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours:
            return f"{hours}:{minutes:02d}:{seconds:02d}"
        return f"{minutes}:{seconds:02d}"

    @property
    def display_title(self) -> str:
        if self.author:
            return f"{self.title} by {self.author}"
        return self.title


class QueueEntry(BaseModel):
    """One queued playback request. Ordered by ``sequence_number``."""

    model_config = ConfigDict(frozen=True, strict=True)

    guild_id: DiscordSnowflake
    sequence_number: SequenceNumber
    track_ref: TrackRefStr
    enqueued_at: UtcDatetimeField = Field(default_factory=utcnow)


def _new_session_id() -> str:
    return uuid.uuid4().hex


class Session(BaseModel):
    """Binding between a guild and the node currently serving it.

    Mutable: the node pool moves it between states and the orchestrator
    owns ``current_track`` and ``skip_token``.
    """

    model_config = ConfigDict(strict=True)

    session_id: NonEmptyStr = Field(default_factory=_new_session_id)
    guild_id: DiscordSnowflake
    node_id: NonEmptyStr
    voice_channel_id: DiscordSnowflake
    reply_channel_id: DiscordSnowflake | None = None
    state: SessionState = SessionState.CONNECTING
    current_track: TrackMetadata | None = None
    skip_token: NonNegativeInt = 0
    created_at: UtcDatetimeField = Field(default_factory=utcnow)

    @property
    def is_bound(self) -> bool:
        return self.state == SessionState.BOUND

    @property
    def needs_rebind(self) -> bool:
        return self.state == SessionState.NEEDS_REBIND

    @property
    def is_playing(self) -> bool:
        return self.current_track is not None

    def transition_to(self, new_state: SessionState) -> None:
        """Transition to a new binding state."""
        if self.state == new_state:
            return
        if not self.state.can_transition_to(new_state):
            raise InvalidOperationError(
                operation=f"transition to {new_state.value}",
                current_state=self.state.value,
            )
        self.state = new_state

    def bump_skip_token(self) -> int:
        """Invalidate every node event issued under the current token."""
        self.skip_token += 1
        return self.skip_token


class NodeInfo(BaseModel):
    """Read-only snapshot of a node, as reported by the pool."""

    model_config = ConfigDict(frozen=True)

    node_id: NonEmptyStr
    endpoint: NonEmptyStr
    connectivity: NodeConnectivity
    load: NonNegativeInt = 0
    remote_session_id: str | None = None
    reconnect_attempts: NonNegativeInt = 0
    last_change_at: datetime | None = None

    @property
    def is_connected(self) -> bool:
        return self.connectivity == NodeConnectivity.CONNECTED
