"""Port interface for one authenticated connection to an audio node."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from ...domain.music.entities import TrackMetadata
from ...domain.music.value_objects import TrackEndReason
from ...domain.shared.types import DiscordSnowflake, NonEmptyStr, NonNegativeInt


class VoiceState(BaseModel):
    """Voice credentials a node needs to join a guild's voice channel."""

    model_config = ConfigDict(frozen=True)

    session_id: NonEmptyStr
    token: NonEmptyStr
    endpoint: NonEmptyStr


class RemoteTrackEnded(BaseModel):
    model_config = ConfigDict(frozen=True)

    guild_id: DiscordSnowflake
    track_encoded: NonEmptyStr
    reason: TrackEndReason


class RemoteSocketClosed(BaseModel):
    model_config = ConfigDict(frozen=True)

    guild_id: DiscordSnowflake
    code: int | None = None
    reason: str = ""
    by_remote: bool = True


class RemoteStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    players: NonNegativeInt = 0
    playing_players: NonNegativeInt = 0


NodeSignal = RemoteTrackEnded | RemoteSocketClosed | RemoteStats
SignalListener = Callable[[NodeSignal], None]


class NodeConnection(ABC):
    """Interface for a single node's control channel and player RPCs.

    ``connect`` performs the authenticated handshake (identity, client name
    and shared secret) and returns once the node has acknowledged it.
    Player RPCs are scoped by guild ID on that node.
    """

    @property
    @abstractmethod
    def node_id(self) -> str: ...

    @property
    @abstractmethod
    def endpoint(self) -> str: ...

    @property
    @abstractmethod
    def remote_session_id(self) -> str | None: ...

    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    def set_signal_listener(self, listener: SignalListener | None) -> None:
        """Register the callback that receives node-originated signals."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the control channel and wait for the node's ready message."""
        ...

    @abstractmethod
    async def wait_closed(self) -> int | None:
        """Wait until the control channel closes.

        Returns:
            The close code reported by the transport, if any.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the control channel and release transport resources."""
        ...

    @abstractmethod
    async def load_track(self, query: str) -> TrackMetadata:
        """Resolve a query to a single playable track.

        Raises:
            TrackNotFoundError: If the node reports no match.
        """
        ...

    @abstractmethod
    async def ensure_player(self, guild_id: int, voice: VoiceState | None = None) -> None:
        """Create (or refresh) the guild's player on this node."""
        ...

    @abstractmethod
    async def play(self, guild_id: int, track: TrackMetadata) -> None:
        """Start ``track``, replacing whatever the player was doing."""
        ...

    @abstractmethod
    async def stop(self, guild_id: int) -> None:
        """Stop the guild's player without destroying it."""
        ...

    @abstractmethod
    async def destroy_player(self, guild_id: int) -> None:
        """Remove the guild's player from this node."""
        ...
