"""Events a node pool delivers to the orchestrator.

Both carry the session id and the skip token snapshot they were issued
under, so the receiver can discard events from a superseded session or
token epoch.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from guild_music_orchestrator.domain.music.value_objects import TrackEndReason
from guild_music_orchestrator.domain.shared.datetime_utils import utcnow
from guild_music_orchestrator.domain.shared.types import (
    DiscordSnowflake,
    NonEmptyStr,
    UtcDatetimeField,
)


class NodeEvent(BaseModel):
    """Base class for node-originated events."""

    model_config = {"frozen": True}

    guild_id: DiscordSnowflake
    session_id: NonEmptyStr
    node_id: NonEmptyStr
    skip_token: int
    timestamp: UtcDatetimeField = Field(default_factory=utcnow)


class TrackEnded(NodeEvent):
    event_type: Literal["TrackEnded"] = "TrackEnded"
    track_encoded: NonEmptyStr
    reason: TrackEndReason


class SessionClosed(NodeEvent):
    event_type: Literal["SessionClosed"] = "SessionClosed"
    code: int | None = None
    reason: str = ""
    by_remote: bool = True

