"""DTOs returned by the playback orchestrator."""

from __future__ import annotations

from pydantic import BaseModel

from ...domain.music.entities import TrackMetadata
from ...domain.shared.types import NonNegativeInt


class JoinResult(BaseModel):
    session_id: str
    node_id: str
    voice_channel_id: int
    already_connected: bool = False
    resumed_track: TrackMetadata | None = None


class PlayResult(BaseModel):
    track: TrackMetadata
    started: bool
    # 1-based rank in the queue; 0 when the track started immediately.
    position: NonNegativeInt = 0


class SkipResult(BaseModel):
    skipped: bool
    skipped_track: TrackMetadata | None = None
    next_track: TrackMetadata | None = None


class ClearResult(BaseModel):
    removed: NonNegativeInt
