"""
Playback Bounded Context

Queue entries, sessions, nodes and the events exchanged with nodes.
"""

from guild_music_orchestrator.domain.music.entities import (
    NodeInfo,
    QueueEntry,
    Session,
    TrackMetadata,
)
from guild_music_orchestrator.domain.music.events import NodeEvent, SessionClosed, TrackEnded
from guild_music_orchestrator.domain.music.repository import TenantQueueStore
from guild_music_orchestrator.domain.music.value_objects import (
    NodeConnectivity,
    SessionState,
    TenantState,
    TrackEndReason,
)

__all__ = [
    # Entities
    "QueueEntry",
    "Session",
    "NodeInfo",
    "TrackMetadata",
    # Value Objects
    "SessionState",
    "NodeConnectivity",
    "TenantState",
    "TrackEndReason",
    # Events
    "NodeEvent",
    "TrackEnded",
    "SessionClosed",
    # Repository
    "TenantQueueStore",
]
