"""
Application Interfaces (Ports)

Abstract interfaces that define contracts between the application
layer and infrastructure adapters.
"""

from guild_music_orchestrator.application.interfaces.node_connection import (
    NodeConnection,
    NodeSignal,
    RemoteSocketClosed,
    RemoteStats,
    RemoteTrackEnded,
    VoiceState,
)

__all__ = [
    "NodeConnection",
    "NodeSignal",
    "RemoteSocketClosed",
    "RemoteStats",
    "RemoteTrackEnded",
    "VoiceState",
]
