"""Lavalink v4 transport and node pool."""

from guild_music_orchestrator.infrastructure.lavalink.connection import LavalinkNodeConnection
from guild_music_orchestrator.infrastructure.lavalink.node_pool import NodePool

__all__ = [
    "LavalinkNodeConnection",
    "NodePool",
]
