"""Infrastructure layer - external systems integration.

This layer contains implementations for:
- Persistence (SQLite queue store and allowlist)
- Lavalink (node connections and the node pool)
- Discord (bot, cogs, voice bridge)
"""

from guild_music_orchestrator.infrastructure.persistence.database import Database

__all__ = [
    "Database",
]
