"""Discord cogs - command handlers."""

from guild_music_orchestrator.infrastructure.discord.cogs.health_cog import HealthCog
from guild_music_orchestrator.infrastructure.discord.cogs.music_cog import MusicCog

__all__ = [
    "HealthCog",
    "MusicCog",
]
