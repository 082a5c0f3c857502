"""
Application Commands

Command objects entering the system and the dispatcher that handles them.
"""

from guild_music_orchestrator.application.commands.dispatcher import CommandDispatcher
from guild_music_orchestrator.application.commands.models import (
    Command,
    CommandArgs,
    CommandResult,
)

__all__ = [
    "Command",
    "CommandArgs",
    "CommandResult",
    "CommandDispatcher",
]
