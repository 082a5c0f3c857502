# ruff: noqa: N999
"""
Domain Layer

Contains pure business logic organized by bounded contexts:
- shared/: Error taxonomy, correlation context and constrained types
- music/: Queue entries, sessions, nodes and node events
"""

from guild_music_orchestrator.domain.shared.context import CommandContext
from guild_music_orchestrator.domain.shared.exceptions import OrchestratorError

__all__ = [
    "CommandContext",
    "OrchestratorError",
]
