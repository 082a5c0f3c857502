"""
Shared Domain Kernel

Contains the error taxonomy, correlation context and constrained types
shared by every layer.
"""

from guild_music_orchestrator.domain.shared.context import CommandContext
from guild_music_orchestrator.domain.shared.enums import ErrorCategory, ErrorKind, ErrorSeverity
from guild_music_orchestrator.domain.shared.exceptions import (
    BackendError,
    NodeError,
    OrchestratorError,
    TrackNotFoundError,
    ValidationError,
)

__all__ = [
    "CommandContext",
    "ErrorKind",
    "ErrorCategory",
    "ErrorSeverity",
    "OrchestratorError",
    "ValidationError",
    "TrackNotFoundError",
    "NodeError",
    "BackendError",
]
