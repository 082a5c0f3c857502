"""
Command Ingress Models

The command front-end turns every user interaction into a :class:`Command`
and renders the :class:`CommandResult` it gets back.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ...domain.shared.enums import CommandName


@dataclass(frozen=True)
class CommandArgs:
    """Optional arguments; which ones are required depends on the command."""

    query: str | None = None
    voice_channel_id: int | None = None  # Invoking user's voice channel
    reply_channel_id: int | None = None  # Text channel for now-playing notices


@dataclass(frozen=True)
class Command:
    name: CommandName
    guild_id: int
    user_id: int
    args: CommandArgs = field(default_factory=CommandArgs)

    def __post_init__(self) -> None:
        if self.guild_id <= 0:
            raise ValueError("Guild ID must be positive")
        if self.user_id <= 0:
            raise ValueError("User ID must be positive")


@dataclass(frozen=True)
class CommandResult:
    success: bool
    user_message: str

    @classmethod
    def ok(cls, user_message: str) -> CommandResult:
        return cls(success=True, user_message=user_message)

    @classmethod
    def failure(cls, user_message: str) -> CommandResult:
        return cls(success=False, user_message=user_message)
