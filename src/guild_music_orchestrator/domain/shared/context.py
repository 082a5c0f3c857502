"""Per-call correlation context.

A :class:`CommandContext` is created once per command (or node event) and
passed explicitly into every orchestrator, store and node call. Its string
form is the prefix of every log line written on behalf of that call.
"""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field

from guild_music_orchestrator.domain.shared.types import DiscordSnowflake, NonEmptyStr


def _new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


class CommandContext(BaseModel):
    """Who asked for what, in which guild."""

    model_config = ConfigDict(frozen=True, strict=True)

    guild_id: DiscordSnowflake
    user_id: DiscordSnowflake | None = None
    command: NonEmptyStr
    correlation_id: NonEmptyStr = Field(default_factory=_new_correlation_id)

    @classmethod
    def for_event(cls, guild_id: int, event: str) -> CommandContext:
        """Context for work triggered by a node rather than a user."""
        return cls(guild_id=guild_id, command=event)

    def __str__(self) -> str:
        user = self.user_id if self.user_id is not None else "-"
        return f"guild={self.guild_id} user={user} cmd={self.command} cid={self.correlation_id}"
