"""
Playback Domain Repository Interfaces

Abstract base classes defining the contracts for data persistence.
Implementations live in the infrastructure layer.
"""

from abc import ABC, abstractmethod

from guild_music_orchestrator.domain.music.entities import QueueEntry
from guild_music_orchestrator.domain.shared.context import CommandContext


class TenantQueueStore(ABC):
    """Durable per-guild ordered queue plus the guild allowlist.

    Every queue operation is scoped to ``ctx.guild_id``. Entries are ordered
    by a per-guild sequence number that is never reused. The only
    concurrency primitive is the conditional delete of a single entry.
    """

    @abstractmethod
    async def is_allowed(self, ctx: CommandContext) -> bool:
        """Check whether the guild may use the service.

        Fails closed: a backend error is logged and yields False.

        Args:
            ctx: Call context carrying the guild ID.

        Returns:
            True only if an allowlist entry was found.
        """
        ...

    @abstractmethod
    async def enqueue(self, ctx: CommandContext, track_ref: str) -> int:
        """Append a track reference with a fresh sequence number.

        Args:
            ctx: Call context carrying the guild ID.
            track_ref: Opaque query or URI, stored verbatim.

        Returns:
            The 1-based rank of the new entry among entries currently queued.
        """
        ...

    @abstractmethod
    async def dequeue_head(self, ctx: CommandContext) -> str | None:
        """Remove and return the oldest entry.

        Returns None when the queue is empty or when a concurrent caller
        removed the head first.
        """
        ...

    @abstractmethod
    async def peek_head(self, ctx: CommandContext) -> str | None:
        """Return the oldest track reference without removing it."""
        ...

    @abstractmethod
    async def peek_head_entry(self, ctx: CommandContext) -> QueueEntry | None:
        """Return the oldest entry, sequence number included, without removing it."""
        ...

    @abstractmethod
    async def remove_entry(self, ctx: CommandContext, sequence_number: int) -> bool:
        """Delete one entry if it is still present.

        Returns:
            True if this call removed it, False if it was already gone.
        """
        ...

    @abstractmethod
    async def size(self, ctx: CommandContext) -> int:
        """Count the guild's queued entries."""
        ...

    @abstractmethod
    async def list_entries(self, ctx: CommandContext, limit: int | None = None) -> list[QueueEntry]:
        """List queued entries in playback order."""
        ...

    @abstractmethod
    async def clear_all(self, ctx: CommandContext) -> int:
        """Delete every entry of the guild, one entry at a time.

        Returns:
            Number of entries this call removed.
        """
        ...

    @abstractmethod
    async def allow(self, guild_id: int) -> bool:
        """Add a guild to the allowlist. Returns False if it was already present."""
        ...

    @abstractmethod
    async def revoke(self, guild_id: int) -> bool:
        """Remove a guild from the allowlist. Returns False if it was absent."""
        ...
