"""SQLite repository implementations."""

from guild_music_orchestrator.infrastructure.persistence.repositories.queue_store import (
    SQLiteTenantQueueStore,
)

__all__ = [
    "SQLiteTenantQueueStore",
]
