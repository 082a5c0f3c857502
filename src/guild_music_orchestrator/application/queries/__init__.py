"""
Application Queries

Query objects and handlers for read operations.
Queries do not modify state, only retrieve data.
"""

from guild_music_orchestrator.application.queries.get_queue import (
    GetQueueHandler,
    GetQueueQuery,
    QueueInfo,
)

__all__ = [
    "GetQueueHandler",
    "GetQueueQuery",
    "QueueInfo",
]
