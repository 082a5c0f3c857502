"""Date/time helpers.

All timestamps are timezone-aware UTC. The queue store persists them as
ISO 8601 strings with an explicit offset.
"""

from __future__ import annotations

from datetime import UTC, datetime

from guild_music_orchestrator.domain.shared.messages import ErrorMessages


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime) -> str:
    """Serialize a timezone-aware datetime for storage."""
    if dt.tzinfo is None:
        raise ValueError(ErrorMessages.TIMEZONE_REQUIRED)
    return dt.astimezone(UTC).isoformat()


def from_iso(value: str) -> datetime:
    """Parse a stored timestamp. Naive values are assumed to be UTC."""
    # Accepts: '...+00:00' or '...Z'
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
