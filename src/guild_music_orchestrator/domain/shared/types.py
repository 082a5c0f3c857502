"""Reusable Pydantic Annotated types for domain-wide validation.

Every constrained type used across the project is defined here once, so
models can simply annotate their fields::

    from guild_music_orchestrator.domain.shared.types import DiscordSnowflake, NonEmptyStr

    class MyModel(BaseModel):
        guild_id: DiscordSnowflake
        track_ref: NonEmptyStr
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import BeforeValidator, Field

from guild_music_orchestrator.domain.shared.constants import MAX_TRACK_REF_LENGTH

# ── Numeric constraints ─────────────────────────────────────────────

DiscordSnowflake = Annotated[int, Field(gt=0, lt=2**64)]
"""Positive integer that fits a Discord snowflake (1 … 2^64-1)."""

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Integer >= 0."""

PositiveInt = Annotated[int, Field(gt=0)]
"""Integer > 0."""

NonNegativeFloat = Annotated[float, Field(ge=0.0)]
"""Float >= 0.0."""

SequenceNumber = Annotated[int, Field(gt=0)]
"""Per-guild queue sequence number, starting at 1."""

PortNumber = Annotated[int, Field(gt=0, lt=65_536)]
"""TCP port: 1 … 65 535."""


# ── String constraints ──────────────────────────────────────────────

NonEmptyStr = Annotated[str, Field(min_length=1)]
"""String with at least one character."""

TrackRefStr = Annotated[str, Field(min_length=1, max_length=MAX_TRACK_REF_LENGTH)]
"""Opaque track reference (query or URI) as stored in the queue."""


# ── Settings-specific constraints ──────────────────────────────────

BusyTimeoutMs = Annotated[int, Field(ge=1000, le=30000)]
"""Database busy timeout in milliseconds: 1 000 … 30 000."""

ConnectionTimeoutS = Annotated[int, Field(ge=1, le=60)]
"""Database connection timeout in seconds: 1 … 60."""

MaxAttempts = Annotated[int, Field(ge=1, le=20)]
"""Retry attempts, first try included: 1 … 20."""


# ── Datetime constraints ────────────────────────────────────────────

def _ensure_utc(v: datetime) -> datetime:
    """Validate that a datetime is timezone-aware and normalise to UTC."""
    if v.tzinfo is None:
        raise ValueError("datetime must be timezone-aware (UTC)")
    return v.astimezone(UTC)


UtcDatetimeField = Annotated[datetime, BeforeValidator(_ensure_utc)]
"""Timezone-aware datetime, normalised to UTC on input."""
