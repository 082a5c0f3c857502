"""Application Settings and Configuration

Pydantic-based settings management using environment variables.
Settings are loaded from environment variables with support for .env files,
type validation, and sensible defaults. All settings are frozen and immutable
after initialization.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..application.services.retry_models import RetryPolicy
from ..domain.shared.messages import ErrorMessages
from ..domain.shared.types import (
    BusyTimeoutMs,
    ConnectionTimeoutS,
    MaxAttempts,
    NonNegativeFloat,
    PortNumber,
)
from ..domain.shared.validators import validate_discord_snowflake


class DatabaseSettings(BaseModel):
    """Queue store configuration."""

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True)

    url: str = Field(
        default="sqlite:///data/orchestrator.db",
        validation_alias=AliasChoices("url", "database_url", "db_url"),
    )
    busy_timeout_ms: BusyTimeoutMs = Field(
        default=5000,
        validation_alias=AliasChoices("busy_timeout_ms", "busy_timeout"),
    )
    connection_timeout_s: ConnectionTimeoutS = Field(
        default=10,
        validation_alias=AliasChoices("connection_timeout_s", "connection_timeout"),
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith("sqlite://"):
            raise ValueError(ErrorMessages.INVALID_DATABASE_URL)
        return v


class DiscordSettings(BaseModel):
    """Discord bot configuration."""

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True)

    token: SecretStr = Field(
        default=SecretStr(""), validation_alias=AliasChoices("token", "bot_token", "discord_token")
    )
    sync_on_startup: bool = True
    test_guild_ids: tuple[int, ...] = ()

    @field_validator("test_guild_ids", mode="before")
    @classmethod
    def validate_snowflake_ids(cls, v: tuple[int, ...] | list[int]) -> tuple[int, ...]:
        return tuple(validate_discord_snowflake(int(item)) for item in v)


class NodeSettings(BaseModel):
    """One audio node from static configuration."""

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True)

    node_id: str = Field(default="main", min_length=1)
    host: str = Field(default="localhost", min_length=1)
    port: PortNumber = 2333
    secure: bool = False
    password: SecretStr = Field(
        default=SecretStr("youshallnotpass"),
        validation_alias=AliasChoices("password", "secret", "authorization"),
    )

    @property
    def rest_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def ws_url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}"


class LavalinkSettings(BaseModel):
    """Node pool configuration."""

    model_config = SettingsConfigDict(frozen=True, populate_by_name=True)

    nodes: tuple[NodeSettings, ...] = Field(default_factory=lambda: (NodeSettings(),))
    client_name: str = Field(default="guild-music-orchestrator/0.1.0", min_length=1)
    search_prefix: str = "ytsearch"
    rpc_timeout_s: NonNegativeFloat = 10.0
    connect_timeout_s: NonNegativeFloat = 30.0

    @field_validator("nodes", mode="before")
    @classmethod
    def validate_nodes(cls, v: object) -> object:
        if isinstance(v, list):
            return tuple(v)
        return v

    @model_validator(mode="after")
    def _unique_node_ids(self) -> LavalinkSettings:
        seen: set[str] = set()
        for node in self.nodes:
            if node.node_id in seen:
                raise ValueError(ErrorMessages.DUPLICATE_NODE_ID.format(node_id=node.node_id))
            seen.add(node.node_id)
        return self


class RetrySettings(BaseModel):
    """Retry policy applied to store and node calls made for a command."""

    model_config = SettingsConfigDict(frozen=True)

    max_attempts: MaxAttempts = 3
    base_delay_s: NonNegativeFloat = 1.0
    max_delay_s: NonNegativeFloat = 30.0
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_s: NonNegativeFloat = 1.0

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay_s,
            max_delay=self.max_delay_s,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter_s,
        )


class ReconnectSettings(BaseModel):
    """Backoff for the per-node reconnection loop."""

    model_config = SettingsConfigDict(frozen=True)

    base_delay_s: NonNegativeFloat = 5.0
    max_delay_s: NonNegativeFloat = 60.0
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_s: NonNegativeFloat = 1.0
    # None keeps trying forever.
    max_attempts: int | None = Field(default=None, ge=1)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            # Only the delay shape is used by the reconnect loop.
            max_attempts=1,
            base_delay=self.base_delay_s,
            max_delay=self.max_delay_s,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter_s,
        )


class AllowlistSettings(BaseModel):
    """Guilds seeded into the allowlist at start-up."""

    model_config = SettingsConfigDict(frozen=True)

    guild_ids: tuple[int, ...] = ()

    @field_validator("guild_ids", mode="before")
    @classmethod
    def validate_snowflake_ids(cls, v: tuple[int, ...] | list[int]) -> tuple[int, ...]:
        return tuple(validate_discord_snowflake(int(item)) for item in v)


class PlaybackSettings(BaseModel):
    """Queue advancement tuning."""

    model_config = SettingsConfigDict(frozen=True)

    max_advance_attempts: int = Field(default=3, ge=1, le=50)


class Settings(BaseSettings):
    """Application settings container.

    Automatically loads configuration from environment variables.

    Environment variable naming:
    - ENVIRONMENT, DEBUG, LOG_LEVEL (top-level)
    - DATABASE__URL, DISCORD__TOKEN, RETRY__MAX_ATTEMPTS, etc. (nested)
    - LAVALINK__NODES as a JSON list of node objects
    - ALLOWLIST__GUILD_IDS as a JSON list of guild IDs
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    lavalink: LavalinkSettings = Field(default_factory=LavalinkSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)
    allowlist: AllowlistSettings = Field(default_factory=AllowlistSettings)
    playback: PlaybackSettings = Field(default_factory=PlaybackSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(
                ErrorMessages.INVALID_LOG_LEVEL.format(level=v, valid_levels=valid_levels)
            )
        return v_upper


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are automatically loaded from:
    1. .env file (if present)
    2. Environment variables
    3. Default values
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
