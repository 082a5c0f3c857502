"""Centralized message constants for error messages, log templates, and user feedback."""

from __future__ import annotations


class ErrorMessages:
    """Error messages for exceptions and validation failures."""

    # Discord ID Validation Errors
    INVALID_SNOWFLAKE = "Discord snowflake ID must be positive"
    SNOWFLAKE_TOO_LARGE = "Discord snowflake ID exceeds maximum value (2^64)"

    # Time/Date Validation Errors
    TIMEZONE_REQUIRED = "datetime must be timezone-aware"

    # Command Validation Errors
    EMPTY_QUERY = "Please provide a song name or URL."
    QUERY_TOO_LONG = "That query is too long (at most {max_length} characters)."
    VOICE_CHANNEL_REQUIRED = "Join a voice channel first."
    MISSING_COMMAND_ARGUMENT = "Missing argument '{field_name}' for command '{command}'"

    # Node Errors
    NO_NODE_CONNECTED = "No audio node is connected"
    NODE_NOT_CONNECTED = "Node {node_id} is not connected"
    SESSION_NOT_BOUND = "Session {session_id} is not bound to a node"
    NODE_TIMED_OUT = "Node {node_id} did not answer '{operation}' within {timeout}s"
    NODE_HTTP_ERROR = "Node {node_id} answered {status} to {method} {path}"
    NODE_TRANSPORT_ERROR = "Transport error talking to node {node_id}: {error}"
    NODE_LOAD_FAILED = "Node failed to load track: {message}"
    NODE_HANDSHAKE_REJECTED = "Node {node_id} rejected the handshake with status {status}"
    NODE_READY_TIMEOUT = "Node {node_id} did not send 'ready' within {timeout}s"
    NODE_NO_REMOTE_SESSION = "Node {node_id} has no remote session yet"

    # Backend Errors
    BACKEND_OPERATION_FAILED = "Queue store operation '{operation}' failed: {error}"

    # Settings Errors
    INVALID_DATABASE_URL = "Database URL must start with sqlite://"
    INVALID_LOG_LEVEL = "Invalid log level: {level}. Must be one of {valid_levels}"
    DUPLICATE_NODE_ID = "Duplicate node_id in lavalink.nodes: {node_id}"
    INVALID_DELAY_RANGE = "base_delay_s must not exceed max_delay_s"
    DISCORD_TOKEN_REQUIRED = "DISCORD__TOKEN environment variable is required"
    CONTAINER_NOT_INITIALIZED = "Container not initialized. Call initialize() first."
    CONTAINER_NOT_FOUND = "Container not found on bot instance"

    # Retry
    RETRY_CANCELLED = "Retry for guild {guild_id} cancelled by teardown"


class UserMessages:
    """User-facing replies.

    These strings are shown directly to users. Keep them short.
    """

    TENANT_NOT_ALLOWED = (
        "❌ This server is not authorized to use this bot. Please contact an administrator."
    )
    SERVICE_UNAVAILABLE = "⚠️ Music service is temporarily unavailable, try again."
    CONTACT_SUPPORT = "❌ Something is wrong on our side. Please contact support."
    UNEXPECTED_ERROR = "❌ An unexpected error occurred."

    JOINED = "🔊 Joined <#{channel_id}>."
    ALREADY_CONNECTED = "✅ Already connected."
    REBOUND_RESUMED = "🔊 Reconnected and resumed **{title}**."
    NOW_PLAYING = "🎵 Now playing: **{title}**"
    ADDED_TO_QUEUE = "➕ Added to queue: **{title}** (position {position})"
    SKIPPED = "⏭️ Skipped **{title}**."
    SKIPPED_NOW_PLAYING = "⏭️ Skipped **{title}**. Now playing: **{next_title}**"
    NOTHING_TO_SKIP = "Nothing is playing."
    QUEUE_CLEARED = "🗑️ Cleared {count} track(s) from the queue."
    QUEUE_SIZE = "📋 {count} track(s) in the queue."
    QUEUE_EMPTY = "📋 The queue is empty."
    QUEUE_LINE = "`{position}.` {track_ref}"
    QUEUE_CURRENT_LINE = "▶️ {title}"
    LEFT = "👋 Left the voice channel."
    NOT_CONNECTED = "I'm not connected to a voice channel."

    STATUS_LATENCY = "{emoji} Gateway latency: {latency_ms} ms"
    STATUS_NODE_LINE = (
        "{emoji} `{node_id}` {connectivity}, {load} player(s), {reconnects} reconnect attempt(s)"
    )
    STATUS_NO_NODES = "No audio nodes are configured."


class LogTemplates:
    """Log message templates.

    Use these with logger.info(), logger.error(), etc. and pass values as
    parameters. Templates that start with ``[%s]`` expect a CommandContext.
    """

    # Database Lifecycle
    DATABASE_INITIALIZED = "Database initialized at %s"
    DATABASE_CLOSED = "Database manager closed"

    # Queue Store
    QUEUE_ENQUEUED = "[%s] Enqueued seq=%s rank=%s"
    QUEUE_DEQUEUED = "[%s] Dequeued seq=%s"
    QUEUE_DEQUEUE_LOST_RACE = "[%s] Head seq=%s already removed by a concurrent caller"
    QUEUE_ENTRY_REMOVED = "[%s] Removed queue entry seq=%s"
    QUEUE_CLEARED = "[%s] Cleared %d queue entries"
    ALLOWLIST_CHECK_FAILED = "[%s] Allowlist lookup failed, denying: %r"
    ALLOWLIST_GRANTED = "Guild %s added to allowlist"
    ALLOWLIST_REVOKED = "Guild %s removed from allowlist"
    ALLOWLIST_SEEDED = "Seeded %d guild(s) into the allowlist"

    # Retry
    RETRY_SCHEDULED = "[%s] Attempt %d/%d failed (%s), retrying in %.2fs: %r"
    RETRY_EXHAUSTED = "[%s] Giving up after %d attempt(s) (%s): %r"
    RETRY_NOT_RETRYABLE = "[%s] Non-retryable %s failure (%s): %r"
    RETRY_CANCELLED = "[%s] Pending retry cancelled by teardown"

    # Node Pool
    NODE_POOL_STARTED = "Node pool started with %d node(s)"
    NODE_POOL_CLOSED = "Node pool closed"
    NODE_CONNECTING = "Connecting to node %s at %s"
    NODE_CONNECTED = "Node %s connected (remote session %s)"
    NODE_CONNECT_FAILED = "Node %s connection attempt %d failed, next attempt in %.2fs: %r"
    NODE_GAVE_UP = "Node %s unreachable after %d attempt(s), giving up"
    NODE_CLOSED = "Node %s closed with code %s (%s), %d session(s) need rebind"
    NODE_EVENT_DROPPED = "Dropping %s from node %s for guild %s: no matching binding"
    NODE_EVENT_HANDLER_FAILED = "Node event handler failed for %s"
    NODE_SELECTED = "[%s] Selected node %s (load %d)"
    SESSION_ACQUIRED = "[%s] Session %s bound to node %s"
    SESSION_RELEASED = "[%s] Session %s released from node %s"
    SESSION_RELEASE_FAILED = "[%s] Destroying remote player failed: %r"
    VOICE_STATE_FORWARDED = "Forwarded voice state for guild %s to node %s"
    VOICE_STATE_NO_SESSION = "Voice state for guild %s ignored: no bound session"
    VOICE_STATE_FORWARD_FAILED = "Forwarding voice state for guild %s failed: %r"

    # Lavalink transport
    LAVALINK_UNKNOWN_OP = "Node %s sent unknown op %r"
    LAVALINK_BAD_PAYLOAD = "Node %s sent an undecodable payload: %r"
    LAVALINK_READY = "Node %s ready (resumed=%s, session %s)"
    LAVALINK_SOCKET_CLOSED = "Node %s voice socket closed for guild %s: %s (%s)"
    LAVALINK_TRACK_TROUBLE = "Node %s reported %s for guild %s: %s"

    # Orchestrator
    TENANT_JOINED = "[%s] Joined voice channel %s via node %s"
    TENANT_REBOUND = "[%s] Rebound session after node loss, interrupted track: %s"
    TRACK_STARTED = "[%s] Started '%s' (skip token %d)"
    TRACK_QUEUED = "[%s] Queued '%s' at rank %d"
    TRACK_SKIPPED = "[%s] Skipped '%s' (skip token now %d)"
    TRACK_UNRESOLVABLE = "[%s] Dropping unresolvable queue entry seq=%s: %s"
    QUEUE_ENTRY_ALREADY_TAKEN = "[%s] Queue entry seq=%s was already removed after it started"
    TENANT_IDLE = "[%s] Queue empty, idle"
    QUEUE_CLEARED_BY_COMMAND = "[%s] Cleared %d entries and stopped playback"
    STALE_TRACK_END = "[%s] Ignoring stale track end (%s)"
    TRACK_END_IGNORED = "[%s] Track end with reason %s does not advance"
    ADVANCE_FAILED = "[%s] Advancing after track end failed: %r"
    SESSION_NEEDS_REBIND = "[%s] Session %s needs rebind (code %s)"
    TENANT_LEFT = "[%s] Session destroyed"
    TENANT_TORN_DOWN = "[%s] Guild torn down"

    # Commands
    COMMAND_RECEIVED = "[%s] Command received"
    COMMAND_REJECTED_NOT_ALLOWED = "[%s] Rejected: guild is not on the allowlist"
    COMMAND_FAILED = "[%s] Command failed (%s/%s): %s"
    COMMAND_UNEXPECTED_ERROR = "[%s] Unexpected error while handling command"

    # Bot Lifecycle
    BOT_READY = "Logged in as %s (ID: %s)"
    BOT_STARTING = "Starting guild music orchestrator..."
    BOT_SHUTDOWN = "Shutting down..."
    BOT_SHUTDOWN_COMPLETE = "Shutdown complete"
    BOT_RUN_FAILED = "Bot run failed"
    BOT_STOPPED = "Bot stopped"
    BOT_KEYBOARD_INTERRUPT = "Interrupted, shutting down"
    BOT_SHUTDOWN_TIMEOUT = "Graceful shutdown did not finish within %.0fs"
    BOT_CONTAINER_SHUTDOWN_ERROR = "Error shutting down container: %r"
    COG_LOADED = "Loaded cog: %s"
    COG_LOAD_FAILED = "Failed to load cog %s"
    STATUS_REQUESTED = "Status requested: %d/%d node(s) connected, latency %.1f ms"
    SLASH_SYNCED_GUILD = "Synced %s slash commands to guild %s"
    SLASH_SYNCED_GLOBAL = "Synced %s slash commands globally"
    SLASH_SYNC_FAILED = "Failed to sync slash commands"
    CONTAINER_INITIALIZED = "Container initialized"
    CONTAINER_COMPONENT_CLOSE_FAILED = "Failed closing %s: %r"
    CONTAINER_SHUTDOWN = "Container shut down"
    LOGGING_CONFIG_FALLBACK = "Logging config %s not usable, using basicConfig: %r"

    # Discord Interactions
    INTERACTION_REPLY_FAILED = "Failed to send interaction reply: %r"
    SLASH_COMMAND_ERROR = "Slash command %s raised: %r"
    VOICE_CONNECT_FAILED = "Could not connect to voice channel %s in guild %s: %r"
    VOICE_DISCONNECT_FAILED = "Could not disconnect voice in guild %s: %r"
    VOICE_SOCKET_LEFT = "Voice connection for guild %s ended by Discord"


class LavalinkCloseCodes:
    """Human-readable descriptions of voice websocket close codes."""

    DESCRIPTIONS: dict[int, str] = {
        1000: "Normal closure",
        1001: "Going away",
        1006: "Abnormal closure",
        4000: "Unknown error",
        4001: "Unknown opcode",
        4002: "Failed to decode payload",
        4003: "Not authenticated",
        4004: "Authentication failed",
        4005: "Already authenticated",
        4006: "Session no longer valid",
        4009: "Session timeout",
        4011: "Server not found",
        4012: "Unknown protocol",
        4014: "Disconnected",
        4015: "Voice server crashed",
        4016: "Unknown encryption mode",
    }

    @classmethod
    def describe(cls, code: int | None) -> str:
        if code is None:
            return "No close code"
        return cls.DESCRIPTIONS.get(code, f"Unknown close code {code}")
