"""Centralized constants for schema pragmas, wire names, and shared defaults."""

from __future__ import annotations


class SQLPragmas:
    """SQLite PRAGMA statements applied to each connection."""

    JOURNAL_MODE_WAL = "PRAGMA journal_mode=WAL"
    FOREIGN_KEYS_ON = "PRAGMA foreign_keys=ON"
    BUSY_TIMEOUT = "PRAGMA busy_timeout={timeout}"


class SQLiteErrorCodes:
    """Primary result codes from sqlite3 that the queue store tags explicitly.

    Extended codes are reduced to their primary code with ``code & 0xFF``.
    """

    PERM = 3
    BUSY = 5
    LOCKED = 6
    READONLY = 8
    CANTOPEN = 14
    AUTH = 23
    NOTADB = 26


class LavalinkHeaders:
    """Headers that authenticate the node control channel."""

    AUTHORIZATION = "Authorization"
    USER_ID = "User-Id"
    CLIENT_NAME = "Client-Name"
    SESSION_ID = "Session-Id"
    RETRY_AFTER = "Retry-After"


class LavalinkPaths:
    """REST and websocket paths of the v4 node API."""

    WEBSOCKET = "/v4/websocket"
    LOAD_TRACKS = "/v4/loadtracks"
    PLAYER = "/v4/sessions/{session_id}/players/{guild_id}"


class LavalinkOps:
    """Websocket ``op`` values sent by a node."""

    READY = "ready"
    PLAYER_UPDATE = "playerUpdate"
    STATS = "stats"
    EVENT = "event"


class LavalinkEventTypes:
    """Websocket ``type`` values of ``op == "event"`` payloads."""

    TRACK_START = "TrackStartEvent"
    TRACK_END = "TrackEndEvent"
    TRACK_EXCEPTION = "TrackExceptionEvent"
    TRACK_STUCK = "TrackStuckEvent"
    WEBSOCKET_CLOSED = "WebSocketClosedEvent"


class LoadTypes:
    """``loadType`` values of a load-tracks answer."""

    TRACK = "track"
    PLAYLIST = "playlist"
    SEARCH = "search"
    EMPTY = "empty"
    ERROR = "error"


URL_PREFIXES: tuple[str, ...] = ("http://", "https://")
DEFAULT_RATE_LIMIT_RETRY_AFTER_S = 5.0
MAX_TRACK_REF_LENGTH = 2_000
