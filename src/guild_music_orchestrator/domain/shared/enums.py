"""Shared string enumerations for type-safe comparisons across layers."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Closed set of failure kinds, assigned where each failure originates."""

    VALIDATION = "validation"
    TRACK_NOT_FOUND = "track_not_found"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    NODE_UNAVAILABLE = "node_unavailable"
    NODE_SERVER_ERROR = "node_server_error"
    NODE_REQUEST_REJECTED = "node_request_rejected"
    NODE_TIMEOUT = "node_timeout"
    CONNECTION_FAILED = "connection_failed"
    BACKEND_THROTTLED = "backend_throttled"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_ACCESS_DENIED = "backend_access_denied"
    BACKEND_MISCONFIGURED = "backend_misconfigured"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class ErrorCategory(StrEnum):
    """Where a failure came from."""

    REMOTE_PEER = "remote_peer"
    BACKEND = "backend"
    VALIDATION = "validation"
    NETWORK = "network"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    INTERNAL = "internal"


class ErrorSeverity(StrEnum):
    """How loudly a failure is reported."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CommandName(StrEnum):
    """Commands accepted from the chat front-end."""

    JOIN = "join"
    PLAY = "play"
    SKIP = "skip"
    CLEAR = "clear"
    QUEUE_SIZE = "queueSize"
    LEAVE = "leave"
