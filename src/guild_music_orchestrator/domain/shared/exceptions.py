"""Tagged exception hierarchy.

Every failure is raised as a subclass of :class:`OrchestratorError` at the
point where it originates. The class carries its :class:`ErrorKind`, so
classification never needs to look at message text.
"""

from __future__ import annotations

from typing import ClassVar

from guild_music_orchestrator.domain.shared.enums import ErrorKind


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.retry_after = retry_after


# ── Validation / lookup ─────────────────────────────────────────────


class ValidationError(OrchestratorError):
    """Raised when command input is invalid."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field


class TrackNotFoundError(OrchestratorError):
    """Raised when a node reports no match for a query."""

    kind = ErrorKind.TRACK_NOT_FOUND

    def __init__(self, query: str, message: str | None = None) -> None:
        super().__init__(message or f"No results found for: {query}", code="TRACK_NOT_FOUND")
        self.query = query


class InvalidOperationError(OrchestratorError):
    """Raised when an operation is invalid in the current state."""

    def __init__(self, operation: str, current_state: str, message: str | None = None) -> None:
        msg = message or f"Cannot perform '{operation}' in state '{current_state}'"
        super().__init__(msg, code="INVALID_OPERATION")
        self.operation = operation
        self.current_state = current_state


class PermissionDeniedError(OrchestratorError):
    """Raised when a peer refuses the caller's credentials."""

    kind = ErrorKind.PERMISSION_DENIED


# ── Remote peer (node) ──────────────────────────────────────────────


class NodeError(OrchestratorError):
    """Base for failures reported by an audio node."""

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, retry_after=retry_after)
        self.node_id = node_id
        self.status = status


class NodeUnavailableError(NodeError):
    """Raised when no node is connected or the bound node went away."""

    kind = ErrorKind.NODE_UNAVAILABLE


class NodeServerError(NodeError):
    """Raised on a 5xx-equivalent answer from a node."""

    kind = ErrorKind.NODE_SERVER_ERROR


class NodeRequestRejectedError(NodeError):
    """Raised on a 4xx-equivalent answer from a node."""

    kind = ErrorKind.NODE_REQUEST_REJECTED


class NodeTimeoutError(NodeError):
    """Raised when a node RPC exceeds its per-call timeout."""

    kind = ErrorKind.NODE_TIMEOUT


class NodeConnectionError(NodeError):
    """Raised when the transport to a node fails."""

    kind = ErrorKind.CONNECTION_FAILED


class RateLimitedError(NodeError):
    """Raised when a peer asks the caller to slow down."""

    kind = ErrorKind.RATE_LIMITED


# ── Backend store ───────────────────────────────────────────────────


class BackendError(OrchestratorError):
    """Base for failures raised by the durable queue store."""

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class BackendThrottledError(BackendError):
    """Raised when the store is busy or locked."""

    kind = ErrorKind.BACKEND_THROTTLED


class BackendUnavailableError(BackendError):
    """Raised when the store fails for an unclassified reason."""

    kind = ErrorKind.BACKEND_UNAVAILABLE


class BackendAccessDeniedError(BackendError):
    """Raised when the store refuses access."""

    kind = ErrorKind.BACKEND_ACCESS_DENIED


class BackendMisconfiguredError(BackendError):
    """Raised when the store cannot be opened with the configured settings."""

    kind = ErrorKind.BACKEND_MISCONFIGURED


# ── Control flow ────────────────────────────────────────────────────


class RetryCancelledError(OrchestratorError):
    """Raised when a pending retry is abandoned because its guild was torn down."""

    kind = ErrorKind.CANCELLED
