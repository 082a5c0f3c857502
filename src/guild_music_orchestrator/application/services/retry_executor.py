"""Failure classification and retry with exponential backoff.

Classification is a table lookup on the :class:`ErrorKind` carried by the
exception class; no message text is inspected. The executor retries only
what the table marks retryable and re-raises everything else untouched.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import NamedTuple, TypeVar

from ...domain.shared.context import CommandContext
from ...domain.shared.enums import ErrorCategory, ErrorKind, ErrorSeverity
from ...domain.shared.exceptions import OrchestratorError, RetryCancelledError
from ...domain.shared.messages import ErrorMessages, LogTemplates, UserMessages
from ...utils.logging import log_classified
from .retry_models import Classification, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Rule(NamedTuple):
    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    # None means the error's own message is safe to show verbatim.
    user_message: str | None


_RULES: dict[ErrorKind, _Rule] = {
    ErrorKind.VALIDATION: _Rule(ErrorCategory.VALIDATION, ErrorSeverity.LOW, False, None),
    ErrorKind.TRACK_NOT_FOUND: _Rule(ErrorCategory.VALIDATION, ErrorSeverity.LOW, False, None),
    ErrorKind.PERMISSION_DENIED: _Rule(
        ErrorCategory.PERMISSION, ErrorSeverity.MEDIUM, False, None
    ),
    ErrorKind.RATE_LIMITED: _Rule(
        ErrorCategory.RATE_LIMIT, ErrorSeverity.MEDIUM, True, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.NODE_UNAVAILABLE: _Rule(
        ErrorCategory.REMOTE_PEER, ErrorSeverity.HIGH, True, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.NODE_SERVER_ERROR: _Rule(
        ErrorCategory.REMOTE_PEER, ErrorSeverity.HIGH, True, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.NODE_REQUEST_REJECTED: _Rule(
        ErrorCategory.REMOTE_PEER, ErrorSeverity.MEDIUM, False, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.NODE_TIMEOUT: _Rule(
        ErrorCategory.NETWORK, ErrorSeverity.MEDIUM, True, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.CONNECTION_FAILED: _Rule(
        ErrorCategory.NETWORK, ErrorSeverity.MEDIUM, True, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.BACKEND_THROTTLED: _Rule(
        ErrorCategory.BACKEND, ErrorSeverity.MEDIUM, True, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.BACKEND_UNAVAILABLE: _Rule(
        ErrorCategory.BACKEND, ErrorSeverity.HIGH, True, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.BACKEND_ACCESS_DENIED: _Rule(
        ErrorCategory.BACKEND, ErrorSeverity.CRITICAL, False, UserMessages.CONTACT_SUPPORT
    ),
    ErrorKind.BACKEND_MISCONFIGURED: _Rule(
        ErrorCategory.BACKEND, ErrorSeverity.CRITICAL, False, UserMessages.CONTACT_SUPPORT
    ),
    ErrorKind.CANCELLED: _Rule(
        ErrorCategory.INTERNAL, ErrorSeverity.LOW, False, UserMessages.SERVICE_UNAVAILABLE
    ),
    ErrorKind.INTERNAL: _Rule(
        ErrorCategory.INTERNAL, ErrorSeverity.HIGH, False, UserMessages.UNEXPECTED_ERROR
    ),
}


def error_kind(error: BaseException) -> ErrorKind:
    """Kind of an arbitrary exception; builtin transport errors count as network failures."""
    if isinstance(error, OrchestratorError):
        return error.kind
    if isinstance(error, OSError):
        # TimeoutError and ConnectionError are both OSError subclasses.
        return ErrorKind.CONNECTION_FAILED
    return ErrorKind.INTERNAL


def classify(error: BaseException) -> Classification:
    kind = error_kind(error)
    rule = _RULES[kind]
    retry_after = getattr(error, "retry_after", None) if rule.retryable else None
    return Classification(
        category=rule.category,
        severity=rule.severity,
        retryable=rule.retryable,
        explicit_retry_after=retry_after,
        user_message=rule.user_message,
    )


class RetryExecutor:
    """Runs fallible async operations under a :class:`RetryPolicy`."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def classify(self, error: BaseException) -> Classification:
        return classify(error)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        context: CommandContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds, fails permanently, or attempts run out.

        Args:
            operation: Zero-argument factory returning a fresh awaitable per attempt.
            policy: Overrides the executor's default policy.
            context: Correlation context for log lines.
            cancel_event: When set, a pending backoff sleep is abandoned.

        Raises:
            RetryCancelledError: If ``cancel_event`` fired before or during a backoff.
            Exception: The last failure, unchanged, once retrying stops.
        """
        policy = policy or self._policy
        label = context if context is not None else "-"
        guild_id = context.guild_id if context is not None else None

        attempt = 0
        while True:
            attempt += 1
            if cancel_event is not None and cancel_event.is_set():
                logger.info(LogTemplates.RETRY_CANCELLED, label)
                raise RetryCancelledError(ErrorMessages.RETRY_CANCELLED.format(guild_id=guild_id))
            try:
                return await operation()
            except Exception as exc:
                classification = classify(exc)
                if not classification.retryable:
                    log_classified(
                        logger,
                        classification,
                        LogTemplates.RETRY_NOT_RETRYABLE,
                        label,
                        classification.category,
                        error_kind(exc),
                        exc,
                    )
                    raise
                if attempt >= policy.max_attempts:
                    log_classified(
                        logger,
                        classification,
                        LogTemplates.RETRY_EXHAUSTED,
                        label,
                        attempt,
                        error_kind(exc),
                        exc,
                    )
                    raise
                if classification.explicit_retry_after is not None:
                    delay = classification.explicit_retry_after
                else:
                    delay = policy.compute_delay(attempt, self._rng)
                logger.warning(
                    LogTemplates.RETRY_SCHEDULED,
                    label,
                    attempt,
                    policy.max_attempts,
                    error_kind(exc),
                    delay,
                    exc,
                )
            await self._pause(delay, cancel_event, label, guild_id)

    async def _pause(
        self,
        delay: float,
        cancel_event: asyncio.Event | None,
        label: object,
        guild_id: int | None,
    ) -> None:
        if cancel_event is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.create_task(self._sleep(delay))
        waiter = asyncio.create_task(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()

        if cancel_event.is_set():
            logger.info(LogTemplates.RETRY_CANCELLED, label)
            raise RetryCancelledError(ErrorMessages.RETRY_CANCELLED.format(guild_id=guild_id))
