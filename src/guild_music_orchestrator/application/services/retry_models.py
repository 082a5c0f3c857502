"""DTOs for the retry executor."""

from __future__ import annotations

import random
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, model_validator

from ...domain.shared.enums import ErrorCategory, ErrorSeverity
from ...domain.shared.messages import ErrorMessages
from ...domain.shared.types import MaxAttempts, NonNegativeFloat


class RetryPolicy(BaseModel):
    """Backoff shape shared by command retries and node reconnection."""

    model_config = ConfigDict(frozen=True)

    max_attempts: MaxAttempts = 3
    base_delay: NonNegativeFloat = 1.0
    max_delay: NonNegativeFloat = 30.0
    backoff_multiplier: float = 2.0
    jitter: NonNegativeFloat = 1.0

    @model_validator(mode="after")
    def _check_delays(self) -> RetryPolicy:
        if self.base_delay > self.max_delay:
            raise ValueError(ErrorMessages.INVALID_DELAY_RANGE)
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        return self

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), without jitter."""
        delay = self.base_delay
        # Grow step by step so unbounded reconnect attempt counts never overflow.
        for _ in range(max(attempt - 1, 0)):
            if delay >= self.max_delay or delay == 0.0 or self.backoff_multiplier == 1.0:
                break
            delay *= self.backoff_multiplier
        return min(delay, self.max_delay)

    def compute_delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        return self.backoff(attempt) + rng() * self.jitter


class Classification(BaseModel):
    """How a failure should be retried and reported."""

    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    explicit_retry_after: NonNegativeFloat | None = None
    user_message: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.severity == ErrorSeverity.CRITICAL
