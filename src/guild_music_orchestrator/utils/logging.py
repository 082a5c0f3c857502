"""Console formatting and severity-aware logging helpers."""

from __future__ import annotations

import logging
import os
import sys
from typing import IO, TYPE_CHECKING, Any

from guild_music_orchestrator.domain.shared.enums import ErrorSeverity

if TYPE_CHECKING:
    from guild_music_orchestrator.application.services.retry_models import Classification

SEVERITY_LEVELS: dict[ErrorSeverity, int] = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


def log_classified(
    logger: logging.Logger,
    classification: Classification,
    msg: str,
    *args: Any,
    exc_info: bool = False,
) -> None:
    """Log at the level that matches the classification's severity."""
    logger.log(SEVERITY_LEVELS[classification.severity], msg, *args, exc_info=exc_info)


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name and keeps correlation prefixes readable.

    Colours are disabled when ``NO_COLOR`` is set or the target stream is not
    a TTY. ``dictConfig`` can pass ``stream`` as an extra factory argument.
    """

    COLORS: dict[int, str] = {
        logging.DEBUG: "\033[36m",  # cyan
        logging.INFO: "\033[32m",  # green
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",  # red
        logging.CRITICAL: "\033[1;41m",  # white on red, operator attention
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        *,
        stream: IO[str] | None = None,
    ) -> None:
        super().__init__(fmt, datefmt)
        self._stream = stream

    def _use_color(self) -> bool:
        if os.environ.get("NO_COLOR") is not None:
            return False
        stream = self._stream or sys.stderr
        return hasattr(stream, "isatty") and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if not self._use_color():
            return super().format(record)
        color = self.COLORS.get(record.levelno, "")
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        record.name = f"{self.DIM}{record.name}{self.RESET}"
        return super().format(record)
