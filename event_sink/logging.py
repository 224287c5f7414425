"""Logging utilities for the load pipeline."""

from __future__ import annotations

import logging
import typing as t

#: Level below DEBUG used for per-event and per-chunk diagnostics.
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

DEFAULT_FORMAT = "{asctime:23s} | {levelname:8s} | {name:30s} | {message}"


def trace(logger: logging.Logger, msg: str, *args: t.Any) -> None:  # noqa: ANN401
    """Log a message at TRACE level.

    Args:
        logger: The logger to emit on.
        msg: The message format string.
        *args: Arguments merged into ``msg``.
    """
    if logger.isEnabledFor(TRACE):
        logger.log(TRACE, msg, *args)


class ConsoleFormatter(logging.Formatter):
    """Custom formatter for console logging."""

    def __init__(self, **kwargs: t.Any) -> None:
        """Initialize the console formatter."""
        kwargs.setdefault("fmt", DEFAULT_FORMAT)
        kwargs.setdefault("style", "{")
        super().__init__(**kwargs)
