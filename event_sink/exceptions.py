"""Defines a common set of exceptions which the load pipeline raises."""

from __future__ import annotations

import typing as t


class EventSinkError(Exception):
    """Base class for all errors raised by the load pipeline."""


class ConfigValidationError(EventSinkError):
    """Raised when a user's config settings fail validation."""

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
    ) -> None:
        """Initialize a ConfigValidationError.

        Args:
            message: A message describing the error.
            errors: A list of errors which caused the validation error.
        """
        super().__init__(message)
        self.errors = errors or []


class NotAResourceError(EventSinkError):
    """Raised when a destination path does not resolve to exactly one table."""

    def __init__(self, path: t.Any) -> None:  # noqa: ANN401
        """Initialize a NotAResourceError.

        Args:
            path: The destination path that failed to resolve.
        """
        super().__init__(f"Path '{path}' does not refer to a table.")
        self.path = path


class UnsupportedColumnTypeError(EventSinkError):
    """Raised when a column type has no PostgreSQL counterpart."""


class MissingIdentityColumnError(EventSinkError):
    """Raised when a delete-by-id is requested for a load without an id column."""


class PipelineStateError(EventSinkError):
    """Raised when an event is handled outside of an open load session."""


class LoadCancelledError(EventSinkError):
    """Raised when a bulk copy is cancelled cooperatively mid-transfer."""
