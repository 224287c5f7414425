"""Retry policies for statements issued by the staging flow.

A retry policy is a plain higher-order function: it receives a zero-argument
callable performing one unit of work and returns that work's result, retrying
as it sees fit.
"""

from __future__ import annotations

import logging
import typing as t

import backoff
import sqlalchemy as sa

if t.TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from backoff.types import Details

__all__ = [
    "TRANSIENT_SQLSTATES",
    "RetryPolicy",
    "backoff_retry",
    "is_transient",
    "no_retry",
]

_T = t.TypeVar("_T")

RetryPolicy = t.Callable[[t.Callable[[], _T]], _T]
"""Signature of a retry policy."""

#: serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

logger = logging.getLogger(__name__)


def no_retry(work: Callable[[], _T]) -> _T:
    """Run ``work`` once.

    Args:
        work: The unit of work.

    Returns:
        The result of ``work``.
    """
    return work()


def is_transient(exc: Exception) -> bool:
    """Whether a database error may succeed when retried.

    Args:
        exc: The raised exception.

    Returns:
        True for serialization failures, deadlocks and lock timeouts.
    """
    if not isinstance(exc, sa.exc.DBAPIError):
        return False
    return getattr(exc.orig, "sqlstate", None) in TRANSIENT_SQLSTATES


def _backoff_handler(details: Details) -> None:
    logger.warning(
        "Backing off %0.1f seconds after %d tries calling %s",
        details.get("wait", 0.0),
        details["tries"],
        getattr(details["target"], "__qualname__", details["target"]),
    )


def backoff_retry(
    *,
    max_tries: int = 5,
    wait_gen: Callable[..., Generator[float, None, None]] = backoff.expo,
    **wait_gen_kwargs: t.Any,
) -> RetryPolicy:
    """Build a policy retrying transient database errors with backoff.

    Args:
        max_tries: The number of attempts before giving up.
        wait_gen: A backoff wait generator, exponential by default.
        **wait_gen_kwargs: Keyword arguments for ``wait_gen``.

    Returns:
        A retry policy.
    """
    decorator = backoff.on_exception(
        wait_gen,
        sa.exc.DBAPIError,
        max_tries=max_tries,
        giveup=lambda exc: not is_transient(exc),
        on_backoff=_backoff_handler,
        **wait_gen_kwargs,
    )

    def retry(work: Callable[[], _T]) -> _T:
        return decorator(work)()  # type: ignore[no-any-return]

    return retry
