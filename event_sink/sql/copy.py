"""Bulk loading through PostgreSQL's ``COPY ... FROM STDIN`` protocol."""

from __future__ import annotations

import contextlib
import logging
import typing as t

from psycopg import pq

from event_sink.exceptions import LoadCancelledError
from event_sink.logging import trace
from event_sink.sql.identifiers import build_copy_statement

if t.TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence

    import psycopg

    from event_sink.sql.identifiers import Table

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "BulkLoader",
    "CopyChannel",
    "PsycopgCopyChannel",
]

DEFAULT_CHUNK_SIZE = 1024 * 1024


@t.runtime_checkable
class CopyChannel(t.Protocol):
    """An open ``COPY FROM STDIN`` operation on one connection.

    The channel is created already open. Exactly one of :meth:`end` or
    :meth:`cancel` is expected to be called once writing stops.
    """

    def write(self, data: bytes) -> None:
        """Send a block of encoded rows to the server."""
        ...

    def end(self) -> None:
        """Finish the copy successfully."""
        ...

    @property
    def is_active(self) -> bool:
        """Whether the server still considers the copy in progress."""
        ...

    def cancel(self, reason: BaseException) -> None:
        """Abort the copy, discarding everything written so far."""
        ...


class PsycopgCopyChannel:
    """Copy channel backed by a psycopg 3 cursor."""

    def __init__(self, connection: psycopg.Connection, statement: str) -> None:
        """Open the copy.

        Args:
            connection: The driver connection the copy runs on.
            statement: The ``COPY ... FROM STDIN`` statement.
        """
        self._connection = connection
        self._stack = contextlib.ExitStack()
        cursor = self._stack.enter_context(connection.cursor())
        self._copy = self._stack.enter_context(cursor.copy(statement))

    def write(self, data: bytes) -> None:
        """Send a block of encoded rows to the server.

        Args:
            data: CSV encoded rows.
        """
        self._copy.write(data)

    def end(self) -> None:
        """Finish the copy successfully."""
        self._stack.close()

    @property
    def is_active(self) -> bool:
        """Whether the server still considers the copy in progress."""
        return (
            self._connection.pgconn.transaction_status == pq.TransactionStatus.ACTIVE
        )

    def cancel(self, reason: BaseException) -> None:
        """Abort the copy, discarding everything written so far.

        Args:
            reason: The error that interrupted the copy.
        """
        # psycopg sends CopyFail when the copy block exits with an error
        self._stack.__exit__(type(reason), reason, reason.__traceback__)


class BulkLoader:
    """Streams pre-encoded CSV rows into a table.

    The loader keeps a running total of bytes loaded across calls, which is
    reported for diagnostics.
    """

    def __init__(
        self,
        open_channel: Callable[[str], CopyChannel],
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancelled: threading.Event | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the loader.

        Args:
            open_channel: Opens a copy channel for a COPY statement.
            chunk_size: Bytes sent per write.
            cancelled: Event checked between writes to abort the copy.
            logger: Optional logger instance.
        """
        self.open_channel = open_channel
        self.chunk_size = chunk_size
        self.cancelled = cancelled
        self.logger = logger or logging.getLogger(__name__)
        self.total_bytes = 0

    def load(
        self,
        table: Table,
        column_names: Sequence[str],
        data: bytes,
    ) -> int:
        """Load a chunk of CSV rows.

        Args:
            table: The table to load into.
            column_names: Column names in CSV column order.
            data: CSV encoded rows, UTF-8, without a header.

        Returns:
            The number of bytes loaded.

        Raises:
            LoadCancelledError: If cancellation was requested mid-transfer.
        """
        statement = build_copy_statement(table, column_names)
        channel = self.open_channel(statement)
        try:
            view = memoryview(data)
            for start in range(0, len(view), self.chunk_size):
                if self.cancelled is not None and self.cancelled.is_set():
                    msg = f"Copy into {table} was cancelled."
                    raise LoadCancelledError(msg)
                channel.write(bytes(view[start : start + self.chunk_size]))
        except BaseException as ex:
            # An inactive channel already failed server-side
            if channel.is_active:
                channel.cancel(ex)
            raise
        channel.end()

        self.total_bytes += len(data)
        trace(
            self.logger,
            "Loaded %d bytes into %s (%d total)",
            len(data),
            table,
            self.total_bytes,
        )
        return len(data)
