"""Staged loading through a temporary table.

Incoming chunks are copied into a session-private temporary table. On commit
the staged rows are merged into the destination either destructively
(:meth:`StagingFlow.replace`) or additively (:meth:`StagingFlow.append`), and
the staging table is emptied for the next commit window.
"""

from __future__ import annotations

import logging
import typing as t
from contextlib import contextmanager

import sqlalchemy as sa
from sqlalchemy.schema import CreateTable, DropTable

from event_sink.exceptions import MissingIdentityColumnError
from event_sink.logging import trace
from event_sink.sql.copy import DEFAULT_CHUNK_SIZE, BulkLoader
from event_sink.sql.deleter import IdentityDeleter
from event_sink.sql.identifiers import Table, build_table, staging_table_name
from event_sink.sql.retry import no_retry
from event_sink.sql.write_mode import EventWriteMode, TablePreparer
from event_sink.typing import to_sql_type

if t.TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from event_sink.events import IdBatch
    from event_sink.sql.connector import LoadSession
    from event_sink.sql.retry import RetryPolicy
    from event_sink.sql.write_mode import TablePreparationResult, WriteMode
    from event_sink.typing import Column, ColumnTyper

__all__ = ["StagingFlow"]


class StagingFlow:
    """Owns a staging table for the lifetime of one load.

    Use :meth:`acquire` to create a flow; the staging table is dropped when the
    ``with`` block exits, whether or not it raised.
    """

    def __init__(
        self,
        session: LoadSession,
        target: Table,
        columns: Sequence[Column],
        *,
        id_column: str | None = None,
        filter_column: str | None = None,
        retry: RetryPolicy = no_retry,
        typer: ColumnTyper = to_sql_type,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the flow.

        Args:
            session: The load session.
            target: The destination table.
            columns: Ordered columns of the incoming rows.
            id_column: Name of the identity column, if any.
            filter_column: Column used to replace conflicting rows on append.
            retry: Retry policy wrapping every statement.
            typer: Collaborator that picks each column's SQL type.
            chunk_size: Bytes sent per COPY write.
            logger: Optional logger instance.
        """
        self.session = session
        self.target = target
        self.column_names = [col.name for col in columns]
        self.id_column = id_column
        self.filter_column = filter_column
        self.retry = retry
        self.logger = logger or logging.getLogger(__name__)
        self.preparation: TablePreparationResult | None = None

        self.staging = Table(staging_table_name(target))
        self.target_table = build_table(target, columns, typer=typer)
        self.staging_table = build_table(
            self.staging,
            columns,
            typer=typer,
            temporary=True,
        )
        self.loader = BulkLoader(
            session.open_copy,
            chunk_size=chunk_size,
            cancelled=session.cancelled,
            logger=self.logger,
        )
        self.deleter = IdentityDeleter(self._run, logger=self.logger)

    @classmethod
    @contextmanager
    def acquire(
        cls,
        session: LoadSession,
        write_mode: WriteMode,
        target: Table,
        columns: Sequence[Column],
        *,
        carried: EventWriteMode = EventWriteMode.REPLACE,
        id_column: str | None = None,
        filter_column: str | None = None,
        retry: RetryPolicy = no_retry,
        typer: ColumnTyper = to_sql_type,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: logging.Logger | None = None,
    ) -> Iterator[StagingFlow]:
        """Prepare the destination, create the staging table and yield the flow.

        Args:
            session: The load session.
            write_mode: The declared write mode for the destination.
            target: The destination table.
            columns: Ordered columns of the incoming rows.
            carried: The write mode carried by the events. An event-carried
                ``APPEND`` leaves the destination as it is.
            id_column: Name of the identity column, if any.
            filter_column: Column used to replace conflicting rows on append.
            retry: Retry policy wrapping every statement.
            typer: Collaborator that picks each column's SQL type.
            chunk_size: Bytes sent per COPY write.
            logger: Optional logger instance.

        Yields:
            The flow.
        """
        flow = cls(
            session,
            target,
            columns,
            id_column=id_column,
            filter_column=filter_column,
            retry=retry,
            typer=typer,
            chunk_size=chunk_size,
            logger=logger,
        )
        try:
            flow.preparation = flow._prepare(write_mode, carried)
            flow._run(CreateTable(flow.staging_table))
            trace(flow.logger, "Created staging table %s", flow.staging)
            yield flow
        finally:
            flow._release()

    def _run(self, statement: sa.Executable) -> sa.CursorResult:
        return self.retry(lambda: self.session.execute_nested(statement))

    def _prepare(
        self,
        write_mode: WriteMode,
        carried: EventWriteMode,
    ) -> TablePreparationResult:
        preparer = TablePreparer(self._run, logger=self.logger)
        return preparer.prepare(
            write_mode,
            self.target,
            self.target_table,
            self.id_column,
            carried,
        )

    def _release(self) -> None:
        # Uncommitted work never outlives the flow
        self.session.rollback()
        try:
            self._run(DropTable(self.staging_table, if_exists=True))
            self.session.commit()
            trace(self.logger, "Dropped staging table %s", self.staging)
        except sa.exc.SQLAlchemyError as ex:
            # Temporary tables vanish with the connection anyway
            self.logger.warning(
                "Failed to drop staging table %s: %s",
                self.staging,
                ex,
            )

    def _insert_staged(self) -> int:
        insert = sa.insert(self.target_table).from_select(
            self.column_names,
            sa.select(*[self.staging_table.c[name] for name in self.column_names]),
        )
        result = self._run(insert)
        self._run(sa.text(f"TRUNCATE TABLE {self.staging.qualified}"))
        return result.rowcount if result.rowcount >= 0 else 0

    def ingest(self, data: bytes) -> int:
        """Copy a chunk of CSV rows into the staging table.

        Args:
            data: CSV encoded rows.

        Returns:
            The number of bytes loaded.
        """
        return self.loader.load(self.staging, self.column_names, data)

    def delete(self, ids: IdBatch) -> int:
        """Delete rows by identity from both the staged and the merged rows.

        Args:
            ids: The identifiers to delete.

        Returns:
            The number of destination rows deleted.

        Raises:
            MissingIdentityColumnError: If the load has no identity column.
        """
        if self.id_column is None:
            msg = f"Cannot delete by id from {self.target}: no identity column."
            raise MissingIdentityColumnError(msg)

        self.deleter.delete_by_ids(self.staging_table, self.id_column, ids)
        return self.deleter.delete_by_ids(self.target_table, self.id_column, ids)

    def replace(self) -> int:
        """Make the destination hold exactly the staged rows.

        Returns:
            The number of rows merged.
        """
        self._run(sa.text(f"TRUNCATE TABLE {self.target.qualified}"))
        merged = self._insert_staged()
        self.logger.info("Replaced contents of %s with %d rows", self.target, merged)
        return merged

    def append(self) -> int:
        """Add the staged rows to the destination.

        With a filter column, destination rows sharing a staged filter value
        are replaced by the staged rows.

        Returns:
            The number of rows merged.
        """
        if self.filter_column is not None:
            key = self.target_table.c[self.filter_column]
            staged_keys = sa.select(self.staging_table.c[self.filter_column])
            self._run(sa.delete(self.target_table).where(key.in_(staged_keys)))

        merged = self._insert_staged()
        self.logger.info("Appended %d rows to %s", merged, self.target)
        return merged
