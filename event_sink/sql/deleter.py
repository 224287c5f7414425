"""Delete-by-identity support."""

from __future__ import annotations

import logging
import typing as t

import sqlalchemy as sa

if t.TYPE_CHECKING:
    from collections.abc import Callable

    from event_sink.events import IdBatch

__all__ = ["IdentityDeleter", "build_delete_statement"]


def build_delete_statement(
    table: sa.Table,
    id_column: str,
    ids: IdBatch,
) -> sa.Delete:
    """Build a ``DELETE ... WHERE <id> IN (...)`` statement for a batch.

    The membership list holds exactly the values covered by the batch's
    declared size, bound with the batch's SQL type.

    Args:
        table: The table to delete from.
        id_column: Name of the identity column.
        ids: The identifiers to delete.

    Returns:
        A SQLAlchemy DELETE statement.
    """
    members = sa.bindparam(
        f"{id_column}_ids",
        value=ids.members(),
        type_=ids.sql_type,
        expanding=True,
    )
    return sa.delete(table).where(table.c[id_column].in_(members))


class IdentityDeleter:
    """Deletes rows from a table by identity column value."""

    def __init__(
        self,
        execute: Callable[[sa.Executable], sa.CursorResult],
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the deleter.

        Args:
            execute: Runs a statement on the session's connection.
            logger: Optional logger instance.
        """
        self.execute = execute
        self.logger = logger or logging.getLogger(__name__)

    def delete_by_ids(self, table: sa.Table, id_column: str, ids: IdBatch) -> int:
        """Delete the rows whose identity is in ``ids``.

        Empty batches are a no-op and issue no statement.

        Args:
            table: The table to delete from.
            id_column: Name of the identity column.
            ids: The identifiers to delete.

        Returns:
            The number of rows deleted.
        """
        if ids.size == 0:
            return 0

        result = self.execute(build_delete_statement(table, id_column, ids))
        deleted = result.rowcount if result.rowcount >= 0 else 0
        self.logger.debug("Deleted %d rows from %s", deleted, table.fullname)
        return deleted
