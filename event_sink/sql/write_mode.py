"""Write modes and destination table preparation.

Two write modes are in play during a load:

- the *declared* :class:`WriteMode`, chosen once per session by the sink's
  configuration, decides what happens to the physical table before any data
  is written;
- the *event-carried* :class:`EventWriteMode`, supplied with the events,
  decides whether a commit replaces or appends to the table's contents.
"""

from __future__ import annotations

import enum
import logging
import typing as t
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.schema import CreateIndex, CreateTable, DropTable

from event_sink.exceptions import MissingIdentityColumnError
from event_sink.sql.identifiers import index_name

if t.TYPE_CHECKING:
    from collections.abc import Callable

    from event_sink.sql.identifiers import Table

__all__ = [
    "EventWriteMode",
    "TableAction",
    "TablePreparationResult",
    "TablePreparer",
    "WriteMode",
    "plan_preparation",
]


class WriteMode(str, enum.Enum):
    """Declared table preparation policy."""

    # create the table, failing if it already exists
    CREATE = "create"

    # drop any existing table and create it anew
    REPLACE = "replace"

    # create the table if needed and remove all of its rows
    TRUNCATE = "truncate"

    # create the table if needed and keep its rows
    APPEND = "append"


class EventWriteMode(str, enum.Enum):
    """Write mode carried by the event stream."""

    REPLACE = "replace"
    APPEND = "append"


class TableAction(str, enum.Enum):
    """A single DDL step of table preparation."""

    CREATE_TABLE = "create_table"
    CREATE_TABLE_IF_NOT_EXISTS = "create_table_if_not_exists"
    DROP_TABLE_IF_EXISTS = "drop_table_if_exists"
    TRUNCATE_TABLE = "truncate_table"
    CREATE_INDEX = "create_index"


_PLANS: dict[WriteMode, tuple[TableAction, ...]] = {
    WriteMode.CREATE: (TableAction.CREATE_TABLE,),
    WriteMode.REPLACE: (
        TableAction.DROP_TABLE_IF_EXISTS,
        TableAction.CREATE_TABLE,
    ),
    WriteMode.TRUNCATE: (
        TableAction.CREATE_TABLE_IF_NOT_EXISTS,
        TableAction.TRUNCATE_TABLE,
    ),
    WriteMode.APPEND: (TableAction.CREATE_TABLE_IF_NOT_EXISTS,),
}


def plan_preparation(
    declared: WriteMode,
    carried: EventWriteMode = EventWriteMode.REPLACE,
    *,
    has_id_column: bool = True,
) -> tuple[TableAction, ...]:
    """Decide which DDL steps prepare the destination table.

    An event-carried ``APPEND`` continues a previous load into an already
    prepared table, so nothing is done.

    Args:
        declared: The declared write mode.
        carried: The write mode carried by the events.
        has_id_column: Whether the load has an identity column to index.

    Returns:
        The ordered DDL steps, possibly empty.
    """
    if carried is EventWriteMode.APPEND:
        return ()

    actions = _PLANS[declared]
    if has_id_column:
        actions = (*actions, TableAction.CREATE_INDEX)
    return actions


@dataclass(frozen=True)
class TablePreparationResult:
    """Result of table preparation operations."""

    actions: tuple[TableAction, ...] = ()
    """The DDL steps that ran, in order."""

    @property
    def table_created(self) -> bool:
        """Whether a create statement was issued."""
        return bool(
            {TableAction.CREATE_TABLE, TableAction.CREATE_TABLE_IF_NOT_EXISTS}
            & set(self.actions)
        )

    @property
    def table_dropped(self) -> bool:
        """Whether the table was dropped."""
        return TableAction.DROP_TABLE_IF_EXISTS in self.actions

    @property
    def table_truncated(self) -> bool:
        """Whether the table was truncated."""
        return TableAction.TRUNCATE_TABLE in self.actions

    @property
    def index_created(self) -> bool:
        """Whether the identity index was created."""
        return TableAction.CREATE_INDEX in self.actions


class TablePreparer:
    """Runs the table preparation DDL for a load session."""

    def __init__(
        self,
        execute: Callable[[sa.Executable], t.Any],
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the preparer.

        Args:
            execute: Runs a statement on the session's connection.
            logger: Optional logger instance.
        """
        self.execute = execute
        self.logger = logger or logging.getLogger(__name__)

    def prepare(
        self,
        declared: WriteMode,
        target: Table,
        table: sa.Table,
        id_column: str | None,
        carried: EventWriteMode = EventWriteMode.REPLACE,
    ) -> TablePreparationResult:
        """Prepare the destination table.

        Args:
            declared: The declared write mode.
            target: The resolved destination.
            table: SQLAlchemy metadata for the destination.
            id_column: Name of the identity column, if any.
            carried: The write mode carried by the events.

        Returns:
            A TablePreparationResult describing the steps taken.
        """
        actions = plan_preparation(
            declared,
            carried,
            has_id_column=id_column is not None,
        )
        for action in actions:
            self.logger.info("Preparing %s: %s", target, action.value)
            self.execute(self._statement(action, target, table, id_column))

        return TablePreparationResult(actions=actions)

    @staticmethod
    def _statement(
        action: TableAction,
        target: Table,
        table: sa.Table,
        id_column: str | None,
    ) -> sa.Executable:
        if action is TableAction.CREATE_TABLE:
            return CreateTable(table)
        if action is TableAction.CREATE_TABLE_IF_NOT_EXISTS:
            return CreateTable(table, if_not_exists=True)
        if action is TableAction.DROP_TABLE_IF_EXISTS:
            return DropTable(table, if_exists=True)
        if action is TableAction.TRUNCATE_TABLE:
            return sa.text(f"TRUNCATE TABLE {target.qualified}")

        if id_column is None:
            msg = f"Cannot index {target}: no identity column."
            raise MissingIdentityColumnError(msg)

        index = sa.Index(
            index_name(target, id_column),
            table.c[id_column],
            quote=True,
        )
        return CreateIndex(index, if_not_exists=True)
