"""Column descriptors and the default mapping to PostgreSQL column types."""

from __future__ import annotations

import enum
import typing as t
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from event_sink.exceptions import UnsupportedColumnTypeError

__all__ = [
    "Column",
    "ColumnType",
    "ColumnTyper",
    "to_sql_type",
]


class ColumnType(str, enum.Enum):
    """Scalar type tags carried by incoming columns."""

    NULL = "null"
    BOOLEAN = "boolean"
    LOCAL_TIME = "localtime"
    OFFSET_TIME = "offsettime"
    LOCAL_DATE = "localdate"
    OFFSET_DATE = "offsetdate"
    LOCAL_DATETIME = "localdatetime"
    OFFSET_DATETIME = "offsetdatetime"
    INTERVAL = "interval"
    NUMBER = "number"
    STRING = "string"


@dataclass(frozen=True)
class Column:
    """An immutable column descriptor."""

    name: str
    type: ColumnType


ColumnTyper = t.Callable[[Column], sa.types.TypeEngine]
"""Signature of the collaborator that picks a SQL type for a column."""

_SQL_TYPES: dict[ColumnType, sa.types.TypeEngine] = {
    ColumnType.NULL: sa.SmallInteger(),
    ColumnType.BOOLEAN: sa.Boolean(),
    ColumnType.LOCAL_TIME: sa.Time(),
    ColumnType.OFFSET_TIME: postgresql.TIME(timezone=True),
    ColumnType.LOCAL_DATE: sa.Date(),
    ColumnType.LOCAL_DATETIME: postgresql.TIMESTAMP(),
    ColumnType.OFFSET_DATETIME: postgresql.TIMESTAMP(timezone=True),
    ColumnType.INTERVAL: postgresql.INTERVAL(),
    ColumnType.NUMBER: sa.Numeric(),
    ColumnType.STRING: sa.Text(),
}


def to_sql_type(column: Column) -> sa.types.TypeEngine:
    """Return the PostgreSQL type used for a column.

    Args:
        column: The column to map.

    Returns:
        A SQLAlchemy type instance.

    Raises:
        UnsupportedColumnTypeError: If PostgreSQL has no matching type.
    """
    try:
        return _SQL_TYPES[column.type]
    except KeyError:
        msg = f"Column '{column.name}' has unsupported type '{column.type.value}'."
        raise UnsupportedColumnTypeError(msg) from None
