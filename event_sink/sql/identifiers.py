"""Identifier quoting, table resolution and SQL fragment builders.

Every identifier that reaches PostgreSQL is double-quoted, so names keep their
exact spelling and case.
"""

from __future__ import annotations

import typing as t
import uuid
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from event_sink.exceptions import NotAResourceError
from event_sink.typing import to_sql_type

if t.TYPE_CHECKING:
    from collections.abc import Sequence

    from event_sink.typing import Column, ColumnTyper

__all__ = [
    "MAX_IDENTIFIER_LENGTH",
    "Table",
    "build_copy_statement",
    "build_table",
    "hygienic_ident",
    "index_name",
    "staging_table_name",
    "table_from_path",
]

#: PostgreSQL truncates identifiers longer than this many bytes.
MAX_IDENTIFIER_LENGTH = 63

_PREPARER = postgresql.dialect().identifier_preparer


def hygienic_ident(name: str) -> str:
    """Return ``name`` as a double-quoted PostgreSQL identifier.

    Args:
        name: The raw identifier.

    Returns:
        The quoted identifier, with embedded quotes escaped.
    """
    return _PREPARER.quote_identifier(name)


@dataclass(frozen=True)
class Table:
    """A resolved destination table."""

    name: str
    schema: str | None = None

    @property
    def qualified(self) -> str:
        """The quoted, schema-qualified table reference."""
        if self.schema:
            return f"{hygienic_ident(self.schema)}.{hygienic_ident(self.name)}"
        return hygienic_ident(self.name)

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


def table_from_path(path: str | Sequence[str], schema: str | None = None) -> Table:
    """Resolve a resource path to a destination table.

    A path resolves only when it has exactly one segment, e.g. ``"/orders"``
    or ``["orders"]``.

    Args:
        path: A slash separated resource path or a sequence of segments.
        schema: Schema holding the table.

    Returns:
        The resolved table.

    Raises:
        NotAResourceError: If the path does not name exactly one table.
    """
    segments = path.split("/") if isinstance(path, str) else list(path)
    segments = [segment for segment in segments if segment]
    if len(segments) != 1:
        raise NotAResourceError(path)

    return Table(name=segments[0], schema=schema)


def _truncate(name: str) -> str:
    encoded = name.encode("utf-8")
    if len(encoded) <= MAX_IDENTIFIER_LENGTH:
        return name
    return encoded[:MAX_IDENTIFIER_LENGTH].decode("utf-8", errors="ignore")


def index_name(table: Table, column_name: str) -> str:
    """Deterministic name of the index on the identity column."""
    return _truncate(f"{table.name}_{column_name}_idx")


def staging_table_name(table: Table) -> str:
    """Generate a unique staging table name for a target table.

    Args:
        table: The target table.

    Returns:
        A unique, length-safe table name.
    """
    unique_suffix = uuid.uuid4().hex[:8]
    suffix = f"_stage_{unique_suffix}"
    base = _truncate(table.name)
    while len((base + suffix).encode("utf-8")) > MAX_IDENTIFIER_LENGTH:
        base = base[:-1]
    return base + suffix


def build_table(
    table: Table,
    columns: Sequence[Column],
    *,
    typer: ColumnTyper = to_sql_type,
    temporary: bool = False,
) -> sa.Table:
    """Build SQLAlchemy table metadata for a destination or staging table.

    Args:
        table: The resolved table.
        columns: Ordered columns of the table.
        typer: Collaborator that picks each column's SQL type.
        temporary: Whether to build a ``TEMPORARY`` table.

    Returns:
        A SQLAlchemy ``Table`` bound to fresh metadata.
    """
    return sa.Table(
        table.name,
        sa.MetaData(),
        *[sa.Column(col.name, typer(col), quote=True) for col in columns],
        schema=table.schema,
        quote=True,
        quote_schema=True,
        prefixes=["TEMPORARY"] if temporary else [],
    )


def build_copy_statement(table: Table, column_names: Sequence[str]) -> str:
    """Build the ``COPY ... FROM STDIN`` statement for a table.

    Args:
        table: The table to load.
        column_names: Column names in the order they appear in the CSV rows.

    Returns:
        The COPY statement.
    """
    cols = ", ".join(hygienic_ident(name) for name in column_names)
    return (
        f"COPY {table.qualified} ({cols}) "
        "FROM STDIN WITH (FORMAT csv, HEADER FALSE, ENCODING 'UTF8')"
    )
