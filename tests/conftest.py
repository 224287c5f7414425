"""Shared fixtures and fakes for the load pipeline tests."""

from __future__ import annotations

import copy
import csv
import io
import re
import typing as t
from contextlib import contextmanager

import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable, DropTable

from event_sink.sql.connector import LoadSession
from event_sink.typing import Column, ColumnType

if t.TYPE_CHECKING:
    from collections.abc import Iterator

_DIALECT = postgresql.dialect()

_COPY_RE = re.compile(r'^COPY (?:"[^"]+"\.)?"([^"]+)" \(([^)]*)\)')
_DELETE_RE = re.compile(
    r'^DELETE FROM (?:"[^"]+"\.)?"([^"]+)" WHERE (?:"[^"]+"\.)*"([^"]+)" IN \((.*)\)$'
)
_INSERT_RE = re.compile(
    r'^INSERT INTO (?:"[^"]+"\.)?"([^"]+)" \(([^)]*)\) SELECT .* FROM "([^"]+)"$'
)
_TRUNCATE_RE = re.compile(r'^TRUNCATE TABLE (?:"[^"]+"\.)?"([^"]+)"$')


def compile_sql(statement: t.Any) -> str:
    """Render a statement as PostgreSQL, on a single line."""
    if isinstance(statement, sa.Delete):
        compiled = statement.compile(
            dialect=_DIALECT,
            compile_kwargs={"literal_binds": True},
        )
    else:
        compiled = statement.compile(dialect=_DIALECT)
    return " ".join(str(compiled).split())


def in_list(sql: str) -> list[str]:
    """Return the members of the ``IN (...)`` list of a rendered DELETE."""
    match = _DELETE_RE.match(sql)
    assert match is not None, sql
    return [value.strip().strip("'") for value in match.group(3).split(",")]


def _names(columns: str) -> list[str]:
    return [name.strip().strip('"') for name in columns.split(",")]


class FakeResult:
    """Result exposing only a row count."""

    def __init__(self, rowcount: int = -1) -> None:
        self.rowcount = rowcount


class FakeConnection:
    """Connection double that records statements and simulates table rows.

    Rows are dicts of raw CSV strings. Committed rows survive a rollback,
    everything else does not. ``failures`` maps a SQL fragment to errors
    raised, one per matching statement, before the statement takes effect.
    """

    def __init__(self, tables: dict[str, list[dict[str, str]]] | None = None) -> None:
        self.tables: dict[str, list[dict[str, str]]] = copy.deepcopy(tables or {})
        self._committed = copy.deepcopy(self.tables)
        self._in_transaction = False
        self.statements: list[str] = []
        self.log: list[str] = []
        self.failures: dict[str, list[BaseException]] = {}
        self.channels: list[FakeCopyChannel] = []
        self.closed = False

    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin(self) -> None:
        self._in_transaction = True
        self.log.append("begin")

    def commit(self) -> None:
        self._committed = copy.deepcopy(self.tables)
        self._in_transaction = False
        self.log.append("commit")

    def rollback(self) -> None:
        self.tables = copy.deepcopy(self._committed)
        self._in_transaction = False
        self.log.append("rollback")

    @contextmanager
    def begin_nested(self) -> Iterator[None]:
        snapshot = copy.deepcopy(self.tables)
        self.log.append("savepoint")
        try:
            yield
        except BaseException:
            self.tables = snapshot
            self.log.append("rollback to savepoint")
            raise

    def close(self) -> None:
        self.closed = True
        self.log.append("close")

    def execute(self, statement: t.Any) -> FakeResult:
        self._in_transaction = True
        sql = compile_sql(statement)
        self.statements.append(sql)
        self.log.append(sql)
        for fragment, errors in self.failures.items():
            if fragment in sql and errors:
                raise errors.pop(0)
        return FakeResult(self._apply(statement, sql))

    def _apply(self, statement: t.Any, sql: str) -> int:  # noqa: C901
        if isinstance(statement, CreateTable):
            name = statement.element.name
            if name in self.tables and not statement.if_not_exists:
                raise sa.exc.ProgrammingError(
                    sql,
                    {},
                    Exception(f'relation "{name}" already exists'),
                )
            self.tables.setdefault(name, [])
            return -1

        if isinstance(statement, DropTable):
            self.tables.pop(statement.element.name, None)
            return -1

        if match := _TRUNCATE_RE.match(sql):
            self.tables[match.group(1)] = []
            return -1

        if match := _DELETE_RE.match(sql):
            table, column, members = match.groups()
            if members.startswith("SELECT "):
                source = re.search(r'FROM "([^"]+)"$', members)
                key = re.match(r'SELECT (?:"[^"]+"\.)*"([^"]+)"', members)
                assert source is not None
                assert key is not None
                values = {row[key.group(1)] for row in self.tables[source.group(1)]}
            else:
                values = set(in_list(sql))
            before = len(self.tables[table])
            self.tables[table] = [
                row for row in self.tables[table] if row[column] not in values
            ]
            return before - len(self.tables[table])

        if match := _INSERT_RE.match(sql):
            target, columns, source = match.groups()
            names = _names(columns)
            rows = [{name: row[name] for name in names} for row in self.tables[source]]
            self.tables[target].extend(rows)
            return len(rows)

        return -1

    def rows(self, table: str, column: str = "id") -> list[str]:
        """Values of one column of a table, sorted."""
        return sorted(row[column] for row in self.tables[table])


class FakeCopyChannel:
    """Copy channel double that appends the copied rows on ``end``.

    Raises if it is ended or cancelled twice, or cancelled once inactive, so
    tests can assert the loader's bracket discipline.
    """

    fail_with: BaseException | None = None
    fail_leaves_active = True

    def __init__(self, connection: FakeConnection, statement: str) -> None:
        self.connection = connection
        self.statement = statement
        self.chunks: list[bytes] = []
        self.ended = False
        self.cancelled_with: BaseException | None = None
        self._active = True
        connection.channels.append(self)
        connection.log.append(statement)

    def write(self, data: bytes) -> None:
        assert self._active, "write on a finished copy"
        if self.fail_with is not None:
            self._active = self.fail_leaves_active
            raise self.fail_with
        self.chunks.append(data)

    def end(self) -> None:
        assert self._active, "end on a finished copy"
        self._active = False
        self.ended = True

        match = _COPY_RE.match(self.statement)
        assert match is not None, self.statement
        table, columns = match.groups()
        names = _names(columns)
        text = b"".join(self.chunks).decode("utf-8")
        self.connection.tables[table].extend(
            dict(zip(names, values)) for values in csv.reader(io.StringIO(text))
        )

    @property
    def is_active(self) -> bool:
        return self._active

    def cancel(self, reason: BaseException) -> None:
        if not self._active:
            msg = "copy is not in progress"
            raise RuntimeError(msg)
        self._active = False
        self.cancelled_with = reason


@pytest.fixture
def columns() -> list[Column]:
    return [
        Column("id", ColumnType.NUMBER),
        Column("name", ColumnType.STRING),
    ]


@pytest.fixture
def id_column(columns: list[Column]) -> Column:
    return columns[0]


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def existing_rows() -> FakeConnection:
    """A connection whose ``orders`` table holds committed rows 5, 6 and 7."""
    return FakeConnection(
        {
            "orders": [
                {"id": "5", "name": "five"},
                {"id": "6", "name": "six"},
                {"id": "7", "name": "seven"},
            ]
        }
    )


def make_session_factory(connection: FakeConnection, channel=FakeCopyChannel):
    """Build a session factory handing out sessions on ``connection``."""

    @contextmanager
    def session_factory() -> Iterator[LoadSession]:
        with LoadSession(connection, open_channel=channel) as session:  # type: ignore[arg-type]
            yield session

    return session_factory


@pytest.fixture
def session_factory(connection: FakeConnection):
    return make_session_factory(connection)
