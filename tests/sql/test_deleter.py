"""Tests for deleting rows by identity."""

from __future__ import annotations

import decimal

import pytest
import sqlalchemy as sa

from event_sink.events import BigDecimals, Doubles, Longs, Strings
from event_sink.sql.deleter import IdentityDeleter, build_delete_statement
from event_sink.sql.identifiers import Table, build_table
from tests.conftest import FakeResult, compile_sql, in_list

BATCHES = [
    pytest.param(Strings(["a", "b", "c"], 3), sa.Text, id="strings"),
    pytest.param(Longs([5, 7], 2), sa.BigInteger, id="longs"),
    pytest.param(Doubles([1.5, 2.5, 3.5, 4.5], 4), sa.Double, id="doubles"),
    pytest.param(
        BigDecimals([decimal.Decimal("10.25")], 1),
        sa.Numeric,
        id="big-decimals",
    ),
]


@pytest.fixture
def table(columns) -> sa.Table:
    return build_table(Table("orders", "public"), columns)


@pytest.fixture
def executed() -> list[str]:
    return []


@pytest.fixture
def deleter(executed) -> IdentityDeleter:
    def execute(statement):
        executed.append(compile_sql(statement))
        return FakeResult(rowcount=2)

    return IdentityDeleter(execute)


class TestBuildDeleteStatement:
    """Tests for the DELETE statement builder."""

    @pytest.mark.parametrize(("ids", "sql_type"), BATCHES)
    def test_membership_matches_batch(self, table, ids, sql_type):
        statement = build_delete_statement(table, "id", ids)
        sql = compile_sql(statement)

        assert sql.startswith(
            'DELETE FROM "public"."orders" WHERE "public"."orders"."id" IN ('
        )
        assert len(in_list(sql)) == ids.size

        (param,) = statement.compile().binds.values()
        assert isinstance(param.type, sql_type)

    def test_declared_size_is_trusted(self, table):
        sql = compile_sql(build_delete_statement(table, "id", Longs([1, 2, 3], 2)))
        assert in_list(sql) == ["1", "2"]


class TestIdentityDeleter:
    """Tests for IdentityDeleter."""

    @pytest.mark.parametrize(
        "ids",
        [Strings([], 0), Longs([], 0), Doubles([], 0), BigDecimals([], 0)],
        ids=["strings", "longs", "doubles", "big-decimals"],
    )
    def test_empty_batch_issues_nothing(self, deleter, executed, table, ids):
        assert deleter.delete_by_ids(table, "id", ids) == 0
        assert executed == []

    @pytest.mark.parametrize(("ids", "sql_type"), BATCHES)
    def test_one_statement_per_batch(self, deleter, executed, table, ids, sql_type):
        assert deleter.delete_by_ids(table, "id", ids) == 2

        (sql,) = executed
        assert len(in_list(sql)) == ids.size

    def test_unknown_rowcount_reports_zero(self, table):
        deleter = IdentityDeleter(lambda statement: FakeResult(rowcount=-1))
        assert deleter.delete_by_ids(table, "id", Longs([1], 1)) == 0

    def test_rows_are_removed(self, existing_rows, table):
        deleter = IdentityDeleter(existing_rows.execute)

        assert deleter.delete_by_ids(table, "id", Longs([5, 7], 2)) == 2
        assert existing_rows.rows("orders") == ["6"]
