"""Load events consumed by the pipeline.

Events arrive in a meaningful order: a :class:`Commit` finalizes every
:class:`Create` and :class:`Delete` observed since the previous commit (or
since the start of the session).
"""

from __future__ import annotations

import decimal
import typing as t
from dataclasses import dataclass

import sqlalchemy as sa

__all__ = [
    "BigDecimals",
    "Commit",
    "Create",
    "DataEvent",
    "Delete",
    "Doubles",
    "IdBatch",
    "Longs",
    "Strings",
]

_TOffset = t.TypeVar("_TOffset")


class IdBatch:
    """A homogeneous batch of record identifiers.

    ``size`` is declared by the producer and trusted: only the first ``size``
    values take part in a delete.
    """

    #: SQL type the identifiers are bound as.
    sql_type: t.ClassVar[sa.types.TypeEngine]

    values: t.Sequence[t.Any]
    size: int

    def members(self) -> list[t.Any]:
        """Return the identifiers covered by the declared size."""
        return list(self.values[: self.size])


@dataclass(frozen=True)
class Strings(IdBatch):
    """Text identifiers."""

    sql_type: t.ClassVar[sa.types.TypeEngine] = sa.Text()

    values: t.Sequence[str]
    size: int


@dataclass(frozen=True)
class Longs(IdBatch):
    """64-bit integer identifiers."""

    sql_type: t.ClassVar[sa.types.TypeEngine] = sa.BigInteger()

    values: t.Sequence[int]
    size: int


@dataclass(frozen=True)
class Doubles(IdBatch):
    """Floating point identifiers."""

    sql_type: t.ClassVar[sa.types.TypeEngine] = sa.Double()

    values: t.Sequence[float]
    size: int


@dataclass(frozen=True)
class BigDecimals(IdBatch):
    """Arbitrary-precision decimal identifiers."""

    sql_type: t.ClassVar[sa.types.TypeEngine] = sa.Numeric()

    values: t.Sequence[decimal.Decimal]
    size: int


@dataclass(frozen=True)
class Create:
    """A chunk of pre-encoded CSV rows to load."""

    records: bytes


@dataclass(frozen=True)
class Delete:
    """A batch of identifiers whose rows must be removed."""

    ids: IdBatch


@dataclass(frozen=True)
class Commit(t.Generic[_TOffset]):
    """Finalizes all preceding events and carries the offset to echo back."""

    offset: _TOffset


DataEvent = t.Union[Create, Delete, Commit[_TOffset]]
"""Any event the pipeline accepts."""
