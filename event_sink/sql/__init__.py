"""PostgreSQL building blocks of the load pipeline."""

from __future__ import annotations

from event_sink.sql.connector import LoadSession, PostgresConnector
from event_sink.sql.copy import BulkLoader, CopyChannel, PsycopgCopyChannel
from event_sink.sql.deleter import IdentityDeleter
from event_sink.sql.identifiers import Table, hygienic_ident, table_from_path
from event_sink.sql.retry import backoff_retry, no_retry
from event_sink.sql.staging import StagingFlow
from event_sink.sql.write_mode import (
    EventWriteMode,
    TablePreparationResult,
    TablePreparer,
    WriteMode,
)

__all__ = [
    "BulkLoader",
    "CopyChannel",
    "EventWriteMode",
    "IdentityDeleter",
    "LoadSession",
    "PostgresConnector",
    "PsycopgCopyChannel",
    "StagingFlow",
    "Table",
    "TablePreparationResult",
    "TablePreparer",
    "WriteMode",
    "backoff_retry",
    "hygienic_ident",
    "no_retry",
    "table_from_path",
]
