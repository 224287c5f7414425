"""Event-driven load pipeline for PostgreSQL destinations."""

from __future__ import annotations

from event_sink.builder import AppendArgs, RenderConfig, SinkBuilder, UpsertArgs
from event_sink.events import (
    BigDecimals,
    Commit,
    Create,
    Delete,
    Doubles,
    Longs,
    Strings,
)
from event_sink.pipeline import (
    AsyncEventPipeline,
    DirectPipeline,
    PipelineState,
    StagedPipeline,
)
from event_sink.sql import EventWriteMode, PostgresConnector, WriteMode
from event_sink.typing import Column, ColumnType

__all__ = [
    "AppendArgs",
    "AsyncEventPipeline",
    "BigDecimals",
    "Column",
    "ColumnType",
    "Commit",
    "Create",
    "Delete",
    "DirectPipeline",
    "Doubles",
    "EventWriteMode",
    "Longs",
    "PipelineState",
    "PostgresConnector",
    "RenderConfig",
    "SinkBuilder",
    "StagedPipeline",
    "Strings",
    "UpsertArgs",
    "WriteMode",
]
