"""Builds load pipelines for upsert and append sinks."""

from __future__ import annotations

import logging
import typing as t
from dataclasses import dataclass, field

from event_sink.pipeline import DirectPipeline, StagedPipeline
from event_sink.sql.write_mode import EventWriteMode

if t.TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence

    from event_sink.events import DataEvent
    from event_sink.pipeline import EventPipeline
    from event_sink.sql.connector import PostgresConnector
    from event_sink.sql.retry import RetryPolicy
    from event_sink.typing import Column

__all__ = [
    "POSTGRES_CSV_CONFIG",
    "AppendArgs",
    "RenderConfig",
    "SinkBuilder",
    "UpsertArgs",
]

_TOffset = t.TypeVar("_TOffset")

Consume = t.Callable[[t.Iterable["DataEvent[_TOffset]"]], t.Iterator[_TOffset]]


@dataclass(frozen=True)
class RenderConfig:
    """How the producer must encode the rows of ``Create`` events."""

    format: str = "csv"
    encoding: str = "utf-8"
    delimiter: str = ","
    include_header: bool = False


#: The only encoding the COPY statements understand.
POSTGRES_CSV_CONFIG = RenderConfig()


@dataclass(frozen=True)
class UpsertArgs:
    """Arguments of an upsert load: rows are identified by ``id_column``."""

    path: str | Sequence[str]
    id_column: Column
    other_columns: Sequence[Column] = ()
    write_mode: EventWriteMode = EventWriteMode.REPLACE

    @property
    def columns(self) -> list[Column]:
        """The identity column followed by the other columns."""
        return [self.id_column, *self.other_columns]


@dataclass(frozen=True)
class AppendArgs:
    """Arguments of an append load."""

    path: str | Sequence[str]
    columns: Sequence[Column] = field(default_factory=tuple)
    write_mode: EventWriteMode = EventWriteMode.REPLACE
    primary_column: Column | None = None


class SinkBuilder:
    """Creates pipelines sharing one connector's settings.

    Each ``consume`` function returned by the builder opens a fresh pipeline
    per call, so it can be reused for successive loads.
    """

    def __init__(
        self,
        connector: PostgresConnector,
        *,
        retry: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the builder.

        Args:
            connector: Supplies sessions and load settings.
            retry: Retry policy for staged statements. Defaults to the
                connector's backoff policy.
            logger: Optional logger instance.
        """
        self.connector = connector
        self.retry = retry or connector.retry_policy()
        self.logger = logger or logging.getLogger("event_sink.sink")

    def _staged(
        self,
        path: str | Sequence[str],
        columns: Sequence[Column],
        write_mode: EventWriteMode,
        id_column: Column | None,
        filter_column: Column | None,
    ) -> StagedPipeline[t.Any]:
        return StagedPipeline(
            self.connector.session,
            path,
            columns,
            write_mode=self.connector.write_mode,
            event_write_mode=write_mode,
            id_column=id_column,
            filter_column=filter_column,
            retry=self.retry,
            schema=self.connector.default_schema,
            chunk_size=self.connector.copy_chunk_size,
            logger=self.logger,
        )

    def upsert_pipeline(self, args: UpsertArgs) -> StagedPipeline[t.Any]:
        """Create a staged pipeline that replaces rows sharing an identity.

        Args:
            args: The upsert arguments.

        Returns:
            A new pipeline.
        """
        return self._staged(
            args.path,
            args.columns,
            args.write_mode,
            args.id_column,
            args.id_column,
        )

    def append_pipeline(self, args: AppendArgs) -> StagedPipeline[t.Any]:
        """Create a staged pipeline that only ever adds rows.

        Args:
            args: The append arguments.

        Returns:
            A new pipeline.
        """
        return self._staged(
            args.path,
            args.columns,
            args.write_mode,
            args.primary_column,
            None,
        )

    def direct_pipeline(self, args: UpsertArgs) -> DirectPipeline[t.Any]:
        """Create a pipeline writing straight into the destination table.

        Args:
            args: The upsert arguments.

        Returns:
            A new pipeline.
        """
        return DirectPipeline(
            self.connector.session,
            args.path,
            args.columns,
            write_mode=self.connector.write_mode,
            event_write_mode=args.write_mode,
            id_column=args.id_column,
            schema=self.connector.default_schema,
            chunk_size=self.connector.copy_chunk_size,
            logger=self.logger,
        )

    @staticmethod
    def _consumer(
        factory: Callable[[], EventPipeline[_TOffset]],
    ) -> Consume[_TOffset]:
        def consume(events: Iterable[DataEvent[_TOffset]]) -> Iterator[_TOffset]:
            return factory().consume(events)

        return consume

    def upsert(self, args: UpsertArgs) -> tuple[RenderConfig, Consume[t.Any]]:
        """Build the consumer of an upsert sink.

        Args:
            args: The upsert arguments.

        Returns:
            The render config required from the producer, and the consumer.
        """
        return POSTGRES_CSV_CONFIG, self._consumer(lambda: self.upsert_pipeline(args))

    def append(self, args: AppendArgs) -> tuple[RenderConfig, Consume[t.Any]]:
        """Build the consumer of an append sink.

        Args:
            args: The append arguments.

        Returns:
            The render config required from the producer, and the consumer.
        """
        return POSTGRES_CSV_CONFIG, self._consumer(lambda: self.append_pipeline(args))

    def direct(self, args: UpsertArgs) -> tuple[RenderConfig, Consume[t.Any]]:
        """Build the consumer of a sink writing straight into the destination.

        Args:
            args: The upsert arguments.

        Returns:
            The render config required from the producer, and the consumer.
        """
        return POSTGRES_CSV_CONFIG, self._consumer(lambda: self.direct_pipeline(args))
