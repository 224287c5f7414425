"""Event pipelines turning load events into transactional table mutations.

A pipeline owns one load session. It applies events strictly in order and
surfaces the offset of a :class:`~event_sink.events.Commit` only once the
transaction holding everything before it has committed, so the last offset
seen by the caller is always a safe point to resume from.

Two variants share the same event contract:

- :class:`DirectPipeline` copies and deletes straight into the destination
  table, preparing it once when the session opens.
- :class:`StagedPipeline` stages rows in a temporary table and merges them on
  every commit, replacing the destination's contents on the first commit of a
  replacing load and appending afterwards.

:class:`AsyncEventPipeline` drives either variant from asyncio code.
"""

from __future__ import annotations

import abc
import asyncio
import enum
import logging
import typing as t
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack

from event_sink.events import Commit, Create, Delete
from event_sink.exceptions import MissingIdentityColumnError, PipelineStateError
from event_sink.logging import trace
from event_sink.sql.copy import DEFAULT_CHUNK_SIZE, BulkLoader
from event_sink.sql.deleter import IdentityDeleter
from event_sink.sql.identifiers import build_table, table_from_path
from event_sink.sql.retry import no_retry
from event_sink.sql.staging import StagingFlow
from event_sink.sql.write_mode import EventWriteMode, TablePreparer
from event_sink.typing import to_sql_type

if t.TYPE_CHECKING:
    from collections.abc import (
        AsyncIterable,
        AsyncIterator,
        Callable,
        Iterable,
        Iterator,
        Sequence,
    )
    from contextlib import AbstractContextManager

    from event_sink.events import DataEvent, IdBatch
    from event_sink.sql.connector import LoadSession
    from event_sink.sql.identifiers import Table
    from event_sink.sql.retry import RetryPolicy
    from event_sink.sql.write_mode import TablePreparationResult, WriteMode
    from event_sink.typing import Column, ColumnTyper

__all__ = [
    "AsyncEventPipeline",
    "DirectPipeline",
    "EventPipeline",
    "PipelineState",
    "StagedPipeline",
]

_TOffset = t.TypeVar("_TOffset")

SessionFactory = t.Callable[[], "AbstractContextManager[LoadSession]"]


class PipelineState(str, enum.Enum):
    """Lifecycle of a load session."""

    IDLE = "idle"
    PREPARED = "prepared"
    LOADING = "loading"
    DELETING = "deleting"
    COMMITTED = "committed"
    CLOSED = "closed"


_OPEN_STATES = frozenset(
    {
        PipelineState.PREPARED,
        PipelineState.LOADING,
        PipelineState.DELETING,
        PipelineState.COMMITTED,
    }
)


class EventPipeline(t.Generic[_TOffset], metaclass=abc.ABCMeta):
    """Base class for pipelines consuming load events.

    The pipeline can be driven one step at a time with :meth:`open`,
    :meth:`handle` and :meth:`close`, or as a lazy iterator with
    :meth:`consume`.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        path: str | Sequence[str],
        columns: Sequence[Column],
        *,
        write_mode: WriteMode,
        event_write_mode: EventWriteMode = EventWriteMode.REPLACE,
        id_column: Column | None = None,
        schema: str | None = None,
        typer: ColumnTyper = to_sql_type,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            session_factory: Opens the load session.
            path: Resource path of the destination table.
            columns: Ordered columns of the incoming rows.
            write_mode: The declared write mode.
            event_write_mode: The write mode carried by the events.
            id_column: The identity column, if any.
            schema: Schema holding the destination table.
            typer: Collaborator that picks each column's SQL type.
            chunk_size: Bytes sent per COPY write.
            logger: Optional logger instance.

        Raises:
            ValueError: If no columns are given.
        """
        if not columns:
            msg = "A load requires at least one column."
            raise ValueError(msg)

        self.session_factory = session_factory
        self.path = path
        self.columns = list(columns)
        self.write_mode = write_mode
        self.event_write_mode = event_write_mode
        self.id_column = id_column
        self.schema = schema
        self.typer = typer
        self.chunk_size = chunk_size
        self.logger = logger or logging.getLogger(__name__)

        self.state = PipelineState.IDLE
        self.session: LoadSession | None = None
        self._stack = ExitStack()

    @property
    def column_names(self) -> list[str]:
        """Names of the incoming columns, in CSV order."""
        return [col.name for col in self.columns]

    @property
    def id_column_name(self) -> str | None:
        """Name of the identity column, if any."""
        return self.id_column.name if self.id_column is not None else None

    def open(self) -> None:
        """Acquire the session and prepare the destination.

        Raises:
            PipelineStateError: If the pipeline was already opened.
        """
        if self.state is not PipelineState.IDLE:
            msg = f"Cannot open a pipeline in state '{self.state.value}'."
            raise PipelineStateError(msg)

        trace(self.logger, "Starting load")
        target = table_from_path(self.path, self.schema)
        try:
            self.session = self._stack.enter_context(self.session_factory())
            self._acquire(self._stack, self.session, target)
        except BaseException:
            self._stack.close()
            self.state = PipelineState.CLOSED
            raise

        self.state = PipelineState.PREPARED

    def handle(self, event: DataEvent[_TOffset]) -> _TOffset | None:
        """Apply one event.

        Args:
            event: The event to apply.

        Returns:
            The event's offset for a commit, otherwise None.

        Raises:
            PipelineStateError: If the pipeline is not open.
            TypeError: If the event is not a load event.
        """
        if self.state not in _OPEN_STATES:
            msg = f"Cannot handle events in state '{self.state.value}'."
            raise PipelineStateError(msg)

        if isinstance(event, Create):
            trace(self.logger, "Loading chunk with size: %d", len(event.records))
            self.state = PipelineState.LOADING
            self._handle_create(event.records)
            return None

        if isinstance(event, Delete):
            trace(self.logger, "Deleting %d records", event.ids.size)
            self.state = PipelineState.DELETING
            self._handle_delete(event.ids)
            return None

        if isinstance(event, Commit):
            trace(self.logger, "Commit")
            self._handle_commit()
            self.state = PipelineState.COMMITTED
            return event.offset

        msg = f"Unexpected event: {event!r}"
        raise TypeError(msg)

    def close(self) -> None:
        """Release the session, rolling back anything not committed."""
        if self.state is PipelineState.CLOSED:
            return

        try:
            self._stack.close()
        finally:
            self.state = PipelineState.CLOSED
            trace(self.logger, "Finished load")

    def _require_session(self) -> LoadSession:
        if self.session is None:
            msg = f"No open session in state '{self.state.value}'."
            raise PipelineStateError(msg)
        return self.session

    def cancel(self) -> None:
        """Ask an in-flight bulk copy to stop at its next chunk."""
        if self.session is not None:
            self.session.cancelled.set()

    def consume(self, events: Iterable[DataEvent[_TOffset]]) -> Iterator[_TOffset]:
        """Apply events in order, yielding the offset of each commit.

        The session is released when the events are exhausted, when an error
        is raised, or when the caller stops iterating.

        Args:
            events: The events to apply.

        Yields:
            Offsets, once their commit is durable.
        """
        self.open()
        try:
            for event in events:
                offset = self.handle(event)
                if isinstance(event, Commit):
                    yield t.cast("_TOffset", offset)
        finally:
            self.close()

    @abc.abstractmethod
    def _acquire(self, stack: ExitStack, session: LoadSession, target: Table) -> None:
        """Acquire per-load resources on ``stack`` and prepare the destination."""
        ...

    @abc.abstractmethod
    def _handle_create(self, records: bytes) -> None: ...

    @abc.abstractmethod
    def _handle_delete(self, ids: IdBatch) -> None: ...

    @abc.abstractmethod
    def _handle_commit(self) -> None: ...


class DirectPipeline(EventPipeline[_TOffset]):
    """Loads and deletes directly against the destination table.

    The destination is prepared once, when the session opens, according to the
    declared and event-carried write modes.
    """

    preparation: TablePreparationResult | None = None

    def _acquire(self, stack: ExitStack, session: LoadSession, target: Table) -> None:  # noqa: ARG002
        self.target = target
        self.table = build_table(target, self.columns, typer=self.typer)
        self.loader = BulkLoader(
            session.open_copy,
            chunk_size=self.chunk_size,
            cancelled=session.cancelled,
            logger=self.logger,
        )
        self.deleter = IdentityDeleter(session.execute, logger=self.logger)

        preparer = TablePreparer(session.execute, logger=self.logger)
        self.preparation = preparer.prepare(
            self.write_mode,
            target,
            self.table,
            self.id_column_name,
            self.event_write_mode,
        )

    def _handle_create(self, records: bytes) -> None:
        self.loader.load(self.target, self.column_names, records)

    def _handle_delete(self, ids: IdBatch) -> None:
        if self.id_column_name is None:
            msg = f"Cannot delete by id from {self.target}: no identity column."
            raise MissingIdentityColumnError(msg)
        self.deleter.delete_by_ids(self.table, self.id_column_name, ids)

    def _handle_commit(self) -> None:
        self._require_session().commit()


class StagedPipeline(EventPipeline[_TOffset]):
    """Stages rows in a temporary table and merges them on every commit."""

    def __init__(
        self,
        session_factory: SessionFactory,
        path: str | Sequence[str],
        columns: Sequence[Column],
        *,
        filter_column: Column | None = None,
        retry: RetryPolicy = no_retry,
        **kwargs: t.Any,
    ) -> None:
        """Initialize the pipeline.

        Args:
            session_factory: Opens the load session.
            path: Resource path of the destination table.
            columns: Ordered columns of the incoming rows.
            filter_column: Column used to replace conflicting rows on append.
            retry: Retry policy wrapping every staging statement.
            **kwargs: Keyword arguments for :class:`EventPipeline`.
        """
        super().__init__(session_factory, path, columns, **kwargs)
        self.filter_column = filter_column
        self.retry = retry
        self.mode = self.event_write_mode

    def _acquire(self, stack: ExitStack, session: LoadSession, target: Table) -> None:
        self.flow = stack.enter_context(
            StagingFlow.acquire(
                session,
                self.write_mode,
                target,
                self.columns,
                carried=self.event_write_mode,
                id_column=self.id_column_name,
                filter_column=(
                    self.filter_column.name if self.filter_column is not None else None
                ),
                retry=self.retry,
                typer=self.typer,
                chunk_size=self.chunk_size,
                logger=self.logger,
            )
        )

    def _handle_create(self, records: bytes) -> None:
        self.flow.ingest(records)

    def _handle_delete(self, ids: IdBatch) -> None:
        self.flow.delete(ids)

    def _handle_commit(self) -> None:
        session = self._require_session()
        if self.mode is EventWriteMode.REPLACE:
            self.flow.replace()
            session.commit()
            # Later commits of this load only add to what was replaced
            self.mode = EventWriteMode.APPEND
        else:
            self.flow.append()
            session.commit()


class AsyncEventPipeline(t.Generic[_TOffset]):
    """Runs a pipeline from asyncio code.

    Every step of the wrapped pipeline runs on one dedicated worker thread, so
    the session's connection is only ever used by that thread and steps never
    overlap.
    """

    def __init__(self, pipeline: EventPipeline[_TOffset]) -> None:
        """Initialize the adapter.

        Args:
            pipeline: The pipeline to drive.
        """
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="event-sink",
        )

    async def _call(self, func: Callable[..., t.Any], *args: t.Any) -> t.Any:  # noqa: ANN401
        """Run one unit of transactional work on the pipeline's worker thread.

        If the awaiting task is cancelled, the pipeline is asked to cancel and
        the in-flight work is awaited before cancellation propagates.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, func, *args)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            self.pipeline.cancel()
            await asyncio.wait([future])
            if not future.cancelled() and future.exception() is not None:
                self.pipeline.logger.debug(
                    "In-flight work ended after cancellation: %s",
                    future.exception(),
                )
            raise

    async def consume(
        self,
        events: AsyncIterable[DataEvent[_TOffset]],
    ) -> AsyncIterator[_TOffset]:
        """Apply events in order, yielding the offset of each commit.

        Args:
            events: The events to apply.

        Yields:
            Offsets, once their commit is durable.
        """
        try:
            await self._call(self.pipeline.open)
            async for event in events:
                offset = await self._call(self.pipeline.handle, event)
                if isinstance(event, Commit):
                    yield offset
        finally:
            await self._call(self.pipeline.close)
            self._executor.shutdown(wait=False)
