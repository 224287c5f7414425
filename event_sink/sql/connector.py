"""PostgreSQL connector and per-load sessions."""

from __future__ import annotations

import logging
import threading
import typing as t
from contextlib import contextmanager
from functools import cached_property

import sqlalchemy as sa

from event_sink.config import validate_config
from event_sink.sql.copy import DEFAULT_CHUNK_SIZE, PsycopgCopyChannel
from event_sink.sql.retry import backoff_retry
from event_sink.sql.write_mode import WriteMode

if t.TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    from event_sink.sql.copy import CopyChannel
    from event_sink.sql.retry import RetryPolicy

__all__ = ["LoadSession", "PostgresConnector"]


class LoadSession:
    """A single connection running one load, one transaction at a time.

    Work is never committed implicitly: the transaction started by the first
    statement lasts until :meth:`commit`, and closing the session rolls back
    whatever was not committed.
    """

    def __init__(
        self,
        connection: sa.Connection,
        *,
        open_channel: Callable[[sa.Connection, str], CopyChannel] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            connection: The connection owned by this session.
            open_channel: Opens a copy channel on the connection. Defaults to a
                psycopg backed channel.
            logger: Optional logger instance.
        """
        self.connection = connection
        self._open_channel = open_channel or self._open_psycopg_channel
        self.logger = logger or logging.getLogger(__name__)
        self.cancelled = threading.Event()

    @staticmethod
    def _open_psycopg_channel(connection: sa.Connection, statement: str) -> CopyChannel:
        return PsycopgCopyChannel(
            connection.connection.driver_connection,  # type: ignore[arg-type]
            statement,
        )

    def _ensure_transaction(self) -> None:
        if not self.connection.in_transaction():
            self.connection.begin()

    def execute(self, statement: sa.Executable) -> sa.CursorResult:
        """Execute a statement in the current transaction.

        Args:
            statement: The statement to execute.

        Returns:
            The statement's result.
        """
        self.logger.debug("Executing: %s", statement)
        return self.connection.execute(statement)

    def execute_nested(self, statement: sa.Executable) -> sa.CursorResult:
        """Execute a statement inside a savepoint.

        A failure only rolls back to the savepoint, leaving the enclosing
        transaction usable.

        Args:
            statement: The statement to execute.

        Returns:
            The statement's result.
        """
        self._ensure_transaction()
        with self.connection.begin_nested():
            return self.execute(statement)

    def open_copy(self, statement: str) -> CopyChannel:
        """Open a copy channel within the current transaction.

        Args:
            statement: The ``COPY ... FROM STDIN`` statement.

        Returns:
            The open channel.
        """
        self._ensure_transaction()
        self.logger.debug("Executing: %s", statement)
        return self._open_channel(self.connection, statement)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.connection.commit()

    def rollback(self) -> None:
        """Roll back the current transaction, if any."""
        if self.connection.in_transaction():
            self.connection.rollback()

    def close(self) -> None:
        """Roll back uncommitted work and release the connection."""
        try:
            self.rollback()
        finally:
            self.connection.close()

    def __enter__(self) -> LoadSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class PostgresConnector:
    """Creates engines and load sessions from a validated config.

    The functions of the connector are:
    - validating the connection config
    - generating the SQLAlchemy URL and engine
    - opening load sessions with auto-commit disabled
    - exposing the load settings: schema, write mode, retry and chunk size
    """

    def __init__(
        self,
        config: Mapping[str, t.Any] | None = None,
        sqlalchemy_url: str | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            config: The connection and load settings.
            sqlalchemy_url: Optional URL for the connection.
        """
        if sqlalchemy_url is not None:
            config = {**(config or {}), "sqlalchemy_url": sqlalchemy_url}
        self._config = validate_config(config or {})

    @property
    def config(self) -> dict[str, t.Any]:
        """The validated settings."""
        return self._config

    @property
    def logger(self) -> logging.Logger:
        """Get logger.

        Returns:
            Connector logger.
        """
        return logging.getLogger("event_sink.connector")

    @property
    def sqlalchemy_url(self) -> str:
        """Return the SQLAlchemy URL string.

        Returns:
            The URL as a string.
        """
        return self.get_sqlalchemy_url(self.config)

    @staticmethod
    def get_sqlalchemy_url(config: Mapping[str, t.Any]) -> str:
        """Return the SQLAlchemy URL string.

        Args:
            config: A dictionary of settings.

        Returns:
            The URL as a string.
        """
        if "sqlalchemy_url" in config:
            return t.cast("str", config["sqlalchemy_url"])

        return sa.engine.URL.create(
            drivername="postgresql+psycopg",
            username=config["user"],
            password=config.get("password"),
            host=config["host"],
            port=config.get("port"),
            database=config["database"],
        ).render_as_string(hide_password=False)

    @cached_property
    def engine(self) -> sa.Engine:
        """The engine sessions are opened from."""
        return self.create_engine()

    def create_engine(self) -> sa.Engine:
        """Return a new SQLAlchemy engine using the provided config.

        Returns:
            A newly created SQLAlchemy engine object.
        """
        return sa.create_engine(self.sqlalchemy_url, echo=False, pool_pre_ping=True)

    @property
    def default_schema(self) -> str | None:
        """Schema holding destination tables."""
        return t.cast("str | None", self.config.get("default_target_schema"))

    @property
    def write_mode(self) -> WriteMode:
        """The declared write mode."""
        return WriteMode(self.config["write_mode"])

    @property
    def copy_chunk_size(self) -> int:
        """Bytes sent per COPY write."""
        return int(self.config.get("copy_chunk_size", DEFAULT_CHUNK_SIZE))

    def retry_policy(self) -> RetryPolicy:
        """Retry policy applied to staging flow statements.

        Returns:
            A backoff policy honouring ``max_retries``.
        """
        return backoff_retry(max_tries=self.config["max_retries"])

    @contextmanager
    def session(self) -> Iterator[LoadSession]:
        """Open a load session on a dedicated connection.

        Yields:
            The session. It is closed, rolling back uncommitted work, on exit.
        """
        # Pinning an isolation level keeps the connection out of AUTOCOMMIT
        connection = self.engine.connect().execution_options(
            isolation_level="READ COMMITTED",
        )

        with LoadSession(connection, logger=self.logger) as session:
            yield session
