"""
Driver collaborator for bulk writes and queries.

:class:`Driver` is the narrow interface the orchestrator, batch runner and
query reader talk to. :class:`PsycopgDriver` implements it on psycopg2 with a
``ThreadedConnectionPool``; pooling, retries and the wire protocol stay here.
"""

import time
from typing import Any, List, Optional, Protocol, Sequence, Tuple

import psycopg2
from psycopg2.extras import Json
from psycopg2.pool import PoolError, ThreadedConnectionPool

from data_access_hub.config import get_settings, mask_url
from data_access_hub.infrastructure.sql import (
    PostgreSQLDialect,
    qualify_table,
    quote_identifier,
)
from data_access_hub.io.loader.models import ConnectionAcquisitionError
from data_access_hub.mapping.tabular import TabularResult
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)


class Driver(Protocol):
    """Operations the core needs from a database driver."""

    def acquire(self) -> Any: ...
    def release(self, conn: Any) -> None: ...
    def begin(self, conn: Any, transactional: bool) -> None: ...
    def commit(self, conn: Any) -> None: ...
    def rollback(self, conn: Any) -> None: ...
    def savepoint(self, conn: Any, name: str) -> None: ...
    def rollback_to_savepoint(self, conn: Any, name: str) -> None: ...
    def release_savepoint(self, conn: Any, name: str) -> None: ...
    def set_timeout(self, conn: Any, seconds: float, local: bool) -> None: ...
    def disable_triggers(self, conn: Any) -> None: ...
    def restore_triggers(self, conn: Any) -> None: ...
    def execute(self, conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> int: ...
    def execute_staged(self, conn: Any, sql: str, records: List[dict]) -> int: ...
    def copy_rows(self, conn: Any, sql: str, buffer: Any) -> int: ...
    def table_columns(self, conn: Any, table: str) -> List[Tuple[str, bool]]: ...
    def fetch(self, conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> TabularResult: ...


class PsycopgDriver:
    """PostgreSQL driver over a psycopg2 thread-safe connection pool."""

    def __init__(
        self,
        connection_url: Optional[str] = None,
        pool_size: Optional[int] = None,
        connect_timeout: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff_ms: Optional[int] = None,
    ):
        settings = get_settings()
        self.connection_url = (
            connection_url or settings.get_database_connection_string()
        )
        self.pool_size = pool_size or settings.DB_POOL_SIZE
        self.connect_timeout = connect_timeout or settings.DB_CONNECT_TIMEOUT
        self.retry_attempts = retry_attempts or settings.DB_RETRY_ATTEMPTS
        self.retry_backoff_ms = (
            settings.DB_RETRY_BACKOFF_MS if retry_backoff_ms is None else retry_backoff_ms
        )
        self.dialect = PostgreSQLDialect()
        self._pool: Optional[ThreadedConnectionPool] = None

        logger.info(
            "database.driver.initialized",
            database=mask_url(self.connection_url),
            pool_size=self.pool_size,
            connect_timeout=self.connect_timeout,
        )

    def close(self) -> None:
        """Close the underlying connection pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("database.driver.closed")

    def health_check(self) -> None:
        """Validate pool connectivity with a lightweight query."""
        conn = self.acquire()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        except psycopg2.Error as e:
            raise ConnectionAcquisitionError(f"Database connection failed: {e}") from e
        finally:
            self.release(conn)

    def _ensure_pool(self) -> ThreadedConnectionPool:
        if self._pool is None or self._pool.closed:
            try:
                self._pool = ThreadedConnectionPool(
                    minconn=1,
                    maxconn=self.pool_size,
                    dsn=self.connection_url,
                    connect_timeout=self.connect_timeout,
                )
            except psycopg2.Error as e:
                raise ConnectionAcquisitionError(f"Failed to create pool: {e}") from e
        return self._pool

    def acquire(self) -> Any:
        """Get a pooled connection, retrying with exponential backoff."""
        pool = self._ensure_pool()
        last_error: Optional[Exception] = None
        for attempt in range(self.retry_attempts):
            try:
                return pool.getconn()
            except (psycopg2.Error, PoolError) as e:
                last_error = e
                wait_ms = self.retry_backoff_ms * (2**attempt)
                logger.warning(
                    "database.connection.retry",
                    attempt=attempt + 1,
                    wait_ms=wait_ms,
                    error=str(e),
                )
                time.sleep(wait_ms / 1000)

        raise ConnectionAcquisitionError(
            f"Failed to acquire connection after retries: {last_error}"
        ) from last_error

    def release(self, conn: Any) -> None:
        """Return ``conn`` to the pool, dropping it when its state is unusable."""
        if self._pool is None:
            return
        discard = bool(conn.closed)
        if not discard and conn.autocommit:
            try:
                with conn.cursor() as cursor:
                    cursor.execute("RESET statement_timeout")
                conn.autocommit = False
            except psycopg2.Error as e:
                logger.warning("database.connection.reset_failed", error=str(e))
                discard = True
        self._pool.putconn(conn, close=discard)

    def begin(self, conn: Any, transactional: bool) -> None:
        # psycopg2 opens the transaction implicitly on the first statement
        conn.autocommit = not transactional

    def commit(self, conn: Any) -> None:
        conn.commit()

    def rollback(self, conn: Any) -> None:
        conn.rollback()

    def savepoint(self, conn: Any, name: str) -> None:
        self.execute(conn, f"SAVEPOINT {quote_identifier(name)}")

    def rollback_to_savepoint(self, conn: Any, name: str) -> None:
        self.execute(conn, f"ROLLBACK TO SAVEPOINT {quote_identifier(name)}")

    def release_savepoint(self, conn: Any, name: str) -> None:
        self.execute(conn, f"RELEASE SAVEPOINT {quote_identifier(name)}")

    def set_timeout(self, conn: Any, seconds: float, local: bool) -> None:
        """Apply ``statement_timeout``; ``local`` scopes it to the open transaction."""
        milliseconds = str(int(seconds * 1000))
        with conn.cursor() as cursor:
            cursor.execute(self.dialect.build_set_timeout(), (milliseconds, local))

    def disable_triggers(self, conn: Any) -> None:
        self.execute(conn, self.dialect.build_disable_triggers())

    def restore_triggers(self, conn: Any) -> None:
        self.execute(conn, self.dialect.build_restore_triggers())

    def execute(self, conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run one statement and return its affected row count (0 when unknown)."""
        with conn.cursor() as cursor:
            cursor.execute(sql, params)
            return max(cursor.rowcount, 0)

    def execute_staged(self, conn: Any, sql: str, records: List[dict]) -> int:
        """Run ``sql`` with ``records`` bound as its single JSON row-set parameter."""
        with conn.cursor() as cursor:
            cursor.execute(sql, (Json(records),))
            return max(cursor.rowcount, 0)

    def copy_rows(self, conn: Any, sql: str, buffer: Any) -> int:
        """Stream ``buffer`` through ``COPY ... FROM STDIN``; -1 when the count is unknown."""
        with conn.cursor() as cursor:
            cursor.copy_expert(sql, buffer)
            return cursor.rowcount

    def table_columns(self, conn: Any, table: str) -> List[Tuple[str, bool]]:
        """Return ``(column_name, is_identity)`` pairs for ``table`` in ordinal order."""
        with conn.cursor() as cursor:
            cursor.execute(self.dialect.build_column_lookup(), (qualify_table(table),))
            return [(row[0], bool(row[1])) for row in cursor.fetchall()]

    def fetch(self, conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> TabularResult:
        """Run a query and materialize its rows."""
        with conn.cursor() as cursor:
            cursor.execute(sql, params)
            return TabularResult.from_cursor(cursor)
