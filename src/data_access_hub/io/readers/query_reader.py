"""
Read queries mapped to typed objects.

Statements run in autocommit mode with a session-level statement timeout
that the driver resets when the connection goes back to the pool. Errors are
returned in :class:`QueryResult` rather than raised.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from data_access_hub.config import get_settings
from data_access_hub.io.loader.driver import Driver, PsycopgDriver
from data_access_hub.mapping.engine import MappingEngine, Target, default_engine
from data_access_hub.mapping.tabular import TabularResult
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueryResult:
    """Outcome of a read; ``data`` holds the mapped object(s) on success."""

    success: bool
    message: str
    data: Any = None
    rows: int = 0
    duration_ms: float = 0.0
    error: Optional[BaseException] = None


class QueryReader:
    """Run read statements through a driver and map their rows."""

    def __init__(
        self,
        driver: Optional[Driver] = None,
        engine: Optional[MappingEngine] = None,
        timeout: Optional[int] = None,
    ):
        self.driver = driver if driver is not None else PsycopgDriver()
        self.engine = engine or default_engine
        self.timeout = get_settings().DB_TIMEOUT_SECONDS if timeout is None else timeout

    def _fetch(
        self, sql: str, params: Optional[Sequence[Any]], timeout: Optional[int]
    ) -> TabularResult:
        conn = self.driver.acquire()
        try:
            self.driver.begin(conn, False)
            self.driver.set_timeout(
                conn, self.timeout if timeout is None else timeout, local=False
            )
            return self.driver.fetch(conn, sql, params)
        finally:
            self.driver.release(conn)

    def _run(self, mode: str, sql: str, params, timeout, shape) -> QueryResult:
        start = time.perf_counter()
        try:
            table = self._fetch(sql, params, timeout)
            data = shape(table)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                "query.failed", mode=mode, error=str(exc), duration_ms=duration_ms
            )
            return QueryResult(
                success=False,
                message=f"Query failed: {exc}",
                duration_ms=duration_ms,
                error=exc,
            )

        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            "query.completed", mode=mode, rows=len(table), duration_ms=duration_ms
        )
        return QueryResult(
            success=True,
            message=f"Query returned {len(table)} rows",
            data=data,
            rows=len(table),
            duration_ms=duration_ms,
        )

    def query_many(
        self,
        sql: str,
        target: Target,
        params: Optional[Sequence[Any]] = None,
        timeout: Optional[int] = None,
    ) -> QueryResult:
        """Map every returned row to ``target``; ``data`` is a list."""
        return self._run(
            "many", sql, params, timeout,
            lambda table: self.engine.map_many(table, target),
        )

    def query_one(
        self,
        sql: str,
        target: Target,
        params: Optional[Sequence[Any]] = None,
        timeout: Optional[int] = None,
    ) -> QueryResult:
        """Map the first returned row to ``target``; ``data`` is ``None`` without rows."""
        return self._run(
            "one", sql, params, timeout,
            lambda table: self.engine.map_one(table, target),
        )

    def query_table(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        timeout: Optional[int] = None,
    ) -> QueryResult:
        """Return the raw :class:`TabularResult` without mapping."""
        return self._run("table", sql, params, timeout, lambda table: table)
