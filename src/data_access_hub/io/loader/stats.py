"""
Table statistics and bulk-load recommendations.

:func:`table_statistics` reads the planner's view of a target table (row
estimate, pages, size, indexes); :func:`recommend` turns those figures and
the size of an upcoming load into suggested options and advice messages.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from data_access_hub.config import get_settings
from data_access_hub.infrastructure.sql import PostgreSQLDialect, qualify_table
from data_access_hub.io.loader.driver import Driver, PsycopgDriver
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)

MANY_INDEXES = 5
LARGE_TABLE_ROWS = 1_000_000
LARGE_LOAD_ROWS = 100_000
MEDIUM_LOAD_ROWS = 10_000


@dataclass(frozen=True)
class TableStatistics:
    table: str
    row_count: int = 0
    data_pages: int = 0
    total_bytes: int = 0
    index_count: int = 0
    has_primary_key: bool = False


@dataclass
class BulkRecommendations:
    """Suggested settings for a load; ``messages`` explains any adjustments."""

    batch_size: int = 1000
    disable_indexes: bool = False
    use_transaction: bool = True
    messages: List[str] = field(default_factory=list)


def table_statistics(
    table: str, driver: Optional[Driver] = None, timeout: Optional[int] = None
) -> TableStatistics:
    """
    Read planner statistics for ``table``.

    Unqualified names resolve through the connection's ``search_path``.

    Raises:
        LookupError: the table does not exist
    """
    driver = driver if driver is not None else PsycopgDriver()
    sql = PostgreSQLDialect().build_table_statistics()
    conn = driver.acquire()
    try:
        driver.begin(conn, False)
        driver.set_timeout(
            conn,
            get_settings().DB_TIMEOUT_SECONDS if timeout is None else timeout,
            local=False,
        )
        row = driver.fetch(conn, sql, (qualify_table(table),)).first_row_dict()
    finally:
        driver.release(conn)

    if row is None:
        raise LookupError(f"table {table!r} not found")
    stats = TableStatistics(
        table=table,
        row_count=int(row["row_count"] or 0),
        data_pages=int(row["data_pages"] or 0),
        total_bytes=int(row["total_bytes"] or 0),
        index_count=int(row["index_count"] or 0),
        has_primary_key=bool(row["has_primary_key"]),
    )
    logger.debug(
        "bulk.stats.collected",
        table=table,
        row_count=stats.row_count,
        index_count=stats.index_count,
    )
    return stats


def recommend(stats: Optional[TableStatistics], row_count: int) -> BulkRecommendations:
    """
    Suggest batch size, index and transaction handling for loading ``row_count`` rows.

    Examples:
        >>> recommend(None, 500).batch_size
        1000
        >>> recommend(TableStatistics("orders", row_count=2_000_000), 500).batch_size
        10000
    """
    if row_count > LARGE_LOAD_ROWS:
        result = BulkRecommendations(5000, disable_indexes=True, use_transaction=False)
    elif row_count > MEDIUM_LOAD_ROWS:
        result = BulkRecommendations(2000, disable_indexes=True)
    else:
        result = BulkRecommendations(1000)

    if stats is None:
        return result
    if stats.index_count > MANY_INDEXES:
        result.disable_indexes = True
        result.messages.append(
            f"{stats.index_count} indexes on {stats.table}; "
            "consider dropping and rebuilding them around the load"
        )
    if stats.row_count > LARGE_TABLE_ROWS:
        result.batch_size = max(result.batch_size, 10_000)
        result.messages.append(
            f"{stats.table} holds about {stats.row_count} rows; use larger batches"
        )
    if not stats.has_primary_key:
        result.messages.append(
            f"{stats.table} has no primary key; keyed updates and deletes will scan"
        )
    return result
