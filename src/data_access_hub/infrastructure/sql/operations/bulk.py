"""
Bulk-write statement builders.

Provides one entry point per bulk-write strategy on top of a dialect. Insert
is absent on purpose: inserts go through the driver's COPY path.
"""

from enum import Enum
from typing import List, Optional, Protocol, Sequence

from ..dialects.postgresql import staged_columns


class UpsertStrategy(str, Enum):
    """How an upsert reconciles staged rows with existing target rows."""

    MERGE = "merge"
    INSERT_IF_NOT_EXISTS = "insert_if_not_exists"
    UPDATE_IF_EXISTS = "update_if_exists"


class Dialect(Protocol):
    """Protocol for SQL dialects."""

    name: str

    def quote(self, identifier: str) -> str: ...
    def qualify(self, table: str, schema: Optional[str] = None) -> str: ...
    def build_update(self, table: str, key_column: str, update_columns: Sequence[str]) -> str: ...
    def build_delete(self, table: str, key_column: str, key_count: int) -> str: ...
    def build_merge(self, table: str, key_column: str, update_columns: Sequence[str]) -> str: ...
    def build_insert_if_not_exists(
        self, table: str, key_column: str, update_columns: Sequence[str]
    ) -> str: ...
    def build_sync(
        self, source_table: str, target_table: str, key_column: str, sync_columns: Sequence[str], delete_missing: bool = False
    ) -> str: ...
    def build_copy(self, table: str, columns: Sequence[str]) -> str: ...


class BulkStatementBuilder:
    """
    High-level builder for bulk-write statements.

    Example:
        >>> from data_access_hub.infrastructure.sql import BulkStatementBuilder, PostgreSQLDialect
        >>> builder = BulkStatementBuilder(PostgreSQLDialect())
        >>> sql = builder.delete("orders", "id", 2)
        >>> print(sql)
        DELETE FROM "orders" WHERE "id" IN (%s, %s)
    """

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    @staticmethod
    def resolve_update_columns(
        key_column: str,
        available: Sequence[str],
        requested: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """
        Pick the columns an update/upsert writes.

        ``requested`` restricts the set when non-empty; otherwise every
        available column except the key is written. Order follows ``available``.
        """
        candidates = [c for c in available if c != key_column]
        if requested:
            wanted = set(requested)
            unknown = wanted.difference(available)
            if unknown:
                raise ValueError(
                    f"update columns not present in payload: {sorted(unknown)}"
                )
            candidates = [c for c in candidates if c in wanted]
        return candidates

    def update(self, table: str, key_column: str, update_columns: Sequence[str]) -> str:
        """Set-based UPDATE from the staged row-set."""
        return self.dialect.build_update(table, key_column, update_columns)

    def delete(self, table: str, key_column: str, key_count: int) -> str:
        """DELETE by explicit key placeholders."""
        return self.dialect.build_delete(table, key_column, key_count)

    def upsert(
        self,
        table: str,
        key_column: str,
        update_columns: Sequence[str],
        strategy: UpsertStrategy = UpsertStrategy.MERGE,
    ) -> str:
        """
        Build the upsert statement for ``strategy``.

        UPDATE_IF_EXISTS produces exactly the plain update statement.
        """
        strategy = UpsertStrategy(strategy)
        if strategy is UpsertStrategy.MERGE:
            return self.dialect.build_merge(table, key_column, update_columns)
        if strategy is UpsertStrategy.INSERT_IF_NOT_EXISTS:
            return self.dialect.build_insert_if_not_exists(
                table, key_column, update_columns
            )
        return self.dialect.build_update(table, key_column, update_columns)

    def sync(
        self,
        source_table: str,
        target_table: str,
        key_column: str,
        sync_columns: Sequence[str],
        delete_missing: bool = False,
    ) -> str:
        """Table-to-table MERGE with optional deletion of rows absent from the source."""
        columns = [c for c in sync_columns if c != key_column]
        return self.dialect.build_sync(
            source_table, target_table, key_column, columns, delete_missing
        )

    def copy(self, table: str, columns: Sequence[str]) -> str:
        """COPY FROM STDIN command for the native insert path."""
        return self.dialect.build_copy(table, columns)

    @staticmethod
    def staged_columns(key_column: str, columns: Sequence[str]) -> List[str]:
        """Columns serialized into each staged row: the key first, then ``columns``."""
        return staged_columns(key_column, columns)
