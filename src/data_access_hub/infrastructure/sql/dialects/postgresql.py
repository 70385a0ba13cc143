"""
PostgreSQL-specific SQL for the bulk-write strategies.

Every statement that consumes a staged row-set binds the whole batch as one
JSON parameter and expands it with ``json_populate_recordset`` against the
target table's own row type. The row type gives every staged column the
target column's declared type, so no separate table type has to be created
in the database before a bulk call.

``MERGE`` requires PostgreSQL 15; ``WHEN NOT MATCHED BY SOURCE`` (used by
sync with ``delete_missing``) requires PostgreSQL 17.
"""

from typing import List, Optional, Sequence

from ..core.identifier import (
    IdentifierError,
    qualify_table,
    quote_column_list,
    quote_identifier,
)

TARGET_ALIAS = "t"
SOURCE_ALIAS = "s"


class PostgreSQLDialect:
    """PostgreSQL SQL dialect implementation."""

    name = "postgresql"

    def quote(self, identifier: str) -> str:
        """Quote an identifier using PostgreSQL syntax (double quotes)."""
        return quote_identifier(identifier)

    def qualify(self, table: str, schema: Optional[str] = None) -> str:
        """Create a fully qualified table reference."""
        return qualify_table(table, schema)

    def staged_rows(self, table: str) -> str:
        """
        Build the staged row-set source for one batch.

        The single ``%s`` placeholder receives a JSON array of row objects
        keyed by column name.
        """
        return (
            f"json_populate_recordset(NULL::{self.qualify(table)}, %s) "
            f"AS {SOURCE_ALIAS}"
        )

    def _set_clause(self, columns: Sequence[str]) -> str:
        # SET targets may not carry the table alias
        return ", ".join(
            f"{col} = {SOURCE_ALIAS}.{col}" for col in quote_column_list(columns)
        )

    def _key_predicate(self, key_column: str) -> str:
        key = self.quote(key_column)
        return f"{TARGET_ALIAS}.{key} = {SOURCE_ALIAS}.{key}"

    @staticmethod
    def _require_columns(columns: Sequence[str], strategy: str) -> None:
        if not columns:
            raise IdentifierError(f"{strategy} requires at least one column to write")

    def build_update(
        self, table: str, key_column: str, update_columns: Sequence[str]
    ) -> str:
        """
        Build a set-based UPDATE joining the target to the staged rows on the key.

        Example output::

            UPDATE "orders" AS t SET "status" = s."status"
            FROM json_populate_recordset(NULL::"orders", %s) AS s
            WHERE t."id" = s."id"
        """
        self._require_columns(update_columns, "UPDATE")
        return (
            f"UPDATE {self.qualify(table)} AS {TARGET_ALIAS} "
            f"SET {self._set_clause(update_columns)} "
            f"FROM {self.staged_rows(table)} "
            f"WHERE {self._key_predicate(key_column)}"
        )

    def build_delete(self, table: str, key_column: str, key_count: int) -> str:
        """Build ``DELETE ... WHERE key IN (%s, ...)`` with one placeholder per key."""
        if key_count < 1:
            raise ValueError("DELETE requires at least one key value")
        placeholders = ", ".join(["%s"] * key_count)
        return (
            f"DELETE FROM {self.qualify(table)} "
            f"WHERE {self.quote(key_column)} IN ({placeholders})"
        )

    def build_merge(
        self, table: str, key_column: str, update_columns: Sequence[str]
    ) -> str:
        """
        Build a MERGE upsert: matched rows update every listed column,
        unmatched rows insert the key plus the listed columns.
        """
        self._require_columns(update_columns, "MERGE")
        insert_columns = [key_column, *update_columns]
        quoted_insert = quote_column_list(insert_columns)
        return (
            f"MERGE INTO {self.qualify(table)} AS {TARGET_ALIAS} "
            f"USING {self.staged_rows(table)} "
            f"ON {self._key_predicate(key_column)} "
            f"WHEN MATCHED THEN UPDATE SET {self._set_clause(update_columns)} "
            f"WHEN NOT MATCHED THEN INSERT ({', '.join(quoted_insert)}) "
            f"VALUES ({', '.join(f'{SOURCE_ALIAS}.{c}' for c in quoted_insert)})"
        )

    def build_insert_if_not_exists(
        self, table: str, key_column: str, update_columns: Sequence[str]
    ) -> str:
        """Build an INSERT ... SELECT of staged rows whose key is not yet present."""
        quoted_insert = quote_column_list([key_column, *update_columns])
        target = self.qualify(table)
        return (
            f"INSERT INTO {target} ({', '.join(quoted_insert)}) "
            f"SELECT {', '.join(f'{SOURCE_ALIAS}.{c}' for c in quoted_insert)} "
            f"FROM {self.staged_rows(table)} "
            f"WHERE NOT EXISTS (SELECT 1 FROM {target} AS {TARGET_ALIAS} "
            f"WHERE {self._key_predicate(key_column)})"
        )

    def build_sync(
        self,
        source_table: str,
        target_table: str,
        key_column: str,
        sync_columns: Sequence[str],
        delete_missing: bool = False,
    ) -> str:
        """
        Build a table-to-table MERGE reconciling ``target_table`` with ``source_table``.

        With ``delete_missing`` the target rows whose key is absent from the
        source are deleted in the same statement.
        """
        self._require_columns(sync_columns, "Sync")
        quoted_insert = quote_column_list([key_column, *sync_columns])
        sql = (
            f"MERGE INTO {self.qualify(target_table)} AS {TARGET_ALIAS} "
            f"USING {self.qualify(source_table)} AS {SOURCE_ALIAS} "
            f"ON {self._key_predicate(key_column)} "
            f"WHEN MATCHED THEN UPDATE SET {self._set_clause(sync_columns)} "
            f"WHEN NOT MATCHED THEN INSERT ({', '.join(quoted_insert)}) "
            f"VALUES ({', '.join(f'{SOURCE_ALIAS}.{c}' for c in quoted_insert)})"
        )
        if delete_missing:
            sql += " WHEN NOT MATCHED BY SOURCE THEN DELETE"
        return sql

    def build_copy(self, table: str, columns: Sequence[str]) -> str:
        """Build the ``COPY ... FROM STDIN`` command for the native bulk path."""
        quoted = ", ".join(quote_column_list(columns))
        return (
            f"COPY {self.qualify(table)} ({quoted}) "
            "FROM STDIN WITH (FORMAT text, NULL '\\N')"
        )

    def build_column_lookup(self) -> str:
        """
        Query returning ``(column_name, is_identity)`` in ordinal order.

        The single ``%s`` receives the quoted table reference; ``to_regclass``
        resolves an unqualified name through ``search_path`` the same way the
        write statements do, and yields no rows for a missing table.
        """
        return (
            "SELECT a.attname, "
            "(a.attidentity <> '' "
            "OR COALESCE(pg_get_expr(d.adbin, d.adrelid), '') LIKE 'nextval(%%') "
            "AS is_identity "
            "FROM pg_attribute AS a "
            "LEFT JOIN pg_attrdef AS d "
            "ON d.adrelid = a.attrelid AND d.adnum = a.attnum "
            "WHERE a.attrelid = to_regclass(%s) "
            "AND a.attnum > 0 AND NOT a.attisdropped "
            "ORDER BY a.attnum"
        )

    def build_table_statistics(self) -> str:
        """
        Planner statistics for one table, bound to its quoted reference.

        ``reltuples`` is an estimate and reads -1 before the first ANALYZE,
        so it is clamped to zero.
        """
        return (
            "SELECT GREATEST(c.reltuples, 0)::bigint AS row_count, "
            "c.relpages AS data_pages, "
            "pg_total_relation_size(c.oid) AS total_bytes, "
            "(SELECT count(*) FROM pg_index AS i WHERE i.indrelid = c.oid) "
            "AS index_count, "
            "EXISTS (SELECT 1 FROM pg_index AS i "
            "WHERE i.indrelid = c.oid AND i.indisprimary) AS has_primary_key "
            "FROM pg_class AS c "
            "WHERE c.oid = to_regclass(%s)"
        )

    def build_set_timeout(self) -> str:
        """``set_config`` call binding the timeout and its transaction scope."""
        return "SELECT set_config('statement_timeout', %s, %s)"

    def build_disable_triggers(self) -> str:
        """Skip user triggers and FK enforcement for the current transaction."""
        return "SET LOCAL session_replication_role = replica"

    def build_restore_triggers(self) -> str:
        return "SET LOCAL session_replication_role = DEFAULT"


def staged_columns(key_column: str, columns: Sequence[str]) -> List[str]:
    """Return ``[key_column, *columns]`` without repeating the key."""
    return [key_column, *[c for c in columns if c != key_column]]
