"""
Bulk operation orchestrator.

Each call moves through four stages:

- preparing: build the pandas payload, resolve key and write columns, and
  render the SQL (bad identifiers fail here, before any connection is used)
- transferring: acquire a pooled connection, open the transaction, apply the
  statement timeout
- processing: run COPY or one set-based statement per batch, then commit
- reporting: assemble row counts and per-stage timings

Failures in any stage come back as a failed :class:`BulkOperationResult`
after the owned transaction is rolled back. Only a failed rollback escapes,
as :class:`TransactionError`.
"""

import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

import pandas as pd

from data_access_hub.config import get_settings
from data_access_hub.infrastructure.sql import (
    BulkStatementBuilder,
    PostgreSQLDialect,
    UpsertStrategy,
    qualify_table,
    quote_identifier,
)
from data_access_hub.io.loader.driver import Driver, PsycopgDriver
from data_access_hub.io.loader.models import (
    BatchOperation,
    BulkDeleteOptions,
    BulkInsertOptions,
    BulkOperationError,
    BulkOperationKind,
    BulkOperationResult,
    BulkOperationStats,
    BulkSyncOptions,
    BulkUpdateOptions,
    BulkUpsertOptions,
    TransactionError,
    _BulkOptions,
)
from data_access_hub.io.loader.payload import (
    build_payload,
    copy_buffer,
    drop_all_null_columns,
    extract_keys,
    find_column,
    staged_records,
)
from data_access_hub.mapping.coercion import is_null
from data_access_hub.utils.batching import (
    chunk_dataframe,
    chunk_sequence,
    recommend_batch_size,
)
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)

OPTIONS_BY_KIND: Dict[BulkOperationKind, Type[_BulkOptions]] = {
    BulkOperationKind.INSERT: BulkInsertOptions,
    BulkOperationKind.UPDATE: BulkUpdateOptions,
    BulkOperationKind.DELETE: BulkDeleteOptions,
    BulkOperationKind.UPSERT: BulkUpsertOptions,
    BulkOperationKind.SYNC: BulkSyncOptions,
}


@dataclass
class RowCounts:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    ignored: int = 0
    affected: int = 0


@dataclass
class PreparedOperation:
    """A validated operation ready to run on a connection."""

    operation: BatchOperation
    options: Any
    batch_size: int
    row_count: int
    frame: Optional[pd.DataFrame] = None
    keys: Sequence[Any] = ()
    key_column: Optional[str] = None
    columns: Tuple[str, ...] = ()
    statement: Optional[str] = None

    @property
    def kind(self) -> BulkOperationKind:
        return self.operation.kind

    @property
    def is_empty(self) -> bool:
        return self.kind is not BulkOperationKind.SYNC and self.row_count == 0


def _elapsed_ms(since: float) -> float:
    return (time.perf_counter() - since) * 1000


class BulkOperationService:
    """Runs bulk insert, update, delete, upsert and sync calls against PostgreSQL."""

    def __init__(
        self,
        driver: Optional[Driver] = None,
        builder: Optional[BulkStatementBuilder] = None,
    ):
        settings = get_settings()
        self.driver = driver if driver is not None else PsycopgDriver()
        self.builder = builder or BulkStatementBuilder(PostgreSQLDialect())
        self.default_batch_size = settings.DB_BATCH_SIZE
        self.default_timeout = settings.DB_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def insert(
        self, table: str, data: Sequence[Any], options: Optional[BulkInsertOptions] = None
    ) -> BulkOperationResult:
        """Insert ``data`` into ``table`` through COPY."""
        return self.execute(BatchOperation.insert(table, data, options))

    def update(
        self,
        table: str,
        key_column: str,
        data: Sequence[Any],
        options: Optional[BulkUpdateOptions] = None,
    ) -> BulkOperationResult:
        """Update existing rows of ``table`` matched on ``key_column``."""
        return self.execute(BatchOperation.update(table, key_column, data, options))

    def delete(
        self,
        table: str,
        key_column: str,
        data: Sequence[Any],
        options: Optional[BulkDeleteOptions] = None,
    ) -> BulkOperationResult:
        """Delete rows whose ``key_column`` matches the keys in ``data``."""
        return self.execute(BatchOperation.delete(table, key_column, data, options))

    def upsert(
        self,
        table: str,
        key_column: str,
        data: Sequence[Any],
        options: Optional[BulkUpsertOptions] = None,
    ) -> BulkOperationResult:
        """Insert or update ``data`` keyed by ``key_column`` using the chosen strategy."""
        return self.execute(BatchOperation.upsert(table, key_column, data, options))

    def sync(
        self,
        source_table: str,
        target_table: str,
        key_column: str,
        options: Optional[BulkSyncOptions] = None,
    ) -> BulkOperationResult:
        """Reconcile ``target_table`` with ``source_table`` on ``key_column``."""
        return self.execute(
            BatchOperation.sync(source_table, target_table, key_column, options)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def default_options(self, kind: BulkOperationKind) -> _BulkOptions:
        """Options for ``kind`` with batch size and timeout taken from settings."""
        return OPTIONS_BY_KIND[kind](
            batch_size=self.default_batch_size, timeout=self.default_timeout
        )

    def execute(self, operation: BatchOperation) -> BulkOperationResult:
        """Run one operation in its own connection and transaction."""
        kind = operation.kind.value
        execution_id = uuid.uuid4().hex
        log = logger.bind(
            operation=kind, table=operation.table, execution_id=execution_id
        )
        start = time.perf_counter()

        try:
            prepared = self.prepare(operation)
        except Exception as exc:
            log.error(f"bulk.{kind}.failed", stage="preparing", error=str(exc))
            return BulkOperationResult.failure(
                BulkOperationError(kind, operation.table, "preparing", str(exc), exc),
                message=f"Bulk {kind} failed while preparing: {exc}",
                duration_ms=_elapsed_ms(start),
                execution_id=execution_id,
            )

        if prepared.is_empty:
            log.info(f"bulk.{kind}.skipped", reason="empty_input")
            return BulkOperationResult.completed(
                f"Bulk {kind}: nothing to do",
                rows_affected=0,
                duration_ms=0.0,
                batch_size=prepared.batch_size,
                execution_id=execution_id,
            )

        preparation_ms = _elapsed_ms(start)
        options = prepared.options
        transactional = options.use_transaction
        log.info(
            f"bulk.{kind}.started",
            rows=prepared.row_count,
            batch_size=prepared.batch_size,
            transactional=transactional,
        )

        stage_start = time.perf_counter()
        try:
            conn = self.driver.acquire()
        except Exception as exc:
            log.error(f"bulk.{kind}.failed", stage="transferring", error=str(exc))
            return BulkOperationResult.failure(
                exc,
                message=f"Bulk {kind} failed to acquire a connection: {exc}",
                duration_ms=_elapsed_ms(start),
                batch_size=prepared.batch_size,
                stats=BulkOperationStats(errors=1, preparation_ms=preparation_ms),
                execution_id=execution_id,
            )

        transfer_ms = 0.0
        try:
            try:
                self.driver.begin(conn, transactional)
                self.driver.set_timeout(conn, options.timeout, local=transactional)
                transfer_ms = _elapsed_ms(stage_start)

                stage_start = time.perf_counter()
                counts = self.apply(conn, prepared)
                if transactional:
                    self.driver.commit(conn)
                processing_ms = _elapsed_ms(stage_start)
            except Exception as exc:
                if transactional:
                    self._rollback(conn, log)
                log.error(
                    f"bulk.{kind}.failed",
                    stage="processing",
                    error=str(exc),
                    duration_ms=_elapsed_ms(start),
                )
                return BulkOperationResult.failure(
                    exc,
                    message=f"Bulk {kind} failed: {exc}",
                    duration_ms=_elapsed_ms(start),
                    batch_size=prepared.batch_size,
                    stats=BulkOperationStats(
                        errors=1,
                        preparation_ms=preparation_ms,
                        transfer_ms=transfer_ms,
                    ),
                    execution_id=execution_id,
                )
        finally:
            self.driver.release(conn)

        duration_ms = _elapsed_ms(start)
        stats = BulkOperationStats(
            rows_inserted=counts.inserted,
            rows_updated=counts.updated,
            rows_deleted=counts.deleted,
            rows_ignored=counts.ignored,
            preparation_ms=preparation_ms,
            transfer_ms=transfer_ms,
            processing_ms=processing_ms,
        )
        log.info(
            f"bulk.{kind}.completed",
            rows_affected=counts.affected,
            rows_ignored=counts.ignored,
            duration_ms=duration_ms,
        )
        return BulkOperationResult.completed(
            f"Bulk {kind} completed",
            rows_affected=counts.affected,
            duration_ms=duration_ms,
            batch_size=prepared.batch_size,
            stats=stats,
            execution_id=execution_id,
        )

    def _rollback(self, conn: Any, log: Any) -> None:
        try:
            self.driver.rollback(conn)
        except Exception as exc:
            log.critical("bulk.transaction.rollback_failed", error=str(exc))
            raise TransactionError("rollback", exc) from exc

    # ------------------------------------------------------------------
    # Preparing
    # ------------------------------------------------------------------

    def _resolve_options(self, operation: BatchOperation) -> _BulkOptions:
        expected = OPTIONS_BY_KIND[operation.kind]
        if operation.options is None:
            return self.default_options(operation.kind)
        if not isinstance(operation.options, expected):
            raise TypeError(
                f"{operation.kind.value} expects {expected.__name__}, "
                f"got {type(operation.options).__name__}"
            )
        return operation.options

    @staticmethod
    def _resolve_batch_size(options: _BulkOptions, row_count: int) -> int:
        if options.batch_size == "auto":
            return recommend_batch_size(row_count)
        return int(options.batch_size)

    def _require_key(self, operation: BatchOperation) -> str:
        if not operation.key_column:
            raise ValueError(f"{operation.kind.value} requires a key column")
        quote_identifier(operation.key_column)
        return operation.key_column

    def _keyed_payload(
        self, operation: BatchOperation, options: BulkUpdateOptions
    ) -> Tuple[pd.DataFrame, str]:
        frame = build_payload(
            operation.data, options.column_mappings, options.exclude_columns
        )
        key = self._require_key(operation)
        if frame.empty:
            return frame, key
        column = find_column(frame.columns, key)
        if column is None:
            raise KeyError(f"key column {key!r} not present in payload")
        if column != key:
            frame = frame.rename(columns={column: key})
        if any(is_null(v) for v in frame[key]):
            raise ValueError(f"key column {key!r} contains null values")
        return frame, key

    def prepare(self, operation: BatchOperation) -> PreparedOperation:
        """Validate ``operation`` and build its payload and SQL."""
        options = self._resolve_options(operation)
        qualify_table(operation.table)
        kind = operation.kind
        data = list(operation.data)

        if kind is BulkOperationKind.INSERT:
            frame = build_payload(data, options.column_mappings, options.exclude_columns)
            if not options.keep_nulls:
                frame = drop_all_null_columns(frame)
            if not frame.empty:
                self.builder.copy(operation.table, list(frame.columns))
            return PreparedOperation(
                operation, options, self._resolve_batch_size(options, len(frame)),
                len(frame), frame=frame, columns=tuple(frame.columns),
            )

        if kind is BulkOperationKind.DELETE:
            key = self._require_key(operation)
            keys = extract_keys(data, key)
            if any(is_null(k) for k in keys):
                raise ValueError(f"key column {key!r} contains null values")
            if keys:
                self.builder.delete(operation.table, key, 1)
            return PreparedOperation(
                operation, options, self._resolve_batch_size(options, len(keys)),
                len(keys), keys=keys, key_column=key,
            )

        if kind is BulkOperationKind.SYNC:
            key = self._require_key(operation)
            if not operation.source_table:
                raise ValueError("sync requires a source table")
            qualify_table(operation.source_table)
            statement = None
            if options.sync_columns:
                statement = self.builder.sync(
                    operation.source_table, operation.table, key,
                    options.sync_columns, options.delete_missing,
                )
            return PreparedOperation(
                operation, options, self._resolve_batch_size(options, 0), 0,
                key_column=key, columns=tuple(options.sync_columns), statement=statement,
            )

        frame, key = self._keyed_payload(operation, options)
        if frame.empty:
            return PreparedOperation(
                operation, options, self._resolve_batch_size(options, 0), 0,
                frame=frame, key_column=key,
            )
        columns = self.builder.resolve_update_columns(
            key, list(frame.columns), options.update_columns
        )
        statement = self._staged_statement(operation, options, key, columns)
        return PreparedOperation(
            operation, options, self._resolve_batch_size(options, len(frame)),
            len(frame), frame=frame, key_column=key, columns=tuple(columns),
            statement=statement,
        )

    def _staged_statement(
        self,
        operation: BatchOperation,
        options: Any,
        key: str,
        columns: Sequence[str],
    ) -> str:
        if operation.kind is BulkOperationKind.UPDATE:
            return self.builder.update(operation.table, key, columns)
        return self.builder.upsert(operation.table, key, columns, options.strategy)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def reconcile(
        self, prepared: PreparedOperation, table_columns: Sequence[Tuple[str, bool]]
    ) -> PreparedOperation:
        """
        Respell payload and key columns the way ``table_columns`` spells them.

        Matching is exact first, then case-insensitive; names with no match
        are left alone for the database to report. Returns ``prepared``
        unchanged when nothing needs renaming.
        """
        names = [name for name, _ in table_columns]
        if not names:
            return prepared

        payload = list(prepared.frame.columns) if prepared.frame is not None else []
        if prepared.key_column and prepared.key_column not in payload:
            payload.append(prepared.key_column)

        renames: Dict[str, str] = {}
        claimed: Dict[str, str] = {}
        for name in payload:
            resolved = find_column(names, name) or name
            if resolved in claimed:
                raise ValueError(
                    f"columns {claimed[resolved]!r} and {name!r} both map to "
                    f"{resolved!r} in {prepared.operation.table}"
                )
            claimed[resolved] = name
            if resolved != name:
                renames[name] = resolved
        if not renames:
            return prepared

        key = renames.get(prepared.key_column, prepared.key_column)
        columns = tuple(renames.get(c, c) for c in prepared.columns)
        frame = prepared.frame
        if frame is not None:
            frame = frame.rename(columns=renames)
        statement = prepared.statement
        if statement is not None:
            statement = self._staged_statement(
                prepared.operation, prepared.options, key, columns
            )
        return replace(
            prepared, frame=frame, key_column=key, columns=columns, statement=statement
        )

    def apply(self, conn: Any, prepared: PreparedOperation) -> RowCounts:
        """Run a prepared operation on ``conn`` without committing."""
        kind = prepared.kind
        if kind is BulkOperationKind.SYNC:
            return self._apply_sync(conn, prepared)
        table_columns = self.driver.table_columns(conn, prepared.operation.table)
        prepared = self.reconcile(prepared, table_columns)
        if kind is BulkOperationKind.INSERT:
            return self._apply_insert(conn, prepared, table_columns)
        if kind is BulkOperationKind.DELETE:
            return self._apply_delete(conn, prepared)
        return self._apply_staged(conn, prepared)

    def _apply_insert(
        self,
        conn: Any,
        prepared: PreparedOperation,
        table_columns: Sequence[Tuple[str, bool]],
    ) -> RowCounts:
        options: BulkInsertOptions = prepared.options
        table = prepared.operation.table
        columns: List[str] = list(prepared.columns)
        if not options.keep_identity:
            identity = {name for name, is_identity in table_columns if is_identity}
            columns = [c for c in columns if c not in identity]
        if not columns:
            raise ValueError(f"no insertable columns left for {table}")

        bypass_triggers = (
            not options.fire_triggers
            and not options.check_constraints
            and options.use_transaction
        )
        if bypass_triggers:
            self.driver.disable_triggers(conn)

        counts = RowCounts()
        for batch in chunk_dataframe(prepared.frame, prepared.batch_size):
            batch_columns = columns
            if not options.keep_nulls:
                batch_columns = [
                    c for c in columns if not all(is_null(v) for v in batch[c])
                ]
                if not batch_columns:
                    raise ValueError(f"batch for {table} has only null values")
            sql = self.builder.copy(table, batch_columns)
            copied = self.driver.copy_rows(conn, sql, copy_buffer(batch, batch_columns))
            counts.inserted += copied if copied >= 0 else len(batch)

        if bypass_triggers:
            self.driver.restore_triggers(conn)
        counts.affected = counts.inserted
        return counts

    def _apply_delete(self, conn: Any, prepared: PreparedOperation) -> RowCounts:
        table = prepared.operation.table
        counts = RowCounts()
        for chunk in chunk_sequence(list(prepared.keys), prepared.batch_size):
            sql = self.builder.delete(table, prepared.key_column, len(chunk))
            counts.deleted += self.driver.execute(conn, sql, tuple(chunk))
        counts.ignored = max(prepared.row_count - counts.deleted, 0)
        counts.affected = counts.deleted
        return counts

    def _apply_staged(self, conn: Any, prepared: PreparedOperation) -> RowCounts:
        staged = self.builder.staged_columns(prepared.key_column, prepared.columns)
        strategy = getattr(prepared.options, "strategy", None)
        counts = RowCounts()
        for batch in chunk_dataframe(prepared.frame, prepared.batch_size):
            written = self.driver.execute_staged(
                conn, prepared.statement, staged_records(batch, staged)
            )
            counts.affected += written
            # MERGE does not report its inserted/updated split
            if strategy is UpsertStrategy.MERGE:
                continue
            if strategy is UpsertStrategy.INSERT_IF_NOT_EXISTS:
                counts.inserted += written
            else:
                counts.updated += written
            counts.ignored += max(len(batch) - written, 0)
        return counts

    def _apply_sync(self, conn: Any, prepared: PreparedOperation) -> RowCounts:
        operation = prepared.operation
        options: BulkSyncOptions = prepared.options
        statement = prepared.statement
        if statement is None:
            source = [name for name, _ in self.driver.table_columns(conn, operation.source_table)]
            key = find_column(source, prepared.key_column) or prepared.key_column
            columns = [name for name in source if name != key]
            if not columns:
                raise ValueError(
                    f"no columns to sync from {operation.source_table}"
                )
            statement = self.builder.sync(
                operation.source_table, operation.table, key,
                columns, options.delete_missing,
            )
        counts = RowCounts()
        counts.affected = self.driver.execute(conn, statement)
        return counts
