"""
Options, results and errors for bulk write operations.

Options are frozen pydantic models constructed once per call; results are
frozen dataclasses produced once per call and handed back to the caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from data_access_hub.infrastructure.sql import UpsertStrategy


class DataAccessError(Exception):
    """Base class for errors raised by DataAccessHub."""


class ConnectionAcquisitionError(DataAccessError):
    """Raised when the driver cannot hand out a connection."""


class BulkOperationError(DataAccessError):
    """Structured error for a bulk operation failing at a known stage."""

    def __init__(
        self,
        operation: str,
        table: str,
        stage: Literal["preparing", "transferring", "committing"],
        message: str,
        original_error: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.table = table
        self.stage = stage
        self.original_error = original_error
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to structured dict for logging."""
        return {
            "error_type": type(self).__name__,
            "operation": self.operation,
            "table": self.table,
            "stage": self.stage,
            "message": str(self),
            "original_error_type": (
                type(self.original_error).__name__ if self.original_error else None
            ),
        }


class TransactionError(DataAccessError):
    """Commit or rollback failed; the transaction state is unknown."""

    def __init__(self, action: str, original_error: BaseException):
        self.action = action
        self.original_error = original_error
        super().__init__(f"Transaction {action} failed: {original_error}")


class BulkOperationKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    UPSERT = "upsert"
    SYNC = "sync"


BatchSize = Union[int, Literal["auto"]]


class _BulkOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    batch_size: BatchSize = Field(
        default=1000, description="Rows per statement; 'auto' sizes from the row count"
    )
    timeout: int = Field(
        default=30, ge=0, description="Statement timeout in seconds (0 disables)"
    )
    use_transaction: bool = Field(
        default=True, description="Wrap the whole call in one transaction"
    )

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: BatchSize) -> BatchSize:
        if v != "auto" and v < 1:
            raise ValueError("batch_size must be positive or 'auto'")
        return v


class _PayloadOptions(_BulkOptions):
    column_mappings: Dict[str, str] = Field(
        default_factory=dict, description="Member name to target column renames"
    )
    exclude_columns: Tuple[str, ...] = Field(
        default=(), description="Members left out of the payload"
    )


class BulkInsertOptions(_PayloadOptions):
    """Options for COPY-based bulk inserts."""

    keep_identity: bool = Field(
        default=False,
        description="Send identity/serial values instead of letting the table generate them",
    )
    check_constraints: bool = Field(default=True, description="Enforce FK constraints")
    keep_nulls: bool = Field(
        default=True,
        description="Write explicit NULLs; when False all-null columns fall back to table defaults",
    )
    fire_triggers: bool = Field(default=False, description="Fire user triggers")


class BulkUpdateOptions(_PayloadOptions):
    """Options for set-based updates."""

    update_columns: Tuple[str, ...] = Field(
        default=(), description="Columns to write; empty means every non-key column"
    )


class BulkDeleteOptions(_BulkOptions):
    """Options for keyed deletes."""


class BulkUpsertOptions(BulkUpdateOptions):
    """Options for upserts."""

    strategy: UpsertStrategy = Field(default=UpsertStrategy.MERGE)


class BulkSyncOptions(_BulkOptions):
    """Options for table-to-table sync."""

    delete_missing: bool = Field(
        default=False, description="Delete target rows whose key is absent from the source"
    )
    sync_columns: Tuple[str, ...] = Field(
        default=(), description="Columns to sync; empty reads the source table's columns"
    )


@dataclass(frozen=True)
class BulkOperationStats:
    """Row counts and stage timings of one bulk call."""

    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0
    rows_ignored: int = 0
    errors: int = 0
    preparation_ms: float = 0.0
    transfer_ms: float = 0.0
    processing_ms: float = 0.0


@dataclass(frozen=True)
class BulkOperationResult:
    """Outcome of one bulk call. Failures never report affected rows."""

    success: bool
    message: str
    rows_affected: int = 0
    duration_ms: float = 0.0
    batch_size: int = 0
    stats: BulkOperationStats = field(default_factory=BulkOperationStats)
    execution_id: str = ""
    error: Optional[BaseException] = None

    def __post_init__(self) -> None:
        if not self.success and self.rows_affected:
            raise ValueError("a failed bulk result cannot report affected rows")

    @classmethod
    def completed(
        cls,
        message: str,
        rows_affected: int,
        duration_ms: float,
        batch_size: int = 0,
        stats: Optional[BulkOperationStats] = None,
        execution_id: str = "",
    ) -> "BulkOperationResult":
        return cls(
            success=True,
            message=message,
            rows_affected=rows_affected,
            duration_ms=duration_ms,
            batch_size=batch_size,
            stats=stats or BulkOperationStats(),
            execution_id=execution_id,
        )

    @classmethod
    def failure(
        cls,
        error: BaseException,
        message: Optional[str] = None,
        duration_ms: float = 0.0,
        batch_size: int = 0,
        stats: Optional[BulkOperationStats] = None,
        execution_id: str = "",
    ) -> "BulkOperationResult":
        return cls(
            success=False,
            message=message or str(error) or "Bulk operation failed",
            duration_ms=duration_ms,
            batch_size=batch_size,
            stats=stats or BulkOperationStats(errors=1),
            execution_id=execution_id,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "rows_affected": self.rows_affected,
            "duration_ms": self.duration_ms,
            "batch_size": self.batch_size,
            "execution_id": self.execution_id,
            "error": None if self.error is None else repr(self.error),
        }


@dataclass(frozen=True)
class BatchOperation:
    """One item of a mixed batch.

    ``data`` holds the objects to write; for DELETE it may also hold bare key
    values. SYNC reads from ``source_table`` and ignores ``data``.
    """

    kind: BulkOperationKind
    table: str
    data: Sequence[Any] = ()
    key_column: Optional[str] = None
    options: Optional[_BulkOptions] = None
    source_table: Optional[str] = None

    @classmethod
    def insert(cls, table: str, data: Sequence[Any], options: Optional[BulkInsertOptions] = None):
        return cls(BulkOperationKind.INSERT, table, data, options=options)

    @classmethod
    def update(
        cls, table: str, key_column: str, data: Sequence[Any], options: Optional[BulkUpdateOptions] = None
    ):
        return cls(BulkOperationKind.UPDATE, table, data, key_column, options)

    @classmethod
    def delete(
        cls, table: str, key_column: str, data: Sequence[Any], options: Optional[BulkDeleteOptions] = None
    ):
        return cls(BulkOperationKind.DELETE, table, data, key_column, options)

    @classmethod
    def upsert(
        cls, table: str, key_column: str, data: Sequence[Any], options: Optional[BulkUpsertOptions] = None
    ):
        return cls(BulkOperationKind.UPSERT, table, data, key_column, options)

    @classmethod
    def sync(
        cls, source_table: str, target_table: str, key_column: str, options: Optional[BulkSyncOptions] = None
    ):
        return cls(
            BulkOperationKind.SYNC, target_table, (), key_column, options, source_table
        )


@dataclass(frozen=True)
class BatchOperationError:
    """Failure of one batch item."""

    index: int
    kind: BulkOperationKind
    message: str
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class BatchOperationResult:
    """Aggregate outcome of a mixed batch."""

    success: bool
    message: str
    total: int
    succeeded: int
    failed: int
    errors: Tuple[BatchOperationError, ...] = ()
    results: Tuple[BulkOperationResult, ...] = ()
    duration_ms: float = 0.0
    execution_id: str = ""

    @property
    def rows_affected(self) -> int:
        return sum(r.rows_affected for r in self.results if r.success)

    def error_indexes(self) -> List[int]:
        return [e.index for e in self.errors]
