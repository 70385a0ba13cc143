"""
PostgreSQL bulk loader for DataAccessHub.

Bulk insert (COPY), set-based update, delete, upsert and table-to-table sync,
plus mixed batches under one transaction with per-item savepoints, and
table statistics with load recommendations.
"""

from .batch import BatchRunner
from .driver import Driver, PsycopgDriver
from .models import (
    BatchOperation,
    BatchOperationError,
    BatchOperationResult,
    BulkDeleteOptions,
    BulkInsertOptions,
    BulkOperationError,
    BulkOperationKind,
    BulkOperationResult,
    BulkOperationStats,
    BulkSyncOptions,
    BulkUpdateOptions,
    BulkUpsertOptions,
    ConnectionAcquisitionError,
    DataAccessError,
    TransactionError,
)
from .orchestrator import BulkOperationService
from .stats import BulkRecommendations, TableStatistics, recommend, table_statistics

__all__ = [
    "BatchOperation",
    "BatchOperationError",
    "BatchOperationResult",
    "BatchRunner",
    "BulkDeleteOptions",
    "BulkInsertOptions",
    "BulkOperationError",
    "BulkOperationKind",
    "BulkOperationResult",
    "BulkOperationService",
    "BulkOperationStats",
    "BulkRecommendations",
    "BulkSyncOptions",
    "BulkUpdateOptions",
    "BulkUpsertOptions",
    "ConnectionAcquisitionError",
    "DataAccessError",
    "Driver",
    "PsycopgDriver",
    "TableStatistics",
    "TransactionError",
    "recommend",
    "table_statistics",
]
