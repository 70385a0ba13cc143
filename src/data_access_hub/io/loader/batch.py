"""
Mixed bulk operations under one transaction.

Every item runs inside its own SAVEPOINT. A failed item is rolled back to its
savepoint and recorded; the remaining items keep running and the transaction
is committed at the end whatever the item outcomes were. Only failures of the
transaction machinery itself (savepoint, commit, rollback) are raised.
"""

import time
import uuid
from typing import Any, List, Optional, Sequence

from data_access_hub.io.loader.driver import Driver
from data_access_hub.io.loader.models import (
    BatchOperation,
    BatchOperationError,
    BatchOperationResult,
    BulkOperationResult,
    BulkOperationStats,
    TransactionError,
)
from data_access_hub.io.loader.orchestrator import BulkOperationService
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)


def _elapsed_ms(since: float) -> float:
    return (time.perf_counter() - since) * 1000


def savepoint_name(index: int) -> str:
    return f"batch_item_{index}"


class BatchRunner:
    """Run a list of :class:`BatchOperation` items on one connection."""

    def __init__(
        self,
        service: Optional[BulkOperationService] = None,
        driver: Optional[Driver] = None,
    ):
        if service is None:
            service = BulkOperationService(driver=driver)
        elif driver is not None and driver is not service.driver:
            # items are applied through the service on the runner's connection
            raise ValueError("driver must be the one the service writes through")
        self.service = service
        self.driver = service.driver

    def run(self, operations: Sequence[BatchOperation]) -> BatchOperationResult:
        """
        Execute ``operations`` in list order.

        Later items see the writes of earlier ones. ``success`` is True only
        when every item succeeded.

        Raises:
            TransactionError: a savepoint, commit or rollback failed
        """
        operations = list(operations)
        execution_id = uuid.uuid4().hex
        log = logger.bind(execution_id=execution_id, total=len(operations))
        start = time.perf_counter()

        if not operations:
            return BatchOperationResult(
                success=True,
                message="Batch is empty",
                total=0,
                succeeded=0,
                failed=0,
                execution_id=execution_id,
            )

        log.info("bulk.batch.started")
        try:
            conn = self.driver.acquire()
        except Exception as exc:
            log.error("bulk.batch.failed", stage="transferring", error=str(exc))
            errors = tuple(
                BatchOperationError(i, op.kind, f"Connection unavailable: {exc}", exc)
                for i, op in enumerate(operations)
            )
            return BatchOperationResult(
                success=False,
                message=f"Batch failed to acquire a connection: {exc}",
                total=len(operations),
                succeeded=0,
                failed=len(operations),
                errors=errors,
                duration_ms=_elapsed_ms(start),
                execution_id=execution_id,
            )

        errors: List[BatchOperationError] = []
        results: List[BulkOperationResult] = []
        try:
            self.driver.begin(conn, True)
            for index, operation in enumerate(operations):
                result = self._run_item(conn, index, operation, log)
                results.append(result)
                if not result.success:
                    errors.append(
                        BatchOperationError(
                            index, operation.kind, result.message, result.error
                        )
                    )
            self._commit(conn, log)
        finally:
            self.driver.release(conn)

        failed = len(errors)
        succeeded = len(operations) - failed
        duration_ms = _elapsed_ms(start)
        log.info(
            "bulk.batch.completed",
            succeeded=succeeded,
            failed=failed,
            duration_ms=duration_ms,
        )
        if failed:
            message = f"Batch completed with {failed} of {len(operations)} operations failed"
        else:
            message = f"Batch completed: {succeeded} operations"
        return BatchOperationResult(
            success=failed == 0,
            message=message,
            total=len(operations),
            succeeded=succeeded,
            failed=failed,
            errors=tuple(errors),
            results=tuple(results),
            duration_ms=duration_ms,
            execution_id=execution_id,
        )

    def _run_item(
        self, conn: Any, index: int, operation: BatchOperation, log: Any
    ) -> BulkOperationResult:
        kind = operation.kind.value
        start = time.perf_counter()
        try:
            prepared = self.service.prepare(operation)
        except Exception as exc:
            log.warning(
                "bulk.batch.item_failed", index=index, operation=kind,
                stage="preparing", error=str(exc),
            )
            return BulkOperationResult.failure(
                exc, message=f"Item {index} ({kind}) failed: {exc}",
                duration_ms=_elapsed_ms(start),
            )

        if prepared.is_empty:
            return BulkOperationResult.completed(
                f"Bulk {kind}: nothing to do", rows_affected=0, duration_ms=0.0,
                batch_size=prepared.batch_size,
            )

        name = savepoint_name(index)
        try:
            self.driver.savepoint(conn, name)
        except Exception as exc:
            self._rollback(conn, log)
            raise TransactionError("savepoint", exc) from exc

        try:
            self.driver.set_timeout(conn, prepared.options.timeout, local=True)
            counts = self.service.apply(conn, prepared)
        except Exception as exc:
            try:
                self.driver.rollback_to_savepoint(conn, name)
            except Exception as rollback_exc:
                self._rollback(conn, log)
                raise TransactionError("rollback to savepoint", rollback_exc) from exc
            log.warning(
                "bulk.batch.item_failed", index=index, operation=kind,
                table=operation.table, error=str(exc),
            )
            return BulkOperationResult.failure(
                exc, message=f"Item {index} ({kind}) failed: {exc}",
                duration_ms=_elapsed_ms(start), batch_size=prepared.batch_size,
            )

        try:
            self.driver.release_savepoint(conn, name)
        except Exception as exc:
            self._rollback(conn, log)
            raise TransactionError("release savepoint", exc) from exc

        return BulkOperationResult.completed(
            f"Item {index} ({kind}) completed",
            rows_affected=counts.affected,
            duration_ms=_elapsed_ms(start),
            batch_size=prepared.batch_size,
            stats=BulkOperationStats(
                rows_inserted=counts.inserted,
                rows_updated=counts.updated,
                rows_deleted=counts.deleted,
                rows_ignored=counts.ignored,
            ),
        )

    def _commit(self, conn: Any, log: Any) -> None:
        try:
            self.driver.commit(conn)
        except Exception as exc:
            log.critical("bulk.batch.commit_failed", error=str(exc))
            self._rollback(conn, log)
            raise TransactionError("commit", exc) from exc

    def _rollback(self, conn: Any, log: Any) -> None:
        try:
            self.driver.rollback(conn)
        except Exception as exc:
            log.critical("bulk.transaction.rollback_failed", error=str(exc))
            raise TransactionError("rollback", exc) from exc
