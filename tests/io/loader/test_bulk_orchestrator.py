"""
Tests for BulkOperationService.

All tests run against the in-memory FakeDriver from conftest; statements are
checked for shape, and transaction handling is checked through the driver's
pending/committed journal.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import pytest

from data_access_hub.infrastructure.sql import UpsertStrategy
from data_access_hub.io.loader import (
    BulkDeleteOptions,
    BulkInsertOptions,
    BulkOperationError,
    BulkOperationService,
    BulkSyncOptions,
    BulkUpdateOptions,
    BulkUpsertOptions,
    TransactionError,
)

ORDER_COLUMNS = {
    "orders": [
        ("id", True),
        ("customer", False),
        ("amount", False),
        ("status", False),
        ("placed_on", False),
    ]
}


@dataclass
class Price:
    sku: str
    price: Decimal
    note: Optional[str] = None


@pytest.fixture
def driver(make_driver):
    return make_driver(columns=ORDER_COLUMNS)


@pytest.fixture
def service(driver):
    return BulkOperationService(driver=driver)


def _statements(driver, prefix):
    return [(sql, payload) for sql, payload in driver.statements if sql.startswith(prefix)]


@pytest.mark.unit
class TestEmptyInput:
    @pytest.mark.parametrize(
        "call",
        [
            lambda s: s.insert("orders", []),
            lambda s: s.update("orders", "id", []),
            lambda s: s.delete("orders", "id", []),
            lambda s: s.upsert("orders", "id", []),
        ],
    )
    def test_empty_input_opens_no_connection(self, service, driver, call):
        result = call(service)

        assert result.success is True
        assert result.rows_affected == 0
        assert result.duration_ms == 0.0
        assert driver.acquired == 0


@pytest.mark.unit
class TestInsert:
    def test_insert_three_rows(self, service, driver, sample_orders):
        result = service.insert("orders", sample_orders)

        assert result.success is True
        assert result.rows_affected == 3
        assert result.stats.rows_inserted == 3
        assert result.batch_size == 1000
        assert result.execution_id
        (copy_sql, lines), = _statements(driver, "COPY")
        assert copy_sql.startswith(
            'COPY "orders" ("customer", "amount", "status", "placed_on") FROM STDIN'
        )
        assert lines[0] == "acme\t10.50\tactive\t2024-01-02"
        assert lines[1] == "globex\t99.00\tclosed\t\\N"
        assert len(driver.committed) == 1
        assert driver.acquired == 1
        assert len(driver.released) == 1

    def test_transaction_and_timeout(self, service, driver, sample_orders):
        service.insert("orders", sample_orders, BulkInsertOptions(timeout=12))

        assert ("begin", True) in driver.calls
        assert driver.timeouts == [(12, True)]
        assert driver.commits == 1

    def test_keep_identity_sends_key(self, service, driver, sample_orders):
        service.insert("orders", sample_orders, BulkInsertOptions(keep_identity=True))

        (copy_sql, _), = _statements(driver, "COPY")
        assert copy_sql.startswith('COPY "orders" ("id", "customer"')

    def test_batches_split_copy(self, service, driver, sample_orders):
        result = service.insert("orders", sample_orders, BulkInsertOptions(batch_size=2))

        assert [len(lines) for _, lines in _statements(driver, "COPY")] == [2, 1]
        assert result.rows_affected == 3
        assert result.batch_size == 2

    def test_auto_batch_size(self, service, driver, sample_orders):
        result = service.insert("orders", sample_orders, BulkInsertOptions(batch_size="auto"))
        assert result.batch_size == 3

    def test_keep_nulls_false_drops_all_null_columns_per_batch(
        self, service, driver, sample_orders
    ):
        service.insert(
            "orders",
            sample_orders,
            BulkInsertOptions(batch_size=1, keep_nulls=False),
        )

        sqls = [sql for sql, _ in _statements(driver, "COPY")]
        assert '"placed_on"' in sqls[0]
        assert '"placed_on"' not in sqls[1]

    def test_exclude_and_rename(self, service, driver, sample_orders):
        service.insert(
            "orders",
            sample_orders,
            BulkInsertOptions(
                exclude_columns=("placed_on", "status"),
                column_mappings={"customer": "customer_name"},
            ),
        )

        (copy_sql, _), = _statements(driver, "COPY")
        assert '("customer_name", "amount")' in copy_sql

    def test_trigger_bypass_only_when_both_disabled(self, service, driver, sample_orders):
        service.insert(
            "orders",
            sample_orders,
            BulkInsertOptions(check_constraints=False, fire_triggers=False),
        )
        assert ("disable_triggers", None) in driver.calls
        assert ("restore_triggers", None) in driver.calls

    def test_triggers_left_alone_by_default(self, service, driver, sample_orders):
        service.insert("orders", sample_orders)
        assert ("disable_triggers", None) not in driver.calls

    def test_without_transaction(self, service, driver, sample_orders):
        result = service.insert(
            "orders", sample_orders, BulkInsertOptions(use_transaction=False)
        )

        assert result.success is True
        assert ("begin", False) in driver.calls
        assert driver.timeouts == [(30, False)]
        assert driver.commits == 0

    def test_completion_logged(self, service, sample_orders, caplog):
        caplog.set_level(logging.INFO)

        service.insert("orders", sample_orders)

        assert "bulk.insert.started" in caplog.text
        assert "bulk.insert.completed" in caplog.text


@pytest.mark.unit
class TestFailures:
    def test_statement_failure_rolls_back(self, make_driver, sample_orders, caplog):
        caplog.set_level(logging.ERROR)
        driver = make_driver(columns=ORDER_COLUMNS, fail_on=lambda sql: sql.startswith("COPY"))
        service = BulkOperationService(driver=driver)

        result = service.insert("orders", sample_orders)

        assert result.success is False
        assert result.rows_affected == 0
        assert isinstance(result.error, RuntimeError)
        assert result.stats.errors == 1
        assert driver.rollbacks == 1
        assert driver.committed == []
        assert len(driver.released) == 1
        assert "bulk.insert.failed" in caplog.text

    def test_later_batch_failure_discards_earlier_batches(self, make_driver):
        calls = {"n": 0}

        def second_statement_fails(sql):
            calls["n"] += 1
            return calls["n"] == 2

        driver = make_driver(fail_on=second_statement_fails)
        service = BulkOperationService(driver=driver)

        result = service.update(
            "prices",
            "sku",
            [Price("a", Decimal("1")), Price("b", Decimal("2"))],
            BulkUpdateOptions(batch_size=1),
        )

        assert result.success is False
        assert driver.committed == []

    def test_failure_without_transaction_does_not_roll_back(self, make_driver, sample_orders):
        driver = make_driver(columns=ORDER_COLUMNS, fail_on=lambda sql: True)
        service = BulkOperationService(driver=driver)

        result = service.insert(
            "orders", sample_orders, BulkInsertOptions(use_transaction=False)
        )

        assert result.success is False
        assert driver.rollbacks == 0

    def test_rollback_failure_raises(self, make_driver, sample_orders):
        driver = make_driver(columns=ORDER_COLUMNS, fail_on=lambda sql: True)
        driver.rollback_error = RuntimeError("connection lost")
        service = BulkOperationService(driver=driver)

        with pytest.raises(TransactionError) as exc_info:
            service.insert("orders", sample_orders)

        assert exc_info.value.action == "rollback"
        assert len(driver.released) == 1

    def test_commit_failure_is_failure_result(self, driver, service, sample_orders):
        driver.commit_error = RuntimeError("serialization failure")

        result = service.insert("orders", sample_orders)

        assert result.success is False
        assert driver.rollbacks == 1

    def test_bad_identifier_fails_before_connecting(self, service, driver, sample_orders):
        result = service.insert("bad%table", sample_orders)

        assert result.success is False
        assert isinstance(result.error, BulkOperationError)
        assert result.error.stage == "preparing"
        assert driver.acquired == 0

    def test_wrong_options_type(self, service, driver, sample_orders):
        result = service.insert("orders", sample_orders, BulkDeleteOptions())

        assert result.success is False
        assert "BulkInsertOptions" in result.message
        assert driver.acquired == 0

    def test_missing_key_member(self, service, driver):
        result = service.update("prices", "id", [Price("a", Decimal("1"))])

        assert result.success is False
        assert driver.acquired == 0

    def test_null_key_rejected(self, service, driver):
        result = service.update("prices", "note", [Price("a", Decimal("1"))])

        assert result.success is False
        assert "null" in result.message

    def test_connection_failure(self, service, driver, sample_orders):
        driver.acquire_error = ConnectionError("pool exhausted")

        result = service.insert("orders", sample_orders)

        assert result.success is False
        assert result.rows_affected == 0
        assert driver.released == []

    def test_no_insertable_columns(self, make_driver):
        driver = make_driver(columns={"ids": [("id", True)]})
        service = BulkOperationService(driver=driver)

        result = service.insert("ids", [{"id": 1}])

        assert result.success is False
        assert "no insertable columns" in result.message


@pytest.mark.unit
class TestUpdate:
    def test_update_binds_staged_rows(self, service, driver):
        prices = [Price("a", Decimal("1.5")), Price("b", Decimal("2"), "sale")]

        result = service.update("prices", "sku", prices)

        (sql, records), = driver.statements
        assert sql.startswith('UPDATE "prices" AS t SET "price" = s."price", "note" = s."note"')
        assert records == [
            {"sku": "a", "price": "1.5", "note": None},
            {"sku": "b", "price": "2", "note": "sale"},
        ]
        assert result.rows_affected == 2
        assert result.stats.rows_updated == 2

    def test_update_columns_restrict_payload(self, service, driver):
        service.update(
            "prices",
            "sku",
            [Price("a", Decimal("1"), "x")],
            BulkUpdateOptions(update_columns=("note",)),
        )

        (sql, records), = driver.statements
        assert '"price"' not in sql
        assert records == [{"sku": "a", "note": "x"}]

    def test_key_found_case_insensitively(self, service, driver):
        result = service.update("prices", "SKU", [Price("a", Decimal("1"))])

        assert result.success is True
        (sql, records), = driver.statements
        assert 'WHERE t."SKU" = s."SKU"' in sql
        assert records[0]["SKU"] == "a"

    def test_unmatched_rows_counted_as_ignored(self, service, driver):
        driver.staged_rowcount = 1

        result = service.update(
            "prices", "sku", [Price("a", Decimal("1")), Price("b", Decimal("2"))]
        )

        assert result.rows_affected == 1
        assert result.stats.rows_ignored == 1


@pytest.mark.unit
class TestUpsert:
    def test_merge_by_default(self, service, driver):
        result = service.upsert("prices", "sku", [Price("a", Decimal("1"))])

        (sql, _), = driver.statements
        assert sql.startswith('MERGE INTO "prices"')
        assert result.rows_affected == 1
        assert result.stats.rows_inserted == 0
        assert result.stats.rows_updated == 0

    def test_insert_if_not_exists_counts(self, service, driver):
        driver.staged_rowcount = 1

        result = service.upsert(
            "prices",
            "sku",
            [Price("a", Decimal("1")), Price("b", Decimal("2")), Price("c", Decimal("3"))],
            BulkUpsertOptions(strategy=UpsertStrategy.INSERT_IF_NOT_EXISTS),
        )

        (sql, _), = driver.statements
        assert "WHERE NOT EXISTS" in sql
        assert result.stats.rows_inserted == 1
        assert result.stats.rows_ignored == 2

    def test_update_if_exists_matches_update(self, service, driver):
        service.upsert(
            "prices",
            "sku",
            [Price("a", Decimal("1"))],
            BulkUpsertOptions(strategy="update_if_exists"),
        )
        service.update("prices", "sku", [Price("a", Decimal("1"))])

        (first, _), (second, _) = driver.statements
        assert first == second


@pytest.mark.unit
class TestDelete:
    def test_delete_in_batches(self, service, driver):
        result = service.delete("orders", "id", [1, 2, 3], BulkDeleteOptions(batch_size=2))

        assert driver.statements == [
            ('DELETE FROM "orders" WHERE "id" IN (%s, %s)', (1, 2)),
            ('DELETE FROM "orders" WHERE "id" IN (%s)', (3,)),
        ]
        assert result.rows_affected == 3
        assert result.stats.rows_deleted == 3

    def test_delete_from_objects(self, service, driver, sample_orders):
        service.delete("orders", "id", sample_orders)

        (_, params), = driver.statements
        assert params == (1, 2, 3)

    def test_null_key_rejected(self, service, driver):
        result = service.delete("orders", "id", [1, None])

        assert result.success is False
        assert driver.acquired == 0


@pytest.mark.unit
class TestSync:
    def test_sync_with_explicit_columns(self, service, driver):
        result = service.sync(
            "staging.orders",
            "orders",
            "id",
            BulkSyncOptions(sync_columns=("status",), delete_missing=True),
        )

        (sql, _), = driver.statements
        assert 'MERGE INTO "orders" AS t USING "staging"."orders" AS s' in sql
        assert sql.endswith("WHEN NOT MATCHED BY SOURCE THEN DELETE")
        assert result.success is True
        assert driver.commits == 1

    def test_sync_discovers_source_columns(self, make_driver):
        driver = make_driver(
            columns={"staging.orders": [("id", False), ("status", False), ("amount", False)]}
        )
        service = BulkOperationService(driver=driver)

        service.sync("staging.orders", "orders", "id")

        (sql, _), = driver.statements
        assert 'UPDATE SET "status" = s."status", "amount" = s."amount"' in sql
        assert "NOT MATCHED BY SOURCE" not in sql

    def test_sync_without_columns_fails(self, service, driver):
        result = service.sync("staging.empty", "orders", "id")

        assert result.success is False
        assert "no columns to sync" in result.message
        assert driver.rollbacks == 1

    def test_sync_requires_key(self, service, driver):
        result = service.sync("staging.orders", "orders", "")
        assert result.success is False
        assert driver.acquired == 0


@pytest.mark.unit
class TestColumnSpelling:
    @pytest.fixture
    def mixed_case(self, make_driver):
        driver = make_driver(columns={"t": [("id", True), ("name", False)]})
        return driver, BulkOperationService(driver=driver)

    def test_insert_uses_table_spelling_and_skips_identity(self, mixed_case):
        driver, service = mixed_case

        result = service.insert("t", [{"Id": 1, "Name": "A"}])

        assert result.success is True
        (copy_sql, lines), = _statements(driver, "COPY")
        assert copy_sql.startswith('COPY "t" ("name") FROM STDIN')
        assert '"Id"' not in copy_sql
        assert '"id"' not in copy_sql
        assert lines == ["A"]

    def test_keep_identity_sends_respelled_key(self, mixed_case):
        driver, service = mixed_case

        service.insert("t", [{"Id": 1, "Name": "A"}], BulkInsertOptions(keep_identity=True))

        (copy_sql, lines), = _statements(driver, "COPY")
        assert copy_sql.startswith('COPY "t" ("id", "name") FROM STDIN')
        assert lines == ["1\tA"]

    def test_update_stages_table_spelling(self, mixed_case):
        driver, service = mixed_case

        result = service.update("t", "Id", [{"Id": 1, "Name": "B"}])

        assert result.success is True
        (sql, records), = driver.statements
        assert 'SET "name" = s."name"' in sql
        assert 'WHERE t."id" = s."id"' in sql
        assert records == [{"id": 1, "name": "B"}]

    def test_upsert_stages_table_spelling(self, mixed_case):
        driver, service = mixed_case

        service.upsert("t", "ID", [{"ID": 1, "NAME": "C"}])

        (sql, records), = driver.statements
        assert '"ID"' not in sql
        assert '"NAME"' not in sql
        assert records == [{"id": 1, "name": "C"}]

    def test_delete_uses_table_spelling(self, mixed_case):
        driver, service = mixed_case

        service.delete("t", "ID", [1, 2])

        assert driver.statements == [('DELETE FROM "t" WHERE "id" IN (%s, %s)', (1, 2))]

    def test_two_payload_columns_for_one_table_column(self, mixed_case):
        driver, service = mixed_case

        result = service.insert("t", [{"name": "a", "Name": "b"}])

        assert result.success is False
        assert isinstance(result.error, ValueError)
        assert "both map to" in str(result.error)
        assert _statements(driver, "COPY") == []


@pytest.mark.unit
def test_defaults_come_from_settings(monkeypatch, make_driver, sample_orders):
    monkeypatch.setenv("DB_BATCH_SIZE", "2")
    monkeypatch.setenv("DB_TIMEOUT_SECONDS", "9")
    driver = make_driver(columns=ORDER_COLUMNS)
    service = BulkOperationService(driver=driver)

    result = service.insert("orders", sample_orders)

    assert result.batch_size == 2
    assert driver.timeouts == [(9, True)]
    assert len(_statements(driver, "COPY")) == 2
