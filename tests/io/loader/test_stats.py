"""Tests for table statistics and bulk-load recommendations."""

import pytest

from data_access_hub.io.loader import (
    BulkRecommendations,
    TableStatistics,
    recommend,
    table_statistics,
)
from data_access_hub.mapping import TabularResult

STATS_ROW = TabularResult.from_records(
    [
        {
            "row_count": 1500,
            "data_pages": 12,
            "total_bytes": 98304,
            "index_count": 2,
            "has_primary_key": True,
        }
    ]
)


@pytest.mark.unit
class TestTableStatistics:
    def test_reads_planner_figures(self, make_driver):
        driver = make_driver(fetch_result=STATS_ROW)

        stats = table_statistics("sales.orders", driver=driver, timeout=5)

        assert stats == TableStatistics(
            table="sales.orders",
            row_count=1500,
            data_pages=12,
            total_bytes=98304,
            index_count=2,
            has_primary_key=True,
        )
        (sql, params), = driver.statements
        assert "to_regclass(%s)" in sql
        assert params == ('"sales"."orders"',)
        assert driver.timeouts == [(5, False)]
        assert ("begin", False) in driver.calls
        assert len(driver.released) == 1

    def test_missing_table(self, fake_driver):
        with pytest.raises(LookupError, match="orders"):
            table_statistics("orders", driver=fake_driver)

        assert len(fake_driver.released) == 1

    def test_timeout_defaults_to_settings(self, monkeypatch, make_driver):
        monkeypatch.setenv("DB_TIMEOUT_SECONDS", "9")
        driver = make_driver(fetch_result=STATS_ROW)

        table_statistics("orders", driver=driver)

        assert driver.timeouts == [(9, False)]

    def test_fetch_failure_releases_connection(self, make_driver):
        driver = make_driver(fail_on=lambda sql: "pg_class" in sql)

        with pytest.raises(RuntimeError):
            table_statistics("orders", driver=driver)

        assert len(driver.released) == 1


@pytest.mark.unit
class TestRecommend:
    @pytest.mark.parametrize(
        "rows,expected",
        [
            (10, BulkRecommendations(1000)),
            (10_000, BulkRecommendations(1000)),
            (10_001, BulkRecommendations(2000, disable_indexes=True)),
            (100_001, BulkRecommendations(5000, disable_indexes=True, use_transaction=False)),
        ],
    )
    def test_load_size_tiers(self, rows, expected):
        assert recommend(None, rows) == expected

    def test_many_indexes(self):
        stats = TableStatistics("orders", index_count=6, has_primary_key=True)

        result = recommend(stats, 100)

        assert result.disable_indexes is True
        assert result.batch_size == 1000
        assert len(result.messages) == 1
        assert "6 indexes" in result.messages[0]

    def test_large_table_raises_batch_size(self):
        stats = TableStatistics("orders", row_count=2_000_000, has_primary_key=True)

        result = recommend(stats, 50_000)

        assert result.batch_size == 10_000
        assert result.disable_indexes is True
        assert "larger batches" in result.messages[0]

    def test_missing_primary_key_noted(self):
        result = recommend(TableStatistics("events"), 100)

        assert result.messages == [
            "events has no primary key; keyed updates and deletes will scan"
        ]

    def test_healthy_table_has_no_messages(self):
        stats = TableStatistics("orders", row_count=500, index_count=1, has_primary_key=True)
        assert recommend(stats, 100).messages == []
