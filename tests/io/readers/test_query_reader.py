"""Tests for QueryReader."""

import logging
from dataclasses import dataclass
from typing import Optional

import pytest

from data_access_hub.io.readers import QueryReader, QueryResult
from data_access_hub.mapping import MappingEngine, TabularResult, TypeRegistry


@dataclass
class Account:
    id: int
    owner: str
    email: Optional[str] = None


ROWS = TabularResult.from_rows(["ID", "Owner"], [(1, "ann"), (2, "bob")])


@pytest.fixture
def reader_for(make_driver):
    def build(**driver_kwargs):
        driver = make_driver(**driver_kwargs)
        return QueryReader(driver=driver, engine=MappingEngine(TypeRegistry())), driver

    return build


@pytest.mark.unit
class TestQueryReader:
    def test_query_many_maps_rows(self, reader_for):
        reader, driver = reader_for(fetch_result=ROWS)

        result = reader.query_many("SELECT * FROM accounts WHERE id > %s", Account, (0,))

        assert result.success is True
        assert result.rows == 2
        assert result.data == [Account(1, "ann"), Account(2, "bob")]
        assert driver.statements == [("SELECT * FROM accounts WHERE id > %s", (0,))]

    def test_runs_in_autocommit_with_session_timeout(self, reader_for):
        reader, driver = reader_for(fetch_result=ROWS)

        reader.query_many("SELECT 1", Account, timeout=4)

        assert ("begin", False) in driver.calls
        assert driver.timeouts == [(4, False)]
        assert len(driver.released) == 1

    def test_default_timeout_from_settings(self, monkeypatch, reader_for):
        monkeypatch.setenv("DB_TIMEOUT_SECONDS", "11")
        reader, driver = reader_for(fetch_result=ROWS)

        reader.query_table("SELECT 1")

        assert driver.timeouts == [(11, False)]

    def test_query_one(self, reader_for):
        reader, _ = reader_for(fetch_result=ROWS)

        result = reader.query_one("SELECT * FROM accounts", Account)

        assert result.data == Account(1, "ann")

    def test_query_one_without_rows(self, reader_for):
        reader, _ = reader_for(fetch_result=TabularResult.empty(["id"]))

        result = reader.query_one("SELECT * FROM accounts WHERE false", Account)

        assert result.success is True
        assert result.data is None
        assert result.rows == 0

    def test_query_table_returns_raw_result(self, reader_for):
        reader, _ = reader_for(fetch_result=ROWS)

        result = reader.query_table("SELECT * FROM accounts")

        assert result.data is ROWS

    def test_failure_returned_not_raised(self, reader_for, caplog):
        caplog.set_level(logging.ERROR)
        reader, driver = reader_for(fail_on=lambda sql: True)

        result = reader.query_many("SELECT broken", Account)

        assert isinstance(result, QueryResult)
        assert result.success is False
        assert isinstance(result.error, RuntimeError)
        assert result.data is None
        assert len(driver.released) == 1
        assert "query.failed" in caplog.text

    def test_connection_failure(self, reader_for):
        reader, driver = reader_for()
        driver.acquire_error = ConnectionError("down")

        result = reader.query_one("SELECT 1", Account)

        assert result.success is False
        assert driver.released == []
