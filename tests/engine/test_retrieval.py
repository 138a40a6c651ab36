# tests/engine/test_retrieval.py
"""Tests for retrieval with exponential retry."""

import pytest

from datamanager.clients.pool import ConnectionPool
from datamanager.contracts.errors import FatalSetupError, ServiceFault
from datamanager.contracts.records import ConditionOperator, Query
from datamanager.core.config import JobSettings
from datamanager.core.logging import JobLogger
from datamanager.engine.retrieval import retrieve_all, retrieve_page
from datamanager.testing.memory_service import MemoryStore
from tests.fixtures.factories import SleepRecorder, make_records, zero_wait_retry


class TestRetrievePage:
    def test_caps_at_limit_without_paging(
        self, pool: ConnectionPool, store: MemoryStore, job_settings: JobSettings, job_logger: JobLogger
    ) -> None:
        store.add_records(make_records(7))
        query = Query("account", page_size=3, page_number=2, paging_cookie="2")

        records = retrieve_page(pool.acquire_main_connection(), query, 5, settings=job_settings.retry, logger=job_logger)

        assert len(records) == 5
        assert query.top_count == 5
        assert query.page_size is None
        assert query.page_number == 1
        assert query.no_lock

    def test_retries_with_exponential_waits(self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger) -> None:
        store.add_records(make_records(2))
        store.fail_next("retrieve_multiple", RuntimeError("socket closed"), times=3)
        sleep = SleepRecorder()
        settings = zero_wait_retry(retrieve_base_delay_seconds=5.0)

        records = retrieve_page(pool.acquire_main_connection(), Query("account"), 10, settings=settings, logger=job_logger, sleep=sleep)

        assert len(records) == 2
        assert sleep.delays == [5.0, 25.0, 125.0]

    def test_last_error_raised_after_budget(self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger) -> None:
        store.fail_next("retrieve_multiple", ServiceFault(-2147220970, "SQL error"), times=10)
        settings = zero_wait_retry(retrieve_max_attempts=5)
        connection = pool.acquire_main_connection()
        before = store.calls["retrieve_multiple"]

        with pytest.raises(ServiceFault, match="SQL error"):
            retrieve_page(connection, Query("account"), 10, settings=settings, logger=job_logger, sleep=SleepRecorder())

        assert store.calls["retrieve_multiple"] - before == 5

    def test_fatal_errors_not_retried(self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger) -> None:
        store.fail_next("retrieve_multiple", FatalSetupError("bad query"), times=3)
        connection = pool.acquire_main_connection()

        with pytest.raises(FatalSetupError):
            retrieve_page(connection, Query("account"), 10, settings=zero_wait_retry(), logger=job_logger)

        assert store.calls["retrieve_multiple"] == 1


class TestRetrieveAll:
    def test_reads_every_page(self, pool: ConnectionPool, store: MemoryStore, job_settings: JobSettings, job_logger: JobLogger) -> None:
        store.add_records(make_records(9))
        query = Query("account", top_count=2)

        records = retrieve_all(pool.acquire_main_connection(), query, 4, settings=job_settings.retry, logger=job_logger)

        assert [r.id for r in records] == [f"rec-{i:04d}" for i in range(9)]
        assert query.top_count is None
        assert store.calls["retrieve_multiple"] == 3

    def test_applies_filters(self, pool: ConnectionPool, store: MemoryStore, job_settings: JobSettings, job_logger: JobLogger) -> None:
        store.add_records(make_records(5))
        query = Query("account").add_condition("name", ConditionOperator.EQUAL, "Record 3")

        records = retrieve_all(pool.acquire_main_connection(), query, 2, settings=job_settings.retry, logger=job_logger)

        assert [r.id for r in records] == ["rec-0003"]
