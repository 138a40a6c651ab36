# tests/jobs/test_builtin_jobs.py
"""Tests for the built-in maintenance jobs, run end to end on the memory service."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from datamanager.clients.base import ServiceRequest
from datamanager.contracts.enums import JobMode, StopReason
from datamanager.contracts.errors import FatalSetupError
from datamanager.contracts.records import OptionSetValue, Record
from datamanager.core.config import JobSettings
from datamanager.core.logging import JobLogger
from datamanager.engine.processor import JobProcessor
from datamanager.jobs.builtin import CancelSystemJobsJob, DeleteRecordsJob, RemovePluginTracesJob
from datamanager.testing.memory_service import MemoryServiceFactory, MemoryStore
from tests.fixtures.factories import SleepRecorder, make_settings

NOW = datetime(2024, 6, 1, tzinfo=UTC)


def _aged(logical_name: str, record_id: str, days: int, **attributes: object) -> Record:
    return Record(logical_name, record_id, {"createdon": NOW - timedelta(days=days), **attributes})


@pytest.fixture
def dated_store() -> MemoryStore:
    return MemoryStore(now=lambda: NOW)


def _processor(settings: JobSettings, store: MemoryStore, logger: JobLogger, sleep: SleepRecorder) -> JobProcessor:
    return JobProcessor(settings, MemoryServiceFactory(store), logger=logger, sleep=sleep)


class TestDeleteRecords:
    def test_requires_entity_name(self, job_settings: JobSettings) -> None:
        with pytest.raises(FatalSetupError, match="entity_name"):
            DeleteRecordsJob(job_settings)

    def test_deletes_only_records_past_retention(
        self, dated_store: MemoryStore, job_logger: JobLogger, sleep: SleepRecorder, tmp_path: Path
    ) -> None:
        dated_store.add_records([_aged("email", f"old-{i}", 400) for i in range(5)])
        dated_store.add_records([_aged("email", "recent", 10)])
        settings = make_settings(tmp_path, job_parameters={"delete-records": {"entity_name": "email", "retention_days": 365}})
        job = DeleteRecordsJob(settings)

        result = _processor(settings, dated_store, job_logger, sleep).run_job(job)

        assert result is not None
        assert result.stop_reason is StopReason.DRAINED
        assert [r.id for r in dated_store.records("email")] == ["recent"]
        assert job.display_name == "email Deletion Job"
        assert job.mode is JobMode.ITERATIVE_DRAIN

    def test_delete_bypasses_custom_logic(self, dated_store: MemoryStore, job_logger: JobLogger, sleep: SleepRecorder, tmp_path: Path) -> None:
        requests: list[ServiceRequest] = []

        def capture(store: MemoryStore, request: ServiceRequest) -> dict[str, Any]:
            assert request.target is not None
            requests.append(request)
            store._remove(request.target.logical_name, request.target.id)
            return {}

        dated_store.register_action("Delete", capture)
        dated_store.add_records([_aged("email", "old", 400)])
        settings = make_settings(tmp_path, job_parameters={"delete-records": {"entity_name": "email"}})

        _processor(settings, dated_store, job_logger, sleep).run_job(DeleteRecordsJob(settings))

        assert len(requests) == 1
        assert requests[0].parameters == {"BypassCustomPluginExecution": True}


class TestRemovePluginTraces:
    def test_drains_trace_table(self, store: MemoryStore, job_logger: JobLogger, sleep: SleepRecorder, tmp_path: Path) -> None:
        store.add_records(Record("plugintracelog", f"t-{i}") for i in range(7))
        settings = make_settings(tmp_path, page=3)

        result = _processor(settings, store, job_logger, sleep).run_job(RemovePluginTracesJob(settings))

        assert result is not None
        assert result.success
        assert result.rounds == 4
        assert store.count("plugintracelog") == 0


class TestCancelSystemJobs:
    def test_cancels_pending_non_recurring_jobs(
        self, store: MemoryStore, job_logger: JobLogger, sleep: SleepRecorder, tmp_path: Path
    ) -> None:
        store.add_records(
            [
                Record("asyncoperation", "waiting", {"statecode": OptionSetValue(1), "recurrencepattern": None, "createdon": NOW}),
                Record("asyncoperation", "running", {"statecode": OptionSetValue(2), "recurrencepattern": None, "createdon": NOW}),
                Record("asyncoperation", "done", {"statecode": OptionSetValue(3), "recurrencepattern": None, "createdon": NOW}),
                Record("asyncoperation", "recurring", {"statecode": OptionSetValue(1), "recurrencepattern": "FREQ=DAILY", "createdon": NOW}),
            ]
        )
        settings = make_settings(tmp_path)

        result = _processor(settings, store, job_logger, sleep).run_job(CancelSystemJobsJob(settings))

        states = {r.id: r["statecode"] for r in store.records("asyncoperation")}
        assert result is not None
        assert result.success
        assert states == {
            "waiting": OptionSetValue(3),
            "running": OptionSetValue(3),
            "done": OptionSetValue(3),
            "recurring": OptionSetValue(1),
        }
        assert store.records("asyncoperation")[0]["statuscode"] == OptionSetValue(32)

    def test_query_orders_newest_first(self, job_settings: JobSettings) -> None:
        query = CancelSystemJobsJob(job_settings).get_query("caller")

        assert query.entity_name == "asyncoperation"
        assert [(o.attribute, o.descending) for o in query.orders] == [("createdon", True)]
