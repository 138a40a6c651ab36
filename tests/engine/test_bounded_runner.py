# tests/engine/test_bounded_runner.py
"""Tests for the bounded scan runner and its checkpoint lifecycle."""

from pathlib import Path

from datamanager.clients.pool import ConnectionPool
from datamanager.contracts.enums import JobMode, StopReason
from datamanager.core.config import JobSettings
from datamanager.core.logging import JobLogger
from datamanager.engine.runner import BoundedScanRunner
from datamanager.testing.memory_service import MemoryStore
from tests.fixtures.factories import SleepRecorder, make_records, make_run_context
from tests.fixtures.jobs import MarkAccountsJob


def _runner(pool: ConnectionPool, logger: JobLogger, settings: JobSettings, sleep: SleepRecorder) -> BoundedScanRunner:
    return BoundedScanRunner(pool, logger, make_run_context(JobMode.BOUNDED_SCAN, page=2), settings, sleep=sleep)


def _processed(store: MemoryStore) -> set[str]:
    return {r.id for r in store.records("account") if r.get("processed")}


class TestBoundedScan:
    def test_processes_whole_snapshot(
        self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger, job_settings: JobSettings, sleep: SleepRecorder
    ) -> None:
        store.add_records(make_records(7))
        job = MarkAccountsJob(job_settings)

        result = _runner(pool, job_logger, job_settings, sleep).run(job)

        assert result.success
        assert result.stop_reason is StopReason.COMPLETED
        assert result.rounds == 1
        assert result.totals.succeeded == 7
        assert _processed(store) == {f"rec-{i:04d}" for i in range(7)}
        assert not job.checkpoint_path().exists()

    def test_checkpoint_lives_in_configured_directory(self, job_settings: JobSettings, tmp_path: Path) -> None:
        assert MarkAccountsJob(job_settings).checkpoint_path() == tmp_path / "MarkAccountsJob.txt"

    def test_resume_skips_checkpointed_records(
        self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger, job_settings: JobSettings, sleep: SleepRecorder
    ) -> None:
        store.add_records(make_records(5))
        job = MarkAccountsJob(job_settings)
        job.checkpoint_path().write_text("rec-0000\nrec-0003\n", encoding="utf-8")

        result = _runner(pool, job_logger, job_settings, sleep).run(job)

        assert sorted(job.seen) == ["rec-0001", "rec-0002", "rec-0004"]
        assert result.totals.skipped == 2
        assert result.totals.succeeded == 3
        assert not job.checkpoint_path().exists()

    def test_failed_records_are_attempted(
        self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger, job_settings: JobSettings, sleep: SleepRecorder
    ) -> None:
        store.add_records(make_records(4))
        job = MarkAccountsJob(job_settings, fail_ids={"rec-0001"})

        result = _runner(pool, job_logger, job_settings, sleep).run(job)

        assert result.success
        assert result.totals.failed == 1
        assert result.totals.attempted == 4
        assert not job.checkpoint_path().exists()

    def test_checkpoint_kept_when_records_not_attempted(
        self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger, job_settings: JobSettings, sleep: SleepRecorder
    ) -> None:
        store.add_records(make_records(4))
        pool.acquire_main_connection()
        store.fail_next("clone", RuntimeError("session limit reached"), times=4)
        job = MarkAccountsJob(job_settings)

        result = _runner(pool, job_logger, job_settings, sleep).run(job)

        assert result.totals.abandoned == 4
        assert job.checkpoint_path().exists()

    def test_rerun_after_interruption_finishes_remaining_records(
        self, pool: ConnectionPool, store: MemoryStore, job_logger: JobLogger, job_settings: JobSettings, sleep: SleepRecorder
    ) -> None:
        store.add_records(make_records(6))
        pool.acquire_main_connection()
        store.fail_next("clone", RuntimeError("session limit reached"), times=4)
        _runner(pool, job_logger, job_settings, sleep).run(MarkAccountsJob(job_settings))

        job = MarkAccountsJob(job_settings)
        result = _runner(pool, job_logger, job_settings, sleep).run(job)

        assert result.totals.succeeded == 6
        assert _processed(store) == {f"rec-{i:04d}" for i in range(6)}
        assert not job.checkpoint_path().exists()

    def test_empty_selection(
        self, pool: ConnectionPool, job_logger: JobLogger, job_settings: JobSettings, sleep: SleepRecorder
    ) -> None:
        job = MarkAccountsJob(job_settings)

        result = _runner(pool, job_logger, job_settings, sleep).run(job)

        assert result.success
        assert result.totals.retrieved == 0
        assert not job.checkpoint_path().exists()
