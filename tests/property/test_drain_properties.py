# tests/property/test_drain_properties.py
"""Property-based tests for the drain loop and checkpoint resume.

DRAIN INVARIANTS:
1. A job that removes every record it processes drains N records at page
   limit L in exactly ceil(N / L) + 1 retrievals (the last one empty)
2. Stagnation only fires on two equal short pages in a row
3. All-failed only fires on a non-empty round where every record failed

RESUME INVARIANT:
4. A bounded scan resumed from any checkpoint processes exactly the
   records missing from it, and removes the checkpoint afterwards
"""

from __future__ import annotations

import math
import tempfile
from datetime import timedelta
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from datamanager.clients.pool import ConnectionPool
from datamanager.contracts.enums import JobMode, LogLevel, StopReason
from datamanager.core.logging import JobLogger
from datamanager.engine.clock import MockClock
from datamanager.engine.runner import BoundedScanRunner, IterativeDrainRunner
from datamanager.engine.stop_conditions import RoundObservation, evaluate_round
from datamanager.testing.memory_service import MemoryServiceFactory, MemoryStore
from tests.fixtures.factories import SleepRecorder, make_records, make_run_context, make_settings
from tests.fixtures.jobs import DeleteAccountsJob, MarkAccountsJob

_QUIET = JobLogger(LogLevel.ERRORS_ONLY)


def _pool(store: MemoryStore, settings_path: Path) -> ConnectionPool:
    return ConnectionPool(MemoryServiceFactory(store), _QUIET, make_settings(settings_path).retry, sleep=SleepRecorder())


class TestDrainRounds:
    @given(record_count=st.integers(min_value=0, max_value=40), limit=st.integers(min_value=1, max_value=12))
    @settings(max_examples=40)
    def test_rounds_for_removing_job(self, record_count: int, limit: int) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = MemoryStore(make_records(record_count))
            job_settings = make_settings(Path(tmp), page=limit)
            run_context = make_run_context(JobMode.ITERATIVE_DRAIN, threads=3, page=limit)
            runner = IterativeDrainRunner(_pool(store, Path(tmp)), _QUIET, run_context, job_settings, clock=MockClock(), sleep=SleepRecorder())

            result = runner.run(DeleteAccountsJob(job_settings))

        assert result.stop_reason is StopReason.DRAINED
        assert result.rounds == math.ceil(record_count / limit) + 1
        assert result.totals.succeeded == record_count
        assert store.count("account") == 0


_counts = st.integers(min_value=0, max_value=50)


class TestStopRuleProperties:
    @given(last=_counts, current=_counts, limit=st.integers(min_value=1, max_value=50), failures=_counts)
    def test_stagnation_needs_equal_short_pages(self, last: int, current: int, limit: int, failures: int) -> None:
        decision = evaluate_round(
            RoundObservation(
                last_count=last,
                current_count=current,
                processed_count=current,
                page_limit=limit,
                failures=min(failures, current),
                elapsed=timedelta(0),
                max_duration=timedelta(hours=1),
            )
        )

        stagnant = decision is not None and decision.reason is StopReason.STAGNATION
        assert stagnant == (last == current and last < limit)

    @given(processed=_counts, failures=_counts)
    def test_all_failed_needs_every_record(self, processed: int, failures: int) -> None:
        failures = min(failures, processed)
        decision = evaluate_round(
            RoundObservation(
                last_count=50,
                current_count=50,
                processed_count=processed,
                page_limit=50,
                failures=failures,
                elapsed=timedelta(0),
                max_duration=timedelta(hours=1),
            )
        )

        if processed > 0 and failures == processed:
            assert decision is not None
            assert decision.reason is StopReason.ALL_FAILED
            assert not decision.success
        else:
            assert decision is None


class TestResumeProperties:
    @given(
        record_count=st.integers(min_value=0, max_value=25),
        done=st.sets(st.integers(min_value=0, max_value=24)),
    )
    @settings(max_examples=30)
    def test_resume_processes_complement(self, record_count: int, done: set[int]) -> None:
        records = make_records(record_count)
        done_ids = {records[i].id for i in done if i < record_count}
        with tempfile.TemporaryDirectory() as tmp:
            job_settings = make_settings(Path(tmp))
            job = MarkAccountsJob(job_settings)
            job.checkpoint_path().write_text("".join(f"{record_id}\n" for record_id in sorted(done_ids)), encoding="utf-8")
            store = MemoryStore(records)
            run_context = make_run_context(JobMode.BOUNDED_SCAN, threads=3, page=4)
            runner = BoundedScanRunner(_pool(store, Path(tmp)), _QUIET, run_context, job_settings, sleep=SleepRecorder())

            result = runner.run(job)
            checkpoint_left = job.checkpoint_path().exists()

        assert sorted(job.seen) == sorted({r.id for r in records} - done_ids)
        assert result.totals.skipped == len(done_ids)
        assert not checkpoint_left
