# tests/fixtures/factories.py
"""Builders shared by the test modules."""

from datetime import timedelta
from pathlib import Path

from datamanager.contracts.enums import JobMode
from datamanager.contracts.records import Record
from datamanager.contracts.run import JobRunContext
from datamanager.core.config import CheckpointSettings, JobSettings, ProcessSettings, RetrySettings


class SleepRecorder:
    """Stand-in for time.sleep that records the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_records(count: int, logical_name: str = "account", prefix: str = "rec") -> list[Record]:
    return [Record(logical_name, f"{prefix}-{i:04d}", {"name": f"Record {i}"}) for i in range(count)]


def zero_wait_retry(**overrides: object) -> RetrySettings:
    values: dict[str, object] = {
        "connect_backoff_step_seconds": 0.0,
        "retrieve_base_delay_seconds": 0.0,
        "backoff_min_seconds": 0.0,
        "backoff_max_seconds": 0.0,
    }
    values.update(overrides)
    return RetrySettings(**values)  # type: ignore[arg-type]


def make_settings(tmp_path: Path, *, threads: int = 4, page: int = 2, **overrides: object) -> JobSettings:
    values: dict[str, object] = {
        "process": ProcessSettings(thread_number=threads, query_record_limit=page),
        "retry": zero_wait_retry(),
        "checkpoint": CheckpointSettings(directory=tmp_path, lock_timeout_ms=5000),
        "run_id": "Run-2024-01-01--00-00-00",
    }
    values.update(overrides)
    return JobSettings(**values)  # type: ignore[arg-type]


def make_run_context(
    mode: JobMode,
    *,
    threads: int = 4,
    page: int = 2,
    max_duration: timedelta = timedelta(hours=8),
) -> JobRunContext:
    return JobRunContext(
        run_id="Run-2024-01-01--00-00-00",
        job_name="test-job",
        mode=mode,
        thread_count=threads,
        page_size=page,
        max_run_duration=max_duration,
    )
