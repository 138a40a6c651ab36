"""Per-run metadata and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from datamanager.contracts.enums import ExecutionOutcome, JobMode, StopReason


@dataclass(frozen=True, slots=True)
class JobRunContext:
    """Immutable metadata built once at job start, read-only to workers.

    Attributes:
        run_id: Process-wide run identifier
        job_name: Display name of the job
        mode: Execution strategy
        thread_count: Worker pool size after job overrides
        page_size: Page size (bounded scan) or page limit (iterative drain)
        max_run_duration: Wall-clock budget for iterative drain
    """

    run_id: str
    job_name: str
    mode: JobMode
    thread_count: int
    page_size: int
    max_run_duration: timedelta

    def __post_init__(self) -> None:
        if self.thread_count < 1:
            raise ValueError(f"thread_count must be >= 1, got {self.thread_count}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")


@dataclass(slots=True)
class RoundCounters:
    """Aggregate outcome counts for one processing round."""

    retrieved: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    transient_exhausted: int = 0
    transient_retries: int = 0
    abandoned: int = 0  # never handed to a worker (no connection available)

    @property
    def attempted(self) -> int:
        """Records that were processed or skipped through the checkpoint."""
        return self.succeeded + self.skipped + self.failed + self.transient_exhausted

    @property
    def failures(self) -> int:
        return self.failed + self.transient_exhausted + self.abandoned

    def record(self, outcome: ExecutionOutcome) -> None:
        if outcome is ExecutionOutcome.SUCCESS:
            self.succeeded += 1
        elif outcome is ExecutionOutcome.SKIPPED:
            self.skipped += 1
        elif outcome is ExecutionOutcome.TRANSIENT_EXHAUSTED:
            self.transient_exhausted += 1
        else:
            self.failed += 1

    def merge(self, other: RoundCounters) -> None:
        self.retrieved += other.retrieved
        self.succeeded += other.succeeded
        self.skipped += other.skipped
        self.failed += other.failed
        self.transient_exhausted += other.transient_exhausted
        self.transient_retries += other.transient_retries
        self.abandoned += other.abandoned


@dataclass(slots=True)
class RunResult:
    """Outcome of one job run.

    success is the boolean reported to the operator: True when the job
    completed or drained (including partial completion on the duration
    budget), False when it stopped because a whole round failed.
    """

    success: bool
    stop_reason: StopReason
    rounds: int
    totals: RoundCounters = field(default_factory=RoundCounters)
    elapsed_seconds: float = 0.0
