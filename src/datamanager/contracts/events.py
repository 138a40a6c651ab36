"""Observability events emitted by the engine.

Events are plain frozen dataclasses; the JobLogger renders them as
structured log lines.
"""

from dataclasses import dataclass

from datamanager.contracts.enums import StopReason


def records_per_second(elapsed_seconds: float, count: int) -> float:
    """Throughput rounded to 2 decimals (0.0 for an empty or instant round)."""
    if elapsed_seconds <= 0 or count <= 0:
        return 0.0
    return round(count / elapsed_seconds, 2)


@dataclass(frozen=True, slots=True)
class RoundCompleted:
    """Emitted after each parallel processing round.

    Attributes:
        round_number: 1-based round index within the run
        record_count: Records handed to the worker pool
        succeeded: Records processed successfully
        failed: Records that ended in a failure outcome
        skipped: Records skipped through the checkpoint log
        elapsed_seconds: Wall-clock time spent in the round
    """

    round_number: int
    record_count: int
    succeeded: int
    failed: int
    skipped: int
    elapsed_seconds: float

    @property
    def speed(self) -> float:
        return records_per_second(self.elapsed_seconds, self.record_count)

    def message(self) -> str:
        return (
            f"{self.record_count} records processed in {self.elapsed_seconds:.3f}s "
            f"[Speed = {self.speed} rec/sec]!"
        )


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Emitted once when a job run ends."""

    job_name: str
    success: bool
    stop_reason: StopReason
    rounds: int
    total_processed: int
    total_failed: int
    elapsed_seconds: float

    @property
    def speed(self) -> float:
        return records_per_second(self.elapsed_seconds, self.total_processed)

    def message(self) -> str:
        return (
            f"Total = {self.total_processed} records processed in {self.elapsed_seconds:.3f}s "
            f"[Speed = {self.speed} rec/sec] (Reason: {self.stop_reason.value})"
        )
