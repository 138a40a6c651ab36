# src/datamanager/engine/runner.py
"""Job runners: one per execution mode.

A runner drives a single job run on the coordinator thread. Retrieval
goes through the main connection; records are processed by a
RoundExecutor whose workers own their own connections.
"""

from __future__ import annotations

import random
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING

from datamanager.contracts.enums import ExecutionOutcome, StopReason
from datamanager.contracts.events import RoundCompleted
from datamanager.contracts.run import RoundCounters, RunResult
from datamanager.core.checkpoint import CheckpointLog
from datamanager.engine.clock import DEFAULT_CLOCK, Clock
from datamanager.engine.context import ExecutionContext
from datamanager.engine.retrieval import retrieve_all, retrieve_page
from datamanager.engine.stop_conditions import RoundObservation, evaluate_round, is_drained
from datamanager.engine.transient import is_transient
from datamanager.engine.workers import RoundExecutor, failure_properties

if TYPE_CHECKING:
    from datamanager.clients.pool import ConnectionPool
    from datamanager.clients.proxy import ManagedConnection
    from datamanager.contracts.records import Record
    from datamanager.contracts.run import JobRunContext
    from datamanager.core.config import JobSettings
    from datamanager.core.logging import JobLogger
    from datamanager.jobs.base import BoundedScanJob, DataJob, InputFileJob, IterativeDrainJob

PIVOT_MARKER = "#PVT-TAG#"


class JobRunner(ABC):
    """Shared wiring of the three runners."""

    def __init__(
        self,
        pool: ConnectionPool,
        logger: JobLogger,
        run_context: JobRunContext,
        settings: JobSettings,
        *,
        clock: Clock = DEFAULT_CLOCK,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._pool = pool
        self._logger = logger
        self._run_context = run_context
        self._settings = settings
        self._clock = clock
        self._sleep = sleep
        self._executor = RoundExecutor(
            pool,
            logger,
            thread_count=run_context.thread_count,
            retry=settings.retry,
            sleep=sleep,
            rng=rng,
        )

    @property
    def executor(self) -> RoundExecutor:
        return self._executor

    @abstractmethod
    def run(self, job: DataJob) -> RunResult: ...

    def _log_round(self, round_number: int, record_count: int, counters: RoundCounters, elapsed: float) -> None:
        self._logger.log_round(
            RoundCompleted(
                round_number=round_number,
                record_count=record_count,
                succeeded=counters.succeeded,
                failed=counters.failures,
                skipped=counters.skipped,
                elapsed_seconds=elapsed,
            )
        )


class BoundedScanRunner(JobRunner):
    """Process a full paginated snapshot once, resumable through a checkpoint log.

    States: loading checkpoint -> retrieving (paged) -> processing -> finalizing.
    The checkpoint log is deleted only when every retrieved record was
    attempted in this run; records skipped because of the log count as
    attempted.
    """

    def run(self, job: BoundedScanJob) -> RunResult:  # type: ignore[override]
        start = self._clock.monotonic()
        checkpoint = CheckpointLog(job.checkpoint_path(), lock_timeout_ms=self._settings.checkpoint.lock_timeout_ms)
        if checkpoint.exists():
            processed = checkpoint.load_processed()
            self._logger.log_information(
                f"Resuming from checkpoint: {len(processed)} records already processed",
                checkpoint=str(checkpoint.path),
            )
        else:
            checkpoint.create()
            processed = set()

        main = self._pool.acquire_main_connection()
        query = job.get_query(main.caller_id or "")
        records = retrieve_all(
            main,
            query,
            self._run_context.page_size,
            settings=self._settings.retry,
            logger=self._logger,
            sleep=self._sleep,
        )
        self._logger.log_information(f"Retrieved {len(records)} records", entity_name=query.entity_name)
        records = job.prepare_data(records)

        round_start = self._clock.monotonic()
        counters = self._executor.process_records(records, job.process_record, skip=processed, checkpoint=checkpoint)
        self._log_round(1, len(records), counters, self._clock.monotonic() - round_start)

        if counters.attempted == len(records):
            checkpoint.delete()
        else:
            self._logger.log_information(
                f"Checkpoint kept: {len(records) - counters.attempted} records were not attempted",
                checkpoint=str(checkpoint.path),
            )

        return RunResult(
            success=True,
            stop_reason=StopReason.COMPLETED,
            rounds=1,
            totals=counters,
            elapsed_seconds=self._clock.monotonic() - start,
        )


class IterativeDrainRunner(JobRunner):
    """Requery and process capped pages until a stop rule fires.

    After each round the stop rules run in order: stagnation (success),
    duration budget (success, partial), all records failed (failure). A
    retrieval that comes back empty ends the run as drained (success).
    rounds in the result counts retrievals, the final empty one included.
    """

    def run(self, job: IterativeDrainJob) -> RunResult:  # type: ignore[override]
        start = self._clock.monotonic()
        limit = self._run_context.page_size
        max_duration = self._run_context.max_run_duration
        totals = RoundCounters()

        main = self._pool.acquire_main_connection()
        query = job.get_query(main.caller_id or "")

        last_count = limit
        rounds = 0
        while True:
            records = retrieve_page(main, query, limit, settings=self._settings.retry, logger=self._logger, sleep=self._sleep)
            rounds += 1
            current_count = len(records)
            self._logger.log_information(f"Retrieved {current_count} records", round_number=rounds)
            if is_drained(current_count):
                stop_reason, success = StopReason.DRAINED, True
                break

            records = job.prepare_data(records)
            round_start = self._clock.monotonic()
            counters = self._executor.process_records(records, job.process_record)
            self._log_round(rounds, len(records), counters, self._clock.monotonic() - round_start)
            totals.merge(counters)

            decision = evaluate_round(
                RoundObservation(
                    last_count=last_count,
                    current_count=current_count,
                    processed_count=len(records),
                    page_limit=limit,
                    failures=counters.failures,
                    elapsed=timedelta(seconds=self._clock.monotonic() - start),
                    max_duration=max_duration,
                )
            )
            if decision is not None:
                stop_reason, success = decision.reason, decision.success
                break
            last_count = current_count

        return RunResult(
            success=success,
            stop_reason=stop_reason,
            rounds=rounds,
            totals=totals,
            elapsed_seconds=self._clock.monotonic() - start,
        )


def _single_line(text: str) -> str:
    return " ".join(text.split())


class InputFileRunner(JobRunner):
    """Process the lines of a delimited input file.

    Every handled line is appended to the pivot file as
    '<line><sep>#PVT-TAG#<sep><record id><sep>OK|KO<sep><details>'. A
    rerun skips the input lines already present in the pivot file.
    """

    def run(self, job: InputFileJob) -> RunResult:  # type: ignore[override]
        start = self._clock.monotonic()
        input_path = job.input_file_path()
        sep = job.separators[0]
        split_pattern = re.compile("|".join(re.escape(s) for s in job.separators))

        with input_path.open("r", encoding="utf-8-sig") as f:
            lines = [line.rstrip("\r\n") for line in f]
        if not lines:
            self._logger.log_information(f"Input file {input_path} is empty")
            return RunResult(success=True, stop_reason=StopReason.COMPLETED, rounds=1)
        header, body = lines[0], [line for line in lines[1:] if line.strip()]
        self._logger.log_information(f"Retrieved {len(body)} lines from file {input_path}")

        pivot = CheckpointLog(job.pivot_file_path(), lock_timeout_ms=self._settings.checkpoint.lock_timeout_ms)
        done: set[str] = set()
        if pivot.exists():
            marker = f"{sep}{PIVOT_MARKER}"
            done = {entry.split(marker, 1)[0] for entry in pivot.read_all()[1:] if marker in entry}
            self._logger.log_information(f"Resuming from pivot file: {len(done)} lines already handled", pivot=str(pivot.path))
        else:
            pivot.create()
            pivot.write(sep.join([header, PIVOT_MARKER, "RecordId", "Outcome", "Details"]))

        todo = [line for line in body if line not in done]

        def handle(connection: ManagedConnection, line: str) -> ExecutionOutcome:
            line_data = [part for part in split_pattern.split(line) if part]
            record: Record | None = None
            context: ExecutionContext | None = None
            try:
                record = job.search_record(connection, line_data)
                context = ExecutionContext(connection, record)
                bound = context
                self._executor.retry_in_place(lambda: job.process_line(bound, line_data))
            except Exception as exc:
                metrics = context.metrics if context is not None else None
                self._logger.log_failure(exc, record, failure_properties(exc, metrics))
                record_id = record.id if record is not None else ""
                outcome = ExecutionOutcome.TRANSIENT_EXHAUSTED if is_transient(exc) else ExecutionOutcome.FAILED
                pivot_line = sep.join([line, PIVOT_MARKER, record_id, "KO", _single_line(str(exc))])
            else:
                self._logger.log_success("Record processed with success!", record, context.metrics)
                outcome = ExecutionOutcome.SUCCESS
                pivot_line = sep.join([line, PIVOT_MARKER, record.id, "OK", "Success"])

            try:
                pivot.write(pivot_line)
            except Exception as exc:
                self._logger.log_failure(exc, record)
                return ExecutionOutcome.FAILED
            return outcome

        round_start = self._clock.monotonic()
        counters = self._executor.execute(todo, handle)
        counters.skipped += len(body) - len(todo)
        self._log_round(1, len(body), counters, self._clock.monotonic() - round_start)

        return RunResult(
            success=True,
            stop_reason=StopReason.COMPLETED,
            rounds=1,
            totals=counters,
            elapsed_seconds=self._clock.monotonic() - start,
        )
