# src/datamanager/engine/workers.py
"""Worker pool for one processing round.

Runs a fixed number of worker threads over a shared queue of work items:
- Each worker opens exactly one connection from the pool for the round
  and disposes it once the queue is drained
- Transient faults are retried in place after a backoff sleep
- Any other exception is logged and counted; it never stops the pool
- Aggregate counters are updated under a lock
"""

from __future__ import annotations

import queue
import random
import time
from collections.abc import Callable, Collection, Sequence
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import TYPE_CHECKING, TypeVar

from datamanager.contracts.enums import ExecutionOutcome
from datamanager.contracts.errors import ServiceFault
from datamanager.contracts.records import Record
from datamanager.contracts.run import RoundCounters
from datamanager.engine.context import ExecutionContext
from datamanager.engine.transient import BackoffPolicy, apply_backoff, is_retry_budget_exhausted, is_transient

if TYPE_CHECKING:
    from datamanager.clients.pool import ConnectionPool
    from datamanager.clients.proxy import ManagedConnection
    from datamanager.core.checkpoint import CheckpointLog
    from datamanager.core.config import RetrySettings
    from datamanager.core.logging import JobLogger

T = TypeVar("T")

PROGRESS_INTERVAL = 50

Transformation = Callable[[ExecutionContext], None]


def failure_properties(exc: BaseException, metrics: dict[str, str] | None = None) -> dict[str, str]:
    """Structured fields for a failure line: context metrics plus fault details."""
    properties = dict(metrics or {})
    if isinstance(exc, ServiceFault):
        properties.update(exc.details())
    return properties


class RoundExecutor:
    """Runs one round of parallel work with per-worker connections.

    Usage:
        executor = RoundExecutor(pool, logger, thread_count=10, retry=settings.retry)
        counters = executor.process_records(records, job.process_record, checkpoint=log)
    """

    def __init__(
        self,
        pool: ConnectionPool,
        logger: JobLogger,
        *,
        thread_count: int,
        retry: RetrySettings,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        progress_interval: int = PROGRESS_INTERVAL,
    ) -> None:
        if thread_count < 1:
            raise ValueError(f"thread_count must be >= 1, got {thread_count}")
        self._pool = pool
        self._logger = logger
        self._thread_count = thread_count
        self._max_attempts = retry.transient_max_attempts
        self._policy = BackoffPolicy.from_settings(retry)
        self._sleep = sleep
        self._rng = rng
        self._progress_interval = progress_interval
        self._lock = Lock()
        self._counters = RoundCounters()
        self._started = 0
        self._total = 0

    @property
    def thread_count(self) -> int:
        return self._thread_count

    def retry_in_place(self, operation: Callable[[], None]) -> None:
        """Run operation, sleeping and retrying while it raises transient faults.

        The last error is re-raised once transient_max_attempts tries are
        spent. Non-transient errors propagate immediately, as do transient
        faults a connection already gave up retrying.
        """
        attempt = 1
        while True:
            try:
                operation()
                return
            except Exception as exc:
                if not is_transient(exc) or is_retry_budget_exhausted(exc) or attempt >= self._max_attempts:
                    raise
                with self._lock:
                    self._counters.transient_retries += 1
                apply_backoff(self._policy, self._logger, exc, sleep=self._sleep, rng=self._rng)
                attempt += 1

    def execute(
        self,
        items: Sequence[T],
        handle: Callable[[ManagedConnection, T], ExecutionOutcome],
    ) -> RoundCounters:
        """Hand every item to handle() on the worker pool and wait for the round.

        handle() must not raise: it returns the item's outcome. An item is
        only left unprocessed (counted as abandoned) when no worker could
        open a connection.
        """
        self._counters = RoundCounters(retrieved=len(items))
        self._started = 0
        self._total = len(items)
        if not items:
            return self._counters

        work: queue.SimpleQueue[T] = queue.SimpleQueue()
        for item in items:
            work.put(item)

        workers = min(self._thread_count, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="datamanager-worker") as executor:
            futures = [executor.submit(self._worker, work, handle) for _ in range(workers)]
            for future in futures:
                future.result()

        abandoned = work.qsize()
        if abandoned:
            self._logger.log_failure(
                RuntimeError(f"{abandoned} records were not processed: no worker connection available"),
            )
            self._counters.abandoned += abandoned
        return self._counters

    def _worker(self, work: queue.SimpleQueue[T], handle: Callable[[ManagedConnection, T], ExecutionOutcome]) -> None:
        try:
            connection = self._pool.acquire_worker_connection()
        except Exception as exc:
            self._logger.log_failure(exc, properties={"stage": "worker_connection"})
            return

        with connection:
            while True:
                try:
                    item = work.get_nowait()
                except queue.Empty:
                    return
                self._tick()
                try:
                    outcome = handle(connection, item)
                except Exception as exc:
                    self._logger.log_failure(exc)
                    outcome = ExecutionOutcome.FAILED
                with self._lock:
                    self._counters.record(outcome)

    def _tick(self) -> None:
        with self._lock:
            self._started += 1
            position = self._started
        if position % self._progress_interval == 0:
            self._logger.log_information(f"Processing record {position} / {self._total}")

    def process_records(
        self,
        records: Sequence[Record],
        transform: Transformation,
        *,
        skip: Collection[str] = frozenset(),
        checkpoint: CheckpointLog | None = None,
    ) -> RoundCounters:
        """Apply transform to every record of the round.

        Records whose id is in skip are counted as SKIPPED without calling
        transform. On success the id is appended to checkpoint (when given).
        A checkpoint write that times out makes the record a failure; it
        is not checkpointed and the round goes on.
        """

        def handle(connection: ManagedConnection, record: Record) -> ExecutionOutcome:
            if record.id in skip:
                self._logger.log_verbose("Record already processed, skipping", record_id=record.id)
                return ExecutionOutcome.SKIPPED

            context = ExecutionContext(connection, record)
            try:
                with context.measure("process"):
                    self.retry_in_place(lambda: transform(context))
                if checkpoint is not None:
                    checkpoint.write(record.id)
            except Exception as exc:
                self._logger.log_failure(exc, record, failure_properties(exc, context.metrics))
                return ExecutionOutcome.TRANSIENT_EXHAUSTED if is_transient(exc) else ExecutionOutcome.FAILED

            self._logger.log_success("Record processed with success!", record, context.metrics)
            return ExecutionOutcome.SUCCESS

        return self.execute(records, handle)
