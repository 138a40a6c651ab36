# src/datamanager/engine/processor.py
"""Job processor: bootstraps the connection pool and runs jobs in sequence."""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import TYPE_CHECKING

from datamanager.clients.pool import ConnectionPool
from datamanager.contracts.enums import JobMode
from datamanager.contracts.errors import FatalSetupError
from datamanager.contracts.events import RunSummary
from datamanager.contracts.run import JobRunContext, RunResult
from datamanager.core.identifiers import context_properties, generate_run_id
from datamanager.core.logging import JobLogger
from datamanager.engine.clock import DEFAULT_CLOCK, Clock
from datamanager.engine.runner import BoundedScanRunner, InputFileRunner, IterativeDrainRunner, JobRunner

if TYPE_CHECKING:
    from datamanager.clients.base import RemoteServiceFactory
    from datamanager.core.config import JobSettings
    from datamanager.jobs.base import DataJob
    from datamanager.jobs.registry import JobRegistry

_RUNNERS: dict[JobMode, type[JobRunner]] = {
    JobMode.BOUNDED_SCAN: BoundedScanRunner,
    JobMode.ITERATIVE_DRAIN: IterativeDrainRunner,
    JobMode.INPUT_FILE: InputFileRunner,
}


class JobProcessor:
    """Runs jobs against one remote service.

    The processor owns the connection pool for the whole process: the
    main connection is opened once, before the first job, and reused by
    every job for bootstrap, pre/post operations and retrieval.

    Example:
        processor = JobProcessor(settings, WebApiServiceFactory(settings.connection))
        ok = processor.run(["delete-records"], registry)
    """

    def __init__(
        self,
        settings: JobSettings,
        factory: RemoteServiceFactory,
        *,
        logger: JobLogger | None = None,
        transport_tuning: Callable[[], None] | None = None,
        clock: Clock = DEFAULT_CLOCK,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings
        self.run_id = settings.run_id or generate_run_id()
        self.logger = logger or JobLogger(
            settings.logging.level,
            context=context_properties(self.run_id, organization_name=settings.organization_name),
        )
        self.pool = ConnectionPool(
            factory,
            self.logger,
            settings.retry,
            transport_tuning=transport_tuning,
            sleep=sleep,
        )
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

    def build_run_context(self, job: DataJob) -> JobRunContext:
        return JobRunContext(
            run_id=self.run_id,
            job_name=job.display_name,
            mode=job.mode,
            thread_count=job.thread_count(),
            page_size=self.settings.process.query_record_limit,
            max_run_duration=timedelta(hours=self.settings.process.max_run_duration_hours),
        )

    def build_runner(self, job: DataJob, logger: JobLogger) -> JobRunner:
        runner_cls = _RUNNERS[job.mode]
        return runner_cls(
            self.pool,
            logger,
            self.build_run_context(job),
            self.settings,
            clock=self._clock,
            sleep=self._sleep,
            rng=self._rng,
        )

    def run_job(self, job: DataJob) -> RunResult | None:
        """Run one job with its pre and post operations.

        Returns:
            The run result, or None when the job is disabled

        Raises:
            FatalSetupError: No main connection, or the job may not run
                against a production instance
        """
        job_logger = self.logger.bind(job_name=job.display_name)
        if not job.is_enabled:
            job_logger.log_information(f"Job '{job.display_name}' is disabled, skipping")
            return None
        if self.settings.production and not job.allowed_in_production:
            raise FatalSetupError(f"Job '{job.display_name}' is not allowed to run in production")

        main = self.pool.acquire_main_connection()
        job_logger.log_information(
            f"Job '{job.display_name}' started",
            mode=job.mode.value,
            thread_count=job.thread_count(),
        )
        try:
            job.pre_operation(main)
            result = self.build_runner(job, job_logger).run(job)
            job.post_operation(main)
        except Exception as exc:
            job_logger.log_failure(exc, properties={"stage": "job"})
            job_logger.log_information(f"Job failed : {job.display_name} => Catastrophic error : {exc}!")
            raise

        job_logger.log_run_summary(
            RunSummary(
                job_name=job.display_name,
                success=result.success,
                stop_reason=result.stop_reason,
                rounds=result.rounds,
                total_processed=result.totals.attempted,
                total_failed=result.totals.failures,
                elapsed_seconds=result.elapsed_seconds,
            )
        )
        return result

    def run(self, job_names: Sequence[str], registry: JobRegistry) -> bool:
        """Run the named jobs in order.

        Unknown names are fatal before anything runs. Returns True when
        every enabled job reported success.
        """
        jobs = [registry.create(name, self.settings) for name in job_names]
        self.logger.log_information("Run started", jobs=[job.display_name for job in jobs])
        ok = True
        try:
            for job in jobs:
                result = self.run_job(job)
                if result is not None and not result.success:
                    ok = False
        finally:
            self.pool.close()
        return ok
