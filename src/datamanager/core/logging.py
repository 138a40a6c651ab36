# src/datamanager/core/logging.py
"""Structured logging configuration and the injected job logger.

Uses structlog for structured logging. configure_logging() sets up BOTH
structlog and stdlib logging so that modules using
logging.getLogger(__name__) produce the same output format as modules
using structlog.get_logger().

Engine code never reaches for a process-wide logger: it receives a
JobLogger built once per run and bound with the run context.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

from datamanager.contracts.enums import LogLevel
from datamanager.contracts.events import RoundCompleted, RunSummary
from datamanager.contracts.records import Record

# Third-party loggers that emit connection-level noise at DEBUG.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "urllib3",
    "urllib3.connectionpool",
)

_STDLIB_LEVELS: dict[LogLevel, int] = {
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.INFORMATION: logging.INFO,
    LogLevel.ERRORS_AND_SUCCESS: logging.INFO,
    LogLevel.ERRORS_ONLY: logging.INFO,
}


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove internal structlog fields from output.

    ProcessorFormatter always adds _record and _from_structlog when
    processing log records.
    """
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: LogLevel = LogLevel.INFORMATION,
    log_file: Path | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Operator log level; VERBOSE enables DEBUG output.
        log_file: Optional file that receives the same records (JSON lines).
    """
    log_level = _STDLIB_LEVELS[level]

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    json_processors: list[Any] = [
        _remove_internal_fields,
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]
    if json_output:
        final_processors = json_processors
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure logging; cached loggers would go stale
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(ProcessorFormatter(processors=json_processors, foreign_pre_chain=shared_processors))
        root.addHandler(file_handler)

    root.setLevel(log_level)

    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


def _record_fields(record: Record | None) -> dict[str, str]:
    if record is None:
        return {"record_id": "N/A", "record_type": "N/A"}
    return {"record_id": record.id, "record_type": record.logical_name}


class JobLogger:
    """Leveled message/event/exception sink with structured context.

    Level semantics (quietest last):
    - VERBOSE: everything, including per-record debug messages
    - INFORMATION: progress messages, success events and failures
    - ERRORS_AND_SUCCESS: success events and failures
    - ERRORS_ONLY: failures

    Failures and exceptions are emitted at every level.

    Example:
        logger = JobLogger(LogLevel.INFORMATION, context=context_properties(run_id))
        job_logger = logger.bind(job_name="Remove plugin traces")
        job_logger.log_information("Retrieved 2500 records")
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFORMATION,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self._level = level
        base = logger if logger is not None else get_logger("datamanager")
        self._logger = base.bind(**context) if context else base

    @property
    def level(self) -> LogLevel:
        return self._level

    def bind(self, **context: Any) -> JobLogger:
        """Return a logger with extra context bound to every line."""
        return JobLogger(self._level, logger=self._logger.bind(**context))

    def log_verbose(self, message: str, **properties: Any) -> None:
        if self._level > LogLevel.VERBOSE:
            return
        self._logger.debug(message, **properties)

    def log_information(self, message: str, **properties: Any) -> None:
        if self._level > LogLevel.INFORMATION:
            return
        self._logger.info(message, **properties)

    def log_event(self, name: str, properties: dict[str, Any] | None = None) -> None:
        """Named custom event (success-class visibility)."""
        if self._level > LogLevel.ERRORS_AND_SUCCESS:
            return
        self._logger.info(name, custom_event=True, **(properties or {}))

    def log_success(self, message: str, record: Record | None, properties: dict[str, Any] | None = None) -> None:
        if self._level > LogLevel.ERRORS_AND_SUCCESS:
            return
        fields = {**_record_fields(record), **(properties or {})}
        self._logger.info(message, outcome="success", **fields)

    def log_failure(
        self,
        exc: BaseException,
        record: Record | None = None,
        properties: dict[str, Any] | None = None,
    ) -> None:
        fields = {**_record_fields(record), **(properties or {})}
        self._logger.error(
            "Failure",
            outcome="failure",
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
            **fields,
        )

    def log_exception(self, exc: BaseException, properties: dict[str, Any] | None = None) -> None:
        self._logger.error(
            "Exception",
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
            **(properties or {}),
        )

    def log_round(self, event: RoundCompleted) -> None:
        self.log_information(
            event.message(),
            round_number=event.round_number,
            record_count=event.record_count,
            succeeded=event.succeeded,
            failed=event.failed,
            skipped=event.skipped,
            elapsed_seconds=round(event.elapsed_seconds, 3),
            records_per_second=event.speed,
        )

    def log_run_summary(self, event: RunSummary) -> None:
        self.log_information(
            event.message(),
            success=event.success,
            stop_reason=event.stop_reason.value,
            rounds=event.rounds,
            total_processed=event.total_processed,
            total_failed=event.total_failed,
            elapsed_seconds=round(event.elapsed_seconds, 3),
            records_per_second=event.speed,
        )
