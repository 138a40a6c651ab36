"""Job execution engine: retry, retrieval, worker rounds and runners.

JobProcessor lives in datamanager.engine.processor; it depends on the
clients package, which itself imports the retry helpers from here.
"""

from datamanager.engine.clock import Clock, MockClock, SystemClock
from datamanager.engine.context import ExecutionContext
from datamanager.engine.runner import BoundedScanRunner, InputFileRunner, IterativeDrainRunner, JobRunner
from datamanager.engine.transient import BackoffPolicy, apply_backoff, call_with_transient_retry, is_transient
from datamanager.engine.workers import RoundExecutor

__all__ = [
    "BackoffPolicy",
    "BoundedScanRunner",
    "Clock",
    "ExecutionContext",
    "InputFileRunner",
    "IterativeDrainRunner",
    "JobRunner",
    "MockClock",
    "RoundExecutor",
    "SystemClock",
    "apply_backoff",
    "call_with_transient_retry",
    "is_transient",
]
