"""Job definitions: base classes, registry and built-in jobs."""

from datamanager.jobs.base import BoundedScanJob, DataJob, InputFileJob, IterativeDrainJob, QueryJob
from datamanager.jobs.hookspecs import hookimpl
from datamanager.jobs.registry import JobFactory, JobRegistry

__all__ = [
    "BoundedScanJob",
    "DataJob",
    "InputFileJob",
    "IterativeDrainJob",
    "JobFactory",
    "JobRegistry",
    "QueryJob",
    "hookimpl",
]
