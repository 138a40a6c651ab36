# src/datamanager/jobs/base.py
"""Base classes for data jobs.

A job says WHAT to do: which records to select and what to do with each
one. The engine decides HOW (pagination, parallelism, retries,
checkpointing) from the job's mode.

Subclass one of:
- BoundedScanJob: process a fixed, paginated snapshot exactly once
- IterativeDrainJob: requery until the selection is empty; use it when
  processing removes a record from the selection (deletes, status flips)
- InputFileJob: process the lines of a delimited input file
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from datamanager.contracts.enums import JobMode
from datamanager.core.identifiers import checkpoint_path_for, pivot_path_for

if TYPE_CHECKING:
    from datamanager.clients.proxy import ManagedConnection
    from datamanager.contracts.records import Query, Record
    from datamanager.core.config import JobSettings
    from datamanager.engine.context import ExecutionContext


class DataJob(ABC):
    """Common lifecycle of every job.

    Attributes:
        name: Registry name used on the command line
        mode: Execution strategy picked by the engine
        override_thread_number: Forces a worker count for this job (1 for
            operations that are unsafe to parallelize)
    """

    name: ClassVar[str] = ""
    mode: ClassVar[JobMode]
    override_thread_number: ClassVar[int | None] = None

    def __init__(self, settings: JobSettings) -> None:
        self.settings = settings

    @property
    def display_name(self) -> str:
        """Name used in traces."""
        return self.name or type(self).__name__

    @property
    def type_name(self) -> str:
        """Stable identifier for files derived from the job (checkpoint, pivot)."""
        return type(self).__name__

    @property
    def is_enabled(self) -> bool:
        return True

    @property
    def allowed_in_production(self) -> bool:
        return False

    def thread_count(self) -> int:
        if self.override_thread_number is not None:
            return self.override_thread_number
        return self.settings.process.thread_number

    def pre_operation(self, connection: ManagedConnection) -> None:
        """Hook run on the main connection before the job starts."""

    def post_operation(self, connection: ManagedConnection) -> None:
        """Hook run on the main connection after the job ended."""


class QueryJob(DataJob):
    """Job driven by a selection query."""

    @abstractmethod
    def get_query(self, caller_id: str) -> Query:
        """Selection criterion, built once per invocation."""

    @abstractmethod
    def process_record(self, context: ExecutionContext) -> None:
        """Transformation applied to one record. Raise to signal a failure."""

    def prepare_data(self, records: list[Record]) -> list[Record]:
        """Filter or reorder retrieved records before processing."""
        return records


class BoundedScanJob(QueryJob):
    mode = JobMode.BOUNDED_SCAN

    def checkpoint_path(self) -> Path:
        return checkpoint_path_for(self.type_name, self.settings.checkpoint.directory)


class IterativeDrainJob(QueryJob):
    mode = JobMode.ITERATIVE_DRAIN


class InputFileJob(DataJob):
    """Job reading its work from a delimited text file.

    The first line of the input file is a header. Progress and outcome of
    every line go to a pivot file next to the checkpoint files; a rerun
    skips the lines the pivot file already reports.
    """

    mode = JobMode.INPUT_FILE
    separators: ClassVar[tuple[str, ...]] = (",", ";")

    @abstractmethod
    def input_file_path(self) -> Path: ...

    def pivot_file_path(self) -> Path:
        return pivot_path_for(self.type_name, self.settings.checkpoint.directory)

    @abstractmethod
    def search_record(self, connection: ManagedConnection, line_data: list[str]) -> Record:
        """Resolve the record a line refers to."""

    @abstractmethod
    def process_line(self, context: ExecutionContext, line_data: list[str]) -> None:
        """Transformation applied to the record resolved for one line."""
