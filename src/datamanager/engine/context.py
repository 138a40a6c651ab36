# src/datamanager/engine/context.py
"""Per-record execution context handed to job transformations."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from datamanager.contracts.records import OptionSetValue, Record, RecordReference

if TYPE_CHECKING:
    from datamanager.clients.proxy import ManagedConnection


class ExecutionContext:
    """Bundles the worker's connection, the current record and a metrics map.

    The metrics map is the structured context attached to the success or
    failure line logged for the record. It is seeded with the connection's
    identity and the record's attribute values; jobs add their own keys
    with push_metric().

    Attributes:
        connection: Connection owned by the current worker for this round
        record: Record being processed (None for connection-only contexts)
    """

    def __init__(self, connection: ManagedConnection, record: Record | None = None) -> None:
        self.connection = connection
        self.record = record
        self._metrics: dict[str, str] = {}
        self.push_connection_metrics()
        if record is not None:
            self.push_record_to_metrics(record)

    @property
    def metrics(self) -> dict[str, str]:
        """Snapshot of the collected metrics."""
        return dict(self._metrics)

    def push_metric(self, key: str, value: Any) -> None:
        """Set one metric. A later value for the same key replaces the earlier one."""
        self._metrics[key] = str(value)

    def push_metrics(self, properties: dict[str, Any]) -> None:
        for key, value in properties.items():
            self.push_metric(key, value)

    def push_record_to_metrics(self, record: Record) -> None:
        """Copy record attributes into the metrics map.

        Formatted values win over raw ones. Raw lookups and choice values
        without a formatted value carry no readable information and are
        left out.
        """
        for key, value in record.attributes.items():
            if key in record.formatted_values:
                self.push_metric(f"record.{key}", record.formatted_values[key])
                continue
            if isinstance(value, (RecordReference, OptionSetValue)):
                continue
            self.push_metric(f"record.{key}", value)

    def push_connection_metrics(self) -> None:
        connection = self.connection
        self.push_metric("connection.caller_id", connection.caller_id)
        self.push_metric("connection.auth_type", connection.auth_type)
        self.push_metric("connection.url", connection.endpoint_url)
        self.push_metric("connection.organization_name", connection.organization_name)

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        """Record how long the block took as '<name>.duration_ms'."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.push_metric(f"{name}.duration_ms", round((time.perf_counter() - start) * 1000, 3))
