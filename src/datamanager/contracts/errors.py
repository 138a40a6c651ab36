# src/datamanager/contracts/errors.py
"""Error taxonomy.

Transient remote faults are retried after a backoff sleep. Any other
exception raised while processing a record is a permanent per-record
failure. Fatal setup faults abort the whole run.
"""

from __future__ import annotations

from datetime import datetime


class DataManagerError(Exception):
    """Base class for errors raised by datamanager itself.

    Attributes:
        retry_budget_exhausted: Set when a connection gave up retrying this
            error; callers treat it as permanent instead of retrying again
    """

    retry_budget_exhausted: bool = False


class ServiceFault(DataManagerError):
    """Fault reported by the remote data service.

    Attributes:
        code: Service error code (negative HRESULT-style integers)
        activity_id: Server-side correlation id, when provided
        trace_text: Server-side trace, when provided
        timestamp: When the service raised the fault
        status_code: HTTP status for faults coming from a web transport
    """

    def __init__(
        self,
        code: int,
        message: str,
        *,
        activity_id: str | None = None,
        trace_text: str | None = None,
        timestamp: datetime | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.activity_id = activity_id
        self.trace_text = trace_text
        self.timestamp = timestamp
        self.status_code = status_code

    def details(self) -> dict[str, str]:
        """Structured fields for failure logging."""
        return {
            "fault.activity_id": str(self.activity_id),
            "fault.error_code": str(self.code),
            "fault.message": self.message,
            "fault.timestamp": str(self.timestamp),
            "fault.trace_text": str(self.trace_text),
        }


class AuthenticationExpiredError(DataManagerError):
    """Session token expired, was rejected, or negotiation failed.

    Handled by reconnecting the connection before the next attempt.
    """


class ConnectionEstablishmentError(DataManagerError):
    """A session to the remote service could not be opened."""


class FatalSetupError(DataManagerError):
    """Setup failed; the whole run is aborted."""


class CheckpointWriteTimeout(DataManagerError):
    """The checkpoint log lock could not be acquired in time."""

    def __init__(self, path: str, timeout_ms: int) -> None:
        super().__init__(f"Timeout ({timeout_ms}ms) reached while trying to write to file! (Path : {path})")
        self.path = path
        self.timeout_ms = timeout_ms


class UnknownJobError(FatalSetupError):
    """Requested job name is not in the registry."""

    def __init__(self, name: str, available: list[str]) -> None:
        super().__init__(f"Unknown job '{name}'. Available jobs: {', '.join(sorted(available)) or '(none)'}")
        self.name = name
        self.available = available
