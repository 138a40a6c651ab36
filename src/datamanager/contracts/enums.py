"""Status codes, modes and levels used across subsystem boundaries."""

from enum import IntEnum, StrEnum


class JobMode(StrEnum):
    """Execution strategy of a job."""

    BOUNDED_SCAN = "bounded_scan"
    ITERATIVE_DRAIN = "iterative_drain"
    INPUT_FILE = "input_file"


class ExecutionOutcome(StrEnum):
    """Per-record result. Used for counters and logging, never persisted."""

    SUCCESS = "success"
    SKIPPED = "skipped"  # already present in the checkpoint log
    TRANSIENT_EXHAUSTED = "transient_exhausted"
    FAILED = "failed"

    @property
    def is_failure(self) -> bool:
        return self in (ExecutionOutcome.TRANSIENT_EXHAUSTED, ExecutionOutcome.FAILED)


class StopReason(StrEnum):
    """Why a run ended."""

    COMPLETED = "completed"  # bounded scan finished its snapshot
    STAGNATION = "stagnation"
    MAX_DURATION = "max_duration"
    ALL_FAILED = "all_failed"
    DRAINED = "drained"


class LogLevel(IntEnum):
    """Operator-facing verbosity.

    Higher values are quieter. Failures are emitted at every level.
    """

    VERBOSE = 0
    INFORMATION = 1
    ERRORS_AND_SUCCESS = 2
    ERRORS_ONLY = 3


class AuthType(StrEnum):
    """Authentication modes of the remote service.

    Only token-based modes can share their session with clones.
    """

    OAUTH = "oauth"
    CLIENT_SECRET = "client_secret"
    CERTIFICATE = "certificate"
    OFFICE365 = "office365"

    @property
    def supports_clone(self) -> bool:
        return self is not AuthType.OFFICE365
