"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to
core/engine/clients. Settings models are NOT re-exported here - import them
from datamanager.core.config.
"""

from datamanager.contracts.enums import (
    AuthType,
    ExecutionOutcome,
    JobMode,
    LogLevel,
    StopReason,
)
from datamanager.contracts.errors import (
    AuthenticationExpiredError,
    CheckpointWriteTimeout,
    ConnectionEstablishmentError,
    DataManagerError,
    FatalSetupError,
    ServiceFault,
    UnknownJobError,
)
from datamanager.contracts.events import RoundCompleted, RunSummary, records_per_second
from datamanager.contracts.records import (
    Condition,
    ConditionOperator,
    OptionSetValue,
    Order,
    Query,
    Record,
    RecordPage,
    RecordReference,
)
from datamanager.contracts.run import JobRunContext, RoundCounters, RunResult

__all__ = [
    "AuthType",
    "AuthenticationExpiredError",
    "CheckpointWriteTimeout",
    "Condition",
    "ConditionOperator",
    "ConnectionEstablishmentError",
    "DataManagerError",
    "ExecutionOutcome",
    "FatalSetupError",
    "JobMode",
    "JobRunContext",
    "LogLevel",
    "OptionSetValue",
    "Order",
    "Query",
    "Record",
    "RecordPage",
    "RecordReference",
    "RoundCompleted",
    "RoundCounters",
    "RunResult",
    "RunSummary",
    "ServiceFault",
    "StopReason",
    "UnknownJobError",
    "records_per_second",
]
