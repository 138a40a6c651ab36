# src/datamanager/jobs/builtin.py
"""Generic maintenance jobs shipped with datamanager.

Parameters come from the job_parameters section of the settings, keyed by
job name:

    job_parameters:
      delete-records:
        entity_name: email
        retention_days: 365
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from datamanager.clients.base import ServiceRequest
from datamanager.contracts.errors import FatalSetupError
from datamanager.contracts.records import ConditionOperator, OptionSetValue, Query, Record
from datamanager.jobs.base import IterativeDrainJob
from datamanager.jobs.hookspecs import hookimpl

if TYPE_CHECKING:
    from datamanager.core.config import JobSettings
    from datamanager.engine.context import ExecutionContext
    from datamanager.jobs.registry import JobFactory


def _parameters(settings: JobSettings, name: str) -> dict[str, Any]:
    return settings.job_parameters.get(name, {})


class DeleteRecordsJob(IterativeDrainJob):
    """Delete records of one type created more than retention_days ago.

    Deletes bypass custom plugin logic on the remote service. Each delete
    removes the record from the selection, hence the drain mode.
    """

    name = "delete-records"

    def __init__(self, settings: JobSettings) -> None:
        super().__init__(settings)
        params = _parameters(settings, self.name)
        entity_name = params.get("entity_name")
        if not entity_name:
            raise FatalSetupError(f"Job '{self.name}' requires job_parameters.{self.name}.entity_name")
        self.entity_name = str(entity_name)
        self.retention_days = int(params.get("retention_days", 30))

    @property
    def display_name(self) -> str:
        return f"{self.entity_name} Deletion Job"

    def get_query(self, caller_id: str) -> Query:
        query = Query(self.entity_name, columns=[])
        query.add_condition("createdon", ConditionOperator.OLDER_THAN_X_DAYS, self.retention_days)
        return query

    def process_record(self, context: ExecutionContext) -> None:
        record = context.record
        assert record is not None
        context.connection.execute(
            ServiceRequest(
                "Delete",
                target=record.to_reference(),
                parameters={"BypassCustomPluginExecution": True},
            )
        )


class RemovePluginTracesJob(IterativeDrainJob):
    name = "remove-plugin-traces"

    @property
    def display_name(self) -> str:
        return "RemovePluginTracesDataJob - Remove plugin logs"

    def get_query(self, caller_id: str) -> Query:
        return Query("plugintracelog", columns=[])

    def process_record(self, context: ExecutionContext) -> None:
        record = context.record
        assert record is not None
        context.connection.delete(record.logical_name, record.id)


class CancelSystemJobsJob(IterativeDrainJob):
    """Cancel system jobs that are not completed, newest first.

    Recurring system jobs are left alone.
    """

    name = "cancel-system-jobs"

    @property
    def display_name(self) -> str:
        return "CancelAsyncTasksDataJob - Cancel in progress system jobs"

    def get_query(self, caller_id: str) -> Query:
        query = Query("asyncoperation", columns=["statecode"])
        query.add_condition("statecode", ConditionOperator.NOT_EQUAL, 3)
        query.add_condition("recurrencepattern", ConditionOperator.NULL)
        query.add_order("createdon", descending=True)
        return query

    def process_record(self, context: ExecutionContext) -> None:
        record = context.record
        assert record is not None
        update = Record(record.logical_name, record.id)
        update["statecode"] = OptionSetValue(3)
        update["statuscode"] = OptionSetValue(32)
        context.connection.update(update)


class BuiltinJobs:
    """Hook implementation registering the built-in jobs."""

    @hookimpl
    def datamanager_get_jobs(self) -> dict[str, JobFactory]:
        return {
            DeleteRecordsJob.name: DeleteRecordsJob,
            RemovePluginTracesJob.name: RemovePluginTracesJob,
            CancelSystemJobsJob.name: CancelSystemJobsJob,
        }
