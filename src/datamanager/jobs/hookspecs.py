# src/datamanager/jobs/hookspecs.py
"""pluggy hook specifications for job packages.

Job packages register their jobs by implementing datamanager_get_jobs and
exposing the implementation under the "datamanager" entry point group.

Usage (implementing a job package):
    from datamanager.jobs.hookspecs import hookimpl

    class MyJobs:
        @hookimpl
        def datamanager_get_jobs(self):
            return {"close-old-cases": CloseOldCasesJob}
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from datamanager.jobs.registry import JobFactory

PROJECT_NAME = "datamanager"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class DataManagerJobSpec:
    """Hook specifications for job providers."""

    @hookspec
    def datamanager_get_jobs(self) -> dict[str, "JobFactory"]:  # type: ignore[empty-body]
        """Return job factories keyed by job name.

        A factory takes the JobSettings and returns a DataJob; job classes
        themselves qualify.
        """
