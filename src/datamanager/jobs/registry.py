# src/datamanager/jobs/registry.py
"""Explicit job registry.

Maps a job name to a factory. Built-in jobs and jobs from installed
packages are contributed through the datamanager_get_jobs hook; tests
and embedding code can add factories directly.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pluggy

from datamanager.contracts.errors import UnknownJobError
from datamanager.jobs.hookspecs import PROJECT_NAME, DataManagerJobSpec

if TYPE_CHECKING:
    from datamanager.core.config import JobSettings
    from datamanager.jobs.base import DataJob

JobFactory = Callable[["JobSettings"], "DataJob"]


class JobRegistry:
    """Job name -> factory lookup.

    Usage:
        registry = JobRegistry()
        registry.register_builtin_jobs()
        job = registry.create("delete-records", settings)
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(DataManagerJobSpec)
        self._explicit: dict[str, JobFactory] = {}
        self._factories: dict[str, JobFactory] = {}

    def register_builtin_jobs(self) -> None:
        from datamanager.jobs import builtin

        self.register(builtin.BuiltinJobs())

    def load_entrypoints(self) -> int:
        """Register job packages installed under the 'datamanager' entry point group."""
        count = self._pm.load_setuptools_entrypoints(PROJECT_NAME)
        self._refresh()
        return count

    def register(self, plugin: Any) -> None:
        """Register a hook implementation (object with datamanager_get_jobs)."""
        self._pm.register(plugin)
        self._refresh()

    def add(self, name: str, factory: JobFactory) -> None:
        if name in self._factories:
            raise ValueError(f"Duplicate job name: '{name}'")
        self._explicit[name] = factory
        self._factories[name] = factory

    def _refresh(self) -> None:
        """Rebuild the lookup from every hook implementation.

        Raises:
            ValueError: If two providers register the same job name
        """
        factories: dict[str, JobFactory] = {}
        for provided in self._pm.hook.datamanager_get_jobs():
            for name, factory in provided.items():
                if name in factories:
                    raise ValueError(f"Duplicate job name: '{name}'")
                factories[name] = factory
        for name, factory in self._explicit.items():
            if name in factories:
                raise ValueError(f"Duplicate job name: '{name}'")
            factories[name] = factory
        self._factories = factories

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def create(self, name: str, settings: JobSettings) -> DataJob:
        """Build the named job.

        Raises:
            UnknownJobError: If no factory is registered under name
        """
        factory = self._factories.get(name)
        if factory is None:
            raise UnknownJobError(name, list(self._factories))
        return factory(settings)
