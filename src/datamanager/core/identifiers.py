# src/datamanager/core/identifiers.py
"""Run identifiers, checkpoint paths and run context properties.

Kept in core/ so that engine, jobs and CLI can share them without
cross-subsystem imports.
"""

from __future__ import annotations

import getpass
import os
import platform
import re
from datetime import datetime
from pathlib import Path

from datamanager.contracts.errors import FatalSetupError

_JOB_TYPE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def generate_run_id(now: datetime | None = None) -> str:
    """Identifier for one application execution, e.g. 'Run-2024-05-01--13-45-10'."""
    now = now or datetime.now()
    return f"Run-{now:%Y-%m-%d--%H-%M-%S}"


def checkpoint_path_for(job_type_name: str, directory: Path | None = None) -> Path:
    """Deterministic checkpoint file path for a job type.

    Raises:
        FatalSetupError: If the job type name cannot be used as a file name
    """
    if not _JOB_TYPE_PATTERN.match(job_type_name):
        raise FatalSetupError(f"Job type name '{job_type_name}' cannot be used as a checkpoint file name")
    base = directory if directory is not None else Path.cwd()
    return base / f"{job_type_name}.txt"


def pivot_path_for(job_type_name: str, directory: Path | None = None) -> Path:
    """Pivot (progress and outcome) file path for an input-file job."""
    return checkpoint_path_for(f"{job_type_name}_Pivot", directory)


def _local_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def context_properties(
    run_id: str,
    *,
    organization_name: str | None = None,
    user_name: str | None = None,
) -> dict[str, str]:
    """Properties attached to every structured log event of a run."""
    return {
        "organization_name": organization_name or "N/A",
        "user_name": user_name or "N/A",
        "run_id": run_id,
        "correlation_id": run_id,
        "computer_name": platform.node(),
        "os_version": platform.platform(),
        "local_user_name": _local_user(),
        "current_directory": os.getcwd(),
    }
