# src/datamanager/core/config.py
"""
Configuration schema and loading for datamanager jobs.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and loaded once at
process start.
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from datamanager.contracts.enums import AuthType, LogLevel


class ConnectionSettings(BaseModel):
    """Remote service endpoint and credentials.

    Example YAML:
        connection:
          url: https://contoso.crm.dynamics.com
          auth_type: client_secret
          tenant_id: ${TENANT_ID}
          client_id: ${CLIENT_ID}
          client_secret: ${CLIENT_SECRET}
    """

    model_config = {"frozen": True}

    url: str | None = Field(default=None, description="Service root URL (organization URL)")
    auth_type: AuthType = Field(default=AuthType.CLIENT_SECRET, description="Authentication mode")
    tenant_id: str | None = Field(default=None, description="Directory tenant for token requests")
    client_id: str | None = Field(default=None, description="Application (client) id")
    client_secret: str | None = Field(default=None, description="Application secret")
    username: str | None = Field(default=None, description="User name (office365 auth)")
    password: str | None = Field(default=None, description="User password (office365 auth)")
    token_url: str | None = Field(default=None, description="Override for the OAuth token endpoint")
    timeout_seconds: float = Field(default=120.0, gt=0, description="Per-request timeout")
    max_connections: int = Field(default=64, gt=0, description="Process-wide transport connection limit")
    keepalive_seconds: float = Field(default=30.0, gt=0, description="Idle keep-alive expiry for pooled sockets")

    @property
    def defined(self) -> bool:
        return bool(self.url)

    @field_validator("url")
    @classmethod
    def normalize_url(cls, v: str | None) -> str | None:
        """Strip legacy SOAP endpoint suffixes and '.api.' host segments."""
        if v is None:
            return v
        v = v.replace(".api.", ".")
        marker = "/XRMServices/2011/"
        if marker in v:
            v = v[: v.index(marker)]
        return v.rstrip("/")


class ProcessSettings(BaseModel):
    """Parallelism, paging and time budget."""

    model_config = {"frozen": True}

    thread_number: int = Field(default=10, gt=0, description="Worker pool size")
    query_record_limit: int = Field(default=2500, gt=0, description="Page size / page limit per retrieval")
    max_run_duration_hours: float = Field(default=8.0, gt=0, description="Wall-clock budget for iterative drain")


class RetrySettings(BaseModel):
    """Retry and backoff policy.

    Backoff sleeps for a random duration in [backoff_min_seconds,
    backoff_max_seconds] after a transient fault.
    """

    model_config = {"frozen": True}

    connect_max_attempts: int = Field(default=6, gt=0, description="Attempts to open the main connection")
    connect_backoff_step_seconds: float = Field(default=2.0, ge=0, description="Linear backoff step between connect attempts")
    call_max_attempts: int = Field(default=3, gt=0, description="Attempts per remote call on a connection")
    retrieve_max_attempts: int = Field(default=5, gt=0, description="Attempts per page retrieval")
    retrieve_base_delay_seconds: float = Field(default=5.0, ge=0, description="Exponential base for retrieval retries")
    transient_max_attempts: int = Field(default=5, gt=0, description="In-place attempts per record on transient faults")
    backoff_min_seconds: float = Field(default=30.0, ge=0, description="Lower bound of transient backoff sleep")
    backoff_max_seconds: float = Field(default=60.0, ge=0, description="Upper bound of transient backoff sleep")

    @model_validator(mode="after")
    def validate_backoff_range(self) -> "RetrySettings":
        if self.backoff_min_seconds > self.backoff_max_seconds:
            raise ValueError(
                f"backoff_min_seconds ({self.backoff_min_seconds}) must be <= backoff_max_seconds ({self.backoff_max_seconds})"
            )
        return self


class CheckpointSettings(BaseModel):
    """Where checkpoint logs live and how long writers wait for the lock."""

    model_config = {"frozen": True}

    directory: Path | None = Field(default=None, description="Checkpoint directory (default: current directory)")
    lock_timeout_ms: int = Field(default=5000, gt=0, description="Max wait for the checkpoint writer lock")

    def resolve_directory(self) -> Path:
        return self.directory if self.directory is not None else Path.cwd()


class LoggingSettings(BaseModel):
    """Operator-facing logging configuration."""

    model_config = {"frozen": True}

    level: LogLevel = Field(default=LogLevel.INFORMATION, description="verbose | information | errors_and_success | errors_only")
    json_output: bool = Field(default=False, description="Render JSON lines instead of console output")
    log_file: Path | None = Field(default=None, description="Directory for a <run_id>.log file")

    @field_validator("level", mode="before")
    @classmethod
    def parse_level(cls, v: Any) -> Any:
        """Accept level names as well as the legacy 0-3 integers."""
        if isinstance(v, str):
            name = v.strip()
            if name.isdigit():
                return int(name)
            # "errors_and_success", "ErrorsAndSuccess" and "errors-and-success" all match
            wanted = name.replace("_", "").replace("-", "").upper()
            for level in LogLevel:
                if level.name.replace("_", "") == wanted:
                    return level
            raise ValueError(f"Incorrect log level in configuration! (value = '{v}')")
        return v


class JobSettings(BaseModel):
    """Top-level datamanager configuration.

    This is the single source of truth for job runs. All settings are
    validated and frozen after construction.
    """

    model_config = {"frozen": True}

    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    process: ProcessSettings = Field(default_factory=ProcessSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    jobs: list[str] = Field(default_factory=list, description="Job names to run, in order")
    run_id: str | None = Field(default=None, description="Run identifier (generated when absent)")
    organization_name: str | None = Field(default=None, description="Display name of the target organization")
    production: bool = Field(default=False, description="Target is a production instance (only jobs allowed in production run)")
    job_parameters: dict[str, dict[str, Any]] = Field(default_factory=dict, description="Per-job parameters keyed by job name")

    @field_validator("jobs", mode="before")
    @classmethod
    def split_job_names(cls, v: Any) -> Any:
        """Accept 'JobA,JobB' strings as well as lists."""
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        return v


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        default = match.group(2)
        if default is not None:
            return default
        # No env var and no default - keep original (validation reports it)
        return match.group(0)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_VAR_PATTERN.sub(replacer, value)
        if isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_expand_value(item) for item in value]
        return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path) -> JobSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (DATAMANAGER_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: DATAMANAGER_PROCESS__THREAD_NUMBER for
    nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated JobSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="DATAMANAGER",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; filter out its internal settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return JobSettings(**raw_config)


_SECRET_FIELD_NAMES = frozenset({"password", "client_secret", "secret", "token"})


def redacted_settings(settings: JobSettings) -> dict[str, Any]:
    """Settings as a flat dict safe to log (secrets masked)."""
    flat: dict[str, Any] = {}
    for section_name, section in settings.model_dump(mode="json").items():
        if isinstance(section, dict):
            for key, value in section.items():
                if key in _SECRET_FIELD_NAMES and value:
                    value = "***"
                flat[f"{section_name}.{key}"] = value
        else:
            flat[section_name] = section
    return flat
