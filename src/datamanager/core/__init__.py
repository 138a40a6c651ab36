"""Core infrastructure: configuration, logging, checkpointing, identifiers."""

from datamanager.core.checkpoint import CheckpointLog
from datamanager.core.logging import JobLogger, configure_logging, get_logger

__all__ = [
    "CheckpointLog",
    "JobLogger",
    "configure_logging",
    "get_logger",
]
