# tests/conftest.py
"""Shared test fixtures and helpers.

Every engine test runs against the in-memory remote service with all
backoff and retry waits set to zero, so nothing in the suite sleeps.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

from datamanager.clients.pool import ConnectionPool
from datamanager.contracts.enums import LogLevel
from datamanager.core.config import JobSettings
from datamanager.core.logging import JobLogger
from datamanager.testing.memory_service import MemoryServiceFactory, MemoryStore
from tests.fixtures.factories import SleepRecorder, make_settings


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def job_logger() -> JobLogger:
    return JobLogger(LogLevel.VERBOSE)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def factory(store: MemoryStore) -> MemoryServiceFactory:
    return MemoryServiceFactory(store)


@pytest.fixture
def job_settings(tmp_path: Path) -> JobSettings:
    return make_settings(tmp_path)


@pytest.fixture
def pool(factory: MemoryServiceFactory, job_logger: JobLogger, job_settings: JobSettings, sleep: SleepRecorder) -> ConnectionPool:
    return ConnectionPool(factory, job_logger, job_settings.retry, sleep=sleep)


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
