# src/datamanager/engine/retrieval.py
"""Record retrieval with retry.

Retrieval always runs on the coordinator thread through the main
connection and pagination is strictly sequential. A failed retrieval is
retried with exponential waits (base, base**2, base**3...) before the
error is allowed to end the run.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from datamanager.contracts.errors import FatalSetupError

if TYPE_CHECKING:
    from datamanager.clients.proxy import ManagedConnection
    from datamanager.contracts.records import Query, Record
    from datamanager.core.config import RetrySettings
    from datamanager.core.logging import JobLogger

T = TypeVar("T")


def _with_retry(
    operation: Callable[[], T],
    settings: RetrySettings,
    logger: JobLogger,
    sleep: Callable[[float], None],
) -> T:
    base = settings.retrieve_base_delay_seconds

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
        logger.log_information(
            f"Retrieval failed (attempt {retry_state.attempt_number}), retrying in {delay:.1f}s",
            attempt=retry_state.attempt_number,
            error=str(error),
            error_type=type(error).__name__,
        )

    retrying = Retrying(
        stop=stop_after_attempt(settings.retrieve_max_attempts),
        wait=wait_exponential(multiplier=base, exp_base=max(base, 1)),
        retry=retry_if_not_exception_type(FatalSetupError),
        before_sleep=before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return retrying(operation)


def retrieve_page(
    connection: ManagedConnection,
    query: Query,
    limit: int,
    *,
    settings: RetrySettings,
    logger: JobLogger,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Record]:
    """Single-call retrieval of at most `limit` records (no paging)."""
    query.page_size = None
    query.reset_paging()
    query.top_count = limit
    query.no_lock = True
    page = _with_retry(lambda: connection.retrieve_multiple(query), settings, logger, sleep)
    return list(page.records)


def retrieve_all(
    connection: ManagedConnection,
    query: Query,
    page_size: int,
    *,
    settings: RetrySettings,
    logger: JobLogger,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Record]:
    """Full paginated retrieval of the selection.

    A failure mid-way restarts the pagination from the first page.
    """
    query.top_count = None
    query.page_size = page_size
    query.no_lock = True
    return _with_retry(lambda: connection.retrieve_all(query), settings, logger, sleep)
