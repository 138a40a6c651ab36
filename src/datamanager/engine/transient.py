# src/datamanager/engine/transient.py
"""Transient fault classification and backoff.

Transient faults are remote-service conditions expected to clear on their
own after waiting: rate limit, time limit and concurrency limit exceeded,
and the expired/denied credential family. They are retried after a
pseudo-random sleep; everything else fails immediately.

Backoff policy: sleep a uniformly random duration in
[min_seconds, max_seconds]. The production range is 30-60 seconds.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from datamanager.contracts.errors import AuthenticationExpiredError, DataManagerError, ServiceFault

if TYPE_CHECKING:
    from datamanager.core.config import RetrySettings
    from datamanager.core.logging import JobLogger

T = TypeVar("T")

RATE_LIMIT_EXCEEDED = -2147015902
TIME_LIMIT_EXCEEDED = -2147015903
CONCURRENCY_LIMIT_EXCEEDED = -2147015898

TRANSIENT_FAULT_CODES: frozenset[int] = frozenset(
    {
        RATE_LIMIT_EXCEEDED,
        TIME_LIMIT_EXCEEDED,
        CONCURRENCY_LIMIT_EXCEEDED,
    }
)


def is_auth_expired(error: BaseException) -> bool:
    return isinstance(error, AuthenticationExpiredError)


def is_transient(error: BaseException) -> bool:
    """Check if an error is a transient remote-service fault.

    Args:
        error: Exception raised by a remote call or a record transformation

    Returns:
        True for allow-listed fault codes and expired credentials
    """
    if is_auth_expired(error):
        return True
    return isinstance(error, ServiceFault) and error.code in TRANSIENT_FAULT_CODES


def is_retry_budget_exhausted(error: BaseException) -> bool:
    """True when a connection already spent its retry budget on error."""
    return isinstance(error, DataManagerError) and error.retry_budget_exhausted


@dataclass(frozen=True)
class BackoffPolicy:
    """Wait-then-retry policy for transient faults.

    Attributes:
        min_seconds: Lower bound of the random sleep
        max_seconds: Upper bound of the random sleep
    """

    min_seconds: float = 30.0
    max_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.min_seconds < 0:
            raise ValueError(f"min_seconds must be >= 0, got {self.min_seconds}")
        if self.min_seconds > self.max_seconds:
            raise ValueError(f"min_seconds ({self.min_seconds}) must be <= max_seconds ({self.max_seconds})")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> BackoffPolicy:
        return cls(min_seconds=settings.backoff_min_seconds, max_seconds=settings.backoff_max_seconds)

    def next_delay(self, rng: random.Random | None = None) -> float:
        source = rng if rng is not None else random
        return source.uniform(self.min_seconds, self.max_seconds)


def _describe(error: BaseException | None) -> dict[str, object]:
    if isinstance(error, ServiceFault):
        return {"error_code": error.code, "error": error.message}
    if error is not None:
        return {"error_type": type(error).__name__, "error": str(error)}
    return {}


def apply_backoff(
    policy: BackoffPolicy,
    logger: JobLogger,
    error: BaseException | None = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> float:
    """Sleep the calling thread for the policy's random delay.

    Returns:
        The delay slept, in seconds
    """
    delay = policy.next_delay(rng)
    logger.log_information(
        f"API Limit reached! Current thread '{threading.get_ident()}' will wait during {delay:.1f}s!",
        delay_seconds=round(delay, 3),
        **_describe(error),
    )
    sleep(delay)
    return delay


def call_with_transient_retry(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    policy: BackoffPolicy,
    logger: JobLogger,
    on_auth_expired: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> T:
    """Run operation, retrying transient faults within a fixed budget.

    Rate/time/concurrency faults wait per the backoff policy. Expired
    credentials call on_auth_expired (a forced reconnect) before the retry;
    without a reconnect hook they back off like any other transient fault.
    Exhausting the budget re-raises the ORIGINAL error, flagged with
    retry_budget_exhausted so outer layers do not retry it again.
    Non-transient errors propagate on the first attempt.

    Args:
        operation: Zero-argument callable to run
        max_attempts: Total tries, not retries (3 means try, retry, retry)
        policy: Sleep range for transient faults
        logger: Receives one line per backoff
        on_auth_expired: Reconnect hook for AuthenticationExpiredError
        sleep: Injected sleep (tests pass a recorder)
        rng: Optional random source for deterministic delays

    Returns:
        Result of operation
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def wait(retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome is not None else None
        if error is not None and is_auth_expired(error) and on_auth_expired is not None:
            return 0.0
        return policy.next_delay(rng)

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome is not None else None
        if error is not None and is_auth_expired(error) and on_auth_expired is not None:
            logger.log_information(
                "Authentication expired, reconnecting before retry",
                attempt=retry_state.attempt_number,
                **_describe(error),
            )
            on_auth_expired()
            return
        delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
        logger.log_information(
            f"API Limit reached! Current thread '{threading.get_ident()}' will wait during {delay:.1f}s!",
            attempt=retry_state.attempt_number,
            delay_seconds=round(delay, 3),
            **_describe(error),
        )

    try:
        for attempt in Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait,
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep,
            sleep=sleep,
            reraise=True,
        ):
            with attempt:
                return operation()
    except DataManagerError as exc:
        if is_transient(exc):
            exc.retry_budget_exhausted = True
        raise

    # Retrying always returns or raises
    raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
