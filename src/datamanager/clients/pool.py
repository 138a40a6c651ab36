# src/datamanager/clients/pool.py
"""Connection pool: main connection bootstrap and per-worker connections."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from datamanager.clients.proxy import ManagedConnection
from datamanager.contracts.errors import ConnectionEstablishmentError, FatalSetupError
from datamanager.core.config import RetrySettings
from datamanager.engine.transient import BackoffPolicy

if TYPE_CHECKING:
    from datamanager.clients.base import RemoteService, RemoteServiceFactory
    from datamanager.core.logging import JobLogger


class ConnectionPool:
    """Creates logical connections to the remote service.

    The main connection is opened once, lazily, with a bounded number of
    attempts and a linearly increasing wait between them. Running out of
    attempts raises FatalSetupError. Worker connections are clones of the
    main session when the auth mode supports it, freshly authenticated
    sessions otherwise.

    Transport tuning (connection limits, keep-alive) runs exactly once,
    before the first session is opened.

    Example:
        pool = ConnectionPool(factory, logger, settings.retry)
        main = pool.acquire_main_connection()
        with pool.acquire_worker_connection() as worker_connection:
            ...
    """

    def __init__(
        self,
        factory: RemoteServiceFactory,
        logger: JobLogger,
        settings: RetrySettings | None = None,
        *,
        transport_tuning: Callable[[], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._factory = factory
        self._logger = logger
        self._settings = settings or RetrySettings()
        self._policy = BackoffPolicy.from_settings(self._settings)
        self._transport_tuning = transport_tuning
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tuned = False
        self._main: ManagedConnection | None = None

    @property
    def settings(self) -> RetrySettings:
        return self._settings

    @property
    def is_open(self) -> bool:
        """True once the main connection is established and until close()."""
        return self._main is not None

    def _apply_transport_tuning(self) -> None:
        if self._tuned:
            return
        self._tuned = True
        if self._transport_tuning is not None:
            self._transport_tuning()

    def _open(self) -> ManagedConnection:
        try:
            return ManagedConnection(
                self._factory,
                self._logger,
                policy=self._policy,
                max_attempts=self._settings.call_max_attempts,
                sleep=self._sleep,
            )
        except Exception as exc:
            raise ConnectionEstablishmentError(f"Unable to connect to the remote service: {exc}") from exc

    def acquire_main_connection(self) -> ManagedConnection:
        """Return the process-wide main connection, opening it on first use.

        Raises:
            FatalSetupError: The connection could not be established within
                connect_max_attempts tries
        """
        with self._lock:
            if self._main is not None:
                return self._main
            self._apply_transport_tuning()

            step = self._settings.connect_backoff_step_seconds
            retrying = Retrying(
                stop=stop_after_attempt(self._settings.connect_max_attempts),
                wait=wait_incrementing(start=step, increment=step),
                retry=retry_if_exception_type(ConnectionEstablishmentError),
                before_sleep=self._log_connect_retry,
                sleep=self._sleep,
            )
            try:
                self._main = retrying(self._open)
            except RetryError as exc:
                last = exc.last_attempt.exception()
                raise FatalSetupError(
                    f"Unable to establish the main connection after {self._settings.connect_max_attempts} attempts: {last}"
                ) from last

            self._logger.log_information(
                "Main connection established",
                caller_id=self._main.caller_id,
                endpoint_url=self._main.endpoint_url,
                organization_name=self._main.organization_name,
            )
            return self._main

    def _log_connect_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
        self._logger.log_information(
            f"Connection attempt {retry_state.attempt_number} failed, retrying in {delay:.1f}s",
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    def acquire_worker_connection(self) -> ManagedConnection:
        """Open a connection owned by one worker for one round.

        The caller disposes it (close() or a with-block) when the round's
        work is drained.
        """
        main = self.acquire_main_connection()
        return ManagedConnection(
            self._factory,
            self._logger,
            parent=main.service,
            refresh_parent=self.refresh_main_session,
            caller_id=main.caller_id,
            policy=self._policy,
            max_attempts=self._settings.call_max_attempts,
            sleep=self._sleep,
        )

    def refresh_main_session(self, stale: RemoteService) -> RemoteService:
        """Re-authenticate the main connection once per expired session.

        Worker clones whose token expired call this with the parent session
        they cloned from. Only the first caller reconnects; later callers
        get the session that replaced it.
        """
        with self._lock:
            if self._main is None:
                raise ConnectionEstablishmentError("Connection pool is closed")
            if self._main.service is stale:
                self._logger.log_information("Main connection session expired, reconnecting")
                self._main.reconnect()
            return self._main.service

    def close(self) -> None:
        with self._lock:
            if self._main is not None:
                self._main.close()
                self._main = None
