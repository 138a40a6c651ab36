# src/datamanager/clients/proxy.py
"""Managed connection ("proxy") to the remote service.

Wraps a RemoteService session with:
- a small fixed retry budget per remote call for transient faults
- forced reconnect when the session's credentials expire
- clone-from-parent session creation when the auth mode allows it
- cursor-based full pagination (retrieve_all)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from datamanager.contracts.enums import AuthType
from datamanager.contracts.records import Query, Record, RecordPage
from datamanager.engine.transient import BackoffPolicy, call_with_transient_retry

if TYPE_CHECKING:
    from datamanager.clients.base import RemoteService, RemoteServiceFactory, ServiceRequest
    from datamanager.core.logging import JobLogger

T = TypeVar("T")


class ManagedConnection:
    """One logical connection, owned by exactly one thread at a time.

    Every remote operation is retried up to max_attempts times on transient
    faults; exhausting the budget re-raises the original error. An
    AuthenticationExpiredError triggers a reconnect (re-authenticating the
    parent session too, when this connection is a clone) before the retry.

    Example:
        with pool.acquire_worker_connection() as connection:
            connection.delete(record.logical_name, record.id)
    """

    def __init__(
        self,
        factory: RemoteServiceFactory,
        logger: JobLogger,
        *,
        parent: RemoteService | None = None,
        refresh_parent: Callable[[RemoteService], RemoteService] | None = None,
        caller_id: str | None = None,
        policy: BackoffPolicy | None = None,
        max_attempts: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._factory = factory
        self._logger = logger
        self._parent = parent
        self._refresh_parent = refresh_parent
        self._owns_parent = False
        self._policy = policy or BackoffPolicy()
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._client: RemoteService | None = None
        self._closed = False
        self.caller_id = caller_id
        self.endpoint_url = ""
        self.auth_type: AuthType | None = None
        self.organization_name = ""
        self._initialize()

    def _clone_available(self) -> bool:
        return self._parent is not None and self._parent.auth_type.supports_clone

    def _renew_parent(self, stale: RemoteService) -> None:
        # The pool refreshes a shared parent; otherwise this connection owns the replacement
        if self._refresh_parent is not None:
            self._parent = self._refresh_parent(stale)
            return
        self._parent = self._factory()
        if self._owns_parent:
            stale.close()
        self._owns_parent = True

    def _initialize(self, force_reconnect: bool = False) -> None:
        if force_reconnect and self._parent is not None:
            self._renew_parent(self._parent)

        previous = self._client
        if self._clone_available():
            parent = self._parent
            assert parent is not None
            client = self._retry(parent.clone)
        else:
            client = self._retry(self._factory)
        self._client = client
        if previous is not None and previous is not client:
            previous.close()

        if self.caller_id is None:
            self.caller_id = client.who_am_i()
        self.auth_type = client.auth_type
        self.endpoint_url = client.endpoint_url
        self.organization_name = client.organization_name

    def reconnect(self) -> None:
        """Open a new session, re-authenticating the parent first for clones."""
        self._initialize(force_reconnect=True)

    def _retry(self, operation: Callable[[], T]) -> T:
        return call_with_transient_retry(
            operation,
            max_attempts=self._max_attempts,
            policy=self._policy,
            logger=self._logger,
            on_auth_expired=self.reconnect if self._client is not None else None,
            sleep=self._sleep,
        )

    @property
    def service(self) -> RemoteService:
        """Current underlying session (changes after a reconnect)."""
        if self._client is None or self._closed:
            raise RuntimeError("Connection is closed")
        return self._client

    @property
    def closed(self) -> bool:
        return self._closed

    def create(self, record: Record) -> str:
        return self._retry(lambda: self.service.create(record))

    def retrieve(self, logical_name: str, record_id: str, columns: list[str] | None = None) -> Record:
        return self._retry(lambda: self.service.retrieve(logical_name, record_id, columns))

    def update(self, record: Record) -> None:
        self._retry(lambda: self.service.update(record))

    def delete(self, logical_name: str, record_id: str) -> None:
        self._retry(lambda: self.service.delete(logical_name, record_id))

    def execute(self, request: ServiceRequest) -> dict[str, Any]:
        return self._retry(lambda: self.service.execute(request))

    def retrieve_multiple(self, query: Query) -> RecordPage:
        return self._retry(lambda: self.service.retrieve_multiple(query))

    def retrieve_all(self, query: Query) -> list[Record]:
        """Retrieve every page of query, strictly sequentially.

        Carries the paging cookie forward page to page until the service
        reports no more records.
        """
        results: list[Record] = []
        query.reset_paging()
        more_records = True
        while more_records:
            page = self.retrieve_multiple(query)
            results.extend(page.records)
            query.paging_cookie = page.paging_cookie
            query.page_number += 1
            more_records = page.more_records
        return results

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            self._client.close()
        if self._owns_parent and self._parent is not None:
            self._parent.close()

    def __enter__(self) -> ManagedConnection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
