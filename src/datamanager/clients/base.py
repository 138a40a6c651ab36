# src/datamanager/clients/base.py
"""Remote data service contract.

The engine never talks to a concrete service directly: it goes through
ManagedConnection, which wraps any object satisfying RemoteService with
the retry/reconnect policy. Concrete services (the Web API adapter, the
in-memory test service) implement this protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from datamanager.contracts.enums import AuthType
from datamanager.contracts.records import Query, Record, RecordPage, RecordReference


@dataclass
class ServiceRequest:
    """Custom message executed through RemoteService.execute().

    Example:
        ServiceRequest("Delete", target=record.to_reference(),
                       parameters={"BypassCustomPluginExecution": True})
    """

    name: str
    target: RecordReference | None = None
    parameters: dict[str, Any] = field(default_factory=dict)


class RemoteService(Protocol):
    """Authenticated session to the remote record store."""

    @property
    def auth_type(self) -> AuthType: ...

    @property
    def endpoint_url(self) -> str: ...

    @property
    def organization_name(self) -> str: ...

    def who_am_i(self) -> str:
        """Identifier of the authenticated caller."""
        ...

    def clone(self) -> RemoteService:
        """New session sharing transport and auth state with this one."""
        ...

    def create(self, record: Record) -> str: ...

    def retrieve(self, logical_name: str, record_id: str, columns: list[str] | None = None) -> Record: ...

    def update(self, record: Record) -> None: ...

    def delete(self, logical_name: str, record_id: str) -> None: ...

    def retrieve_multiple(self, query: Query) -> RecordPage: ...

    def execute(self, request: ServiceRequest) -> dict[str, Any]: ...

    def close(self) -> None: ...


class RemoteServiceFactory(Protocol):
    """Opens a freshly authenticated session."""

    def __call__(self) -> RemoteService: ...

    def close(self) -> None:
        """Release transport resources shared by the sessions."""
        ...
