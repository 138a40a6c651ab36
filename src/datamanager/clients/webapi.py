# src/datamanager/clients/webapi.py
"""RemoteService over a Dataverse-style OData Web API, using httpx.

Faults are mapped onto the datamanager error taxonomy at this boundary:
- 401 -> AuthenticationExpiredError (the connection reconnects)
- 429 and 503 -> ServiceFault(RATE_LIMIT_EXCEEDED)
- request timeouts -> ServiceFault(TIME_LIMIT_EXCEEDED)
- any other error body -> ServiceFault with the service's error code
"""

from __future__ import annotations

import re
import socket
import threading
from datetime import UTC, date, datetime
from typing import Any

import httpx
import structlog

from datamanager.clients.base import ServiceRequest
from datamanager.contracts.enums import AuthType
from datamanager.contracts.errors import (
    AuthenticationExpiredError,
    ConnectionEstablishmentError,
    FatalSetupError,
    ServiceFault,
)
from datamanager.contracts.records import Condition, ConditionOperator, OptionSetValue, Query, Record, RecordPage, RecordReference
from datamanager.core.config import ConnectionSettings
from datamanager.engine.transient import RATE_LIMIT_EXCEEDED, TIME_LIMIT_EXCEEDED

logger = structlog.get_logger(__name__)

API_VERSION = "v9.2"
FORMATTED_VALUE_SUFFIX = "@OData.Community.Display.V1.FormattedValue"
GENERIC_FAULT = -2147220970

_THROTTLED_STATUSES = frozenset({429, 503})
_ENTITY_ID_PATTERN = re.compile(r"\(([0-9a-fA-F-]{36})\)")


def _fault_code(raw: Any) -> int:
    """Service error codes arrive as '0x80040217' strings; return them signed."""
    if isinstance(raw, int):
        return raw
    try:
        value = int(str(raw), 16) if str(raw).lower().startswith("0x") else int(str(raw))
    except ValueError:
        return GENERIC_FAULT
    return value - 2**32 if value >= 2**31 else value


def raise_for_fault(response: httpx.Response) -> None:
    """Raise the datamanager error matching a failed response."""
    if response.is_success:
        return
    if response.status_code == 401:
        raise AuthenticationExpiredError(f"Access token rejected ({response.status_code})")

    code: int = GENERIC_FAULT
    message = response.reason_phrase or f"HTTP {response.status_code}"
    trace_text = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        code = _fault_code(error.get("code", GENERIC_FAULT))
        message = str(error.get("message", message))
        trace_text = error.get("innererror", {}).get("stacktrace") if isinstance(error.get("innererror"), dict) else None
    if response.status_code in _THROTTLED_STATUSES:
        code = RATE_LIMIT_EXCEEDED

    raise ServiceFault(
        code,
        message,
        activity_id=response.headers.get("REQ_ID") or response.headers.get("x-ms-service-request-id"),
        trace_text=trace_text,
        timestamp=datetime.now(UTC),
        status_code=response.status_code,
    )


def format_literal(value: Any) -> str:
    """OData literal for a filter value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, OptionSetValue):
        return str(value.value)
    if isinstance(value, RecordReference):
        return value.id
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def format_condition(condition: Condition) -> str:
    attr = condition.attribute
    op = condition.operator
    if op is ConditionOperator.NULL:
        return f"{attr} eq null"
    if op is ConditionOperator.NOT_NULL:
        return f"{attr} ne null"
    if op is ConditionOperator.IN:
        values = ",".join(format_literal(str(v)) for v in condition.values)
        return f"Microsoft.Dynamics.CRM.In(PropertyName='{attr}',PropertyValues=[{values}])"
    if op is ConditionOperator.OLDER_THAN_X_DAYS:
        return f"Microsoft.Dynamics.CRM.OlderThanXDays(PropertyName='{attr}',PropertyValue={int(condition.values[0])})"
    return f"{attr} {op.value} {format_literal(condition.values[0])}"


def build_query_params(query: Query) -> dict[str, str]:
    params: dict[str, str] = {}
    if query.columns:
        params["$select"] = ",".join(query.columns)
    if query.conditions:
        params["$filter"] = " and ".join(format_condition(c) for c in query.conditions)
    if query.orders:
        params["$orderby"] = ",".join(f"{o.attribute} {'desc' if o.descending else 'asc'}" for o in query.orders)
    if query.top_count is not None:
        params["$top"] = str(query.top_count)
    return params


def parse_record(logical_name: str, payload: dict[str, Any]) -> Record:
    record_id = str(payload.get(f"{logical_name}id", ""))
    attributes: dict[str, Any] = {}
    formatted: dict[str, str] = {}
    for key, value in payload.items():
        if key.startswith("@odata"):
            continue
        if key.endswith(FORMATTED_VALUE_SUFFIX):
            formatted[key[: -len(FORMATTED_VALUE_SUFFIX)]] = str(value)
            continue
        if "@" in key:
            continue
        attributes[key] = value
    return Record(logical_name, record_id, attributes, formatted)


class TokenProvider:
    """Bearer token source shared by a session and its clones."""

    def __init__(self, settings: ConnectionSettings, client: httpx.Client) -> None:
        self._settings = settings
        self._client = client
        self._lock = threading.Lock()
        self._token: str | None = None

    def _token_url(self) -> str:
        if self._settings.token_url:
            return self._settings.token_url
        if not self._settings.tenant_id:
            raise FatalSetupError("connection.tenant_id or connection.token_url is required")
        return f"https://login.microsoftonline.com/{self._settings.tenant_id}/oauth2/v2.0/token"

    def _grant(self) -> dict[str, str]:
        s = self._settings
        scope = f"{s.url}/.default"
        if s.auth_type is AuthType.CLIENT_SECRET:
            return {
                "grant_type": "client_credentials",
                "client_id": s.client_id or "",
                "client_secret": s.client_secret or "",
                "scope": scope,
            }
        if s.auth_type in (AuthType.OAUTH, AuthType.OFFICE365):
            return {
                "grant_type": "password",
                "client_id": s.client_id or "",
                "username": s.username or "",
                "password": s.password or "",
                "scope": scope,
            }
        raise FatalSetupError(f"Authentication type '{s.auth_type}' is not supported by the Web API client")

    def token(self) -> str:
        with self._lock:
            if self._token is None:
                self._token = self._fetch()
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def _fetch(self) -> str:
        try:
            response = self._client.post(self._token_url(), data=self._grant())
        except httpx.TransportError as exc:
            raise ConnectionEstablishmentError(f"Token request failed: {exc}") from exc
        if not response.is_success:
            raise ConnectionEstablishmentError(f"Token request rejected ({response.status_code}): {response.text[:200]}")
        token = response.json().get("access_token")
        if not token:
            raise ConnectionEstablishmentError("Token response carries no access_token")
        return str(token)


class WebApiService:
    """One session on the Web API.

    Clones share the HTTP client (connection pool) and the token of their
    parent, so opening a worker session costs no login round-trip.
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        client: httpx.Client,
        tokens: TokenProvider,
        entity_sets: dict[str, str],
        organization_name: str | None = None,
    ) -> None:
        if not settings.url:
            raise FatalSetupError("connection.url is required")
        self._settings = settings
        self._client = client
        self._tokens = tokens
        self._entity_sets = entity_sets
        self._base_url = f"{settings.url}/api/data/{API_VERSION}/"
        self._organization_name = organization_name or settings.url.split("//", 1)[-1].split(".", 1)[0]
        self.closed = False

    @property
    def auth_type(self) -> AuthType:
        return self._settings.auth_type

    @property
    def endpoint_url(self) -> str:
        return self._settings.url or ""

    @property
    def organization_name(self) -> str:
        return self._organization_name

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._tokens.token()}",
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
            "Prefer": f'odata.include-annotations="{FORMATTED_VALUE_SUFFIX[1:]}"',
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, url: str, *, headers: dict[str, str] | None = None, **kwargs: Any) -> httpx.Response:
        target = url if url.startswith("http") else self._base_url + url
        try:
            response = self._client.request(
                method,
                target,
                headers=self._headers(headers),
                timeout=self._settings.timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            raise ServiceFault(TIME_LIMIT_EXCEEDED, f"Request timed out: {exc}", timestamp=datetime.now(UTC)) from exc
        if response.status_code == 401:
            self._tokens.invalidate()
        raise_for_fault(response)
        return response

    def entity_set(self, logical_name: str) -> str:
        """Collection name of a record type, looked up once per factory."""
        cached = self._entity_sets.get(logical_name)
        if cached is not None:
            return cached
        response = self._request(
            "GET",
            f"EntityDefinitions(LogicalName='{logical_name}')",
            params={"$select": "EntitySetName"},
        )
        entity_set = str(response.json()["EntitySetName"])
        self._entity_sets[logical_name] = entity_set
        return entity_set

    def _serialize(self, record: Record) -> dict[str, Any]:
        body: dict[str, Any] = {}
        for key, value in record.attributes.items():
            if isinstance(value, RecordReference):
                body[f"{key}@odata.bind"] = f"/{self.entity_set(value.logical_name)}({value.id})"
            elif isinstance(value, OptionSetValue):
                body[key] = value.value
            elif isinstance(value, datetime | date):
                body[key] = value.isoformat()
            else:
                body[key] = value
        return body

    def who_am_i(self) -> str:
        return str(self._request("GET", "WhoAmI").json()["UserId"])

    def clone(self) -> WebApiService:
        return WebApiService(self._settings, self._client, self._tokens, self._entity_sets, self._organization_name)

    def create(self, record: Record) -> str:
        response = self._request("POST", self.entity_set(record.logical_name), json=self._serialize(record))
        match = _ENTITY_ID_PATTERN.search(response.headers.get("OData-EntityId", ""))
        if match is None:
            raise ServiceFault(GENERIC_FAULT, "Create response carries no record id")
        return match.group(1)

    def retrieve(self, logical_name: str, record_id: str, columns: list[str] | None = None) -> Record:
        params = {"$select": ",".join(columns)} if columns else None
        response = self._request("GET", f"{self.entity_set(logical_name)}({record_id})", params=params)
        record = parse_record(logical_name, response.json())
        record.id = record.id or record_id
        return record

    def update(self, record: Record) -> None:
        self._request(
            "PATCH",
            f"{self.entity_set(record.logical_name)}({record.id})",
            json=self._serialize(record),
            headers={"If-Match": "*"},
        )

    def delete(self, logical_name: str, record_id: str, *, bypass_custom_logic: bool = False) -> None:
        headers = {"MSCRM.BypassCustomPluginExecution": "true"} if bypass_custom_logic else None
        self._request("DELETE", f"{self.entity_set(logical_name)}({record_id})", headers=headers)

    def retrieve_multiple(self, query: Query) -> RecordPage:
        extra: dict[str, str] = {}
        if query.page_size is not None:
            prefer = f'odata.include-annotations="{FORMATTED_VALUE_SUFFIX[1:]}",odata.maxpagesize={query.page_size}'
            extra["Prefer"] = prefer
        if query.paging_cookie:
            response = self._request("GET", query.paging_cookie, headers=extra)
        else:
            response = self._request("GET", self.entity_set(query.entity_name), params=build_query_params(query), headers=extra)
        payload = response.json()
        records = [parse_record(query.entity_name, item) for item in payload.get("value", [])]
        next_link = payload.get("@odata.nextLink")
        return RecordPage(records, more_records=next_link is not None, paging_cookie=next_link)

    def execute(self, request: ServiceRequest) -> dict[str, Any]:
        if request.name == "WhoAmI":
            return {"UserId": self.who_am_i()}
        if request.name == "Delete":
            if request.target is None:
                raise ValueError("Delete request requires a target")
            bypass = bool(request.parameters.get("BypassCustomPluginExecution", False))
            self.delete(request.target.logical_name, request.target.id, bypass_custom_logic=bypass)
            return {}
        response = self._request("POST", request.name, json=request.parameters)
        if not response.content:
            return {}
        result: dict[str, Any] = response.json()
        return result

    def close(self) -> None:
        # The HTTP client belongs to the factory and outlives sessions
        self.closed = True


class WebApiServiceFactory:
    """Opens freshly authenticated WebApiService sessions.

    All sessions share one httpx.Client. configure_transport() sizes its
    connection pool and keep-alive once per process; the pool calls it
    before the first session is opened.

    Example:
        factory = WebApiServiceFactory(settings.connection, organization_name="Contoso")
        pool = ConnectionPool(factory, logger, settings.retry, transport_tuning=factory.configure_transport)
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        *,
        organization_name: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not settings.defined:
            raise FatalSetupError("connection.url is required")
        self._settings = settings
        self._organization_name = organization_name
        self._transport = transport
        self._lock = threading.Lock()
        self._client: httpx.Client | None = None
        self._entity_sets: dict[str, str] = {}

    def configure_transport(self) -> None:
        with self._lock:
            if self._client is not None:
                return
            limits = httpx.Limits(
                max_connections=self._settings.max_connections,
                max_keepalive_connections=self._settings.max_connections,
                keepalive_expiry=self._settings.keepalive_seconds,
            )
            transport = self._transport or httpx.HTTPTransport(
                limits=limits,
                socket_options=[(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)],
            )
            self._client = httpx.Client(transport=transport, timeout=self._settings.timeout_seconds, follow_redirects=False)
            logger.debug(
                "Web API transport configured",
                max_connections=self._settings.max_connections,
                keepalive_seconds=self._settings.keepalive_seconds,
            )

    def __call__(self) -> WebApiService:
        self.configure_transport()
        assert self._client is not None
        tokens = TokenProvider(self._settings, self._client)
        tokens.token()
        return WebApiService(self._settings, self._client, tokens, self._entity_sets, self._organization_name)

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
