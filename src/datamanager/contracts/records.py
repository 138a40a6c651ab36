# src/datamanager/contracts/records.py
"""Record and query contracts shared by the engine and remote services.

A Record is owned by the remote service. The engine only holds transient
references while a record is processed and never mutates it directly;
mutation happens through the job's transformation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


@dataclass(frozen=True, slots=True)
class RecordReference:
    """Pointer to another record (lookup attribute value)."""

    logical_name: str
    id: str


@dataclass(frozen=True, slots=True)
class OptionSetValue:
    """Choice attribute value, stored as its integer code."""

    value: int


@dataclass(slots=True)
class Record:
    """Addressable unit of remote data: id, type tag and typed attributes.

    Attributes:
        logical_name: Record type (table name on the remote service)
        id: Stable unique identifier
        attributes: Raw attribute values keyed by attribute name
        formatted_values: Display strings for attributes that have one
            (option sets, lookups, money...)
    """

    logical_name: str
    id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    formatted_values: dict[str, str] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.attributes[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.attributes

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def to_reference(self) -> RecordReference:
        return RecordReference(self.logical_name, self.id)


class ConditionOperator(StrEnum):
    """Filter operators understood by every RemoteService implementation."""

    EQUAL = "eq"
    NOT_EQUAL = "ne"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    NULL = "null"
    NOT_NULL = "not_null"
    IN = "in"
    OLDER_THAN_X_DAYS = "older_than_x_days"


@dataclass(frozen=True, slots=True)
class Condition:
    attribute: str
    operator: ConditionOperator
    values: tuple[Any, ...] = ()


@dataclass(frozen=True, slots=True)
class Order:
    attribute: str
    descending: bool = False


@dataclass
class Query:
    """Selection criterion produced by a job once per invocation.

    The engine only touches the paging fields (page_size, page_number,
    paging_cookie, top_count). Everything else belongs to the job.

    Attributes:
        entity_name: Record type to select
        columns: Attributes to return (None means all attributes)
        conditions: AND-combined filter conditions
        orders: Sort order, applied in sequence
        page_size: Records per page for paginated retrieval
        page_number: 1-based page number for paginated retrieval
        paging_cookie: Cursor returned by the service for the next page
        top_count: Row cap for single-call retrieval (no paging)
        no_lock: Ask the service for a dirty read / no-cache hint
    """

    entity_name: str
    columns: list[str] | None = None
    conditions: list[Condition] = field(default_factory=list)
    orders: list[Order] = field(default_factory=list)
    page_size: int | None = None
    page_number: int = 1
    paging_cookie: str | None = None
    top_count: int | None = None
    no_lock: bool = False

    def add_condition(self, attribute: str, operator: ConditionOperator, *values: Any) -> Query:
        self.conditions.append(Condition(attribute, operator, tuple(values)))
        return self

    def add_order(self, attribute: str, *, descending: bool = False) -> Query:
        self.orders.append(Order(attribute, descending))
        return self

    def reset_paging(self) -> None:
        self.page_number = 1
        self.paging_cookie = None


@dataclass(slots=True)
class RecordPage:
    """One page returned by RemoteService.retrieve_multiple()."""

    records: list[Record] = field(default_factory=list)
    more_records: bool = False
    paging_cookie: str | None = None

    def __len__(self) -> int:
        return len(self.records)
