"""Pydantic request / response models for the TSDB HTTP API.

Wire names are camelCase; Python attributes are snake_case.  Optional fields
left as ``None`` are dropped on serialization, and keys this module does not
know about are passed through untouched (``extra="allow"``), so payloads the
service accepts but this library does not model still round-trip.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


# ── Write ─────────────────────────────────────────────────────────────────────


class Datapoint(_WireModel):
    """One timestamped record.  Either ``value`` or ``values`` is set."""

    metric: str
    field: str | None = None
    tags: dict[str, str] | None = None
    type: str | None = Field(
        None, description="Value type: Long, Double, String, Bytes or Boolean"
    )
    timestamp: int | None = Field(None, description="Milliseconds since epoch")
    value: Any = None
    values: list[list[Any]] | None = Field(
        None, description="Batch of [timestamp, value] pairs"
    )


class WriteDatapointArgs(_WireModel):
    datapoints: list[Datapoint]


# ── Query ─────────────────────────────────────────────────────────────────────


class Filters(_WireModel):
    start: int | str
    end: int | str | None = None
    tags: dict[str, list[str]] | None = None
    value: str | None = None


class GroupBy(_WireModel):
    name: str
    tags: list[str] | None = None


class Aggregator(_WireModel):
    name: str
    sampling: str | None = None


class Fill(_WireModel):
    type: str
    interval: str | None = None
    max_write_interval: str | None = Field(None, alias="maxWriteInterval")
    value: Any = None


class Query(_WireModel):
    """A single query specification; interpreted only by the service."""

    metric: str
    field: str | None = None
    fields: list[str] | None = None
    tags: list[str] | None = None
    filters: Filters | None = None
    group_by: list[GroupBy] | None = Field(None, alias="groupBy")
    limit: int | None = None
    aggregators: list[Aggregator] | None = None
    order: str | None = None
    fill: Fill | None = None
    marker: str | None = None


class ListDatapointArgs(_WireModel):
    queries: list[Query]
    disable_presampling: bool | None = Field(None, alias="disablePresampling")


# ── Listings ──────────────────────────────────────────────────────────────────


class ListMetricsResult(_WireModel):
    metrics: list[str] = Field(default_factory=list)


class MetricField(_WireModel):
    """Metadata of one field of a metric."""

    type: str = ""


class ListFieldResult(_WireModel):
    fields: dict[str, MetricField] = Field(default_factory=dict)


class ListTagsResult(_WireModel):
    tags: dict[str, set[str]] = Field(default_factory=dict)


# ── Query results ─────────────────────────────────────────────────────────────


class GroupInfo(_WireModel):
    name: str = ""
    tags: dict[str, str] = Field(default_factory=dict)


class Group(_WireModel):
    group_infos: list[GroupInfo] = Field(default_factory=list, alias="groupInfos")
    values: list[list[Any]] = Field(default_factory=list)


class QueryResult(_WireModel):
    metric: str = ""
    field: str | None = None
    fields: list[str] | None = None
    tags: list[str] | None = None
    raw_count: int = Field(0, alias="rawCount")
    groups: list[Group] = Field(default_factory=list)
    truncated: bool = False
    next_marker: str | None = Field(None, alias="nextMarker")


class ListDatapointResult(_WireModel):
    results: list[QueryResult] = Field(default_factory=list)


class RowResult(_WireModel):
    columns: list[str] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)
