from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..catalog import ITEM_IDS, LOCATION_IDS

Metric = Literal[
    "revenue",
    "quantity",
    "count",
    "avg_transaction",
    "items_per_sale",
    "avg_item_price",
    "unique_items",
]
GroupDimension = Literal["location", "item", "day", "week", "month", "quarter", "year", "day_of_week", "hour"]
Aggregation = Literal["sum", "avg", "count", "max", "min"]
SortDirection = Literal["asc", "desc"]
CandidateSource = Literal["reasoning", "keywords", "fallback"]

METRICS: tuple[str, ...] = get_args(Metric)
GROUP_DIMENSIONS: tuple[str, ...] = get_args(GroupDimension)
AGGREGATIONS: tuple[str, ...] = get_args(Aggregation)
ALL_TIME_LABEL = "All time"


class DateRange(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    start: datetime
    end: datetime
    label: str = ""

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("date range bounds must be timezone-aware")
        if self.start >= self.end:
            raise ValueError(f"date range {self.label or '?'} must have start before end")
        return self

    @property
    def is_all_time(self) -> bool:
        return self.label == ALL_TIME_LABEL


class OrderBy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    direction: SortDirection = "desc"


class CandidateParameterSet(BaseModel):
    """Untrusted parameters as extracted; any field may be missing or wrong."""

    model_config = ConfigDict(extra="allow")

    time_description: str | None = None
    date_ranges: list[Dict[str, Any]] | None = None
    location_ids: list[Any] | None = None
    location_names: list[Any] | None = None
    items: list[Any] | None = None
    metrics: list[Any] | None = None
    group_by: list[Any] | None = None
    aggregation: Any = None
    order_by: Dict[str, Any] | None = None
    limit: Any = None
    source: CandidateSource = "reasoning"


class ValidatedParameterSet(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    date_ranges: tuple[DateRange, ...] = Field(min_length=1)
    location_ids: tuple[str, ...] = ()
    items: tuple[str, ...] = ()
    metrics: tuple[Metric, ...] = Field(min_length=1)
    group_by: tuple[GroupDimension, ...] = ()
    aggregation: Aggregation = "sum"
    order_by: OrderBy | None = None
    limit: int | None = Field(default=None, ge=1)

    @field_validator("location_ids")
    @classmethod
    def _known_locations(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [item for item in value if item not in LOCATION_IDS]
        if unknown:
            raise ValueError(f"unknown location ids: {', '.join(unknown)}")
        return value

    @field_validator("items")
    @classmethod
    def _known_items(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unknown = [item for item in value if item not in ITEM_IDS]
        if unknown:
            raise ValueError(f"unknown item ids: {', '.join(unknown)}")
        return value

    @field_validator("metrics", "group_by", "location_ids", "items")
    @classmethod
    def _no_duplicates(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if len(set(value)) != len(value):
            raise ValueError("values must be unique")
        return value

    @property
    def primary_range(self) -> DateRange:
        return self.date_ranges[0]

    @property
    def is_all_time(self) -> bool:
        return self.primary_range.is_all_time

    @property
    def timeframe(self) -> str:
        return self.primary_range.label.strip().lower().replace(" ", "_")

    def summary(self) -> Dict[str, Any]:
        return {
            "timeframe": self.timeframe,
            "date_ranges": [
                {"start": item.start.isoformat(), "end": item.end.isoformat(), "label": item.label}
                for item in self.date_ranges
            ],
            "location_ids": list(self.location_ids),
            "items": list(self.items),
            "metrics": list(self.metrics),
            "group_by": list(self.group_by),
            "aggregation": self.aggregation,
            "order_by": self.order_by.model_dump() if self.order_by else None,
            "limit": self.limit,
        }


class ValidationOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    params: ValidatedParameterSet
    error: str | None = None
    errors: tuple[str, ...] = ()
    repairs: tuple[str, ...] = ()
    repaired: bool = False
    fallback_used: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None
