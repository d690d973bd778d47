from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field

from .catalog import LOCATION_IDS
from .config import (
    BATCH_THRESHOLD,
    CACHE_THRESHOLD,
    CACHE_TTL_DAILY,
    CACHE_TTL_HOURLY,
    CACHE_TTL_REALTIME,
    CACHE_TTL_STATIC,
    COMPLEX_QUERY_THRESHOLD,
    COMPLEXITY_BASE_ROWS,
    INDEX_HINT_THRESHOLD,
    MODERATE_QUERY_THRESHOLD,
    RAW_QUERY_THRESHOLD,
    SIMPLE_QUERY_THRESHOLD,
)
from .router.contracts import ValidatedParameterSet
from .temporal import UTC

logger = logging.getLogger(__name__)

ComplexityClass = Literal["simple", "moderate", "complex"]
AnalysisKind = Literal["simple", "trend", "cross_dimensional"]

TIMEFRAME_FACTORS: Dict[str, float] = {
    "today": 0.003,
    "yesterday": 0.003,
    "this_week": 0.02,
    "last_week": 0.02,
    "this_month": 0.08,
    "last_month": 0.08,
    "last_30_days": 0.08,
    "last_90_days": 0.25,
    "last_3_months": 0.25,
    "this_year": 0.9,
    "last_year": 0.9,
}
ANALYSIS_FACTORS: Dict[str, float] = {"simple": 1.0, "trend": 1.5, "cross_dimensional": 2.0}
ITEM_FILTER_FACTOR = 0.1

OPTIMIZATION_STRATEGIES: Dict[str, Dict[str, bool]] = {
    "simple": {
        "use_raw_query": False,
        "use_bulk": False,
        "enable_caching": True,
        "use_index_hints": False,
        "batch_queries": False,
        "limit_result_set": True,
        "precompute_aggregates": False,
    },
    "moderate": {
        "use_raw_query": False,
        "use_bulk": True,
        "enable_caching": True,
        "use_index_hints": True,
        "batch_queries": True,
        "limit_result_set": True,
        "precompute_aggregates": True,
    },
    "complex": {
        "use_raw_query": True,
        "use_bulk": True,
        "enable_caching": True,
        "use_index_hints": True,
        "batch_queries": True,
        "limit_result_set": True,
        "precompute_aggregates": True,
    },
}
_COMPLEXITY_ORDER = {"simple": 0, "moderate": 1, "complex": 2}


class ExecutionPlan(BaseModel):
    """Advisory execution metadata; never alters the parameters it describes."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    operation: str = "query_sales"
    estimated_rows: int = Field(ge=0)
    complexity: ComplexityClass
    strategy: Literal["direct", "bulk", "precomputed_aggregate", "raw_query"]
    use_raw_query: bool = False
    use_bulk: bool = False
    use_index_hints: bool = False
    batch_queries: bool = False
    cache_eligible: bool = False
    cache_ttl_seconds: int = 0
    flags: Dict[str, bool] = Field(default_factory=dict)

    def to_metadata(self) -> Dict[str, object]:
        return self.model_dump()


def _timeframe_factor(params: ValidatedParameterSet) -> float:
    if params.is_all_time:
        return 1.0
    known = TIMEFRAME_FACTORS.get(params.timeframe)
    if known is not None:
        return known
    total_days = sum((item.end - item.start).total_seconds() for item in params.date_ranges) / 86400.0
    return min(1.0, max(0.0, total_days / 365.0))


def classify(estimated_rows: int) -> ComplexityClass:
    if estimated_rows <= SIMPLE_QUERY_THRESHOLD:
        return "simple"
    if estimated_rows <= MODERATE_QUERY_THRESHOLD:
        return "moderate"
    return "complex"


def _cache_ttl(params: ValidatedParameterSet, now: datetime | None) -> int:
    instant = now or datetime.now(UTC)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    latest = max(item.end for item in params.date_ranges)
    if latest <= instant:
        return CACHE_TTL_STATIC
    days = max((item.end - item.start).total_seconds() for item in params.date_ranges) / 86400.0
    if params.is_all_time or days > 7:
        return CACHE_TTL_DAILY
    if days > 1:
        return CACHE_TTL_HOURLY
    return CACHE_TTL_REALTIME


def estimate_plan(
    params: ValidatedParameterSet,
    operation: str = "query_sales",
    *,
    analysis_kind: AnalysisKind = "simple",
    now: datetime | None = None,
) -> ExecutionPlan:
    """Estimate the rows an operation touches and pick an access strategy."""
    estimate = float(COMPLEXITY_BASE_ROWS) * _timeframe_factor(params)
    locations = len(params.location_ids)
    if 0 < locations < len(LOCATION_IDS):
        estimate *= locations / len(LOCATION_IDS)
    if params.items:
        estimate *= ITEM_FILTER_FACTOR
    estimate *= ANALYSIS_FACTORS.get(analysis_kind, 1.0)
    estimated_rows = int(math.floor(estimate))

    complexity = classify(estimated_rows)
    flags = dict(OPTIMIZATION_STRATEGIES[complexity])
    use_raw_query = flags["use_raw_query"] and estimated_rows > RAW_QUERY_THRESHOLD
    use_index_hints = flags["use_index_hints"] and estimated_rows >= INDEX_HINT_THRESHOLD
    batch_queries = flags["batch_queries"] and estimated_rows >= BATCH_THRESHOLD
    cache_eligible = flags["enable_caching"] and estimated_rows >= CACHE_THRESHOLD
    flags["exceeds_memory_budget"] = estimated_rows > COMPLEX_QUERY_THRESHOLD

    if use_raw_query:
        strategy = "raw_query"
    elif complexity == "complex" or (flags["precompute_aggregates"] and analysis_kind == "trend"):
        strategy = "precomputed_aggregate"
    elif flags["use_bulk"]:
        strategy = "bulk"
    else:
        strategy = "direct"

    plan = ExecutionPlan(
        operation=operation,
        estimated_rows=estimated_rows,
        complexity=complexity,
        strategy=strategy,
        use_raw_query=use_raw_query,
        use_bulk=flags["use_bulk"],
        use_index_hints=use_index_hints,
        batch_queries=batch_queries,
        cache_eligible=cache_eligible,
        cache_ttl_seconds=_cache_ttl(params, now) if cache_eligible else 0,
        flags=flags,
    )
    logger.debug(
        "execution_plan operation=%s rows=%s complexity=%s strategy=%s",
        operation,
        estimated_rows,
        complexity,
        strategy,
    )
    return plan


def combine_plans(plans: Iterable[ExecutionPlan]) -> ExecutionPlan | None:
    """The turn is as heavy as its heaviest invocation."""
    heaviest: ExecutionPlan | None = None
    for plan in plans:
        if heaviest is None or (_COMPLEXITY_ORDER[plan.complexity], plan.estimated_rows) > (
            _COMPLEXITY_ORDER[heaviest.complexity],
            heaviest.estimated_rows,
        ):
            heaviest = plan
    return heaviest
