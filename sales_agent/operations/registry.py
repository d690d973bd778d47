from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, get_args

from pydantic import ValidationError

from ..complexity import AnalysisKind, ExecutionPlan, estimate_plan
from ..errors import DataStoreError, OperationExecutionFailure, ValidationFailure
from ..parsing import parse_json_object
from ..router.contracts import CandidateParameterSet, ValidatedParameterSet, ValidationOutcome
from ..router.validation import all_time_range, validate
from ..store.base import SalesStore
from ..temporal import business_zone, is_all_time
from . import executors
from .contracts import (
    OPERATION_ARGUMENTS_ADAPTER,
    AdvancedAnalyticsArgs,
    BestPerformingDaysArgs,
    BusinessOverviewArgs,
    CompareLocationsArgs,
    ComparePeriodsArgs,
    CustomTimeRangeMetricsArgs,
    LocationBreakdownByMonthArgs,
    LocationMetricsArgs,
    LocationRankingsArgs,
    OperationArguments,
    OperationArgs,
    OperationResult,
    ProductCategoriesArgs,
    ProductLocationAnalysisArgs,
    QuerySalesArgs,
    SeasonalTrendsArgs,
    TimeBasedMetricsArgs,
    TopProductsArgs,
)
from .executors import ExecutionContext

logger = logging.getLogger(__name__)

Handler = Callable[[Any, ValidatedParameterSet, ExecutionContext], OperationResult]


@dataclass(frozen=True)
class OperationSpec:
    name: str
    description: str
    args_model: type[OperationArgs]
    handler: Handler
    analysis_kind: AnalysisKind = "simple"


_SPECS: tuple[OperationSpec, ...] = (
    OperationSpec(
        "get_custom_time_range_metrics",
        "Get metrics for any natural-language time period such as 'August 2025', 'Q1 2024', "
        "'last 3 weeks' or '2025-08-01 to 2025-08-15'. Use when the period is not one of the fixed timeframes.",
        CustomTimeRangeMetricsArgs,
        executors.custom_time_range_metrics,
    ),
    OperationSpec(
        "get_time_based_metrics",
        "Get sales metrics (revenue, transactions, quantity, average transaction, unique items) for a fixed "
        "timeframe across all locations.",
        TimeBasedMetricsArgs,
        executors.time_based_metrics,
    ),
    OperationSpec(
        "compare_periods",
        "Compare performance between two time periods and calculate period-over-period growth rates.",
        ComparePeriodsArgs,
        executors.compare_periods,
    ),
    OperationSpec(
        "get_best_performing_days",
        "Find the best performing days, weeks or months ranked by revenue, transactions or quantity.",
        BestPerformingDaysArgs,
        executors.best_performing_days,
        "trend",
    ),
    OperationSpec(
        "get_seasonal_trends",
        "Analyze patterns: weekend vs weekday, hourly patterns, monthly trends or seasonal performance.",
        SeasonalTrendsArgs,
        executors.seasonal_trends,
        "trend",
    ),
    OperationSpec(
        "get_location_metrics",
        "Get metrics for one or more specific locations, including market share and efficiency.",
        LocationMetricsArgs,
        executors.location_metrics,
    ),
    OperationSpec(
        "compare_locations",
        "Compare locations: a specific pair (e.g. Bloor vs Kingston), top vs bottom, all ranked, or market share.",
        CompareLocationsArgs,
        executors.compare_locations,
        "cross_dimensional",
    ),
    OperationSpec(
        "get_location_rankings",
        "Rank all locations by revenue, transactions, average transaction, efficiency or unique items. "
        "Use for best/worst/top location questions.",
        LocationRankingsArgs,
        executors.location_rankings,
    ),
    OperationSpec(
        "get_location_breakdown_by_month",
        "Break down every location's performance for one specific month.",
        LocationBreakdownByMonthArgs,
        executors.location_breakdown_by_month,
        "trend",
    ),
    OperationSpec(
        "get_top_products",
        "Get the top selling products ranked by revenue, quantity, transaction count or average price.",
        TopProductsArgs,
        executors.top_products,
    ),
    OperationSpec(
        "get_product_location_analysis",
        "Analyze products across locations: top item per location, one item's distribution, the location "
        "with the most distinct items, or a cross-location comparison of one item.",
        ProductLocationAnalysisArgs,
        executors.product_location_analysis,
        "cross_dimensional",
    ),
    OperationSpec(
        "get_product_categories",
        "Analyze product categories: top categories, unique item counts, product mix or price analysis.",
        ProductCategoriesArgs,
        executors.product_categories,
    ),
    OperationSpec(
        "get_business_overview",
        "Get an all-time business overview with totals, averages, growth rates and peak performance.",
        BusinessOverviewArgs,
        executors.business_overview,
    ),
    OperationSpec(
        "get_advanced_analytics",
        "Advanced analytics: business health check, efficiency analysis or revenue forecasting.",
        AdvancedAnalyticsArgs,
        executors.advanced_analytics,
        "trend",
    ),
    OperationSpec(
        "query_sales",
        "Flexible aggregate over sales with optional time period, location and item filters, grouping, "
        "ordering and a row limit. Use only when no other operation fits.",
        QuerySalesArgs,
        executors.query_sales,
    ),
)

OPERATION_SPECS: Dict[str, OperationSpec] = {spec.name: spec for spec in _SPECS}
_HANDLERS: Dict[type, Handler] = {spec.args_model: spec.handler for spec in _SPECS}


def _check_handler_table() -> None:
    variants = set(get_args(get_args(OperationArguments)[0]))
    missing = sorted(model.__name__ for model in variants - set(_HANDLERS))
    unknown = sorted(model.__name__ for model in set(_HANDLERS) - variants)
    if missing or unknown:
        raise RuntimeError(f"operation handler table mismatch missing={missing} unknown={unknown}")
    for spec in _SPECS:
        tag = spec.args_model.model_fields["operation"].default
        if tag != spec.name:
            raise RuntimeError(f"operation {spec.name} is tagged {tag}")


_check_handler_table()


# ============================================================================
# TOOL CATALOG
# ============================================================================
def input_schema(spec: OperationSpec) -> Dict[str, Any]:
    schema = spec.args_model.model_json_schema()
    schema.pop("title", None)
    schema.pop("description", None)
    properties = schema.get("properties") or {}
    properties.pop("operation", None)
    schema["properties"] = properties
    schema["required"] = [name for name in schema.get("required", []) if name != "operation"]
    schema["additionalProperties"] = False
    return schema


def tool_specs(names: Iterable[str] | None = None) -> list[Dict[str, Any]]:
    selected = list(names) if names is not None else list(OPERATION_SPECS)
    return [
        {
            "toolSpec": {
                "name": name,
                "description": OPERATION_SPECS[name].description,
                "inputSchema": {"json": input_schema(OPERATION_SPECS[name])},
            }
        }
        for name in selected
    ]


def tool_config(names: Iterable[str] | None = None) -> Dict[str, Any]:
    return {"tools": tool_specs(names), "toolChoice": {"auto": {}}}


# ============================================================================
# INVOCATIONS
# ============================================================================
@dataclass(frozen=True)
class OperationInvocation:
    name: str
    arguments: OperationArgs
    correlation_id: str

    def argument_payload(self) -> Dict[str, Any]:
        return self.arguments.model_dump(exclude={"operation"})


def new_correlation_id() -> str:
    return f"call_{uuid.uuid4().hex[:8]}"


def parse_invocation(name: str, arguments: Any, correlation_id: str = "") -> OperationInvocation:
    """Build a typed invocation; unknown names raise ``KeyError``, bad arguments ``ValidationFailure``."""
    if name not in OPERATION_SPECS:
        raise KeyError(name)
    if isinstance(arguments, str):
        parsed = parse_json_object(arguments)
        if not parsed.matched:
            raise ValidationFailure(f"arguments for {name} are not a JSON object", [parsed.reason])
        arguments = parsed.value
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ValidationFailure(f"arguments for {name} must be an object", [type(arguments).__name__])
    try:
        typed = OPERATION_ARGUMENTS_ADAPTER.validate_python({**arguments, "operation": name})
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in item['loc'][1:]) or '$'}: {item['msg']}"
            for item in exc.errors()
        ]
        raise ValidationFailure(f"invalid arguments for {name}", errors) from exc
    return OperationInvocation(name=name, arguments=typed, correlation_id=correlation_id or new_correlation_id())


_CANDIDATE_METRICS = {
    "market_share": "revenue",
    "efficiency": "avg_transaction",
    "transaction_count": "count",
    "transactions": "count",
    "avg_price": "avg_item_price",
    "avg_order_value": "avg_transaction",
    "total_revenue": "revenue",
    "total_transactions": "count",
    "avg_daily_revenue": "revenue",
    "avg_weekly_revenue": "revenue",
    "avg_monthly_revenue": "revenue",
}


def _metrics(names: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(_CANDIDATE_METRICS.get(name, name) for name in names))


def _timeframe(token: str | None, now: datetime | None) -> Dict[str, Any]:
    if token is None or is_all_time(token):
        return {"date_ranges": [all_time_range(now)]}
    return {"time_description": token}


def candidate_for(args: OperationArgs, *, now: datetime | None = None) -> CandidateParameterSet:
    """Translate typed operation arguments into the shared parameter candidate."""
    fields: Dict[str, Any] = {"source": "reasoning"}
    if isinstance(args, CustomTimeRangeMetricsArgs):
        fields.update(time_description=args.time_description, metrics=_metrics(args.metrics))
        if args.include_daily_breakdown:
            fields["group_by"] = ["day"]
    elif isinstance(args, (TimeBasedMetricsArgs, ComparePeriodsArgs)):
        fields.update(_timeframe(args.timeframe_token, now), metrics=_metrics(args.metrics))
    elif isinstance(args, BestPerformingDaysArgs):
        fields.update(
            _timeframe(args.timeframe, now),
            metrics=_metrics([args.metric]),
            group_by=[args.group_by],
            order_by={"field": args.metric, "direction": "desc"},
            limit=args.limit,
        )
    elif isinstance(args, SeasonalTrendsArgs):
        grouping = {
            "weekend_vs_weekday": "day_of_week",
            "hourly_patterns": "hour",
            "monthly_trends": "month",
            "seasonal": "quarter",
        }[args.analysis_type]
        fields.update(_timeframe(args.timeframe, now), metrics=_metrics([args.metric]), group_by=[grouping])
    elif isinstance(args, LocationMetricsArgs):
        fields.update(_timeframe(args.timeframe, now), metrics=_metrics(args.metrics), location_names=list(args.locations))
        fields["group_by"] = ["location"]
    elif isinstance(args, CompareLocationsArgs):
        fields.update(_timeframe(args.timeframe, now), metrics=_metrics([args.metric]), group_by=["location"])
        if args.comparison_type == "specific_pair":
            fields["location_names"] = [args.location_a, args.location_b]
    elif isinstance(args, LocationRankingsArgs):
        metric = {
            "by_revenue": "revenue",
            "by_transactions": "count",
            "by_avg_transaction": "avg_transaction",
            "by_efficiency": "avg_transaction",
            "by_unique_items": "unique_items",
        }[args.ranking_type]
        direction = "desc" if args.order == "highest_to_lowest" else "asc"
        fields.update(
            _timeframe(args.timeframe, now),
            metrics=[metric],
            group_by=["location"],
            order_by={"field": metric, "direction": direction},
        )
    elif isinstance(args, LocationBreakdownByMonthArgs):
        fields.update(
            time_description=args.month_year,
            metrics=_metrics(["revenue", "transactions", args.sort_by]),
            group_by=["location"],
        )
    elif isinstance(args, TopProductsArgs):
        fields.update(
            _timeframe(args.timeframe, now),
            metrics=_metrics([args.ranking_metric]),
            group_by=["item"],
            order_by={"field": _metrics([args.ranking_metric])[0], "direction": "desc"},
            limit=args.limit,
        )
        if args.location:
            fields["location_names"] = [args.location]
    elif isinstance(args, ProductLocationAnalysisArgs):
        fields.update(_timeframe(args.timeframe, now), metrics=_metrics([args.metric]), group_by=["item", "location"])
        if args.specific_item and args.analysis_type in {"item_distribution", "cross_location_comparison"}:
            fields["items"] = [args.specific_item.strip()]
    elif isinstance(args, ProductCategoriesArgs):
        fields.update(_timeframe(args.timeframe, now), metrics=["revenue", "quantity", "unique_items"])
        if args.location:
            fields["location_names"] = [args.location]
    elif isinstance(args, BusinessOverviewArgs):
        fields.update(_timeframe(None, now), metrics=_metrics(args.metrics))
    elif isinstance(args, AdvancedAnalyticsArgs):
        fields.update(_timeframe(args.timeframe, now), metrics=["revenue", "count", "avg_transaction"])
    elif isinstance(args, QuerySalesArgs):
        if args.time_description:
            fields.update(_timeframe(args.time_description, now))
        fields.update(
            location_names=list(args.locations),
            items=list(args.items),
            metrics=list(args.metrics),
            group_by=list(args.group_by),
            aggregation=args.aggregation,
            limit=args.limit,
        )
        if args.group_by:
            fields["order_by"] = {"field": args.metrics[0], "direction": args.sort_direction}
    else:
        raise TypeError(f"no parameter mapping for {type(args).__name__}")
    return CandidateParameterSet(**fields)


# ============================================================================
# EXECUTION
# ============================================================================
@dataclass
class InvocationOutcome:
    name: str
    correlation_id: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    status: str = "success"
    result: OperationResult | None = None
    error: str = ""
    error_type: str = ""
    validation: ValidationOutcome | None = None
    plan: ExecutionPlan | None = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def failure(
        cls,
        name: str,
        correlation_id: str,
        exc: BaseException,
        *,
        arguments: Dict[str, Any] | None = None,
    ) -> "InvocationOutcome":
        return cls(
            name=name,
            correlation_id=correlation_id,
            arguments=dict(arguments or {}),
            status="error",
            error=str(exc),
            error_type=type(exc).__name__,
        )

    def tool_payload(self) -> Dict[str, Any]:
        if not self.ok:
            return {"status": "error", "error_type": self.error_type, "error": self.error}
        payload: Dict[str, Any] = {"status": "success", "result": self.result.to_payload() if self.result else {}}
        if self.validation is not None and self.validation.fallback_used:
            payload["note"] = "Parameters could not be resolved; results cover the default trailing window."
        return payload

    def to_metadata(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "name": self.name,
            "correlation_id": self.correlation_id,
            "status": self.status,
            "latency_ms": self.latency_ms,
        }
        if self.error:
            meta["error_type"] = self.error_type
            meta["error"] = self.error
        if self.validation is not None:
            meta["parameters"] = self.validation.params.summary()
            meta["repaired"] = self.validation.repaired
            meta["fallback_used"] = self.validation.fallback_used
            if self.validation.repairs:
                meta["repairs"] = list(self.validation.repairs)
        if self.plan is not None:
            meta["plan"] = self.plan.to_metadata()
        return meta


def execute_invocation(
    invocation: OperationInvocation,
    *,
    store: SalesStore,
    utterance: str = "",
    now: datetime | None = None,
    params: ValidatedParameterSet | None = None,
) -> InvocationOutcome:
    """Validate, plan and run one invocation.

    Executor failures come back as an error outcome so sibling invocations
    keep running. ``DataStoreError`` propagates: the store being unreachable
    is not something a single invocation can recover from.
    """
    started = time.perf_counter()
    spec = OPERATION_SPECS[invocation.name]
    outcome = InvocationOutcome(
        name=invocation.name,
        correlation_id=invocation.correlation_id,
        arguments=invocation.argument_payload(),
    )
    try:
        if params is None:
            outcome.validation = validate(candidate_for(invocation.arguments, now=now), utterance=utterance, now=now)
            params = outcome.validation.params
        outcome.plan = estimate_plan(params, invocation.name, analysis_kind=spec.analysis_kind, now=now)
        context = ExecutionContext(store=store, now=now, tz=business_zone(), correlation_id=invocation.correlation_id)
        outcome.result = _HANDLERS[type(invocation.arguments)](invocation.arguments, params, context)
    except DataStoreError:
        raise
    except OperationExecutionFailure as exc:
        outcome.status, outcome.error, outcome.error_type = "error", str(exc), type(exc).__name__
        logger.warning("operation_failed name=%s id=%s error=%s", invocation.name, invocation.correlation_id, exc)
    except Exception as exc:
        outcome.status, outcome.error, outcome.error_type = "error", str(exc), type(exc).__name__
        logger.exception("operation_crashed name=%s id=%s", invocation.name, invocation.correlation_id)
    finally:
        outcome.latency_ms = int((time.perf_counter() - started) * 1000)
    return outcome
