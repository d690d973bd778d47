"""Operation executors.

Every executor receives its typed arguments, the validated parameter set and
an ``ExecutionContext`` carrying the injected store. Aggregation happens in
Python over the store's completed orders and line items; amounts stay in
integer cents inside ``_Bucket`` and are converted to dollars only when a
``ResultRow`` is built.
"""
from __future__ import annotations

import calendar
import logging
import statistics
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Sequence
from zoneinfo import ZoneInfo

from ..catalog import item_matches, location_name
from ..config import DEFAULT_RESULT_LIMIT, MAX_GROUPED_RESULTS
from ..errors import NoMatchingRows, UnsupportedVariant
from ..router.contracts import DateRange, ValidatedParameterSet
from ..store.base import LineItemRecord, OrderRecord, SalesStore
from ..temporal import TimeWindow, business_zone, default_window, shift_window
from .contracts import (
    AdvancedAnalyticsArgs,
    BestPerformingDaysArgs,
    BusinessOverviewArgs,
    CompareLocationsArgs,
    ComparePeriodsArgs,
    CustomTimeRangeMetricsArgs,
    LocationBreakdownByMonthArgs,
    LocationMetricsArgs,
    LocationRankingsArgs,
    OperationResult,
    ProductCategoriesArgs,
    ProductLocationAnalysisArgs,
    QuerySalesArgs,
    ResultRow,
    SeasonalTrendsArgs,
    TimeBasedMetricsArgs,
    TopProductsArgs,
)

logger = logging.getLogger(__name__)

METRIC_ALIASES = {
    "transaction_count": "count",
    "transactions": "count",
    "avg_price": "avg_item_price",
    "avg_order_value": "avg_transaction",
    "efficiency": "avg_transaction",
    "total_revenue": "revenue",
    "total_transactions": "count",
}
LINE_METRICS = {"quantity", "items_per_sale", "avg_item_price", "unique_items"}
SEASONS = {12: "Winter", 1: "Winter", 2: "Winter", 3: "Spring", 4: "Spring", 5: "Spring",
           6: "Summer", 7: "Summer", 8: "Summer", 9: "Fall", 10: "Fall", 11: "Fall"}
UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class ExecutionContext:
    store: SalesStore
    now: datetime | None = None
    tz: ZoneInfo = field(default_factory=business_zone)
    correlation_id: str = ""


class _Bucket:
    __slots__ = ("cents", "order_ids", "quantity", "item_names", "item_cents", "unit_prices")

    def __init__(self) -> None:
        self.cents = 0
        self.order_ids: set[str] = set()
        self.quantity = 0
        self.item_names: set[str] = set()
        self.item_cents = 0
        self.unit_prices: list[float] = []

    def add_order(self, order: OrderRecord) -> None:
        self.cents += order.total_cents
        self.order_ids.add(order.id)

    def add_line(self, line: LineItemRecord, *, primary: bool) -> None:
        if primary:
            self.cents += line.total_cents
            self.order_ids.add(line.order_id)
        self.quantity += line.quantity
        self.item_cents += line.total_cents
        self.item_names.add(line.name.strip().lower())
        if line.quantity > 0:
            self.unit_prices.append(line.total_cents / line.quantity)

    def merge(self, other: "_Bucket") -> None:
        self.cents += other.cents
        self.order_ids |= other.order_ids
        self.quantity += other.quantity
        self.item_cents += other.item_cents
        self.item_names |= other.item_names
        self.unit_prices.extend(other.unit_prices)

    @property
    def count(self) -> int:
        return len(self.order_ids)

    def value(self, metric: str) -> float:
        name = METRIC_ALIASES.get(metric, metric)
        count = self.count
        if name == "revenue":
            return round(self.cents / 100.0, 2)
        if name == "count":
            return float(count)
        if name == "quantity":
            return float(self.quantity)
        if name == "avg_transaction":
            return round(self.cents / 100.0 / count, 2) if count else 0.0
        if name == "items_per_sale":
            return round(self.quantity / count, 2) if count else 0.0
        if name == "avg_item_price":
            return round(self.item_cents / 100.0 / self.quantity, 2) if self.quantity else 0.0
        if name == "unique_items":
            return float(len(self.item_names))
        raise ValueError(f"unknown metric: {metric}")

    def metrics(self, names: Iterable[str]) -> Dict[str, float]:
        return {name: self.value(name) for name in names}


def _bounds(date_range: DateRange) -> tuple[datetime | None, datetime | None]:
    if date_range.is_all_time:
        return None, None
    return date_range.start, date_range.end


def _as_window(date_range: DateRange) -> TimeWindow:
    return TimeWindow(start=date_range.start, end=date_range.end, label=date_range.label)


def _period_info(date_range: DateRange) -> Dict[str, Any]:
    start, end = _bounds(date_range)
    return {
        "period": date_range.label,
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
    }


def _dimension_value(dimension: str, record: OrderRecord | LineItemRecord, tz: ZoneInfo) -> Any:
    if dimension == "location":
        return record.location_id
    if dimension == "item":
        return getattr(record, "name", "").strip()
    if dimension == "category":
        return (getattr(record, "category", "") or "").strip() or UNCATEGORIZED
    local = record.occurred_at.astimezone(tz)
    if dimension == "day":
        return local.date().isoformat()
    if dimension == "week":
        return (local.date() - timedelta(days=local.weekday())).isoformat()
    if dimension == "month":
        return f"{local.year}-{local.month:02d}"
    if dimension == "quarter":
        return f"{local.year}-Q{(local.month - 1) // 3 + 1}"
    if dimension == "year":
        return str(local.year)
    if dimension == "day_of_week":
        return calendar.day_name[local.weekday()]
    if dimension == "hour":
        return local.hour
    raise ValueError(f"unknown dimension: {dimension}")


def _aggregate(
    ctx: ExecutionContext,
    date_range: DateRange,
    *,
    dimensions: Sequence[str] = (),
    metrics: Iterable[str] = (),
    location_ids: Sequence[str] = (),
    items: Sequence[str] = (),
) -> Dict[tuple, _Bucket]:
    """Group completed sales in ``date_range`` by ``dimensions``.

    Grouping by item, by category, or filtering on items switches to
    line-item mode: revenue and counts then come from matching line items
    rather than order totals.
    """
    start, end = _bounds(date_range)
    names = {METRIC_ALIASES.get(name, name) for name in metrics}
    item_mode = bool(items) or "item" in dimensions or "category" in dimensions
    buckets: Dict[tuple, _Bucket] = {}

    lines: list[LineItemRecord] = []
    if item_mode or names & LINE_METRICS:
        lines = ctx.store.fetch_line_items(start=start, end=end, location_ids=location_ids)
        if items:
            lines = [line for line in lines if any(item_matches(item, line.name) for item in items)]

    if item_mode:
        for line in lines:
            key = tuple(_dimension_value(dimension, line, ctx.tz) for dimension in dimensions)
            buckets.setdefault(key, _Bucket()).add_line(line, primary=True)
        logger.debug("aggregated mode=line_items dimensions=%s groups=%s", list(dimensions), len(buckets))
        return buckets

    for order in ctx.store.fetch_orders(start=start, end=end, location_ids=location_ids):
        key = tuple(_dimension_value(dimension, order, ctx.tz) for dimension in dimensions)
        buckets.setdefault(key, _Bucket()).add_order(order)
    for line in lines:
        key = tuple(_dimension_value(dimension, line, ctx.tz) for dimension in dimensions)
        buckets.setdefault(key, _Bucket()).add_line(line, primary=False)
    logger.debug("aggregated mode=orders dimensions=%s groups=%s", list(dimensions), len(buckets))
    return buckets


def _totals(ctx: ExecutionContext, params: ValidatedParameterSet, metrics: Iterable[str], date_range: DateRange | None = None) -> _Bucket:
    buckets = _aggregate(
        ctx,
        date_range or params.primary_range,
        metrics=metrics,
        location_ids=params.location_ids,
        items=params.items,
    )
    return buckets.get((), _Bucket())


def _render_dimensions(dimensions: Sequence[str], key: tuple) -> Dict[str, Any]:
    rendered: Dict[str, Any] = {}
    for dimension, value in zip(dimensions, key):
        if dimension == "location":
            rendered["location"] = location_name(value)
            rendered["location_id"] = value
        else:
            rendered[dimension] = value
    return rendered


def _rows(buckets: Dict[tuple, _Bucket], dimensions: Sequence[str], metrics: Sequence[str]) -> list[ResultRow]:
    return [
        ResultRow(dimensions=_render_dimensions(dimensions, key), metrics=bucket.metrics(metrics))
        for key, bucket in buckets.items()
    ]


def _sorted(rows: list[ResultRow], metric: str, *, descending: bool = True) -> list[ResultRow]:
    return sorted(rows, key=lambda row: row.metrics.get(metric, 0.0), reverse=descending)


def _chronological(rows: list[ResultRow], dimension: str) -> list[ResultRow]:
    return sorted(rows, key=lambda row: row.dimensions.get(dimension))


def _location_universe(ctx: ExecutionContext, buckets: Dict[tuple, _Bucket]) -> list[str]:
    known = [record.location_id for record in ctx.store.list_locations()]
    seen = [key[0] for key in buckets if key and key[0] not in known]
    return known + seen


def _by_location(
    ctx: ExecutionContext,
    params: ValidatedParameterSet,
    metrics: Iterable[str],
    *,
    location_ids: Sequence[str] = (),
    include_empty: bool = True,
) -> Dict[tuple, _Bucket]:
    buckets = _aggregate(
        ctx,
        params.primary_range,
        dimensions=("location",),
        metrics=metrics,
        location_ids=location_ids,
        items=params.items,
    )
    if include_empty:
        wanted = set(location_ids)
        for location_id in _location_universe(ctx, buckets):
            if wanted and location_id not in wanted:
                continue
            buckets.setdefault((location_id,), _Bucket())
    return buckets


def _location_rows(
    buckets: Dict[tuple, _Bucket],
    metrics: Sequence[str],
    *,
    total_cents: int | None = None,
) -> list[ResultRow]:
    if total_cents is None:
        total_cents = sum(bucket.cents for bucket in buckets.values())
    rows = []
    for key, bucket in buckets.items():
        values: Dict[str, float] = {}
        for metric in metrics:
            if metric == "market_share":
                values[metric] = round(bucket.cents / total_cents * 100.0, 2) if total_cents else 0.0
            else:
                values[metric] = bucket.value(metric)
        rows.append(ResultRow(dimensions=_render_dimensions(("location",), key), metrics=values))
    return rows


def _growth(primary: float, baseline: float) -> float:
    if not baseline:
        return 0.0
    return round((primary - baseline) / baseline * 100.0, 2)


def _top_location(ctx: ExecutionContext, params: ValidatedParameterSet) -> Dict[str, Any] | None:
    buckets = _aggregate(
        ctx,
        params.primary_range,
        dimensions=("location",),
        metrics=("revenue",),
        location_ids=params.location_ids,
        items=params.items,
    )
    if not buckets:
        return None
    key, bucket = max(buckets.items(), key=lambda pair: pair[1].cents)
    return {"location": location_name(key[0]), "location_id": key[0], "revenue": bucket.value("revenue")}


def _require_rows(rows: list[ResultRow], ctx: ExecutionContext, operation: str, what: str) -> list[ResultRow]:
    if not rows:
        raise NoMatchingRows(f"No {what} found for the requested period", operation=operation, correlation_id=ctx.correlation_id)
    return rows


# ============================================================================
# TIME WINDOW OPERATIONS
# ============================================================================
def _window_metrics(
    operation: str,
    metrics: Sequence[str],
    params: ValidatedParameterSet,
    ctx: ExecutionContext,
    *,
    include_top_location: bool,
    include_daily_breakdown: bool = False,
) -> OperationResult:
    date_range = params.primary_range
    totals = _totals(ctx, params, metrics)
    rows = [ResultRow(dimensions={"period": date_range.label}, metrics=totals.metrics(metrics))]
    summary = _period_info(date_range)
    if include_top_location:
        summary["top_location"] = _top_location(ctx, params)
    if include_daily_breakdown:
        daily = _aggregate(
            ctx,
            date_range,
            dimensions=("day",),
            metrics=metrics,
            location_ids=params.location_ids,
            items=params.items,
        )
        rows.extend(_chronological(_rows(daily, ("day",), metrics), "day"))
    return OperationResult(operation=operation, timeframe=params.timeframe, rows=rows, summary=summary)


def custom_time_range_metrics(args: CustomTimeRangeMetricsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    return _window_metrics(
        args.operation,
        list(args.metrics),
        params,
        ctx,
        include_top_location=args.include_top_location,
        include_daily_breakdown=args.include_daily_breakdown,
    )


def time_based_metrics(args: TimeBasedMetricsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    return _window_metrics(
        args.operation,
        list(args.metrics),
        params,
        ctx,
        include_top_location=args.include_top_location,
    )


_COMPARISON_SHIFTS = {
    "previous_day": {"days": -1},
    "previous_week": {"days": -7},
    "previous_month": {"months": -1},
    "previous_year": {"months": -12},
}


def compare_periods(args: ComparePeriodsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    primary_range = params.primary_range
    baseline_window = shift_window(
        _as_window(primary_range),
        label=f"{primary_range.label} ({args.comparison_period.replace('_', ' ')})",
        tz=ctx.tz,
        **_COMPARISON_SHIFTS[args.comparison_period],
    )
    baseline_range = DateRange(start=baseline_window.start, end=baseline_window.end, label=baseline_window.label)
    metrics = list(args.metrics)
    primary = _totals(ctx, params, metrics, primary_range).metrics(metrics)
    baseline = _totals(ctx, params, metrics, baseline_range).metrics(metrics)
    rows = [
        ResultRow(dimensions={"period": primary_range.label, "role": "primary"}, metrics=primary),
        ResultRow(dimensions={"period": baseline_range.label, "role": "comparison"}, metrics=baseline),
    ]
    summary = {
        "primary": _period_info(primary_range),
        "comparison": _period_info(baseline_range),
        "growth_rates": {metric: _growth(primary[metric], baseline[metric]) for metric in metrics},
        "changes": {metric: round(primary[metric] - baseline[metric], 2) for metric in metrics},
    }
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


def best_performing_days(args: BestPerformingDaysArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    dimensions = (args.group_by,)
    metrics = [args.metric] + [name for name in ("revenue", "count") if name != args.metric]
    buckets = _aggregate(
        ctx,
        params.primary_range,
        dimensions=dimensions,
        metrics=metrics,
        location_ids=params.location_ids,
        items=params.items,
    )
    rows = _require_rows(_sorted(_rows(buckets, dimensions, metrics), args.metric), ctx, args.operation, "sales")
    ranked = [
        ResultRow(dimensions={**row.dimensions, "rank": index}, metrics=row.metrics)
        for index, row in enumerate(rows[: args.limit], start=1)
    ]
    summary = {**_period_info(params.primary_range), "group_by": args.group_by, "ranked_by": args.metric}
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=ranked, summary=summary)


def _fold(buckets: Dict[tuple, _Bucket], key_fn: Callable[[Any], Any]) -> Dict[tuple, tuple[_Bucket, int]]:
    folded: Dict[tuple, tuple[_Bucket, int]] = {}
    for key, bucket in buckets.items():
        target = (key_fn(key[0]),)
        merged, periods = folded.get(target, (_Bucket(), 0))
        merged.merge(bucket)
        folded[target] = (merged, periods + 1)
    return folded


def _weekday_segment(day_iso: str) -> str:
    return "weekend" if date.fromisoformat(day_iso).weekday() >= 5 else "weekday"


def _season(month_key: str) -> str:
    return SEASONS[int(month_key.split("-")[1])]


def seasonal_trends(args: SeasonalTrendsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metric = args.metric
    metrics = [metric] if metric == "revenue" else [metric, "revenue"]
    base_dimension = {
        "weekend_vs_weekday": "day",
        "hourly_patterns": "hour",
        "monthly_trends": "month",
        "seasonal": "month",
    }[args.analysis_type]
    buckets = _aggregate(
        ctx,
        params.primary_range,
        dimensions=(base_dimension,),
        metrics=metrics,
        location_ids=params.location_ids,
        items=params.items,
    )
    summary = {**_period_info(params.primary_range), "analysis_type": args.analysis_type, "metric": metric}

    if args.analysis_type in {"hourly_patterns", "monthly_trends"}:
        rows = _chronological(_rows(buckets, (base_dimension,), metrics), base_dimension)
        rows = _require_rows(rows, ctx, args.operation, "sales")
        peak = max(rows, key=lambda row: row.metrics.get(metric, 0.0))
        summary["peak"] = peak.dimensions.get(base_dimension)
        return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)

    dimension = "segment" if args.analysis_type == "weekend_vs_weekday" else "season"
    key_fn = _weekday_segment if dimension == "segment" else _season
    rows = []
    for key, (bucket, periods) in _fold(buckets, key_fn).items():
        values = bucket.metrics(metrics)
        # Averages are per active day (weekday split) or per active month (seasons).
        values[f"avg_{metric}_per_period"] = round(bucket.value(metric) / periods, 2) if periods else 0.0
        rows.append(ResultRow(dimensions={dimension: key[0], "active_periods": periods}, metrics=values))
    rows = _require_rows(_sorted(rows, f"avg_{metric}_per_period"), ctx, args.operation, "sales")
    summary["leader"] = rows[0].dimensions[dimension]
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


# ============================================================================
# LOCATION OPERATIONS
# ============================================================================
def location_metrics(args: LocationMetricsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metrics = list(dict.fromkeys(["revenue", *args.metrics]))
    everything = _by_location(ctx, params, metrics)
    total_cents = sum(bucket.cents for bucket in everything.values())
    wanted = set(params.location_ids)
    selected = {key: bucket for key, bucket in everything.items() if not wanted or key[0] in wanted}
    rows = _sorted(_location_rows(selected, metrics, total_cents=total_cents), "revenue")
    summary = {**_period_info(params.primary_range), "total_revenue": round(total_cents / 100.0, 2)}
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


def compare_locations(args: CompareLocationsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metric = args.metric
    metrics = list(dict.fromkeys([metric, "revenue", "count", "market_share"]))
    everything = _by_location(ctx, params, metrics)
    total_cents = sum(bucket.cents for bucket in everything.values())
    summary: Dict[str, Any] = {
        **_period_info(params.primary_range),
        "comparison_type": args.comparison_type,
        "metric": metric,
    }

    if args.comparison_type == "specific_pair":
        pair = [location_id for location_id in params.location_ids][:2]
        selected = {key: bucket for key, bucket in everything.items() if key[0] in pair}
        rows = _sorted(_location_rows(selected, metrics, total_cents=total_cents), metric)
        if len(rows) == 2:
            leader, other = rows
            difference = round(leader.metrics[metric] - other.metrics[metric], 2)
            summary["leader"] = leader.dimensions["location"]
            summary["difference"] = difference
            summary["difference_pct"] = _growth(leader.metrics[metric], other.metrics[metric])
        return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)

    ranked_metric = "market_share" if args.comparison_type == "market_share" else metric
    rows = _sorted(_location_rows(everything, metrics, total_cents=total_cents), ranked_metric)
    rows = _require_rows(rows, ctx, args.operation, "locations")
    if args.comparison_type == "top_vs_bottom" and len(rows) > 1:
        rows = [rows[0], rows[-1]]
        summary["gap"] = round(rows[0].metrics[metric] - rows[1].metrics[metric], 2)
    summary["total_revenue"] = round(total_cents / 100.0, 2)
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


_RANKING_METRICS = {
    "by_revenue": "revenue",
    "by_transactions": "count",
    "by_avg_transaction": "avg_transaction",
    "by_efficiency": "efficiency",
    "by_unique_items": "unique_items",
}


def location_rankings(args: LocationRankingsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metric = _RANKING_METRICS[args.ranking_type]
    metrics = list(dict.fromkeys([metric, "revenue", "count"]))
    buckets = _by_location(ctx, params, metrics, location_ids=params.location_ids)
    descending = args.order == "highest_to_lowest"
    rows = _sorted(_location_rows(buckets, metrics), metric, descending=descending)
    rows = _require_rows(rows, ctx, args.operation, "locations")
    ranked = [
        ResultRow(dimensions={**row.dimensions, "rank": index}, metrics=row.metrics)
        for index, row in enumerate(rows, start=1)
    ]
    summary: Dict[str, Any] = {**_period_info(params.primary_range), "ranked_by": metric, "order": args.order}
    if args.include_statistics:
        values = [row.metrics[metric] for row in ranked]
        summary["statistics"] = {
            "mean": round(statistics.fmean(values), 2),
            "median": round(statistics.median(values), 2),
            "spread": round(max(values) - min(values), 2),
            "total": round(sum(values), 2),
        }
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=ranked, summary=summary)


_BREAKDOWN_SORT = {"revenue": "revenue", "transactions": "count", "avg_order_value": "avg_transaction"}


def location_breakdown_by_month(
    args: LocationBreakdownByMonthArgs,
    params: ValidatedParameterSet,
    ctx: ExecutionContext,
) -> OperationResult:
    metrics = ["revenue", "count", "avg_transaction"] if args.include_performance_metrics else ["revenue"]
    sort_metric = _BREAKDOWN_SORT[args.sort_by]
    if sort_metric not in metrics:
        metrics.append(sort_metric)
    buckets = _by_location(ctx, params, metrics, location_ids=params.location_ids, include_empty=False)
    rows = _require_rows(_sorted(_location_rows(buckets, metrics), sort_metric), ctx, args.operation, "sales")
    summary: Dict[str, Any] = {**_period_info(params.primary_range), "sort_by": args.sort_by}
    if args.include_totals:
        total = _Bucket()
        for bucket in buckets.values():
            total.merge(bucket)
        summary["totals"] = total.metrics(["revenue", "count", "avg_transaction"])
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


# ============================================================================
# PRODUCT OPERATIONS
# ============================================================================
_PRODUCT_METRICS = {"revenue": "revenue", "quantity": "quantity", "transaction_count": "count", "avg_price": "avg_item_price"}


def top_products(args: TopProductsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metric = _PRODUCT_METRICS[args.ranking_metric]
    metrics = list(dict.fromkeys([metric, "revenue", "quantity"]))
    buckets = _aggregate(
        ctx,
        params.primary_range,
        dimensions=("item",),
        metrics=metrics,
        location_ids=params.location_ids,
    )
    rows = _require_rows(_sorted(_rows(buckets, ("item",), metrics), metric), ctx, args.operation, "products")
    ranked = [
        ResultRow(dimensions={**row.dimensions, "rank": index}, metrics=row.metrics)
        for index, row in enumerate(rows[: args.limit], start=1)
    ]
    summary = {
        **_period_info(params.primary_range),
        "ranked_by": args.ranking_metric,
        "location": location_name(params.location_ids[0]) if params.location_ids else None,
        "products_considered": len(rows),
    }
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=ranked, summary=summary)


def product_location_analysis(
    args: ProductLocationAnalysisArgs,
    params: ValidatedParameterSet,
    ctx: ExecutionContext,
) -> OperationResult:
    metric = _PRODUCT_METRICS[args.metric]
    metrics = list(dict.fromkeys([metric, "revenue", "quantity"]))
    summary: Dict[str, Any] = {**_period_info(params.primary_range), "analysis_type": args.analysis_type}

    if args.analysis_type == "top_item_per_location":
        buckets = _aggregate(ctx, params.primary_range, dimensions=("location", "item"), metrics=metrics)
        best: Dict[str, tuple[str, _Bucket]] = {}
        for (location_id, item), bucket in buckets.items():
            current = best.get(location_id)
            if current is None or bucket.value(metric) > current[1].value(metric):
                best[location_id] = (item, bucket)
        rows = [
            ResultRow(
                dimensions={**_render_dimensions(("location",), (location_id,)), "item": item},
                metrics=bucket.metrics(metrics),
            )
            for location_id, (item, bucket) in best.items()
        ]
        rows = _require_rows(_sorted(rows, metric), ctx, args.operation, "products")
        return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)

    if args.analysis_type == "location_with_most_items":
        metrics = ["unique_items", "quantity", "revenue"]
        buckets = _aggregate(ctx, params.primary_range, dimensions=("location", "item"), metrics=metrics)
        per_location: Dict[tuple, _Bucket] = {}
        for (location_id, _item), bucket in buckets.items():
            per_location.setdefault((location_id,), _Bucket()).merge(bucket)
        rows = _require_rows(_sorted(_location_rows(per_location, metrics), "unique_items"), ctx, args.operation, "products")
        summary["leader"] = rows[0].dimensions["location"]
        return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)

    # item_distribution and cross_location_comparison both follow one item across locations.
    item = params.items[0] if params.items else (args.specific_item or "")
    summary["item"] = item
    buckets = _aggregate(ctx, params.primary_range, dimensions=("location",), metrics=metrics, items=(item,))
    rows = _location_rows(buckets, metrics)
    if args.analysis_type == "item_distribution":
        total = sum(row.metrics[metric] for row in rows)
        rows = [
            ResultRow(
                dimensions=row.dimensions,
                metrics={**row.metrics, "share_pct": round(row.metrics[metric] / total * 100.0, 2) if total else 0.0},
            )
            for row in rows
        ]
    rows = _require_rows(_sorted(rows, metric), ctx, args.operation, f"sales of {item!r}")
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


def product_categories(args: ProductCategoriesArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metrics = ["revenue", "quantity", "unique_items", "avg_item_price"]
    buckets = _aggregate(
        ctx,
        params.primary_range,
        dimensions=("category",),
        metrics=metrics,
        location_ids=params.location_ids,
    )
    summary: Dict[str, Any] = {**_period_info(params.primary_range), "analysis_type": args.analysis_type}
    total_cents = sum(bucket.cents for bucket in buckets.values())
    rows = []
    for key, bucket in buckets.items():
        values = bucket.metrics(metrics)
        if args.analysis_type == "product_mix":
            values["revenue_share_pct"] = round(bucket.cents / total_cents * 100.0, 2) if total_cents else 0.0
        if args.analysis_type == "price_analysis" and bucket.unit_prices:
            values["min_unit_price"] = round(min(bucket.unit_prices) / 100.0, 2)
            values["max_unit_price"] = round(max(bucket.unit_prices) / 100.0, 2)
        rows.append(ResultRow(dimensions={"category": key[0]}, metrics=values))
    sort_metric = {
        "top_categories": "revenue",
        "unique_item_count": "unique_items",
        "product_mix": "revenue_share_pct",
        "price_analysis": "avg_item_price",
    }[args.analysis_type]
    rows = _require_rows(_sorted(rows, sort_metric), ctx, args.operation, "product categories")
    if args.analysis_type == "unique_item_count":
        merged = _Bucket()
        for bucket in buckets.values():
            merged.merge(bucket)
        summary["total_unique_items"] = int(merged.value("unique_items"))
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


# ============================================================================
# BUSINESS-WIDE OPERATIONS
# ============================================================================
def business_overview(args: BusinessOverviewArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    start, end = _bounds(params.primary_range)
    orders = ctx.store.fetch_orders(start=start, end=end, location_ids=params.location_ids)
    total = _Bucket()
    for order in orders:
        total.add_order(order)
    revenue = total.value("revenue")
    span_days = 0.0
    if orders:
        first = min(order.occurred_at for order in orders)
        last = max(order.occurred_at for order in orders)
        span_days = (last - first).total_seconds() / 86400.0

    values: Dict[str, float] = {}
    for metric in args.metrics:
        if metric == "total_revenue":
            values[metric] = revenue
        elif metric == "total_transactions":
            values[metric] = float(total.count)
        elif metric == "avg_transaction":
            values[metric] = total.value("avg_transaction")
        elif metric == "avg_daily_revenue":
            values[metric] = round(revenue / span_days, 2) if span_days > 0 else 0.0
        elif metric == "avg_weekly_revenue":
            values[metric] = round(revenue / (span_days / 7.0), 2) if span_days > 7 else 0.0
        elif metric == "avg_monthly_revenue":
            values[metric] = round(revenue / (span_days / 30.0), 2) if span_days > 30 else 0.0
    rows = [ResultRow(dimensions={"period": params.primary_range.label}, metrics=values)]
    summary: Dict[str, Any] = {**_period_info(params.primary_range), "span_days": round(span_days, 1)}

    if args.include_growth_rates:
        recent = default_window(now=ctx.now, tz=ctx.tz, days=30)
        prior = shift_window(recent, days=-30, label="Previous 30 days", tz=ctx.tz)
        recent_range = DateRange(start=recent.start, end=recent.end, label=recent.label)
        prior_range = DateRange(start=prior.start, end=prior.end, label=prior.label)
        recent_totals = _totals(ctx, params, ("revenue", "count"), recent_range)
        prior_totals = _totals(ctx, params, ("revenue", "count"), prior_range)
        summary["growth_rates"] = {
            "revenue_30d_pct": _growth(recent_totals.value("revenue"), prior_totals.value("revenue")),
            "transactions_30d_pct": _growth(recent_totals.value("count"), prior_totals.value("count")),
        }

    if args.include_peak_performance and orders:
        daily: Dict[str, _Bucket] = {}
        for order in orders:
            daily.setdefault(_dimension_value("day", order, ctx.tz), _Bucket()).add_order(order)
        day, bucket = max(daily.items(), key=lambda pair: pair[1].cents)
        summary["peak_day"] = {"day": day, "revenue": bucket.value("revenue"), "count": float(bucket.count)}
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


def _health_check(args: AdvancedAnalyticsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    current_range = params.primary_range
    length_days = max(1, round((current_range.end - current_range.start).total_seconds() / 86400.0))
    previous = shift_window(_as_window(current_range), days=-length_days, label="Previous period", tz=ctx.tz)
    previous_range = DateRange(start=previous.start, end=previous.end, label=previous.label)
    metrics = ["revenue", "count", "avg_transaction"]
    current = _totals(ctx, params, metrics, current_range).metrics(metrics)
    before = _totals(ctx, params, metrics, previous_range).metrics(metrics)
    growth = _growth(current["revenue"], before["revenue"])
    active = sum(1 for bucket in _by_location(ctx, params, ("revenue",), include_empty=False).values() if bucket.count)
    if growth > 5:
        status = "growing"
    elif growth < -5:
        status = "declining"
    else:
        status = "stable"
    rows = [
        ResultRow(dimensions={"period": current_range.label, "role": "current"}, metrics=current),
        ResultRow(dimensions={"period": previous_range.label, "role": "previous"}, metrics=before),
    ]
    summary = {
        **_period_info(current_range),
        "revenue_growth_pct": growth,
        "active_locations": active,
        "status": status,
        "focus_areas": list(args.focus_areas),
    }
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


def _efficiency(args: AdvancedAnalyticsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metrics = ["efficiency", "items_per_sale", "revenue", "count"]
    buckets = _by_location(ctx, params, metrics, include_empty=False)
    rows = _require_rows(_sorted(_location_rows(buckets, metrics), "efficiency"), ctx, args.operation, "sales")
    summary = {**_period_info(params.primary_range), "most_efficient": rows[0].dimensions["location"]}
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


def _forecast(args: AdvancedAnalyticsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metrics = ["revenue", "count"]
    buckets = _aggregate(ctx, params.primary_range, dimensions=("month",), metrics=metrics, location_ids=params.location_ids)
    rows = _require_rows(_chronological(_rows(buckets, ("month",), metrics), "month"), ctx, args.operation, "sales")
    series = [row.metrics["revenue"] for row in rows]
    deltas = [later - earlier for earlier, later in zip(series, series[1:])]
    trend = statistics.fmean(deltas) if deltas else 0.0
    summary = {
        **_period_info(params.primary_range),
        "method": "average_monthly_change",
        "monthly_trend": round(trend, 2),
        "forecast_next_month_revenue": round(max(0.0, series[-1] + trend), 2),
    }
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)


def advanced_analytics(args: AdvancedAnalyticsArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    if args.analysis_type == "business_health_check":
        return _health_check(args, params, ctx)
    if args.analysis_type == "efficiency_analysis":
        return _efficiency(args, params, ctx)
    if args.analysis_type == "forecasting":
        return _forecast(args, params, ctx)
    raise UnsupportedVariant(
        f"{args.analysis_type} analysis is not available: the sales data carries no customer or correlation inputs",
        operation=args.operation,
        correlation_id=ctx.correlation_id,
    )


# ============================================================================
# GENERIC QUERY
# ============================================================================
def _combine(values: list[float], aggregation: str) -> float:
    if not values:
        return 0.0
    if aggregation == "avg":
        return round(statistics.fmean(values), 2)
    if aggregation == "count":
        return float(len(values))
    if aggregation == "max":
        return max(values)
    if aggregation == "min":
        return min(values)
    return round(sum(values), 2)


def query_sales(args: QuerySalesArgs, params: ValidatedParameterSet, ctx: ExecutionContext) -> OperationResult:
    metrics = list(params.metrics)
    dimensions = tuple(params.group_by)
    buckets = _aggregate(
        ctx,
        params.primary_range,
        dimensions=dimensions,
        metrics=metrics,
        location_ids=params.location_ids,
        items=params.items,
    )
    summary: Dict[str, Any] = {**_period_info(params.primary_range), "aggregation": params.aggregation}
    if not dimensions:
        total = buckets.get((), _Bucket())
        rows = [ResultRow(dimensions={"period": params.primary_range.label}, metrics=total.metrics(metrics))]
        return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows, summary=summary)

    rows = _rows(buckets, dimensions, metrics)
    order_field = params.order_by.field if params.order_by else metrics[0]
    descending = (params.order_by.direction if params.order_by else args.sort_direction) == "desc"
    if order_field in metrics:
        rows = _sorted(rows, order_field, descending=descending)
    else:
        rows = sorted(rows, key=lambda row: str(row.dimensions.get(order_field, "")), reverse=descending)
    limit = min(params.limit or DEFAULT_RESULT_LIMIT, MAX_GROUPED_RESULTS)
    summary["total_groups"] = len(rows)
    summary["aggregate"] = {metric: _combine([row.metrics[metric] for row in rows], params.aggregation) for metric in metrics}
    return OperationResult(operation=args.operation, timeframe=params.timeframe, rows=rows[:limit], summary=summary)
