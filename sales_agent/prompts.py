from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from .catalog import LOCATION_NAMES
from .config import PROMPT_VERSION
from .temporal import UTC, business_zone, resolve_timeframe

TIMEFRAME_TOKENS = (
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "last_30_days",
    "last_90_days",
    "last_3_months",
    "this_year",
    "last_year",
)


def _timeframe_lines(now: datetime, tz: ZoneInfo) -> list[str]:
    lines: list[str] = []
    for token in TIMEFRAME_TOKENS:
        window = resolve_timeframe(token, now=now, tz=tz)
        if window is None:
            continue
        start, end = window.local_bounds(tz)
        lines.append(f"- {token}: {start.date().isoformat()} (inclusive) to {end.date().isoformat()} (exclusive)")
    lines.append("- all_time: every recorded sale, no date filter")
    return lines


def build_system_prompt(*, now: datetime | None = None, tz: ZoneInfo | None = None) -> str:
    zone = tz or business_zone()
    instant = now or datetime.now(UTC)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    local_now = instant.astimezone(zone)
    timeframes = "\n".join(_timeframe_lines(instant, zone))
    locations = ", ".join(LOCATION_NAMES)
    return (
        "You are a sales analytics assistant for a multi-location coffee business.\n"
        "Answer questions about sales, locations and products by calling the provided tools.\n"
        "Call exactly ONE tool per question unless the user explicitly asks for separate analyses.\n"
        "Never invent numbers; every figure must come from a tool result.\n"
        "If the question is not about the business data, answer briefly without calling a tool.\n"
        "Tool selection rules:\n"
        "- best / top / highest location -> get_location_rankings with ranking_type by_revenue.\n"
        "- worst / lowest / bottom location -> get_location_rankings with order lowest_to_highest.\n"
        "- one specific location -> get_location_metrics.\n"
        "- two named locations -> compare_locations with comparison_type specific_pair.\n"
        "- totals for today, yesterday, last week, last month -> get_time_based_metrics.\n"
        "- a named month, quarter or custom range -> get_custom_time_range_metrics.\n"
        "- this period vs the previous one -> compare_periods.\n"
        "- best days, weeks or months -> get_best_performing_days.\n"
        "- weekend vs weekday, hourly or seasonal patterns -> get_seasonal_trends.\n"
        "- every location for one month -> get_location_breakdown_by_month.\n"
        "- best selling products -> get_top_products.\n"
        "- products across locations -> get_product_location_analysis.\n"
        "- categories or product mix -> get_product_categories.\n"
        "- overall business health or all-time totals -> get_business_overview.\n"
        "- health checks, efficiency or forecasts -> get_advanced_analytics.\n"
        "- anything else about sales -> query_sales.\n"
        f"Locations: {locations}.\n"
        f"Current local time: {local_now.strftime('%Y-%m-%d %H:%M')} ({zone.key}).\n"
        "Timeframe tokens resolve to these local dates:\n"
        f"{timeframes}\n"
        "When presenting results, lead with the direct answer, format money as dollars with two decimals "
        "and mention the period covered.\n"
        f"Prompt version: {PROMPT_VERSION}\n"
    )
