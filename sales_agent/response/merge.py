from __future__ import annotations

from typing import Any, Dict, Iterable, Sequence

from ..config import MAX_GROUPED_RESULTS
from ..operations.registry import InvocationOutcome

MONEY_METRICS = {
    "revenue",
    "total_revenue",
    "avg_transaction",
    "avg_item_price",
    "avg_price",
    "avg_daily_revenue",
    "avg_weekly_revenue",
    "avg_monthly_revenue",
    "efficiency",
}
PERCENT_METRICS = {"market_share", "growth_rate"}
SUMMARY_METRIC_LIMIT = 4


def fmt_money(value: Any) -> str:
    try:
        numeric = round(float(value), 2)
    except (TypeError, ValueError):
        numeric = 0.0
    sign = "-" if numeric < 0 else ""
    return f"{sign}${abs(numeric):,.2f}"


def fmt_metric(name: str, value: Any) -> str:
    if name in MONEY_METRICS:
        return fmt_money(value)
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return str(value)
    if name in PERCENT_METRICS:
        return f"{numeric:.1f}%"
    if numeric.is_integer():
        return f"{int(numeric):,}"
    return f"{numeric:,.2f}"


def merge_results(outcomes: Sequence[InvocationOutcome]) -> Dict[str, Any]:
    """Combine per-invocation results into one structured payload.

    Every merged row is tagged with the operation and correlation id that
    produced it; the flattened row list is capped at ``MAX_GROUPED_RESULTS``.
    """
    results: list[Dict[str, Any]] = []
    rows: list[Dict[str, Any]] = []
    failures: list[Dict[str, Any]] = []
    truncated = False
    for outcome in outcomes:
        if not outcome.ok or outcome.result is None:
            failures.append(
                {
                    "operation": outcome.name,
                    "correlation_id": outcome.correlation_id,
                    "error_type": outcome.error_type,
                    "error": outcome.error,
                }
            )
            continue
        payload = outcome.result.to_payload()
        payload["correlation_id"] = outcome.correlation_id
        results.append(payload)
        for row in payload["rows"]:
            if len(rows) >= MAX_GROUPED_RESULTS:
                truncated = True
                break
            rows.append(
                {
                    "source_operation": outcome.name,
                    "correlation_id": outcome.correlation_id,
                    "timeframe": payload["timeframe"],
                    **row,
                }
            )
    return {"results": results, "rows": rows, "failures": failures, "truncated": truncated}


def _row_label(row: Dict[str, Any]) -> str:
    dimensions = row.get("dimensions") or {}
    parts = [str(value) for key, value in dimensions.items() if key != "location_id" and value not in (None, "")]
    return " / ".join(parts)


def _describe_metrics(metrics: Dict[str, Any]) -> str:
    shown = list(metrics.items())[:SUMMARY_METRIC_LIMIT]
    return ", ".join(f"{name.replace('_', ' ')} {fmt_metric(name, value)}" for name, value in shown)


def _describe(payload: Dict[str, Any]) -> str:
    rows = payload.get("rows") or []
    period = (payload.get("summary") or {}).get("period") or payload.get("timeframe") or ""
    heading = payload["operation"] + (f" ({period})" if period else "")
    if not rows:
        return f"- {heading}: no rows"
    first = rows[0]
    label = _row_label(first)
    detail = _describe_metrics(first.get("metrics") or {})
    more = f" (+{len(rows) - 1} more rows)" if len(rows) > 1 else ""
    return f"- {heading}: {label + ': ' if label else ''}{detail}{more}"


def fallback_summary(outcomes: Iterable[InvocationOutcome]) -> str:
    """Templated answer used when synthesis is unavailable."""
    successful = [outcome for outcome in outcomes if outcome.ok and outcome.result is not None]
    if not successful:
        return "Analysis completed but no data was returned."
    lines = [f"Analysis completed with {len(successful)} successful operations."]
    lines.extend(_describe(outcome.result.to_payload()) for outcome in successful)
    return "\n".join(lines)
