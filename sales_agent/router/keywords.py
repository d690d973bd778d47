from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict

from ..catalog import resolve_items, resolve_locations
from ..config import MAX_QUERY_LENGTH, MIN_QUERY_LENGTH
from ..temporal import detect_time_expression
from .contracts import CandidateParameterSet

METRIC_KEYWORDS: Dict[str, tuple[str, ...]] = {
    "avg_transaction": ("average transaction", "avg transaction", "average order", "aov", "average sale", "ticket size"),
    "items_per_sale": ("items per sale", "items per transaction", "basket size", "items per order"),
    "avg_item_price": ("average price", "avg price", "average item price", "price per item"),
    "unique_items": ("unique items", "distinct items", "different items", "how many products"),
    "revenue": ("revenue", "sales", "money", "earn", "income", "made", "dollars", "takings"),
    "count": ("transactions", "orders", "count", "how many sales", "number of sales", "tickets"),
    "quantity": ("quantity", "units", "items sold", "cups", "volume"),
}

GROUP_KEYWORDS: Dict[str, tuple[str, ...]] = {
    "location": ("by location", "per location", "each location", "by store", "per store", "each store", "locations"),
    "item": ("by item", "per item", "by product", "per product", "each product", "products"),
    "day_of_week": ("day of week", "day of the week", "weekday", "weekdays"),
    "hour": ("hourly", "by hour", "per hour", "each hour"),
    "day": ("daily", "by day", "per day", "each day"),
    "week": ("weekly", "by week", "per week", "each week"),
    "month": ("monthly", "by month", "per month", "each month"),
    "quarter": ("quarterly", "by quarter", "per quarter"),
    "year": ("yearly", "annually", "by year", "per year"),
}

_TOP_N_RE = re.compile(r"\b(top|best|highest)\s+(\d{1,3})\b")
_BOTTOM_N_RE = re.compile(r"\b(bottom|worst|lowest)\s+(\d{1,3})\b")


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(phrase) + r"(?![a-z0-9])", text) is not None


def normalize_utterance(utterance: str | None) -> str:
    text = re.sub(r"\s+", " ", str(utterance or "")).strip()
    if len(text) < MIN_QUERY_LENGTH:
        return ""
    return text[:MAX_QUERY_LENGTH]


def detect_metrics(text: str) -> list[str]:
    lowered = text.lower()
    found: list[str] = []
    for metric, phrases in METRIC_KEYWORDS.items():
        if any(_contains_phrase(lowered, phrase) for phrase in phrases):
            found.append(metric)
    if "items_per_sale" in found and "count" not in found:
        found.append("count")
    return found


def detect_group_by(text: str) -> list[str]:
    lowered = text.lower()
    found: list[str] = []
    for dimension, phrases in GROUP_KEYWORDS.items():
        if any(_contains_phrase(lowered, phrase) for phrase in phrases):
            found.append(dimension)
    # "day of week" also contains "week"; keep the finer dimension only.
    if "day_of_week" in found and "week" in found and not any(
        _contains_phrase(lowered, phrase) for phrase in ("weekly", "by week", "per week")
    ):
        found.remove("week")
    return found


def extract_keyword_candidate(utterance: str, *, now: datetime | None = None) -> CandidateParameterSet:
    """Rule-based candidate built only from the raw utterance."""
    text = normalize_utterance(utterance)
    payload: Dict[str, Any] = {"source": "keywords"}
    if not text:
        return CandidateParameterSet(**payload)

    window = detect_time_expression(text, now=now)
    if window is not None:
        payload["date_ranges"] = [{"start": window.start, "end": window.end, "label": window.label}]

    payload["location_ids"] = resolve_locations(text)
    payload["items"] = resolve_items(text)
    payload["metrics"] = detect_metrics(text)
    payload["group_by"] = detect_group_by(text)

    lowered = text.lower()
    top = _TOP_N_RE.search(lowered)
    bottom = _BOTTOM_N_RE.search(lowered)
    primary_metric = (payload["metrics"] or ["revenue"])[0]
    if top:
        payload["limit"] = int(top.group(2))
        payload["order_by"] = {"field": primary_metric, "direction": "desc"}
    elif bottom:
        payload["limit"] = int(bottom.group(2))
        payload["order_by"] = {"field": primary_metric, "direction": "asc"}
    return CandidateParameterSet(**payload)
