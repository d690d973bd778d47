"""Validation, one-pass repair and hard fallback for extracted parameters.

``validate`` never raises for malformed input: it returns a
``ValidationOutcome`` whose ``params`` are always executable. When both the
initial check and the single repair pass fail, ``params`` holds the fallback
set and ``error`` carries the reason.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable

from pydantic import ValidationError

from ..catalog import (
    ITEM_IDS,
    LOCATION_IDS,
    item_id_for_name,
    location_id_for_name,
    resolve_items,
    resolve_locations,
)
from ..config import (
    MAX_GROUP_DIMENSIONS,
    MAX_ITEMS,
    MAX_LOCATIONS,
    MAX_METRICS,
    MAX_ROW_LIMIT,
    MAX_YEARS_BACK,
    MAX_YEARS_FORWARD,
)
from ..errors import UnparseableTimeExpression, ValidationFailure
from ..temporal import (
    UTC,
    business_zone,
    default_window,
    detect_time_expression,
    local_midnight,
    local_today,
    resolve_time_expression,
)
from .contracts import (
    AGGREGATIONS,
    ALL_TIME_LABEL,
    GROUP_DIMENSIONS,
    METRICS,
    CandidateParameterSet,
    DateRange,
    ValidatedParameterSet,
    ValidationOutcome,
)
from .keywords import normalize_utterance
from .schemas import validate_candidate_payload

logger = logging.getLogger(__name__)

DEFAULT_METRICS = ["revenue", "count"]
REPAIR_METRICS = ["revenue"]


def _dedupe_keep_order(items: Iterable[Any]) -> list[Any]:
    seen: set[Any] = set()
    deduped: list[Any] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        deduped.append(item)
    return deduped


def _coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        return [text] if text else []
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    text = str(value).strip()
    return [text] if text else []


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=business_zone())
        return value.astimezone(UTC).isoformat()
    if isinstance(value, date):
        return local_midnight(value, business_zone()).isoformat()
    return value


def _parse_instant(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=business_zone())
    return parsed.astimezone(UTC)


def historical_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Earliest and latest instants any date range may touch."""
    zone = business_zone()
    today = local_today(now, zone)
    lower = local_midnight(date(today.year - MAX_YEARS_BACK, 1, 1), zone)
    upper = local_midnight(date(today.year + MAX_YEARS_FORWARD + 1, 1, 1), zone)
    return lower, upper


def all_time_range(now: datetime | None = None) -> Dict[str, Any]:
    zone = business_zone()
    lower, _ = historical_bounds(now)
    tomorrow = local_today(now, zone) + timedelta(days=1)
    return {"start": lower.isoformat(), "end": local_midnight(tomorrow, zone).isoformat(), "label": ALL_TIME_LABEL}


def _window_range(window) -> Dict[str, Any]:
    return {"start": window.start.isoformat(), "end": window.end.isoformat(), "label": window.label}


def _normalize_candidate(candidate: CandidateParameterSet, *, now: datetime | None, notes: list[str]) -> Dict[str, Any]:
    """Translate an untrusted candidate into a JSON-shaped payload for schema checks."""
    payload: Dict[str, Any] = {}

    if candidate.date_ranges:
        ranges = []
        for item in candidate.date_ranges:
            if not isinstance(item, dict):
                ranges.append(item)
                continue
            entry = {key: _iso(value) for key, value in item.items()}
            ranges.append(entry)
        payload["date_ranges"] = ranges
    elif candidate.time_description:
        try:
            window = resolve_time_expression(candidate.time_description, now=now)
            payload["date_ranges"] = [_window_range(window)]
        except UnparseableTimeExpression as exc:
            notes.append(f"time_description: {exc}")

    location_ids = _coerce_str_list(candidate.location_ids)
    for name in _coerce_str_list(candidate.location_names):
        resolved = location_id_for_name(name)
        if resolved is None:
            notes.append(f"location_names: unknown location {name!r}")
            location_ids.append(name)
        else:
            location_ids.append(resolved)
    if location_ids:
        payload["location_ids"] = _dedupe_keep_order(location_ids)

    items: list[str] = []
    for name in _coerce_str_list(candidate.items):
        resolved = item_id_for_name(name)
        if resolved is None:
            notes.append(f"items: unknown item {name!r}")
            items.append(name)
        else:
            items.append(resolved)
    if items:
        payload["items"] = _dedupe_keep_order(items)

    if candidate.metrics is not None:
        metrics = _dedupe_keep_order(_coerce_str_list(candidate.metrics))
        if "items_per_sale" in metrics and "count" not in metrics:
            metrics.append("count")
        payload["metrics"] = metrics

    if candidate.group_by is not None:
        payload["group_by"] = _dedupe_keep_order(_coerce_str_list(candidate.group_by))

    if candidate.aggregation is not None:
        payload["aggregation"] = candidate.aggregation
    if candidate.order_by is not None:
        payload["order_by"] = candidate.order_by
    if candidate.limit is not None:
        payload["limit"] = candidate.limit
    return payload


def _check_business_rules(payload: Dict[str, Any], *, now: datetime | None) -> tuple[ValidatedParameterSet | None, list[str]]:
    errors: list[str] = []
    lower, upper = historical_bounds(now)
    ranges: list[DateRange] = []
    for index, item in enumerate(payload.get("date_ranges") or []):
        try:
            start = _parse_instant(item["start"])
            end = _parse_instant(item["end"])
        except (KeyError, TypeError, ValueError) as exc:
            errors.append(f"date_ranges.{index}: unreadable bound ({exc})")
            continue
        label = str(item.get("label") or "")
        if start >= end:
            errors.append(f"date_ranges.{index}: start must be before end")
            continue
        if start < lower or end > upper:
            errors.append(f"date_ranges.{index}: outside supported bounds")
            continue
        ranges.append(DateRange(start=start, end=end, label=label))

    unknown_locations = [item for item in payload.get("location_ids") or [] if item not in LOCATION_IDS]
    if unknown_locations:
        errors.append(f"location_ids: unknown {', '.join(unknown_locations)}")
    unknown_items = [item for item in payload.get("items") or [] if item not in ITEM_IDS]
    if unknown_items:
        errors.append(f"items: unknown {', '.join(unknown_items)}")

    if errors:
        return None, errors

    try:
        params = ValidatedParameterSet(
            date_ranges=tuple(ranges),
            location_ids=tuple(payload.get("location_ids") or ()),
            items=tuple(payload.get("items") or ()),
            metrics=tuple(payload["metrics"]),
            group_by=tuple(payload.get("group_by") or ()),
            aggregation=payload.get("aggregation") or "sum",
            order_by=payload.get("order_by"),
            limit=payload.get("limit"),
        )
    except ValidationError as exc:
        return None, [f"contract: {item['msg']}" for item in exc.errors()]
    return params, []


def _check(payload: Dict[str, Any], *, now: datetime | None) -> tuple[ValidatedParameterSet | None, list[str]]:
    schema_errors = validate_candidate_payload(payload)
    if schema_errors:
        return None, [f"schema:{message}" for message in schema_errors]
    return _check_business_rules(payload, now=now)


def _range_is_usable(item: Any, lower: datetime, upper: datetime) -> bool:
    if not isinstance(item, dict):
        return False
    try:
        start = _parse_instant(str(item["start"]))
        end = _parse_instant(str(item["end"]))
    except (KeyError, TypeError, ValueError):
        return False
    return lower <= start < end <= upper


def _repair(
    payload: Dict[str, Any],
    candidate: CandidateParameterSet,
    *,
    utterance: str,
    now: datetime | None,
    repairs: list[str],
) -> Dict[str, Any]:
    repaired = dict(payload)
    lower, upper = historical_bounds(now)

    original_ranges = repaired.get("date_ranges") or []
    ranges = [
        {"start": str(item["start"]), "end": str(item["end"]), "label": str(item.get("label") or "")}
        for item in original_ranges
        if _range_is_usable(item, lower, upper)
    ]
    if len(ranges) != len(original_ranges):
        repairs.append("date_ranges:dropped_invalid")
    elif any(set(item) - {"start", "end", "label"} for item in original_ranges):
        repairs.append("date_ranges:dropped_extra_keys")
    if not ranges:
        window = None
        if candidate.time_description:
            try:
                window = resolve_time_expression(candidate.time_description, now=now)
                repairs.append("date_ranges:time_description")
            except UnparseableTimeExpression:
                window = None
        if window is None and utterance:
            window = detect_time_expression(utterance, now=now)
            if window is not None:
                repairs.append("date_ranges:utterance")
        if window is not None and _range_is_usable(_window_range(window), lower, upper):
            ranges = [_window_range(window)]
    if ranges:
        repaired["date_ranges"] = ranges
    else:
        repaired.pop("date_ranges", None)

    locations = [item for item in repaired.get("location_ids") or [] if item in LOCATION_IDS]
    if len(locations) != len(repaired.get("location_ids") or []):
        repairs.append("location_ids:dropped_unknown")
    if not locations and utterance:
        locations = resolve_locations(utterance)
        if locations:
            repairs.append("location_ids:utterance")
    repaired["location_ids"] = locations[:MAX_LOCATIONS]

    items = [item for item in repaired.get("items") or [] if item in ITEM_IDS]
    if len(items) != len(repaired.get("items") or []):
        repairs.append("items:dropped_unknown")
    if not items and utterance:
        items = resolve_items(utterance)
        if items:
            repairs.append("items:utterance")
    repaired["items"] = items[:MAX_ITEMS]

    raw_metrics = repaired.get("metrics")
    if not raw_metrics:
        metrics = list(DEFAULT_METRICS)
        repairs.append("metrics:default")
    else:
        metrics = [item for item in raw_metrics if item in METRICS]
        if not metrics:
            metrics = list(REPAIR_METRICS)
            repairs.append("metrics:replaced_invalid")
        elif len(metrics) != len(raw_metrics):
            repairs.append("metrics:dropped_invalid")
    if "items_per_sale" in metrics and "count" not in metrics:
        metrics.append("count")
    if len(metrics) > MAX_METRICS:
        keep = metrics[:MAX_METRICS]
        if "items_per_sale" in keep and "count" not in keep:
            keep = [item for item in keep if item != "items_per_sale"]
        metrics = keep
        repairs.append("metrics:truncated")
    repaired["metrics"] = metrics

    group_by = [item for item in repaired.get("group_by") or [] if item in GROUP_DIMENSIONS]
    if len(group_by) != len(repaired.get("group_by") or []):
        repairs.append("group_by:dropped_invalid")
    repaired["group_by"] = group_by[:MAX_GROUP_DIMENSIONS]

    if repaired.get("aggregation") not in AGGREGATIONS:
        if "aggregation" in repaired:
            repairs.append("aggregation:default")
        repaired["aggregation"] = "sum"

    order_by = repaired.get("order_by")
    if order_by is not None:
        field_name = order_by.get("field") if isinstance(order_by, dict) else None
        direction = order_by.get("direction", "desc") if isinstance(order_by, dict) else None
        if not isinstance(field_name, str) or not field_name.strip() or direction not in {"asc", "desc"}:
            repaired["order_by"] = None
            repairs.append("order_by:dropped")
        else:
            repaired["order_by"] = {"field": field_name.strip(), "direction": direction}

    limit = repaired.get("limit")
    if limit is not None:
        try:
            repaired["limit"] = max(1, min(int(limit), MAX_ROW_LIMIT))
        except (TypeError, ValueError):
            repaired["limit"] = None
            repairs.append("limit:dropped")
    return repaired


def fallback_parameters(*, now: datetime | None = None) -> ValidatedParameterSet:
    """Always-valid parameters: trailing default window, no filters, revenue and count."""
    window = default_window(now=now)
    return ValidatedParameterSet(
        date_ranges=(DateRange(start=window.start, end=window.end, label=window.label),),
        metrics=tuple(DEFAULT_METRICS),
        aggregation="sum",
    )


def _salvage_candidate(raw: Dict[str, Any], *, notes: list[str], repairs: list[str]) -> CandidateParameterSet:
    """Keep the well-typed fields of a raw candidate and drop the rest.

    A date range given as plain text is kept as the time description.
    """
    try:
        return CandidateParameterSet.model_validate(raw)
    except ValidationError as exc:
        invalid = sorted({str(item["loc"][0]) for item in exc.errors() if item["loc"]})
    notes.append(f"candidate: malformed fields {', '.join(invalid) or '$'}")
    kept = {key: value for key, value in raw.items() if key not in invalid}
    date_text = raw.get("date_ranges")
    if "date_ranges" in invalid and isinstance(date_text, str) and date_text.strip() and not kept.get("time_description"):
        kept["time_description"] = date_text.strip()
        repairs.append("date_ranges:as_time_description")
    repairs.extend(f"{name}:dropped_malformed" for name in invalid)
    try:
        return CandidateParameterSet.model_validate(kept)
    except ValidationError as exc:
        notes.append(f"candidate: {exc.error_count()} fields still malformed")
        return CandidateParameterSet()


def validate(
    candidate: CandidateParameterSet | Dict[str, Any] | None,
    *,
    utterance: str = "",
    now: datetime | None = None,
) -> ValidationOutcome:
    notes: list[str] = []
    repairs: list[str] = []
    if candidate is None:
        candidate = CandidateParameterSet()
    elif isinstance(candidate, dict):
        candidate = _salvage_candidate(candidate, notes=notes, repairs=repairs)

    payload = _normalize_candidate(candidate, now=now, notes=notes)
    params, errors = _check(payload, now=now)
    if params is not None:
        return ValidationOutcome(params=params, errors=tuple(notes), repairs=tuple(repairs), repaired=bool(repairs))

    errors = notes + errors
    logger.info("parameter_validation_failed source=%s errors=%s", candidate.source, errors[:3])

    repaired_payload = _repair(payload, candidate, utterance=normalize_utterance(utterance), now=now, repairs=repairs)
    params, repair_errors = _check(repaired_payload, now=now)
    if params is not None:
        logger.info("parameter_repair_succeeded repairs=%s", repairs)
        return ValidationOutcome(params=params, errors=tuple(errors), repairs=tuple(repairs), repaired=True)

    failure = ValidationFailure("parameters could not be repaired", errors + repair_errors)
    logger.warning("parameter_fallback_used errors=%s", failure.errors[:3])
    return ValidationOutcome(
        params=fallback_parameters(now=now),
        error=str(failure),
        errors=tuple(failure.errors),
        repairs=tuple(repairs),
        repaired=True,
        fallback_used=True,
    )
