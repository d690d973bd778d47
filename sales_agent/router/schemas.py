from __future__ import annotations

from typing import Any, Dict

from jsonschema import Draft202012Validator

from ..catalog import ITEM_IDS, LOCATION_IDS
from ..config import MAX_GROUP_DIMENSIONS, MAX_ITEMS, MAX_LOCATIONS, MAX_METRICS, MAX_ROW_LIMIT
from .contracts import AGGREGATIONS, GROUP_DIMENSIONS, METRICS

CANDIDATE_PARAMETERS_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["date_ranges", "metrics"],
    "properties": {
        "date_ranges": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["start", "end"],
                "properties": {
                    "start": {"type": "string", "minLength": 10},
                    "end": {"type": "string", "minLength": 10},
                    "label": {"type": "string"},
                },
                "additionalProperties": False,
            },
        },
        "location_ids": {
            "type": "array",
            "maxItems": MAX_LOCATIONS,
            "items": {"type": "string", "enum": list(LOCATION_IDS)},
        },
        "items": {
            "type": "array",
            "maxItems": MAX_ITEMS,
            "items": {"type": "string", "enum": list(ITEM_IDS)},
        },
        "metrics": {
            "type": "array",
            "minItems": 1,
            "maxItems": MAX_METRICS,
            "items": {"type": "string", "enum": list(METRICS)},
        },
        "group_by": {
            "type": "array",
            "maxItems": MAX_GROUP_DIMENSIONS,
            "items": {"type": "string", "enum": list(GROUP_DIMENSIONS)},
        },
        "aggregation": {"type": "string", "enum": list(AGGREGATIONS)},
        "order_by": {
            "type": ["object", "null"],
            "required": ["field"],
            "properties": {
                "field": {"type": "string", "minLength": 1},
                "direction": {"type": "string", "enum": ["asc", "desc"]},
            },
            "additionalProperties": False,
        },
        "limit": {"type": ["integer", "null"], "minimum": 1, "maximum": MAX_ROW_LIMIT},
    },
    "additionalProperties": False,
}

_validator = Draft202012Validator(CANDIDATE_PARAMETERS_JSON_SCHEMA)


def validate_candidate_payload(payload: Dict[str, Any]) -> list[str]:
    errors = sorted(_validator.iter_errors(payload), key=lambda item: list(item.path))
    messages: list[str] = []
    for item in errors:
        path = ".".join(str(part) for part in item.path)
        location = path if path else "$"
        messages.append(f"{location}: {item.message}")
    return messages
