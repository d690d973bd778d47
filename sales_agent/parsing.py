"""Extraction of a JSON object embedded in model text.

Accepted forms, tried in order: the whole text, a fenced ```json block, and
the first balanced ``{...}`` span (string-aware brace matching). Each form is
retried once with trailing commas removed. The result is always a
``JsonMatch`` or a ``NoMatch``; parsing never raises.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Union

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", flags=re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_QUOTE_REPLACEMENTS = {
    "“": "\"",
    "”": "\"",
    "‘": "'",
    "’": "'",
}


@dataclass(frozen=True)
class JsonMatch:
    value: Dict[str, Any]
    form: str

    matched = True


@dataclass(frozen=True)
class NoMatch:
    reason: str

    matched = False


ParseResult = Union[JsonMatch, NoMatch]


def _normalize_json_text(text: str) -> str:
    normalized = str(text or "").strip().lstrip("﻿")
    for source, target in _QUOTE_REPLACEMENTS.items():
        normalized = normalized.replace(source, target)
    normalized = re.sub(r"^\s*json\s*[:\-]?\s*", "", normalized, flags=re.IGNORECASE)
    return normalized.strip()


def _load_object(candidate: str) -> Dict[str, Any] | None:
    for item in (candidate, _TRAILING_COMMA_RE.sub(r"\1", candidate)):
        try:
            parsed = json.loads(item)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, str):
            try:
                nested = json.loads(parsed)
            except json.JSONDecodeError:
                continue
            if isinstance(nested, dict):
                return nested
    return None


def _balanced_object_span(text: str) -> str | None:
    start = text.find("{")
    while start >= 0:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == "\"":
                    in_string = False
                continue
            if char == "\"":
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def parse_json_object(raw_text: str | None) -> ParseResult:
    text = _normalize_json_text(raw_text or "")
    if not text:
        return NoMatch("empty")

    whole = _load_object(text)
    if whole is not None:
        return JsonMatch(whole, "whole")

    fenced = _FENCE_RE.search(text)
    if fenced:
        value = _load_object(fenced.group(1))
        if value is not None:
            return JsonMatch(value, "fenced")

    span = _balanced_object_span(text)
    if span is None:
        return NoMatch("no_object")
    value = _load_object(span)
    if value is None:
        return NoMatch("invalid_json")
    return JsonMatch(value, "embedded")
