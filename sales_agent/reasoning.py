from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Protocol

import boto3
from botocore.config import Config

from .config import (
    AWS_REGION,
    BEDROCK_CONNECT_TIMEOUT,
    BEDROCK_MODEL_ID,
    BEDROCK_READ_TIMEOUT,
    REASONING_MAX_TOKENS,
    REASONING_TEMPERATURE,
    TOKEN_COST_USD,
)
from .errors import ExtractionFailure
from .parsing import parse_json_object

logger = logging.getLogger(__name__)

ResponseKind = Literal["operations", "text", "refusal", "incomplete", "failed"]

REFUSAL_STOP_REASONS = {"guardrail_intervened", "content_filtered"}
INCOMPLETE_STOP_REASONS = {"max_tokens"}
TEXT_STOP_REASONS = {"end_turn", "stop_sequence"}
_NAME_KEYS = ("name", "function", "tool", "operation")
_ARGUMENT_KEYS = ("arguments", "input", "parameters", "args")


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def cost_usd(self) -> float:
        return round(self.total_tokens * TOKEN_COST_USD, 6)

    def add(self, other: "TokenUsage") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": self.cost_usd,
        }


@dataclass(frozen=True)
class ProposedCall:
    name: str
    arguments: Any
    correlation_id: str
    embedded: bool = False


@dataclass(frozen=True)
class ReasoningResponse:
    kind: ResponseKind
    calls: tuple[ProposedCall, ...] = ()
    text: str = ""
    reason: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    message: Dict[str, Any] | None = None
    stop_reason: str = ""


class ReasoningClient(Protocol):
    def converse(
        self,
        *,
        system: str,
        messages: list[Dict[str, Any]],
        tool_config: Dict[str, Any] | None = None,
    ) -> ReasoningResponse:
        ...


def _safe_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _embedded_call(text: str, index: int) -> ProposedCall | None:
    """A tool call written into the text channel as JSON, if there is one."""
    parsed = parse_json_object(text)
    if not parsed.matched:
        return None
    payload = parsed.value
    name = next((payload[key] for key in _NAME_KEYS if isinstance(payload.get(key), str)), None)
    if not name:
        return None
    arguments = next((payload[key] for key in _ARGUMENT_KEYS if key in payload), {})
    return ProposedCall(name=name.strip(), arguments=arguments, correlation_id=f"text_call_{index}", embedded=True)


def normalize_converse_response(payload: Dict[str, Any]) -> ReasoningResponse:
    output = payload.get("output") or {}
    message = output.get("message") or {}
    content = message.get("content") or []
    stop_reason = str(payload.get("stopReason") or "")
    usage_raw = payload.get("usage") or {}
    usage = TokenUsage(
        input_tokens=_safe_int(usage_raw.get("inputTokens")),
        output_tokens=_safe_int(usage_raw.get("outputTokens")),
    )

    texts: list[str] = []
    calls: list[ProposedCall] = []
    if isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                continue
            if isinstance(block.get("text"), str):
                texts.append(block["text"])
            tool_use = block.get("toolUse")
            if isinstance(tool_use, dict) and tool_use.get("name"):
                calls.append(
                    ProposedCall(
                        name=str(tool_use["name"]),
                        arguments=tool_use.get("input"),
                        correlation_id=str(tool_use.get("toolUseId") or f"tool_{len(calls)}"),
                    )
                )
    text = "\n".join(texts).strip()
    common = {"usage": usage, "message": message or None, "stop_reason": stop_reason, "text": text}

    if stop_reason in REFUSAL_STOP_REASONS:
        return ReasoningResponse(kind="refusal", reason=stop_reason, **common)
    if stop_reason in INCOMPLETE_STOP_REASONS:
        return ReasoningResponse(kind="incomplete", reason=stop_reason, **common)
    if calls:
        return ReasoningResponse(kind="operations", calls=tuple(calls), **common)
    if text:
        embedded = _embedded_call(text, 0)
        if embedded is not None:
            return ReasoningResponse(kind="operations", calls=(embedded,), **common)
        return ReasoningResponse(kind="text", **common)
    return ReasoningResponse(kind="failed", reason=stop_reason or "empty_response", **common)


class BedrockReasoningClient:
    """Bedrock ``converse`` adapter; the runtime client is injected or built per instance."""

    def __init__(
        self,
        *,
        client: Any | None = None,
        model_id: str | None = None,
        max_tokens: int = REASONING_MAX_TOKENS,
        temperature: float = REASONING_TEMPERATURE,
        region: str = AWS_REGION,
    ) -> None:
        self._client = client
        self._lock = threading.Lock()
        self.model_id = (model_id or BEDROCK_MODEL_ID or "").strip()
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.region = region

    @property
    def configured(self) -> bool:
        return bool(self.model_id)

    def _runtime(self) -> Any:
        with self._lock:
            if self._client is None:
                cfg = Config(
                    connect_timeout=BEDROCK_CONNECT_TIMEOUT,
                    read_timeout=BEDROCK_READ_TIMEOUT,
                    retries={"max_attempts": 1, "mode": "standard"},
                )
                self._client = boto3.client("bedrock-runtime", region_name=self.region, config=cfg)
            return self._client

    def converse(
        self,
        *,
        system: str,
        messages: list[Dict[str, Any]],
        tool_config: Dict[str, Any] | None = None,
    ) -> ReasoningResponse:
        if not self.configured:
            raise ExtractionFailure("model_not_configured")
        request: Dict[str, Any] = {
            "modelId": self.model_id,
            "system": [{"text": system}],
            "messages": messages,
            "inferenceConfig": {"maxTokens": self.max_tokens, "temperature": self.temperature},
        }
        if tool_config:
            request["toolConfig"] = tool_config
        payload = self._runtime().converse(**request)
        response = normalize_converse_response(payload)
        logger.info(
            "reasoning_response kind=%s stop=%s calls=%s tokens=%s",
            response.kind,
            response.stop_reason,
            len(response.calls),
            response.usage.total_tokens,
        )
        return response
