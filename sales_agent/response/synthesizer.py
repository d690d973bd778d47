from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

from ..deadline import Deadline
from ..errors import DeadlineExceeded, SynthesisFailure
from ..operations.registry import InvocationOutcome
from ..reasoning import ReasoningClient, TokenUsage
from ..retry import with_retry
from .merge import fallback_summary

logger = logging.getLogger(__name__)


@dataclass
class SynthesisResult:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    used_fallback: bool = False
    error: str = ""
    latency_ms: int = 0


def tool_result_block(correlation_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "toolResult": {
            "toolUseId": correlation_id,
            "content": [{"json": payload}],
            "status": "success" if payload.get("status") == "success" else "error",
        }
    }


def tool_result_message(results: Sequence[tuple[str, Dict[str, Any]]], *, embedded: bool = False) -> Dict[str, Any]:
    """User turn answering every proposed call.

    Calls written into the text channel have no ``toolUseId`` to answer, so
    their results go back as a JSON text block instead.
    """
    if embedded:
        body = json.dumps({correlation_id: payload for correlation_id, payload in results}, ensure_ascii=True, default=str)
        return {"role": "user", "content": [{"text": f"Tool results:\n{body}\nAnswer the original question using only these results."}]}
    return {"role": "user", "content": [tool_result_block(correlation_id, payload) for correlation_id, payload in results]}


def synthesize_answer(
    reasoning: ReasoningClient,
    *,
    system: str,
    conversation: list[Dict[str, Any]],
    assistant_message: Dict[str, Any] | None,
    tool_results: Sequence[tuple[str, Dict[str, Any]]],
    outcomes: Sequence[InvocationOutcome],
    tool_config: Dict[str, Any] | None,
    embedded: bool = False,
    deadline: Deadline | None = None,
) -> SynthesisResult:
    """Second reasoning turn that turns tool results into prose.

    Falls back to a templated summary of ``outcomes`` when the call fails or
    produces no text. Only ``DeadlineExceeded`` escapes.
    """
    messages = list(conversation)
    if assistant_message:
        messages.append({"role": "assistant", "content": list(assistant_message.get("content") or [])})
    messages.append(tool_result_message(tool_results, embedded=embedded))

    def _call():
        return reasoning.converse(system=system, messages=messages, tool_config=tool_config)

    response = None
    try:
        response = with_retry(_call, deadline=deadline, label="synthesis")
        if response.kind == "text" and response.text:
            return SynthesisResult(text=response.text, usage=response.usage)
        raise SynthesisFailure(f"synthesis produced no text kind={response.kind} reason={response.reason}")
    except DeadlineExceeded:
        raise
    except Exception as exc:
        logger.warning("synthesis_fallback error_type=%s error=%s", type(exc).__name__, exc)
        usage = response.usage if response is not None else TokenUsage()
        return SynthesisResult(
            text=fallback_summary(outcomes),
            usage=usage,
            used_fallback=True,
            error=f"{type(exc).__name__}: {exc}",
        )
