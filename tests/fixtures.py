from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from sales_agent.reasoning import ProposedCall, ReasoningResponse, TokenUsage
from sales_agent.store.memory import InMemorySalesStore

# Wednesday 2025-09-10, noon in Toronto.
NOW = datetime(2025, 9, 10, 16, 0, tzinfo=timezone.utc)

HQ = "LZEVY2P88KZA8"
YONGE = "LAH170A0KK47P"
BLOOR = "LPSSMJYZX8X7P"
KINGSTON = "LYJ3TVBQ23F5V"


def sample_store() -> InMemorySalesStore:
    store = InMemorySalesStore()
    store.add_order(location_id=HQ, occurred_at="2025-07-10T15:00:00Z", total_cents=1000, items=[("Latte", 2, 1000, "Coffee Drinks")])
    store.add_order(
        location_id=BLOOR,
        occurred_at="2025-08-05T15:00:00Z",
        total_cents=1250,
        items=[("Latte", 2, 1000, "Coffee Drinks"), ("Croissant", 1, 250, "Bakery")],
    )
    store.add_order(location_id=KINGSTON, occurred_at="2025-08-12T15:00:00Z", total_cents=2000, items=[("Latte", 4, 2000, "Coffee Drinks")])
    store.add_order(location_id=YONGE, occurred_at="2025-08-15T15:00:00Z", total_cents=500, items=[("Chai Tea", 1, 500, "Tea")])
    store.add_order(location_id=BLOOR, occurred_at="2025-08-20T15:00:00Z", total_cents=800, items=[("Coffee", 2, 800, "Coffee Drinks")])
    store.add_order(location_id=HQ, occurred_at="2025-09-09T16:00:00Z", total_cents=1500, items=[("Coffee", 3, 1500, "Coffee Drinks")])
    store.add_order(location_id=BLOOR, occurred_at="2025-09-09T20:00:00Z", total_cents=450, items=[("Chai Tea", 1, 450, "Tea")])
    store.add_order(location_id=KINGSTON, occurred_at="2025-09-10T14:00:00Z", total_cents=300, items=[("Coffee", 1, 300, "Coffee Drinks")])
    return store


def tool_response(*calls: tuple[str, Any], text: str = "", usage: tuple[int, int] = (100, 20)) -> ReasoningResponse:
    proposed = tuple(
        ProposedCall(name=name, arguments=arguments, correlation_id=f"tooluse_{index}")
        for index, (name, arguments) in enumerate(calls)
    )
    content: list[Dict[str, Any]] = [{"text": text}] if text else []
    content.extend(
        {"toolUse": {"toolUseId": call.correlation_id, "name": call.name, "input": call.arguments}} for call in proposed
    )
    return ReasoningResponse(
        kind="operations",
        calls=proposed,
        text=text,
        usage=TokenUsage(*usage),
        message={"role": "assistant", "content": content},
        stop_reason="tool_use",
    )


def text_response(text: str, *, usage: tuple[int, int] = (50, 30)) -> ReasoningResponse:
    return ReasoningResponse(
        kind="text",
        text=text,
        usage=TokenUsage(*usage),
        message={"role": "assistant", "content": [{"text": text}]},
        stop_reason="end_turn",
    )


class ScriptedReasoning:
    """Returns queued responses (or raises queued exceptions) in order and records every request."""

    model_id = "test-model"

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: list[Dict[str, Any]] = []

    def converse(self, *, system: str, messages: list[Dict[str, Any]], tool_config: Dict[str, Any] | None = None) -> ReasoningResponse:
        self.requests.append({"system": system, "messages": messages, "tool_config": tool_config})
        if not self.responses:
            raise AssertionError("unexpected reasoning call")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item
