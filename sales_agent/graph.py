from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, TypedDict

from langgraph.graph import END, StateGraph

from .complexity import combine_plans
from .config import MAX_PROPOSED_OPERATIONS, PARALLEL_QUERY_LIMIT, PROMPT_VERSION, TURN_TIMEOUT_SECONDS
from .deadline import Deadline
from .errors import (
    ERROR_MESSAGES,
    DataStoreError,
    DeadlineExceeded,
    ReasoningIncomplete,
    ReasoningRefusal,
    TransientServiceFailure,
    ValidationFailure,
)
from .operations import (
    InvocationOutcome,
    OperationInvocation,
    execute_invocation,
    new_correlation_id,
    parse_invocation,
    tool_config,
)
from .operations.contracts import QuerySalesArgs
from .prompts import build_system_prompt
from .reasoning import BedrockReasoningClient, ProposedCall, ReasoningClient, ReasoningResponse, TokenUsage
from .response import fallback_summary, merge_results, synthesize_answer
from .retry import with_retry
from .router import extract_keyword_candidate, validate
from .store import SalesStore, SupabaseSalesStore

logger = logging.getLogger(__name__)

TERMINAL_OUTCOMES = {"direct_answer", "refused", "incomplete", "failed"}


class TurnState(TypedDict):
    trace_id: str
    utterance: str
    history: list[Dict[str, Any]]
    now: datetime | None
    deadline: Deadline
    system_prompt: str
    conversation: list[Dict[str, Any]]
    proposal: ReasoningResponse | None
    status: str
    invocations: list[OperationInvocation]
    rejected: list[Dict[str, Any]]
    outcomes: list[InvocationOutcome]
    text: str
    usage: TokenUsage
    timings: Dict[str, int]
    synthesis: Dict[str, Any]
    errors: list[str]
    degraded: bool


@dataclass
class ConversationTurnResult:
    """Per-turn record: what was invoked, how the turn ended, and what it cost."""

    outcome: str
    invocations: list[InvocationOutcome] = field(default_factory=list)
    rejected: list[Dict[str, Any]] = field(default_factory=list)
    direct_answer: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def successful(self) -> int:
        return sum(1 for outcome in self.invocations if outcome.ok)

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "direct_answer": self.direct_answer,
            "invocations": [outcome.to_metadata() for outcome in self.invocations],
            "rejected_operations": list(self.rejected),
            "successful_operations": self.successful,
            "tokens": self.usage.to_dict(),
            "cost_usd": self.usage.cost_usd,
        }


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return "\n".join(
            str(block.get("text") or "").strip() for block in content if isinstance(block, dict) and block.get("text")
        ).strip()
    return str(content or "").strip()


def build_conversation(history: list[Dict[str, Any]] | None, utterance: str) -> list[Dict[str, Any]]:
    """Bedrock messages for prior turns plus the current utterance.

    Roles must alternate and start with ``user``; consecutive turns from the
    same role are joined and unknown roles are dropped.
    """
    messages: list[Dict[str, Any]] = []
    turns = list(history or []) + [{"role": "user", "content": utterance}]
    for turn in turns:
        role = str(turn.get("role") or "").strip().lower()
        text = _text_of(turn.get("content"))
        if role not in {"user", "assistant"} or not text:
            continue
        if not messages and role != "user":
            continue
        if messages and messages[-1]["role"] == role:
            previous = messages[-1]["content"][0]["text"]
            messages[-1] = {"role": role, "content": [{"text": f"{previous}\n\n{text}"}]}
            continue
        messages.append({"role": role, "content": [{"text": text}]})
    if not messages:
        messages.append({"role": "user", "content": [{"text": utterance.strip() or "(empty question)"}]})
    return messages


def _record_stage(state: TurnState, stage: str, started: float) -> None:
    elapsed = int((time.perf_counter() - started) * 1000)
    state["timings"][stage] = state["timings"].get(stage, 0) + elapsed
    logger.info("stage_timing trace=%s stage=%s latency_ms=%s", state["trace_id"], stage, elapsed)


def _record_invocation_error(state: TurnState, outcome: InvocationOutcome) -> None:
    state["errors"].append(f"operation_error:{outcome.name}")
    logger.warning(
        "invocation_failed trace=%s name=%s id=%s error_type=%s error=%s",
        state["trace_id"],
        outcome.name,
        outcome.correlation_id,
        outcome.error_type,
        outcome.error,
    )


def _rejection(call: ProposedCall, error_type: str, error: str, details: list[str] | None = None) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "name": call.name,
        "correlation_id": call.correlation_id,
        "error_type": error_type,
        "error": error,
    }
    if details:
        entry["details"] = list(details)
    return entry


class Orchestrator:
    """Drives one user turn through proposal, execution and synthesis."""

    def __init__(
        self,
        reasoning: ReasoningClient,
        store: SalesStore,
        *,
        max_operations: int = MAX_PROPOSED_OPERATIONS,
        parallel_limit: int = PARALLEL_QUERY_LIMIT,
    ) -> None:
        self.reasoning = reasoning
        self.store = store
        self.max_operations = max(1, int(max_operations))
        self.parallel_limit = max(1, int(parallel_limit))
        self.tool_config = tool_config()
        self._graph = self.build_graph()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------
    def await_proposal(self, state: TurnState) -> TurnState:
        state["deadline"].check("proposal")
        started = time.perf_counter()
        state["system_prompt"] = build_system_prompt(now=state["now"])
        state["conversation"] = build_conversation(state["history"], state["utterance"])

        def _call() -> ReasoningResponse:
            return self.reasoning.converse(
                system=state["system_prompt"],
                messages=state["conversation"],
                tool_config=self.tool_config,
            )

        try:
            response = with_retry(_call, deadline=state["deadline"], label="proposal")
        except (TransientServiceFailure, DeadlineExceeded):
            raise
        except Exception as exc:
            # Reasoning service unusable: the degraded path answers from keywords.
            logger.warning("proposal_failed trace=%s error_type=%s error=%s", state["trace_id"], type(exc).__name__, exc)
            state["errors"].append(f"extraction_failed:{type(exc).__name__}")
            state["status"] = "failed"
            _record_stage(state, "proposal", started)
            return state

        state["proposal"] = response
        state["usage"].add(response.usage)
        if response.kind == "operations":
            self._accept_calls(state, response.calls)
            state["status"] = "operations_proposed" if state["invocations"] else "failed"
            if not state["invocations"]:
                state["errors"].append("no_valid_operations")
        elif response.kind == "text":
            state["status"] = "direct_answer"
        elif response.kind == "refusal":
            state["status"] = "refused"
        else:
            state["status"] = response.kind
            if response.kind == "failed":
                state["errors"].append(f"empty_proposal:{response.reason}")
        _record_stage(state, "proposal", started)
        return state

    def _accept_calls(self, state: TurnState, calls: tuple[ProposedCall, ...]) -> None:
        for index, call in enumerate(calls):
            if index >= self.max_operations:
                state["rejected"].append(
                    _rejection(call, "TooManyOperations", f"at most {self.max_operations} operations per turn")
                )
                continue
            try:
                invocation = parse_invocation(call.name, call.arguments, call.correlation_id)
            except KeyError:
                state["rejected"].append(_rejection(call, "UnknownOperation", f"unknown operation {call.name!r}"))
                continue
            except ValidationFailure as exc:
                state["rejected"].append(_rejection(call, type(exc).__name__, str(exc), exc.errors))
                continue
            state["invocations"].append(invocation)
        for entry in state["rejected"]:
            logger.warning(
                "operation_rejected trace=%s name=%s error_type=%s",
                state["trace_id"],
                entry["name"],
                entry["error_type"],
            )

    def execute(self, state: TurnState) -> TurnState:
        deadline = state["deadline"]
        deadline.check("execute")
        started = time.perf_counter()
        invocations = state["invocations"]
        results: Dict[str, InvocationOutcome] = {}
        store_errors: list[DataStoreError] = []

        pool = ThreadPoolExecutor(max_workers=min(self.parallel_limit, len(invocations) or 1))
        try:
            future_to_invocation = {
                pool.submit(
                    execute_invocation,
                    invocation,
                    store=self.store,
                    utterance=state["utterance"],
                    now=state["now"],
                ): invocation
                for invocation in invocations
            }
            try:
                for future in as_completed(future_to_invocation, timeout=deadline.remaining()):
                    invocation = future_to_invocation[future]
                    try:
                        outcome = future.result()
                    except DataStoreError as exc:
                        store_errors.append(exc)
                        outcome = InvocationOutcome.failure(
                            invocation.name,
                            invocation.correlation_id,
                            exc,
                            arguments=invocation.argument_payload(),
                        )
                    except Exception as exc:
                        outcome = InvocationOutcome.failure(
                            invocation.name,
                            invocation.correlation_id,
                            exc,
                            arguments=invocation.argument_payload(),
                        )
                    results[invocation.correlation_id] = outcome
                    if not outcome.ok:
                        _record_invocation_error(state, outcome)
            except FutureTimeoutError as exc:
                raise DeadlineExceeded("execute") from exc
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if invocations and len(store_errors) == len(invocations):
            raise store_errors[0]
        state["outcomes"] = [results[invocation.correlation_id] for invocation in invocations]
        state["status"] = "synthesizing"
        _record_stage(state, "execute", started)
        return state

    def synthesize(self, state: TurnState) -> TurnState:
        state["deadline"].check("synthesis")
        started = time.perf_counter()
        proposal = state["proposal"]
        payloads = {outcome.correlation_id: outcome.tool_payload() for outcome in state["outcomes"]}
        for entry in state["rejected"]:
            payloads[entry["correlation_id"]] = {
                "status": "error",
                "error_type": entry["error_type"],
                "error": entry["error"],
                **({"details": entry["details"]} if entry.get("details") else {}),
            }
        calls = proposal.calls if proposal is not None else ()
        tool_results = [(call.correlation_id, payloads[call.correlation_id]) for call in calls]
        result = synthesize_answer(
            self.reasoning,
            system=state["system_prompt"],
            conversation=state["conversation"],
            assistant_message=proposal.message if proposal is not None else None,
            tool_results=tool_results,
            outcomes=state["outcomes"],
            tool_config=self.tool_config,
            embedded=any(call.embedded for call in calls),
            deadline=state["deadline"],
        )
        state["usage"].add(result.usage)
        state["text"] = result.text
        state["synthesis"] = {"used_fallback": result.used_fallback, "error": result.error}
        state["status"] = "done"
        _record_stage(state, "synthesis", started)
        return state

    def direct_answer(self, state: TurnState) -> TurnState:
        state["text"] = state["proposal"].text if state["proposal"] is not None else ""
        return state

    def refused(self, state: TurnState) -> TurnState:
        proposal = state["proposal"]
        error = ReasoningRefusal(proposal.reason if proposal is not None else "")
        state["text"] = ERROR_MESSAGES["refused"]
        state["errors"].append(f"{type(error).__name__}:{error.reason}")
        return state

    def incomplete(self, state: TurnState) -> TurnState:
        proposal = state["proposal"]
        error = ReasoningIncomplete(proposal.reason if proposal is not None else "")
        state["text"] = ERROR_MESSAGES["incomplete"]
        state["errors"].append(f"{type(error).__name__}:{error.reason}")
        return state

    def degraded(self, state: TurnState) -> TurnState:
        """Answer from keyword-extracted parameters without the reasoning service."""
        state["deadline"].check("degraded")
        started = time.perf_counter()
        candidate = extract_keyword_candidate(state["utterance"], now=state["now"])
        validation = validate(candidate, utterance=state["utterance"], now=state["now"])
        invocation = OperationInvocation(name="query_sales", arguments=QuerySalesArgs(), correlation_id=new_correlation_id())
        outcome = execute_invocation(
            invocation,
            store=self.store,
            utterance=state["utterance"],
            now=state["now"],
            params=validation.params,
        )
        outcome.validation = validation
        if not outcome.ok:
            _record_invocation_error(state, outcome)
        state["outcomes"] = [outcome]
        state["degraded"] = True
        state["text"] = fallback_summary(state["outcomes"])
        _record_stage(state, "degraded", started)
        return state

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------
    @staticmethod
    def route_proposal(state: TurnState) -> str:
        status = state["status"]
        if status == "operations_proposed":
            return "execute"
        if status == "direct_answer":
            return "direct_answer"
        if status == "refused":
            return "refused"
        if status == "incomplete":
            return "incomplete"
        return "degraded"

    def build_graph(self) -> Any:
        graph = StateGraph(TurnState)
        graph.add_node("await_proposal", self.await_proposal)
        graph.add_node("execute", self.execute)
        graph.add_node("synthesize", self.synthesize)
        graph.add_node("direct_answer", self.direct_answer)
        graph.add_node("refused", self.refused)
        graph.add_node("incomplete", self.incomplete)
        graph.add_node("degraded", self.degraded)

        graph.set_entry_point("await_proposal")
        graph.add_conditional_edges(
            "await_proposal",
            self.route_proposal,
            {
                "execute": "execute",
                "direct_answer": "direct_answer",
                "refused": "refused",
                "incomplete": "incomplete",
                "degraded": "degraded",
            },
        )
        graph.add_edge("execute", "synthesize")
        graph.add_edge("synthesize", END)
        graph.add_edge("direct_answer", END)
        graph.add_edge("refused", END)
        graph.add_edge("incomplete", END)
        graph.add_edge("degraded", END)
        return graph.compile()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def run(
        self,
        utterance: str,
        history: list[Dict[str, Any]] | None = None,
        *,
        deadline_seconds: float | None = None,
        now: datetime | None = None,
    ) -> Dict[str, Any]:
        trace_id = f"trc_{uuid.uuid4().hex[:8]}"
        started = time.perf_counter()
        seconds = TURN_TIMEOUT_SECONDS if deadline_seconds is None else deadline_seconds
        state = self._graph.invoke(
            {
                "trace_id": trace_id,
                "utterance": str(utterance or ""),
                "history": list(history or []),
                "now": now,
                "deadline": Deadline(seconds),
                "system_prompt": "",
                "conversation": [],
                "proposal": None,
                "status": "awaiting_proposal",
                "invocations": [],
                "rejected": [],
                "outcomes": [],
                "text": "",
                "usage": TokenUsage(),
                "timings": {},
                "synthesis": {},
                "errors": [],
                "degraded": False,
            }
        )
        state["timings"]["total"] = int((time.perf_counter() - started) * 1000)
        return self._finalize(state)

    def _finalize(self, state: TurnState) -> Dict[str, Any]:
        status = state["status"]
        outcome = status if status in TERMINAL_OUTCOMES else "done"
        turn = ConversationTurnResult(
            outcome=outcome,
            invocations=list(state["outcomes"]),
            rejected=list(state["rejected"]),
            direct_answer=outcome == "direct_answer",
            usage=state["usage"],
        )
        plan = combine_plans(item.plan for item in state["outcomes"] if item.plan is not None)
        proposal = state["proposal"]
        metadata: Dict[str, Any] = {
            "trace_id": state["trace_id"],
            **turn.to_metadata(),
            "degraded": state["degraded"],
            "complexity": plan.complexity if plan else None,
            "strategy": plan.strategy if plan else None,
            "plan": plan.to_metadata() if plan else None,
            "latency_ms": dict(state["timings"]),
            "synthesis": dict(state["synthesis"]),
            "fallback_used": any(
                item.validation is not None and item.validation.fallback_used for item in state["outcomes"]
            ),
            "errors": list(state["errors"]),
            "prompt_version": PROMPT_VERSION,
            "model_id": str(getattr(self.reasoning, "model_id", "") or ""),
        }
        if outcome in {"refused", "incomplete"}:
            error_cls = ReasoningRefusal if outcome == "refused" else ReasoningIncomplete
            metadata["error_type"] = error_cls.__name__
            metadata["reason"] = proposal.reason if proposal is not None else ""
        logger.info(
            "turn_completed trace=%s outcome=%s operations=%s rejected=%s tokens=%s latency_ms=%s",
            state["trace_id"],
            outcome,
            len(state["outcomes"]),
            len(state["rejected"]),
            state["usage"].total_tokens,
            state["timings"].get("total", 0),
        )
        return {"text": state["text"], "structured_data": merge_results(state["outcomes"]), "metadata": metadata}


def answer(
    utterance: str,
    history: list[Dict[str, Any]] | None = None,
    *,
    reasoning: ReasoningClient | None = None,
    store: SalesStore | None = None,
    deadline_seconds: float | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """Answer one question. Returns ``{"text", "structured_data", "metadata"}``."""
    if reasoning is None:
        reasoning = BedrockReasoningClient()
    if store is None:
        store = SupabaseSalesStore()
    orchestrator = Orchestrator(reasoning, store)
    return orchestrator.run(utterance, history, deadline_seconds=deadline_seconds, now=now)
