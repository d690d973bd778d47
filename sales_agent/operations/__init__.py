from .contracts import OperationArgs, OperationResult, ResultRow
from .executors import ExecutionContext
from .registry import (
    OPERATION_SPECS,
    InvocationOutcome,
    OperationInvocation,
    OperationSpec,
    candidate_for,
    execute_invocation,
    new_correlation_id,
    parse_invocation,
    tool_config,
    tool_specs,
)

__all__ = [
    "ExecutionContext",
    "InvocationOutcome",
    "OPERATION_SPECS",
    "OperationArgs",
    "OperationInvocation",
    "OperationResult",
    "OperationSpec",
    "ResultRow",
    "candidate_for",
    "execute_invocation",
    "new_correlation_id",
    "parse_invocation",
    "tool_config",
    "tool_specs",
]
