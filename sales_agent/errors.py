from __future__ import annotations

from typing import Any

ERROR_MESSAGES = {
    "timeout": "Query took too long to process. Try narrowing your request or specifying a smaller date range.",
    "no_data": "No data found matching your criteria. Please check your filters and try again.",
    "extraction_failed": "I had trouble understanding your request. Could you please rephrase or be more specific?",
    "database_error": "There was an error accessing the data. Please try again in a moment.",
    "invalid_date_range": "The date range you specified is invalid. Please check the dates and try again.",
    "location_not_found": "The location you mentioned was not found. Available locations include: {locations}",
    "item_not_found": "The item you mentioned was not found. Please check the spelling or try a broader search.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "refused": "I can't help with that request. Try asking about sales, locations or products.",
    "incomplete": "The answer was cut off before it was complete. Please try a narrower question.",
}


class SalesAgentError(RuntimeError):
    code = "sales_agent_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error_type": type(self).__name__, "code": self.code, "message": str(self)}


class ExtractionFailure(SalesAgentError):
    code = "extraction_failed"


class ValidationFailure(SalesAgentError):
    code = "validation_failed"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class TransientServiceFailure(SalesAgentError):
    """Raised once bounded retries against a rate-limited service are exhausted."""

    code = "rate_limit"

    def __init__(self, message: str, *, cause: BaseException | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.cause = cause
        self.attempts = attempts


class RefusalOrIncomplete(SalesAgentError):
    code = "refusal_or_incomplete"
    outcome = "failed"

    def __init__(self, reason: str) -> None:
        super().__init__(reason or self.code)
        self.reason = reason


class ReasoningRefusal(RefusalOrIncomplete):
    code = "refused"
    outcome = "refused"


class ReasoningIncomplete(RefusalOrIncomplete):
    code = "incomplete"
    outcome = "incomplete"


class OperationExecutionFailure(SalesAgentError):
    code = "operation_failed"

    def __init__(self, message: str, *, operation: str = "", correlation_id: str = "") -> None:
        super().__init__(message)
        self.operation = operation
        self.correlation_id = correlation_id


class UnsupportedVariant(OperationExecutionFailure):
    code = "unsupported_variant"


class NoMatchingRows(OperationExecutionFailure):
    code = "no_data"


class SynthesisFailure(SalesAgentError):
    code = "synthesis_failed"


class UnparseableTimeExpression(SalesAgentError):
    code = "invalid_date_range"

    def __init__(self, phrase: str) -> None:
        super().__init__(f"Unparseable time expression: {phrase!r}")
        self.phrase = phrase


class DeadlineExceeded(SalesAgentError):
    code = "timeout"

    def __init__(self, stage: str) -> None:
        super().__init__(f"Request deadline exceeded during {stage}")
        self.stage = stage


class DataStoreError(SalesAgentError):
    code = "database_error"
