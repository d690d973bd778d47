from .contracts import (
    ALL_TIME_LABEL,
    CandidateParameterSet,
    DateRange,
    OrderBy,
    ValidatedParameterSet,
    ValidationOutcome,
)
from .keywords import extract_keyword_candidate
from .schemas import validate_candidate_payload
from .validation import all_time_range, fallback_parameters, validate

__all__ = [
    "ALL_TIME_LABEL",
    "CandidateParameterSet",
    "DateRange",
    "OrderBy",
    "ValidatedParameterSet",
    "ValidationOutcome",
    "all_time_range",
    "extract_keyword_candidate",
    "fallback_parameters",
    "validate",
    "validate_candidate_payload",
]
