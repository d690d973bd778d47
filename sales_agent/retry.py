from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, TypeVar

from botocore.exceptions import ClientError
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from .config import RETRY_INITIAL_DELAY_SECONDS, RETRY_MAX_DELAY_SECONDS, RETRY_MAX_RETRIES
from .deadline import Deadline
from .errors import DeadlineExceeded, SalesAgentError, TransientServiceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_ERROR_CODES = {
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceQuotaExceededException",
    "RequestLimitExceeded",
}
RATE_LIMIT_PHRASES = (
    "rate_limit_exceeded",
    "rate limit",
    "too many requests",
    "quota exceeded",
)
JITTER_RATIO = 0.1


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, ClientError):
        status = (exc.response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
        return status if isinstance(status, int) else None
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_rate_limit_error(exc: BaseException) -> bool:
    """Classify an exception as a retryable rate-limit or quota failure."""
    if isinstance(exc, SalesAgentError):
        return False
    if isinstance(exc, ClientError):
        code = str((exc.response.get("Error") or {}).get("Code") or "")
        if code in RATE_LIMIT_ERROR_CODES:
            return True
    if _status_code(exc) == 429:
        return True
    if str(getattr(exc, "type", "") or "") == "rate_limit_exceeded":
        return True
    message = str(exc).lower()
    return any(phrase in message for phrase in RATE_LIMIT_PHRASES)


class BackoffWithJitter:
    """Doubling delay from ``initial_delay`` with up to 10% jitter, capped at ``max_delay``."""

    def __init__(self, initial_delay: float, max_delay: float, *, rng: Callable[[], float] = random.random) -> None:
        self.initial_delay = max(0.0, float(initial_delay))
        self.max_delay = max(0.0, float(max_delay))
        self._rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        exponent = max(0, retry_state.attempt_number - 1)
        delay = min(self.initial_delay * (2 ** exponent), self.max_delay)
        jitter = self._rng() * JITTER_RATIO * delay
        return min(delay + jitter, self.max_delay)


def _log_before_sleep(label: str, max_retries: int) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "rate_limited call=%s attempt=%s max_retries=%s delay=%.2fs error=%s",
            label,
            retry_state.attempt_number,
            max_retries,
            delay,
            exc,
        )

    return _log


def with_retry(
    operation: Callable[[], T],
    max_retries: int = RETRY_MAX_RETRIES,
    initial_delay: float = RETRY_INITIAL_DELAY_SECONDS,
    max_delay: float = RETRY_MAX_DELAY_SECONDS,
    *,
    deadline: Deadline | None = None,
    sleep: Callable[[float], Any] = time.sleep,
    rng: Callable[[], float] = random.random,
    label: str = "external_call",
) -> T:
    """Run ``operation``, retrying only classified rate-limit failures.

    The operation is attempted at most ``max_retries + 1`` times. Other
    failures propagate unchanged on first occurrence; exhausting the retries
    raises ``TransientServiceFailure`` chained to the last underlying error.
    Backoff sleeps never run past ``deadline``.
    """

    def _attempt() -> T:
        if deadline is not None:
            deadline.check(label)
        return operation()

    def _sleep(seconds: float) -> None:
        if deadline is not None:
            remaining = deadline.remaining()
            if remaining is not None and remaining < seconds:
                raise DeadlineExceeded(f"{label}:backoff")
        sleep(seconds)

    retrying = Retrying(
        retry=retry_if_exception(is_rate_limit_error),
        stop=stop_after_attempt(max(0, max_retries) + 1),
        wait=BackoffWithJitter(initial_delay, max_delay, rng=rng),
        sleep=_sleep,
        before_sleep=_log_before_sleep(label, max_retries),
        reraise=True,
    )
    try:
        return retrying(_attempt)
    except Exception as exc:
        if not is_rate_limit_error(exc):
            raise
        attempts = int(retrying.statistics.get("attempt_number", max_retries + 1))
        raise TransientServiceFailure(
            f"{label} still throttled after {attempts} attempts",
            cause=exc,
            attempts=attempts,
        ) from exc
