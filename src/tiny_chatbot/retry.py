from __future__ import annotations

import errno
import random
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any, TypeVar

import httpx
from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt

T = TypeVar("T")


class FailureClassification(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    FATAL = "fatal"


DEFAULT_RETRYABLE_CLASSIFICATIONS = frozenset({
    FailureClassification.RATE_LIMITED,
    FailureClassification.SERVER_ERROR,
    FailureClassification.NETWORK,
})

_SERVER_ERROR_STATUS_CODES = frozenset({500, 502, 503, 504})
_NETWORK_ERROR_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "ENOTFOUND"})
_NETWORK_ERRNOS = frozenset({errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNREFUSED})
_MAX_CAUSE_DEPTH = 8


class RetryExhaustedError(Exception):
    def __init__(self, attempts: int, last_error: BaseException | None):
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def _as_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _status_code_of(exc: BaseException) -> int | None:
    for candidate in (
        getattr(exc, "status_code", None),
        getattr(exc, "status", None),
        getattr(getattr(exc, "response", None), "status_code", None),
    ):
        status = _as_status(candidate)
        if status is not None:
            return status

    nested = getattr(exc, "error", None)
    if isinstance(nested, dict):
        return _as_status(nested.get("status"))
    return _as_status(getattr(nested, "status", None))


def _is_network_error(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionError, TimeoutError, httpx.TransportError)):
        return True
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in _NETWORK_ERROR_CODES:
        return True
    return isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS


def classify_failure(exc: BaseException) -> FailureClassification:
    """Classify a failure by the first HTTP status or network error found on it or its causes."""
    current: BaseException | None = exc
    depth = 0
    while current is not None and depth < _MAX_CAUSE_DEPTH:
        explicit = getattr(current, "failure_classification", None)
        if isinstance(explicit, FailureClassification):
            return explicit
        status = _status_code_of(current)
        if status is not None:
            if status == 429:
                return FailureClassification.RATE_LIMITED
            if status in _SERVER_ERROR_STATUS_CODES:
                return FailureClassification.SERVER_ERROR
            return FailureClassification.FATAL
        if _is_network_error(current):
            return FailureClassification.NETWORK
        current = current.__cause__
        depth += 1
    return FailureClassification.FATAL


class RetryPolicy:
    """Exponential backoff with up to 10% jitter around any awaitable operation."""

    def __init__(
        self,
        *,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        retryable_classifications: Iterable[FailureClassification] = DEFAULT_RETRYABLE_CLASSIFICATIONS,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._backoff_multiplier = backoff_multiplier
        self._retryable = frozenset(retryable_classifications)
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def compute_delay(self, attempt: int) -> float:
        base = self._initial_delay * self._backoff_multiplier ** (attempt - 1)
        jitter = random.uniform(0, 0.1 * base)
        return min(self._max_delay, base + jitter)

    def is_retryable(self, exc: BaseException) -> bool:
        return classify_failure(exc) in self._retryable

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        retrying = AsyncRetrying(
            retry=retry_if_exception(self.is_retryable),
            stop=stop_after_attempt(self._max_retries + 1),
            wait=self._wait,
            before_sleep=self._log_retry,
            reraise=False,
            **kwargs,
        )
        try:
            return await retrying(operation)
        except RetryError as ex:
            last_error = ex.last_attempt.exception()
            raise RetryExhaustedError(ex.last_attempt.attempt_number, last_error) from last_error

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.compute_delay(retry_state.attempt_number)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        reason = type(exc).__name__ if exc else "Unknown"
        logger.warning(
            f"{reason}. Retrying in {wait:.2f}s "
            f"(attempt {retry_state.attempt_number}/{self._max_retries + 1})..."
        )
