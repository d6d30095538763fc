from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

from loguru import logger

from tiny_chatbot.gateway import (
    FinishReason,
    GatewayError,
    HealthStatus,
    RateLimitError,
    TransientGatewayError,
)
from tiny_chatbot.retry import FailureClassification, RetryPolicy, classify_failure

T = TypeVar("T")

_FINISH_REASON_MAP: dict[str, FinishReason] = {
    "stop": "stop",
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "tool_calls": "tool_calls",
    "tool_use": "tool_calls",
    "function_call": "tool_calls",
    "length": "length",
    "max_tokens": "length",
    "content_filter": "content_filter",
    "refusal": "content_filter",
}


def normalize_finish_reason(raw: str | None, *, has_tool_calls: bool) -> FinishReason:
    if has_tool_calls:
        return "tool_calls"
    if raw is None:
        return "stop"
    return _FINISH_REASON_MAP.get(raw, "error")


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Read a retry hint in seconds from ``retry-after-ms`` or ``retry-after`` (seconds or HTTP date)."""
    if not headers:
        return None

    def header(name: str) -> str | None:
        value = headers.get(name)
        if value is None:
            value = headers.get(name.title())
        return value

    retry_after_ms = header("retry-after-ms")
    if retry_after_ms:
        try:
            return float(retry_after_ms) / 1000
        except ValueError:
            pass

    retry_after = header("retry-after")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max(0.0, (retry_at - datetime.now(UTC)).total_seconds())


def to_gateway_error(
    ex: Exception,
    action: str,
    connection_errors: tuple[type[Exception], ...] = (),
) -> GatewayError:
    """Map a provider SDK exception onto the gateway's failure taxonomy."""
    if isinstance(ex, GatewayError):
        return ex

    status = getattr(ex, "status_code", None)
    if status == 429:
        headers = getattr(getattr(ex, "response", None), "headers", None)
        return RateLimitError(f"Rate limited while trying to {action}", ex, retry_after=parse_retry_after(headers))

    if connection_errors and isinstance(ex, connection_errors):
        classification = FailureClassification.NETWORK
    else:
        classification = classify_failure(ex)
    if classification in (FailureClassification.SERVER_ERROR, FailureClassification.NETWORK):
        return TransientGatewayError(
            f"Transient failure while trying to {action}",
            ex,
            status_code=status,
            failure_classification=classification,
        )
    return GatewayError(f"Failed to {action}", ex, status_code=status)


async def call_with_retry(
    retry_policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    action: str,
    connection_errors: tuple[type[Exception], ...] = (),
) -> T:
    async def attempt() -> T:
        try:
            return await operation()
        except GatewayError:
            raise
        except Exception as ex:
            raise to_gateway_error(ex, action, connection_errors) from ex

    return await retry_policy.run(attempt)


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse tool call arguments: {raw[:200]}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Tool call arguments are not an object: {raw[:200]}")
        return {}
    return parsed


async def timed_health_check(probe: Callable[[], Awaitable[Any]], provider: str) -> HealthStatus:
    started = time.perf_counter()
    try:
        await probe()
    except Exception as ex:
        latency_ms = (time.perf_counter() - started) * 1000
        logger.warning(f"{provider} health check failed after {latency_ms:.0f}ms: {ex}")
        return HealthStatus(healthy=False, latency_ms=latency_ms, error=str(ex))
    return HealthStatus(healthy=True, latency_ms=(time.perf_counter() - started) * 1000)
