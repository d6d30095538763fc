from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

from tiny_chatbot.messages import Message, ToolCall
from tiny_chatbot.retry import FailureClassification, RetryPolicy
from tiny_chatbot.tool import ToolDefinition

FinishReason = Literal["stop", "tool_calls", "length", "content_filter", "error"]


@dataclass(frozen=True)
class ModelResponse:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: FinishReason = "stop"


@dataclass(frozen=True)
class StreamDelta:
    delta: str


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    latency_ms: float
    error: str | None = None


class GatewayError(Exception):
    """A model call failed; ``original_error`` keeps the provider exception for diagnostics."""

    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        *,
        status_code: int | None = None,
        failure_classification: FailureClassification | None = None,
    ):
        super().__init__(message)
        self.original_error = original_error
        self.status_code = status_code
        # Read by classify_failure; None means "classify by status code / cause".
        self.failure_classification = failure_classification


class TransientGatewayError(GatewayError):
    """5xx or network failure; retried by the retry policy."""


class RateLimitError(TransientGatewayError):
    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        *,
        retry_after: float | None = None,
    ):
        super().__init__(
            message,
            original_error,
            status_code=429,
            failure_classification=FailureClassification.RATE_LIMITED,
        )
        self.retry_after = retry_after


@runtime_checkable
class ModelGateway(Protocol):
    async def generate_response(
        self,
        history: list[Message],
        *,
        tools: list[ToolDefinition] | None = None,
        max_output_tokens: int | None = None,
    ) -> ModelResponse:
        """Blocking call: the full response, tool calls included."""
        ...

    def generate_streaming_response(
        self,
        history: list[Message],
        *,
        tools: list[ToolDefinition] | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[StreamDelta | ModelResponse]:
        """Yield text deltas as they arrive, then the complete ``ModelResponse`` last."""
        ...

    async def health_check(self) -> HealthStatus:
        """Probe the provider. Never raises."""
        ...


def create_gateway(
    provider_name: str,
    api_key: str,
    *,
    model: str,
    temperature: float = 1.0,
    max_output_tokens: int | None = None,
    retry_policy: RetryPolicy | None = None,
) -> ModelGateway:
    """Factory: create a ModelGateway by provider name."""
    name = provider_name.strip().lower()
    if name == "openai":
        from tiny_chatbot.providers.openai_provider import OpenAIGateway
        return OpenAIGateway(
            api_key,
            model=model,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            retry_policy=retry_policy,
        )
    if name == "anthropic":
        from tiny_chatbot.providers.anthropic_provider import AnthropicGateway
        return AnthropicGateway(
            api_key,
            model=model,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            retry_policy=retry_policy,
        )
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'openai', 'anthropic'")
