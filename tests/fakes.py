import asyncio
from typing import Any

from tiny_chatbot.gateway import HealthStatus, ModelResponse, StreamDelta
from tiny_chatbot.messages import Message, ToolCall, ToolResult
from tiny_chatbot.sandbox import PathViolationError


class FakeGateway:
    """Replays scripted responses; a response with text is streamed word by word."""

    def __init__(self, responses: list[ModelResponse | Exception], delay: float = 0.0):
        self._responses = list(responses)
        self._delay = delay
        self.histories: list[list[Message]] = []
        self.tool_names: list[list[str]] = []

    def _next(self, history, tools) -> ModelResponse:
        self.histories.append(list(history))
        self.tool_names.append([t.name for t in tools or []])
        outcome = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def generate_response(self, history, *, tools=None, max_output_tokens=None) -> ModelResponse:
        response = self._next(history, tools)
        if self._delay:
            await asyncio.sleep(self._delay)
        return response

    async def generate_streaming_response(self, history, *, tools=None, max_output_tokens=None):
        response = self._next(history, tools)
        if response.content:
            words = response.content.split(" ")
            for i, word in enumerate(words):
                yield StreamDelta(word if i == len(words) - 1 else word + " ")
        yield response

    async def health_check(self) -> HealthStatus:
        return HealthStatus(healthy=True, latency_ms=0.0)


class FakeSandbox:
    """Echoes the argv back; per-file delays let calls finish out of order."""

    def __init__(self, delays: dict[str, float] | None = None):
        self._delays = delays or {}
        self.calls: list[tuple[str, list[str]]] = []
        self.completed: list[str] = []

    async def execute_tool(self, command: str, args: list[str]) -> ToolResult:
        self.calls.append((command, list(args)))
        key = args[-1] if args else command
        await asyncio.sleep(self._delays.get(key, 0))
        if any(a.startswith("/etc") for a in args):
            raise PathViolationError(args[-1])
        self.completed.append(key)
        return ToolResult(status="success", stdout=f"{command} {' '.join(args)}".strip(), exit_code=0, duration_ms=1)


def tool_response(*calls: tuple[str, str, dict[str, Any]], content: str | None = None) -> ModelResponse:
    return ModelResponse(
        content=content,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=args) for call_id, name, args in calls],
        finish_reason="tool_calls",
    )


def text_response(content: str) -> ModelResponse:
    return ModelResponse(content=content, tool_calls=[], finish_reason="stop")
