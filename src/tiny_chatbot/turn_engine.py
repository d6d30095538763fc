from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from loguru import logger

from tiny_chatbot.gateway import GatewayError, ModelGateway, ModelResponse, StreamDelta
from tiny_chatbot.messages import (
    Message,
    TextMessage,
    ToolCall,
    ToolResult,
    new_text_message,
    new_tool_message,
    new_tool_request_message,
    utc_now,
)
from tiny_chatbot.sandbox import ToolSandbox
from tiny_chatbot.tool import Tool
from tiny_chatbot.tool_registry import to_definitions

DEFAULT_MAX_ROUNDS = 10

# Appends one message to the session log and returns the post-append history.
AppendMessage = Callable[[Message], list[Message]]


@dataclass(frozen=True)
class StreamCompleted:
    message: TextMessage


def round_limit_text(max_rounds: int) -> str:
    return (
        "I apologize, but I exceeded the maximum number of tool execution rounds "
        f"({max_rounds}). Please try simplifying your request."
    )


class TurnEngine:
    """The agentic loop for one user turn: call the model, run requested tools, repeat."""

    def __init__(
        self,
        *,
        gateway: ModelGateway,
        sandbox: ToolSandbox,
        tools: list[Tool],
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        max_output_tokens: int | None = None,
    ) -> None:
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be at least 1, got {max_rounds}")
        self._gateway = gateway
        self._sandbox = sandbox
        self._tool_map = {t.name: t for t in tools}
        self._tool_definitions = to_definitions(tools)
        self._max_rounds = max_rounds
        self._max_output_tokens = max_output_tokens

    @property
    def max_rounds(self) -> int:
        return self._max_rounds

    async def run(
        self,
        *,
        user_message: TextMessage,
        append: AppendMessage,
        system_prompt: str | None = None,
    ) -> TextMessage:
        history = append(user_message)

        for round_number in range(1, self._max_rounds + 1):
            logger.debug(f"Round {round_number}/{self._max_rounds}: calling model with {len(history)} messages")
            response = await self._gateway.generate_response(
                _with_system_prompt(history, system_prompt),
                tools=self._tool_definitions,
                max_output_tokens=self._max_output_tokens,
            )

            if not response.tool_calls:
                final = new_text_message("assistant", response.content or "")
                append(final)
                return final

            history = await self._run_tool_round(response, append)

        return self._finish_over_limit(append)

    async def run_streaming(
        self,
        *,
        user_message: TextMessage,
        append: AppendMessage,
        system_prompt: str | None = None,
    ) -> AsyncIterator[StreamDelta | StreamCompleted]:
        """Same loop as ``run``, emitting the terminal round's text as deltas.

        A round's deltas are held until its response arrives. Rounds that end
        in tool calls emit nothing; their text is kept only on the
        ``ToolRequestMessage``. The deltas of the terminal round join up to the
        content of the message carried by ``StreamCompleted``.
        """
        history = append(user_message)

        for round_number in range(1, self._max_rounds + 1):
            logger.debug(f"Round {round_number}/{self._max_rounds}: streaming model with {len(history)} messages")
            deltas: list[StreamDelta] = []
            response: ModelResponse | None = None

            async for event in self._gateway.generate_streaming_response(
                _with_system_prompt(history, system_prompt),
                tools=self._tool_definitions,
                max_output_tokens=self._max_output_tokens,
            ):
                if isinstance(event, StreamDelta):
                    deltas.append(event)
                elif isinstance(event, ModelResponse):
                    response = event
                else:
                    raise TypeError(f"Unexpected stream event: {type(event).__name__}")

            if response is None:
                raise GatewayError("Model stream ended without a final response")

            if not response.tool_calls:
                if not deltas and response.content:
                    deltas.append(StreamDelta(response.content))
                for delta in deltas:
                    yield delta
                final = new_text_message("assistant", "".join(d.delta for d in deltas))
                append(final)
                yield StreamCompleted(final)
                return

            history = await self._run_tool_round(response, append)

        yield StreamCompleted(self._finish_over_limit(append))

    async def _run_tool_round(self, response: ModelResponse, append: AppendMessage) -> list[Message]:
        calls = response.tool_calls
        logger.info(f"Model requested {len(calls)} tool call(s): {', '.join(c.name for c in calls)}")

        history = append(new_tool_request_message(calls, content=response.content or ""))
        try:
            results = await self.execute_tools(calls)
        except asyncio.CancelledError:
            # Every tool request in the log must stay answered.
            logger.warning(f"Tool round cancelled; recording {len(calls)} cancelled result(s)")
            for call in calls:
                append(new_tool_message(call, ToolResult(status="error", error_message="cancelled")))
            raise
        # Completion order is irrelevant; the log follows the request order.
        for call, result in zip(calls, results):
            history = append(new_tool_message(call, result))
        return history

    async def execute_tools(self, calls: list[ToolCall]) -> list[ToolResult]:
        async def run_one(call: ToolCall) -> ToolResult:
            tool = self._tool_map.get(call.name)
            if tool is None:
                logger.warning(f"Model requested unknown tool {call.name!r}")
                return ToolResult(status="error", error_message=f'Unknown tool "{call.name}"')

            try:
                args = tool.build_args(call.arguments)
                return await self._sandbox.execute_tool(tool.name, args)
            except Exception as ex:
                logger.warning(f"Tool {call.name} failed: {ex}")
                return ToolResult(status="error", error_message=str(ex))

        return list(await asyncio.gather(*(run_one(c) for c in calls)))

    def _finish_over_limit(self, append: AppendMessage) -> TextMessage:
        logger.warning(f"Turn stopped after reaching the maximum of {self._max_rounds} tool rounds")
        message = new_text_message("assistant", round_limit_text(self._max_rounds))
        append(message)
        return message


def _with_system_prompt(history: list[Message], system_prompt: str | None) -> list[Message]:
    """Prefix the prompt for the model call only; it is never written to the session."""
    if not system_prompt:
        return history
    if history and isinstance(history[0], TextMessage) and history[0].role == "system":
        return history
    system = TextMessage(id="system-prompt", role="system", content=system_prompt, created_at=utc_now())
    return [system, *history]
