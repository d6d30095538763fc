import json
from collections.abc import AsyncIterator
from typing import Any

import openai
from loguru import logger

from tiny_chatbot.gateway import GatewayError, HealthStatus, ModelResponse, StreamDelta
from tiny_chatbot.messages import Message, TextMessage, ToolCall, ToolMessage, ToolRequestMessage, render_tool_message
from tiny_chatbot.providers.common import (
    call_with_retry,
    normalize_finish_reason,
    parse_tool_arguments,
    timed_health_check,
    to_gateway_error,
)
from tiny_chatbot.retry import RetryPolicy
from tiny_chatbot.tool import ToolDefinition

_CONNECTION_ERRORS = (openai.APIConnectionError,)


def _to_openai_messages(history: list[Message]) -> list[dict]:
    """Convert session messages to OpenAI chat format."""
    out: list[dict] = []

    for msg in history:
        if isinstance(msg, TextMessage):
            out.append({"role": msg.role, "content": msg.content})

        elif isinstance(msg, ToolRequestMessage):
            out.append({
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments),
                        },
                    }
                    for call in msg.tool_calls
                ],
            })

        elif isinstance(msg, ToolMessage):
            # Without a call id there is nothing to attach a tool-role reply to.
            if msg.tool_call_id:
                out.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": render_tool_message(msg),
                })
            else:
                out.append({"role": "user", "content": render_tool_message(msg)})

        else:
            raise TypeError(f"Unsupported message type: {type(msg).__name__}")

    return out


def _to_openai_tools(tools: list[ToolDefinition]) -> list[dict]:
    """Convert provider-neutral tool definitions to OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            },
        }
        for t in tools
    ]


class OpenAIGateway:
    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        temperature: float = 1.0,
        max_output_tokens: int | None = None,
        retry_policy: RetryPolicy | None = None,
        client: Any = None,
    ):
        self._client = client if client is not None else openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._retry_policy = retry_policy or RetryPolicy()

    def _request_kwargs(
        self,
        history: list[Message],
        tools: list[ToolDefinition] | None,
        max_output_tokens: int | None,
    ) -> dict:
        kwargs: dict = dict(
            model=self._model,
            temperature=self._temperature,
            messages=_to_openai_messages(history),
        )
        limit = max_output_tokens if max_output_tokens is not None else self._max_output_tokens
        if limit is not None:
            kwargs["max_completion_tokens"] = limit
        if tools:
            kwargs["tools"] = _to_openai_tools(tools)
        return kwargs

    async def generate_response(
        self,
        history: list[Message],
        *,
        tools: list[ToolDefinition] | None = None,
        max_output_tokens: int | None = None,
    ) -> ModelResponse:
        kwargs = self._request_kwargs(history, tools, max_output_tokens)
        logger.debug(
            f"API request: model={self._model}, messages={len(kwargs['messages'])}, "
            f"tools={len(kwargs.get('tools', []))}"
        )
        response = await call_with_retry(
            self._retry_policy,
            lambda: self._client.chat.completions.create(**kwargs),
            "generate a response from OpenAI",
            _CONNECTION_ERRORS,
        )

        if not response.choices:
            raise GatewayError("No choices in OpenAI response")
        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_tool_arguments(tc.function.arguments),
            )
            for tc in (message.tool_calls or [])
        ]
        finish_reason = normalize_finish_reason(choice.finish_reason, has_tool_calls=bool(tool_calls))
        logger.debug(
            f"API response: finish_reason={finish_reason}, "
            f"text_len={len(message.content or '')}, tool_calls={len(tool_calls)}"
        )
        return ModelResponse(content=message.content, tool_calls=tool_calls, finish_reason=finish_reason)

    async def generate_streaming_response(
        self,
        history: list[Message],
        *,
        tools: list[ToolDefinition] | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[StreamDelta | ModelResponse]:
        kwargs = self._request_kwargs(history, tools, max_output_tokens)
        kwargs["stream"] = True
        logger.debug(
            f"Streaming API request: model={self._model}, messages={len(kwargs['messages'])}, "
            f"tools={len(kwargs.get('tools', []))}"
        )
        # Only opening the stream is retried; a failure mid-stream cannot be replayed.
        stream = await call_with_retry(
            self._retry_policy,
            lambda: self._client.chat.completions.create(**kwargs),
            "open a streaming response from OpenAI",
            _CONNECTION_ERRORS,
        )

        text_content = ""
        # tool_calls_acc: index -> {"id", "name", "arguments_parts"}
        tool_calls_acc: dict[int, dict] = {}
        finish_reason: str | None = None

        try:
            async for chunk in stream:
                choice = chunk.choices[0] if chunk.choices else None
                if choice is None:
                    continue

                if choice.finish_reason:
                    finish_reason = choice.finish_reason

                delta = choice.delta
                if delta is None:
                    continue

                if delta.content:
                    text_content += delta.content
                    yield StreamDelta(delta.content)

                # Tool calls arrive incrementally by index
                if delta.tool_calls:
                    for tc_delta in delta.tool_calls:
                        acc = tool_calls_acc.setdefault(
                            tc_delta.index,
                            {"id": "", "name": "", "arguments_parts": []},
                        )
                        if tc_delta.id:
                            acc["id"] = tc_delta.id
                        if tc_delta.function:
                            if tc_delta.function.name:
                                acc["name"] = tc_delta.function.name
                            if tc_delta.function.arguments:
                                acc["arguments_parts"].append(tc_delta.function.arguments)
        except GatewayError:
            raise
        except Exception as ex:
            raise to_gateway_error(ex, "read a streaming response from OpenAI", _CONNECTION_ERRORS) from ex
        finally:
            await stream.close()

        tool_calls = [
            ToolCall(
                id=acc["id"],
                name=acc["name"],
                arguments=parse_tool_arguments("".join(acc["arguments_parts"])),
            )
            for _, acc in sorted(tool_calls_acc.items())
        ]
        normalized = normalize_finish_reason(finish_reason, has_tool_calls=bool(tool_calls))
        logger.debug(
            f"Streaming API response: finish_reason={normalized}, "
            f"text_len={len(text_content)}, tool_calls={len(tool_calls)}"
        )
        yield ModelResponse(content=text_content or None, tool_calls=tool_calls, finish_reason=normalized)

    async def health_check(self) -> HealthStatus:
        return await timed_health_check(lambda: self._client.models.retrieve(self._model), "OpenAI")
