import json
from collections.abc import AsyncIterator
from typing import Any

import anthropic
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

_CONNECTION_ERRORS = (anthropic.APIConnectionError,)

# The messages API requires an explicit output ceiling.
DEFAULT_MAX_OUTPUT_TOKENS = 4096


def _to_anthropic_messages(history: list[Message]) -> tuple[str, list[dict]]:
    """Convert session messages to (system prompt, Anthropic messages).

    Consecutive turns with the same role are merged, so a run of tool results
    becomes a single user turn of ``tool_result`` blocks.
    """
    system_parts: list[str] = []
    out: list[dict] = []

    def add(role: str, blocks: list[dict]) -> None:
        if not blocks:
            return
        if out and out[-1]["role"] == role:
            out[-1]["content"].extend(blocks)
        else:
            out.append({"role": role, "content": list(blocks)})

    for msg in history:
        if isinstance(msg, TextMessage):
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.content:
                add(msg.role, [{"type": "text", "text": msg.content}])

        elif isinstance(msg, ToolRequestMessage):
            blocks: list[dict] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            add("assistant", blocks)

        elif isinstance(msg, ToolMessage):
            text = render_tool_message(msg)
            if msg.tool_call_id:
                block: dict = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": text,
                }
                if msg.result is not None and msg.result.status != "success":
                    block["is_error"] = True
                add("user", [block])
            else:
                add("user", [{"type": "text", "text": text}])

        else:
            raise TypeError(f"Unsupported message type: {type(msg).__name__}")

    return "\n\n".join(system_parts), out


def _to_anthropic_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.input_schema,
        }
        for t in tools
    ]


class AnthropicGateway:
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
        self._client = client if client is not None else anthropic.AsyncAnthropic(api_key=api_key)
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
        system_prompt, messages = _to_anthropic_messages(history)
        limit = max_output_tokens if max_output_tokens is not None else self._max_output_tokens
        kwargs: dict = dict(
            model=self._model,
            max_tokens=limit if limit is not None else DEFAULT_MAX_OUTPUT_TOKENS,
            temperature=self._temperature,
            messages=messages,
        )
        if system_prompt:
            kwargs["system"] = system_prompt
        if tools:
            kwargs["tools"] = _to_anthropic_tools(tools)
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
            f"API request: model={self._model}, max_tokens={kwargs['max_tokens']}, "
            f"messages={len(kwargs['messages'])}, tools={len(kwargs.get('tools', []))}"
        )
        response = await call_with_retry(
            self._retry_policy,
            lambda: self._client.messages.create(**kwargs),
            "generate a response from Anthropic",
            _CONNECTION_ERRORS,
        )

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {})))

        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return ModelResponse(
            content="".join(text_parts) or None,
            tool_calls=tool_calls,
            finish_reason=normalize_finish_reason(response.stop_reason, has_tool_calls=bool(tool_calls)),
        )

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
        stream = await call_with_retry(
            self._retry_policy,
            lambda: self._client.messages.create(**kwargs),
            "open a streaming response from Anthropic",
            _CONNECTION_ERRORS,
        )

        text_content = ""
        # tool_blocks: content block index -> {"id", "name", "json_parts"}
        tool_blocks: dict[int, dict] = {}
        stop_reason: str | None = None

        try:
            async for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        tool_blocks[event.index] = {"id": block.id, "name": block.name, "json_parts": []}
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        text_content += event.delta.text
                        yield StreamDelta(event.delta.text)
                    elif event.delta.type == "input_json_delta" and event.index in tool_blocks:
                        tool_blocks[event.index]["json_parts"].append(event.delta.partial_json)
                elif event.type == "message_delta":
                    if event.delta.stop_reason:
                        stop_reason = event.delta.stop_reason
                elif event.type == "error":
                    raise GatewayError(f"Anthropic stream error: {json.dumps(getattr(event, 'error', None), default=str)}")
        except GatewayError:
            raise
        except Exception as ex:
            raise to_gateway_error(ex, "read a streaming response from Anthropic", _CONNECTION_ERRORS) from ex
        finally:
            await stream.close()

        tool_calls = [
            ToolCall(id=acc["id"], name=acc["name"], arguments=parse_tool_arguments("".join(acc["json_parts"])))
            for _, acc in sorted(tool_blocks.items())
        ]
        normalized = normalize_finish_reason(stop_reason, has_tool_calls=bool(tool_calls))
        logger.debug(
            f"Streaming API response: stop_reason={stop_reason}, "
            f"text_len={len(text_content)}, tool_calls={len(tool_calls)}"
        )
        yield ModelResponse(content=text_content or None, tool_calls=tool_calls, finish_reason=normalized)

    async def health_check(self) -> HealthStatus:
        return await timed_health_check(lambda: self._client.models.retrieve(self._model), "Anthropic")
