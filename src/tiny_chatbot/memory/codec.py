"""Row encoding for the ``messages`` table.

Every message variant maps onto the same columns; the role plus the presence
of ``tool_calls`` tells the variants apart on the way back.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from tiny_chatbot.messages import (
    TEXT_ROLES,
    Message,
    TextMessage,
    ToolCall,
    ToolMessage,
    ToolRequestMessage,
    ToolResult,
)


@dataclass(frozen=True)
class MessageRow:
    id: str
    role: str
    content: str
    created_at: str
    tool_name: str | None = None
    tool_call_id: str | None = None
    tool_calls: str | None = None
    arguments: str | None = None
    result: str | None = None
    metadata: str | None = None


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def load_json(value: str | None, field_name: str, owner_id: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as ex:
        raise ValueError(f"Failed to parse {field_name} for {owner_id}: {ex}") from ex


def encode_message(message: Message) -> MessageRow:
    if isinstance(message, TextMessage):
        return MessageRow(
            id=message.id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            metadata=dump_json(message.metadata),
        )
    if isinstance(message, ToolRequestMessage):
        return MessageRow(
            id=message.id,
            role="assistant",
            content=message.content,
            created_at=message.created_at,
            tool_calls=dump_json([call.to_dict() for call in message.tool_calls]),
            metadata=dump_json(message.metadata),
        )
    if isinstance(message, ToolMessage):
        return MessageRow(
            id=message.id,
            role="tool",
            content=message.content,
            created_at=message.created_at,
            tool_name=message.tool_name,
            tool_call_id=message.tool_call_id,
            arguments=dump_json(message.arguments),
            result=dump_json(message.result.to_dict() if message.result is not None else None),
            metadata=dump_json(message.metadata),
        )
    raise TypeError(f"Unsupported message type: {type(message).__name__}")


def decode_message(row: Mapping[str, Any]) -> Message:
    message_id = row["id"]
    role = row["role"]
    metadata = load_json(row["metadata"], "metadata", message_id)

    if role == "tool":
        if not row["tool_name"]:
            raise ValueError(f"Tool message {message_id} is missing a tool name")
        raw_result = load_json(row["result"], "result", message_id)
        return ToolMessage(
            id=message_id,
            tool_name=row["tool_name"],
            created_at=row["created_at"],
            tool_call_id=row["tool_call_id"],
            arguments=load_json(row["arguments"], "arguments", message_id),
            result=ToolResult.from_dict(raw_result) if raw_result is not None else None,
            content=row["content"],
            metadata=metadata,
        )

    if role == "assistant" and row["tool_calls"] is not None:
        raw_calls = load_json(row["tool_calls"], "tool_calls", message_id)
        return ToolRequestMessage(
            id=message_id,
            tool_calls=[ToolCall.from_dict(call) for call in raw_calls],
            created_at=row["created_at"],
            content=row["content"],
            metadata=metadata,
        )

    if role not in TEXT_ROLES:
        raise ValueError(f"Message {message_id} has unknown role {role!r}")
    return TextMessage(
        id=message_id,
        role=role,
        content=row["content"],
        created_at=row["created_at"],
        metadata=metadata,
    )
