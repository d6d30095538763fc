"""Session and message records shared by the stores, the gateway and the turn engine.

A message is one of three variants:

* ``TextMessage``: plain system/user/assistant text.
* ``ToolRequestMessage``: the assistant asked for one or more tool calls.
* ``ToolMessage``: the outcome of one tool call.

The variants are independent frozen dataclasses joined by the ``Message``
alias; code that needs to treat them differently dispatches on the concrete
type and raises ``TypeError`` for anything else.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import Any, Literal, Union
from uuid import uuid4

TextRole = Literal["system", "user", "assistant"]
ToolStatus = Literal["success", "error", "timeout"]

TEXT_ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})
TOOL_STATUSES: frozenset[str] = frozenset({"success", "error", "timeout"})


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


def new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            arguments=dict(data.get("arguments") or {}),
        )


@dataclass(frozen=True)
class ToolResult:
    status: ToolStatus
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int | None = None
    duration_ms: int | None = None
    truncated: bool | None = None
    error_message: str | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping with absent fields omitted."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolResult:
        status = data.get("status")
        if status not in TOOL_STATUSES:
            raise ValueError(f"Invalid tool result status: {status!r}")
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        # Unrecognised keys are folded into metadata.
        extra = {k: v for k, v in data.items() if k not in known}
        if extra:
            values["metadata"] = {**(values.get("metadata") or {}), **extra}
        return cls(**values)


@dataclass(frozen=True)
class TextMessage:
    id: str
    role: TextRole
    content: str
    created_at: str
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolRequestMessage:
    id: str
    tool_calls: list[ToolCall]
    created_at: str
    content: str = ""
    metadata: dict[str, Any] | None = None
    role: Literal["assistant"] = field(default="assistant", init=False)


@dataclass(frozen=True)
class ToolMessage:
    id: str
    tool_name: str
    created_at: str
    tool_call_id: str | None = None
    arguments: dict[str, Any] | None = None
    result: ToolResult | None = None
    content: str = ""
    metadata: dict[str, Any] | None = None
    role: Literal["tool"] = field(default="tool", init=False)


Message = Union[TextMessage, ToolRequestMessage, ToolMessage]


@dataclass(frozen=True)
class CreateSessionInput:
    tenant_id: str
    user_id: str | None = None
    traits: dict[str, Any] | None = None


@dataclass(frozen=True)
class Session:
    id: str
    tenant_id: str
    created_at: str
    user_id: str | None = None
    traits: dict[str, Any] | None = None
    messages: list[Message] = field(default_factory=list)


def new_text_message(role: TextRole, content: str, metadata: dict[str, Any] | None = None) -> TextMessage:
    if role not in TEXT_ROLES:
        raise ValueError(f"Invalid text message role: {role!r}")
    return TextMessage(id=new_id(), role=role, content=content, created_at=utc_now(), metadata=metadata)


def new_tool_request_message(tool_calls: list[ToolCall], content: str = "") -> ToolRequestMessage:
    return ToolRequestMessage(id=new_id(), tool_calls=list(tool_calls), created_at=utc_now(), content=content)


def new_tool_message(call: ToolCall, result: ToolResult) -> ToolMessage:
    return ToolMessage(
        id=new_id(),
        tool_name=call.name,
        created_at=utc_now(),
        tool_call_id=call.id,
        arguments=call.arguments,
        result=result,
        content=render_tool_result(call.name, result),
    )


def render_tool_result(tool_name: str, result: ToolResult | None) -> str:
    """Render a tool outcome as the textual block the model reads."""
    lines = [f"Tool: {tool_name}"]
    if result is None:
        lines.append("Status: unknown")
        return "\n".join(lines)

    lines.append(f"Status: {result.status}")
    if result.exit_code is not None:
        lines.append(f"Exit code: {result.exit_code}")
    if result.duration_ms is not None:
        lines.append(f"Duration: {result.duration_ms}ms")
    if result.truncated:
        lines.append("Truncated: yes (output exceeded the size limit)")
    if result.error_message:
        lines.append(f"Error: {result.error_message}")
    if result.stdout:
        lines.append(f"Stdout:\n{result.stdout}")
    if result.stderr:
        lines.append(f"Stderr:\n{result.stderr}")
    if result.metadata:
        lines.append(f"Metadata: {json.dumps(result.metadata, sort_keys=True)}")
    return "\n".join(lines)


def render_tool_message(message: ToolMessage) -> str:
    if message.content:
        return message.content
    return render_tool_result(message.tool_name, message.result)
