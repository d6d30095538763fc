from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ToolDefinition:
    """Provider-neutral tool description handed to the model gateway."""

    name: str
    description: str
    input_schema: dict[str, Any]


@runtime_checkable
class Tool(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def input_schema(self) -> dict[str, Any]: ...

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        """Map the model's tool arguments to the command-line arguments of ``name``."""
        ...


def to_definition(tool: Tool) -> ToolDefinition:
    return ToolDefinition(name=tool.name, description=tool.description, input_schema=tool.input_schema)
