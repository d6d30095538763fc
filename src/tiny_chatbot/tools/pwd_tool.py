from typing import Any


class PwdTool:
    @property
    def name(self) -> str:
        return "pwd"

    @property
    def description(self) -> str:
        return "Print the current working directory"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        return []
