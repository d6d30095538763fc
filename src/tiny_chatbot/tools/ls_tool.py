from typing import Any

from tiny_chatbot.tools.arguments import optional_bool, optional_path


class LsTool:
    @property
    def name(self) -> str:
        return "ls"

    @property
    def description(self) -> str:
        return "List directory contents"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory path to list (defaults to current directory)",
                },
                "showHidden": {
                    "type": "boolean",
                    "description": "Include hidden files (starting with .)",
                },
            },
        }

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        args: list[str] = []
        if optional_bool(tool_input, "showHidden"):
            args.append("-a")
        path = optional_path(tool_input, "path")
        if path:
            args.append(path)
        return args
