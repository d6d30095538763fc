from typing import Any

from tiny_chatbot.tools.arguments import path_list


class CatTool:
    @property
    def name(self) -> str:
        return "cat"

    @property
    def description(self) -> str:
        return "Display the contents of one or more files"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "paths": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "File paths to display",
                },
            },
            "required": ["paths"],
        }

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        return path_list(tool_input, "paths")
