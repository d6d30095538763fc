from typing import Any

from tiny_chatbot.tools.arguments import optional_bool, path_list


class WcTool:
    @property
    def name(self) -> str:
        return "wc"

    @property
    def description(self) -> str:
        return "Count lines, words, and bytes in files"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "paths": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "File paths to analyze",
                },
                "countLines": {"type": "boolean", "description": "Count lines"},
                "countWords": {"type": "boolean", "description": "Count words"},
                "countBytes": {"type": "boolean", "description": "Count bytes"},
            },
            "required": ["paths"],
        }

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        args: list[str] = []
        if optional_bool(tool_input, "countLines"):
            args.append("-l")
        if optional_bool(tool_input, "countWords"):
            args.append("-w")
        if optional_bool(tool_input, "countBytes"):
            args.append("-c")
        args.extend(path_list(tool_input, "paths"))
        return args
