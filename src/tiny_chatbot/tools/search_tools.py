from typing import Any

from tiny_chatbot.tools.arguments import optional_bool, path_list, require_string


class _SearchTool:
    _command = ""
    _summary = ""
    _paths_description = ""

    @property
    def name(self) -> str:
        return self._command

    @property
    def description(self) -> str:
        return self._summary

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": "Pattern to search for",
                },
                "paths": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": self._paths_description,
                },
                "ignoreCase": {
                    "type": "boolean",
                    "description": "Perform case-insensitive search",
                },
            },
            "required": ["pattern", "paths"],
        }

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        args: list[str] = []
        if optional_bool(tool_input, "ignoreCase"):
            args.append("-i")
        pattern = require_string(tool_input, "pattern")
        # A pattern such as "-v" would otherwise be read as a flag.
        args.extend(["-e", pattern] if pattern.startswith("-") else [pattern])
        args.extend(path_list(tool_input, "paths"))
        return args


class GrepTool(_SearchTool):
    _command = "grep"
    _summary = "Search for patterns in files using grep"
    _paths_description = "Files to search in"


class RipgrepTool(_SearchTool):
    _command = "rg"
    _summary = "Search for patterns in files using ripgrep (faster alternative to grep)"
    _paths_description = "Files or directories to search in"
