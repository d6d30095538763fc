from typing import Any

from tiny_chatbot.tools.arguments import optional_positive_int, require_path


class _LinesTool:
    _command = ""
    _summary = ""

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
                "path": {
                    "type": "string",
                    "description": "File path to read",
                },
                "lines": {
                    "type": "number",
                    "description": "Number of lines to display (default: 10)",
                },
            },
            "required": ["path"],
        }

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        args: list[str] = []
        lines = optional_positive_int(tool_input, "lines")
        if lines is not None:
            args.extend(["-n", str(lines)])
        args.append(require_path(tool_input, "path"))
        return args


class HeadTool(_LinesTool):
    _command = "head"
    _summary = "Display the first lines of a file"


class TailTool(_LinesTool):
    _command = "tail"
    _summary = "Display the last lines of a file"
