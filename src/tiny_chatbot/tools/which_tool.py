from typing import Any

from tiny_chatbot.tools.arguments import require_string


class WhichTool:
    @property
    def name(self) -> str:
        return "which"

    @property
    def description(self) -> str:
        return "Locate a command and show its path"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "Command name to locate",
                },
            },
            "required": ["command"],
        }

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        return [require_string(tool_input, "command")]
