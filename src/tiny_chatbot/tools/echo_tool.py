from typing import Any

from tiny_chatbot.tools.arguments import require_string


class EchoTool:
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Display a line of text"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "description": "Text to display",
                },
            },
            "required": ["text"],
        }

    def build_args(self, tool_input: dict[str, Any]) -> list[str]:
        return [require_string(tool_input, "text")]
