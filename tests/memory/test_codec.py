import json
import unittest

from tiny_chatbot.memory.codec import decode_message, encode_message
from tiny_chatbot.messages import (
    TextMessage,
    ToolCall,
    ToolMessage,
    ToolRequestMessage,
    ToolResult,
    new_text_message,
    new_tool_message,
    new_tool_request_message,
)


def _as_row(message) -> dict:
    return dict(vars(encode_message(message)))


class CodecTests(unittest.TestCase):
    def test_text_message_columns(self) -> None:
        row = _as_row(new_text_message("user", "hello", metadata={"source": "cli"}))
        self.assertEqual("user", row["role"])
        self.assertEqual("hello", row["content"])
        self.assertIsNone(row["tool_calls"])
        self.assertEqual({"source": "cli"}, json.loads(row["metadata"]))

    def test_tool_request_keeps_calls_as_json(self) -> None:
        request = new_tool_request_message([ToolCall(id="c1", name="ls", arguments={"showHidden": True})])
        row = _as_row(request)
        self.assertEqual("assistant", row["role"])
        self.assertEqual("", row["content"])
        self.assertEqual([{"id": "c1", "name": "ls", "arguments": {"showHidden": True}}], json.loads(row["tool_calls"]))

        decoded = decode_message(row)
        self.assertIsInstance(decoded, ToolRequestMessage)
        self.assertEqual(request, decoded)

    def test_assistant_text_with_empty_content_stays_text(self) -> None:
        message = new_text_message("assistant", "")
        decoded = decode_message(_as_row(message))
        self.assertIsInstance(decoded, TextMessage)
        self.assertEqual(message, decoded)

    def test_tool_message_round_trip(self) -> None:
        call = ToolCall(id="c9", name="wc", arguments={"paths": ["a", "b"], "countLines": True})
        message = new_tool_message(call, ToolResult(status="error", stderr="nope", exit_code=1, duration_ms=4))
        decoded = decode_message(_as_row(message))
        self.assertIsInstance(decoded, ToolMessage)
        self.assertEqual(message, decoded)

    def test_corrupt_json_names_field_and_message(self) -> None:
        row = _as_row(new_text_message("user", "x"))
        row["metadata"] = "{not json"
        with self.assertRaises(ValueError) as ctx:
            decode_message(row)
        self.assertIn("metadata", str(ctx.exception))
        self.assertIn(row["id"], str(ctx.exception))

    def test_unknown_role_rejected(self) -> None:
        row = _as_row(new_text_message("user", "x"))
        row["role"] = "robot"
        with self.assertRaises(ValueError):
            decode_message(row)

    def test_tool_row_without_name_rejected(self) -> None:
        row = _as_row(new_tool_message(ToolCall(id="c", name="pwd"), ToolResult(status="success")))
        row["tool_name"] = None
        with self.assertRaises(ValueError):
            decode_message(row)

    def test_unknown_variant_rejected(self) -> None:
        with self.assertRaises(TypeError):
            encode_message({"role": "user", "content": "dict"})
