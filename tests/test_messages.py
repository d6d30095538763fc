import unittest

from tiny_chatbot.messages import (
    ToolCall,
    ToolResult,
    new_text_message,
    new_tool_message,
    new_tool_request_message,
    render_tool_result,
)


class ToolResultTests(unittest.TestCase):
    def test_to_dict_omits_absent_fields(self) -> None:
        result = ToolResult(status="success", stdout="x", exit_code=0, truncated=False)
        self.assertEqual({"status": "success", "stdout": "x", "exit_code": 0, "truncated": False}, result.to_dict())

    def test_from_dict_round_trip(self) -> None:
        result = ToolResult(
            status="timeout",
            stdout="partial",
            duration_ms=1200,
            truncated=True,
            error_message="Command timed out after 1000ms",
            metadata={"k": [1, 2]},
        )
        self.assertEqual(result, ToolResult.from_dict(result.to_dict()))

    def test_from_dict_rejects_unknown_status(self) -> None:
        with self.assertRaises(ValueError):
            ToolResult.from_dict({"status": "done"})

    def test_from_dict_keeps_unknown_keys_in_metadata(self) -> None:
        self.assertEqual(
            ToolResult(status="error", metadata={"extra": 1}),
            ToolResult.from_dict({"status": "error", "extra": 1}),
        )
        self.assertEqual(
            ToolResult(status="success", metadata={"source": "cache", "host": "a"}),
            ToolResult.from_dict({"status": "success", "metadata": {"source": "cache"}, "host": "a"}),
        )


class MessageFactoryTests(unittest.TestCase):
    def test_text_message_gets_id_and_timestamp(self) -> None:
        a = new_text_message("user", "hi")
        b = new_text_message("user", "hi")
        self.assertNotEqual(a.id, b.id)
        self.assertTrue(a.created_at.endswith("+00:00"))
        self.assertEqual("user", a.role)

    def test_text_message_rejects_tool_role(self) -> None:
        with self.assertRaises(ValueError):
            new_text_message("tool", "nope")

    def test_tool_request_copies_calls(self) -> None:
        calls = [ToolCall(id="c1", name="pwd")]
        request = new_tool_request_message(calls)
        calls.append(ToolCall(id="c2", name="ls"))
        self.assertEqual(1, len(request.tool_calls))
        self.assertEqual("assistant", request.role)
        self.assertEqual("", request.content)

    def test_tool_message_correlates_to_call(self) -> None:
        call = ToolCall(id="c1", name="echo", arguments={"text": "hi"})
        message = new_tool_message(call, ToolResult(status="success", stdout="hi\n", exit_code=0))
        self.assertEqual("tool", message.role)
        self.assertEqual("echo", message.tool_name)
        self.assertEqual("c1", message.tool_call_id)
        self.assertEqual({"text": "hi"}, message.arguments)
        self.assertIn("Stdout:\nhi", message.content)


class RenderToolResultTests(unittest.TestCase):
    def test_lines_only_when_present(self) -> None:
        text = render_tool_result("cat", ToolResult(status="success", stdout="A", exit_code=0, duration_ms=7))
        self.assertEqual("Tool: cat\nStatus: success\nExit code: 0\nDuration: 7ms\nStdout:\nA", text)

    def test_error_and_truncation(self) -> None:
        text = render_tool_result(
            "grep",
            ToolResult(status="error", stderr="bad", truncated=True, error_message="failed", metadata={"b": 1, "a": 2}),
        )
        self.assertIn("Truncated: yes", text)
        self.assertIn("Error: failed", text)
        self.assertIn("Stderr:\nbad", text)
        self.assertTrue(text.endswith('Metadata: {"a": 2, "b": 1}'))

    def test_missing_result(self) -> None:
        self.assertEqual("Tool: ls\nStatus: unknown", render_tool_result("ls", None))
