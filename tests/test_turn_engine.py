import asyncio
import unittest

from tests.fakes import FakeGateway, FakeSandbox, text_response, tool_response
from tiny_chatbot.gateway import GatewayError, StreamDelta
from tiny_chatbot.messages import Message, TextMessage, ToolCall, ToolMessage, ToolRequestMessage, new_text_message
from tiny_chatbot.providers.openai_provider import _to_openai_messages
from tiny_chatbot.tool_registry import get_all
from tiny_chatbot.turn_engine import StreamCompleted, TurnEngine, round_limit_text


class _Log:
    def __init__(self):
        self.messages: list[Message] = []

    def append(self, message: Message) -> list[Message]:
        self.messages.append(message)
        return list(self.messages)


def _engine(gateway: FakeGateway, sandbox: FakeSandbox | None = None, max_rounds: int = 10) -> TurnEngine:
    return TurnEngine(gateway=gateway, sandbox=sandbox or FakeSandbox(), tools=get_all(), max_rounds=max_rounds)


def _run(engine: TurnEngine, log: _Log, text: str = "hi", system_prompt: str | None = None) -> TextMessage:
    return asyncio.run(
        engine.run(user_message=new_text_message("user", text), append=log.append, system_prompt=system_prompt)
    )


def _stream(engine: TurnEngine, log: _Log, text: str = "hi") -> list:
    async def collect() -> list:
        return [e async for e in engine.run_streaming(user_message=new_text_message("user", text), append=log.append)]

    return asyncio.run(collect())


class TurnEngineTests(unittest.TestCase):
    def test_plain_reply(self) -> None:
        log = _Log()
        final = _run(_engine(FakeGateway([text_response("Hello!")])), log)

        self.assertEqual("Hello!", final.content)
        self.assertEqual(["user", "assistant"], [m.role for m in log.messages])
        self.assertIs(final, log.messages[-1])

    def test_empty_content_becomes_empty_string(self) -> None:
        log = _Log()
        final = _run(_engine(FakeGateway([text_response("")])), log)
        self.assertEqual("", final.content)

    def test_single_tool_round(self) -> None:
        log = _Log()
        gateway = FakeGateway([
            tool_response(("c1", "cat", {"paths": ["a.txt"]})),
            text_response("The file says hi."),
        ])
        sandbox = FakeSandbox()

        final = _run(_engine(gateway, sandbox), log)

        self.assertEqual("The file says hi.", final.content)
        self.assertEqual(4, len(log.messages))
        user, request, tool, assistant = log.messages
        self.assertIsInstance(user, TextMessage)
        self.assertIsInstance(request, ToolRequestMessage)
        self.assertEqual([ToolCall(id="c1", name="cat", arguments={"paths": ["a.txt"]})], request.tool_calls)
        self.assertIsInstance(tool, ToolMessage)
        self.assertEqual("c1", tool.tool_call_id)
        self.assertEqual("success", tool.result.status)
        self.assertIsInstance(assistant, TextMessage)
        self.assertEqual([("cat", ["a.txt"])], sandbox.calls)
        # The second model call sees the tool round.
        self.assertEqual(3, len(gateway.histories[1]))

    def test_tool_messages_follow_request_order(self) -> None:
        log = _Log()
        gateway = FakeGateway([
            tool_response(
                ("c1", "cat", {"paths": ["slow.txt"]}),
                ("c2", "cat", {"paths": ["fast.txt"]}),
                ("c3", "cat", {"paths": ["medium.txt"]}),
            ),
            text_response("done"),
        ])
        sandbox = FakeSandbox(delays={"slow.txt": 0.15, "medium.txt": 0.05, "fast.txt": 0.0})

        _run(_engine(gateway, sandbox), log)

        self.assertEqual(["fast.txt", "medium.txt", "slow.txt"], sandbox.completed)
        tool_messages = [m for m in log.messages if isinstance(m, ToolMessage)]
        self.assertEqual(["c1", "c2", "c3"], [m.tool_call_id for m in tool_messages])

    def test_tool_calls_run_concurrently(self) -> None:
        log = _Log()
        gateway = FakeGateway([
            tool_response(*((f"c{i}", "cat", {"paths": [f"f{i}.txt"]}) for i in range(5))),
            text_response("done"),
        ])
        sandbox = FakeSandbox(delays={f"f{i}.txt": 0.2 for i in range(5)})

        async def timed() -> float:
            loop = asyncio.get_running_loop()
            started = loop.time()
            await _engine(gateway, sandbox).run(user_message=new_text_message("user", "go"), append=log.append)
            return loop.time() - started

        self.assertLess(asyncio.run(timed()), 0.8)

    def test_round_limit_is_soft(self) -> None:
        log = _Log()
        gateway = FakeGateway([tool_response(("c", "pwd", {}))])

        final = _run(_engine(gateway, max_rounds=3), log)

        self.assertEqual(3, len(gateway.histories))
        self.assertEqual(round_limit_text(3), final.content)
        self.assertEqual("assistant", final.role)
        self.assertEqual(1 + 3 * 2 + 1, len(log.messages))

    def test_unknown_tool_becomes_error_result(self) -> None:
        log = _Log()
        gateway = FakeGateway([tool_response(("c1", "rm", {"path": "x"})), text_response("ok")])
        sandbox = FakeSandbox()

        final = _run(_engine(gateway, sandbox), log)

        self.assertEqual("ok", final.content)
        tool = log.messages[2]
        self.assertEqual("error", tool.result.status)
        self.assertEqual('Unknown tool "rm"', tool.result.error_message)
        self.assertEqual([], sandbox.calls)

    def test_invalid_arguments_become_error_result(self) -> None:
        log = _Log()
        gateway = FakeGateway([tool_response(("c1", "head", {"path": "a", "lines": "ten"})), text_response("ok")])

        _run(_engine(gateway), log)

        tool = log.messages[2]
        self.assertEqual("error", tool.result.status)
        self.assertIn("lines", tool.result.error_message)

    def test_sandbox_rejection_becomes_error_result(self) -> None:
        log = _Log()
        gateway = FakeGateway([
            tool_response(("c1", "cat", {"paths": ["/etc/passwd"]}), ("c2", "cat", {"paths": ["ok.txt"]})),
            text_response("ok"),
        ])

        _run(_engine(gateway), log)

        first, second = log.messages[2], log.messages[3]
        self.assertEqual("error", first.result.status)
        self.assertIn("outside the allowed working directory", first.result.error_message)
        self.assertEqual("success", second.result.status)

    def test_system_prompt_is_prefixed_but_not_appended(self) -> None:
        log = _Log()
        gateway = FakeGateway([text_response("hi")])

        _run(_engine(gateway), log, system_prompt="Be terse.")

        sent = gateway.histories[0]
        self.assertEqual("system", sent[0].role)
        self.assertEqual("Be terse.", sent[0].content)
        self.assertEqual(["user", "assistant"], [m.role for m in log.messages])

    def test_manifest_is_sent_on_every_call(self) -> None:
        gateway = FakeGateway([tool_response(("c", "pwd", {})), text_response("done")])
        _run(_engine(gateway), _Log())
        expected = [t.name for t in get_all()]
        self.assertEqual([expected, expected], gateway.tool_names)

    def test_gateway_error_propagates_after_user_message(self) -> None:
        log = _Log()
        with self.assertRaises(GatewayError):
            _run(_engine(FakeGateway([GatewayError("down")])), log)
        self.assertEqual(["user"], [m.role for m in log.messages])

    def test_max_rounds_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            _engine(FakeGateway([text_response("x")]), max_rounds=0)


class TurnEngineStreamingTests(unittest.TestCase):
    def test_deltas_then_completed(self) -> None:
        log = _Log()
        events = _stream(_engine(FakeGateway([text_response("Hello there friend")])), log)

        self.assertEqual([StreamDelta("Hello "), StreamDelta("there "), StreamDelta("friend")], events[:-1])
        self.assertIsInstance(events[-1], StreamCompleted)
        self.assertEqual("Hello there friend", events[-1].message.content)
        self.assertIs(events[-1].message, log.messages[-1])

    def test_tool_round_then_final_text(self) -> None:
        log = _Log()
        gateway = FakeGateway([
            tool_response(("c1", "ls", {}), content="Checking."),
            text_response("Two files."),
        ])

        events = _stream(_engine(gateway), log)

        completed = [e for e in events if isinstance(e, StreamCompleted)]
        self.assertEqual(1, len(completed))
        self.assertIs(events[-1], completed[0])
        self.assertEqual("Two files.", completed[0].message.content)
        self.assertEqual([StreamDelta("Two files.")], events[:-1])
        self.assertEqual(
            [TextMessage, ToolRequestMessage, ToolMessage, TextMessage],
            [type(m) for m in log.messages],
        )
        self.assertEqual("Checking.", log.messages[1].content)

    def test_round_limit_completes_stream(self) -> None:
        log = _Log()
        events = _stream(_engine(FakeGateway([tool_response(("c", "pwd", {}))]), max_rounds=2), log)

        self.assertEqual(1, len(events))
        self.assertEqual(round_limit_text(2), events[0].message.content)

    def test_joined_deltas_equal_final_content(self) -> None:
        log = _Log()
        gateway = FakeGateway([
            tool_response(("c1", "ls", {}), content="Let me look."),
            text_response("There are two files."),
        ])

        events = _stream(_engine(gateway), log)

        deltas = [e.delta for e in events if isinstance(e, StreamDelta)]
        self.assertEqual(events[-1].message.content, "".join(deltas))
        self.assertEqual(["There ", "are ", "two ", "files."], deltas)

    def test_round_limit_with_preamble_emits_no_deltas(self) -> None:
        log = _Log()
        gateway = FakeGateway([tool_response(("c", "pwd", {}), content="Checking.")])

        events = _stream(_engine(gateway, max_rounds=2), log)

        self.assertEqual([], [e for e in events if isinstance(e, StreamDelta)])
        self.assertEqual(1, len(events))
        self.assertEqual(round_limit_text(2), events[0].message.content)


def _cancel_during_tools(engine: TurnEngine, log: _Log) -> bool:
    async def run() -> bool:
        task = asyncio.create_task(engine.run(user_message=new_text_message("user", "hi"), append=log.append))
        await asyncio.sleep(0.2)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return task.cancelled()

    return asyncio.run(run())


class TurnEngineCancellationTests(unittest.TestCase):
    def test_cancelled_tool_round_answers_every_request(self) -> None:
        log = _Log()
        gateway = FakeGateway([
            tool_response(("c1", "cat", {"paths": ["slow.txt"]}), ("c2", "cat", {"paths": ["a.txt"]})),
            text_response("unused"),
        ])
        engine = _engine(gateway, FakeSandbox(delays={"slow.txt": 5}))

        self.assertTrue(_cancel_during_tools(engine, log))

        self.assertEqual(
            [TextMessage, ToolRequestMessage, ToolMessage, ToolMessage],
            [type(m) for m in log.messages],
        )
        request = log.messages[1]
        self.assertEqual([c.id for c in request.tool_calls], [m.tool_call_id for m in log.messages[2:]])
        for message in log.messages[2:]:
            self.assertEqual("error", message.result.status)
            self.assertEqual("cancelled", message.result.error_message)

    def test_cancelled_log_renders_complete_openai_history(self) -> None:
        log = _Log()
        gateway = FakeGateway([tool_response(("c1", "cat", {"paths": ["slow.txt"]})), text_response("unused")])
        engine = _engine(gateway, FakeSandbox(delays={"slow.txt": 5}))

        self.assertTrue(_cancel_during_tools(engine, log))

        wire = _to_openai_messages(log.messages)
        self.assertEqual(["user", "assistant", "tool"], [m["role"] for m in wire])
        self.assertEqual("c1", wire[2]["tool_call_id"])
