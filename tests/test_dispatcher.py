"""Tests for the request dispatcher."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import patch

from claude_shell.config.models import ServerConfig, ToolInvocationOptions
from claude_shell.runner.outcome import ExecutionOutcome
from claude_shell.runner.retry import RetryController
from claude_shell.server.dispatcher import Dispatcher
from claude_shell.server.tools import TOOLS
from claude_shell.server.writer import OutputSerializer

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


class ListSink:
    def __init__(self) -> None:
        self.data = bytearray()

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        return None

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.data.decode().splitlines()]


class FakeRetry:
    """Retry controller double; each call waits on a per-prompt gate."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ToolInvocationOptions]] = []
        self.outcomes: dict[str, ExecutionOutcome] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.error: Exception | None = None

    def gate(self, prompt: str) -> asyncio.Event:
        return self.gates.setdefault(prompt, asyncio.Event())

    async def _run(self, prompt: str, options: ToolInvocationOptions) -> ExecutionOutcome:
        self.calls.append((prompt, options))
        if prompt in self.gates:
            await self.gates[prompt].wait()
        if self.error is not None:
            raise self.error
        return self.outcomes.get(prompt, ExecutionOutcome.ok('{"result":"ok"}'))

    async def run_with_retry(self, prompt: str, options: ToolInvocationOptions) -> ExecutionOutcome:
        return await self._run(prompt, options)

    async def run_json_with_retry(
        self, prompt: str, options: ToolInvocationOptions
    ) -> ExecutionOutcome:
        self.json_called = True
        return await self._run(prompt, options)


def _make_dispatcher(
    retry: Any = None, config: ServerConfig | None = None
) -> tuple[Dispatcher, OutputSerializer, ListSink, Any]:
    sink = ListSink()
    writer = OutputSerializer(sink)
    writer.start()
    retry = retry or FakeRetry()
    dispatcher = Dispatcher(writer, retry, config or ServerConfig())
    return dispatcher, writer, sink, retry


def _line(**message: Any) -> str:
    return json.dumps({"jsonrpc": "2.0", **message})


def _call(request_id: Any, name: str, **arguments: Any) -> str:
    return _line(
        id=request_id,
        method="tools/call",
        params={"name": name, "arguments": arguments},
    )


async def _settle(dispatcher: Dispatcher, writer: OutputSerializer) -> None:
    await dispatcher.wait_idle()
    await writer.drain()


# ------------------------------------------------------------------ #
# Synchronous methods
# ------------------------------------------------------------------ #


class TestSynchronousMethods:
    async def test_initialize(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(_line(id=1, method="initialize", params={}))
        await writer.drain()
        (msg,) = sink.messages()
        assert msg["id"] == 1
        assert msg["result"]["protocolVersion"] == "2024-11-05"
        assert msg["result"]["capabilities"] == {"tools": {}}
        assert msg["result"]["serverInfo"]["name"] == "claude-shell"
        assert msg["result"]["serverInfo"]["version"]

    async def test_initialized_notification_no_response(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(_line(method="initialized"))
        dispatcher.handle_line(_line(method="notifications/initialized"))
        await writer.drain()
        assert sink.messages() == []

    async def test_tools_list(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(_line(id=2, method="tools/list"))
        await writer.drain()
        (msg,) = sink.messages()
        names = [t["name"] for t in msg["result"]["tools"]]
        assert names == [
            "claude_generate",
            "claude_edit",
            "claude_refactor",
            "claude_generate_json",
            "claude_edit_json",
        ]
        assert msg["result"]["tools"] == TOOLS
        for tool in msg["result"]["tools"]:
            assert tool["inputSchema"]["required"] == ["prompt"]

    async def test_ping(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(_line(id="p", method="ping"))
        await writer.drain()
        assert sink.messages() == [{"jsonrpc": "2.0", "id": "p", "result": {}}]

    async def test_unknown_method(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        dispatcher.handle_line(_line(id=3, method="resources/list"))
        await writer.drain()
        (msg,) = sink.messages()
        assert msg["id"] == 3
        assert msg["error"]["code"] == -32601
        assert msg["error"]["message"] == "Method not found: resources/list"
        assert retry.calls == []

    async def test_unknown_notification_ignored(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(_line(method="notifications/cancelled"))
        await writer.drain()
        assert sink.messages() == []

    async def test_parse_error(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line("{broken")
        await writer.drain()
        (msg,) = sink.messages()
        assert msg["id"] is None
        assert msg["error"]["code"] == -32700

    async def test_blank_lines_ignored(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line("   \n")
        await writer.drain()
        assert sink.messages() == []

    async def test_synchronous_responses_keep_input_order(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(_line(id=1, method="initialize"))
        dispatcher.handle_line(_line(id=2, method="tools/list"))
        dispatcher.handle_line(_line(id=3, method="nope"))
        await writer.drain()
        assert [m["id"] for m in sink.messages()] == [1, 2, 3]


# ------------------------------------------------------------------ #
# Tool calls
# ------------------------------------------------------------------ #


class TestToolCalls:
    async def test_unknown_tool(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        dispatcher.handle_line(_call(4, "claude_delete", prompt="x"))
        await _settle(dispatcher, writer)
        (msg,) = sink.messages()
        assert msg["error"]["code"] == -32601
        assert msg["error"]["message"] == "Unknown tool: claude_delete"
        assert retry.calls == []
        assert not dispatcher.pending_tasks

    async def test_generate_success_extracts_result(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        dispatcher.handle_line(_call(5, "claude_generate", prompt="x"))
        await _settle(dispatcher, writer)
        assert sink.messages() == [
            {
                "jsonrpc": "2.0",
                "id": 5,
                "result": {"content": [{"type": "text", "text": "ok"}]},
            }
        ]
        prompt, options = retry.calls[0]
        assert prompt == "x"
        assert options.model == "haiku"
        assert options.timeout == 660
        assert options.max_retries == 3
        assert options.output_format == "json"
        assert options.verbose is False

    async def test_edit_and_refactor_use_plain_retry(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        dispatcher.handle_line(_call(1, "claude_edit", prompt="a"))
        dispatcher.handle_line(_call(2, "claude_refactor", prompt="b"))
        await _settle(dispatcher, writer)
        assert {m["id"] for m in sink.messages()} == {1, 2}
        assert not hasattr(retry, "json_called")

    async def test_generate_failure(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        retry.outcomes["x"] = ExecutionOutcome.failed("stderr text", 2)
        dispatcher.handle_line(_call(6, "claude_generate", prompt="x"))
        await _settle(dispatcher, writer)
        (msg,) = sink.messages()
        assert msg["error"] == {
            "code": -32603,
            "message": "Claude CLI error",
            "data": "stderr text",
        }

    async def test_json_tool_success(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        retry.outcomes["x"] = ExecutionOutcome.ok('{"a":1}')
        dispatcher.handle_line(_call(7, "claude_generate_json", prompt="x"))
        await _settle(dispatcher, writer)
        (msg,) = sink.messages()
        assert msg["result"] == {"content": [{"type": "text", "text": '{"a":1}'}]}
        assert retry.json_called

    async def test_json_tool_failure(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        retry.outcomes["x"] = ExecutionOutcome.failed('{"error":"Max retries reached"}')
        dispatcher.handle_line(_call(8, "claude_edit_json", prompt="x"))
        await _settle(dispatcher, writer)
        (msg,) = sink.messages()
        assert msg["error"]["code"] == -32603
        assert msg["error"]["message"] == "JSON validation error"
        assert msg["error"]["data"] == '{"error":"Max retries reached"}'

    async def test_arguments_forwarded(self) -> None:
        dispatcher, writer, _, retry = _make_dispatcher()
        dispatcher.handle_line(
            _call(9, "claude_generate", prompt="x", model="opus", timeout=5, maxRetries=1)
        )
        await _settle(dispatcher, writer)
        _, options = retry.calls[0]
        assert (options.model, options.timeout, options.max_retries) == ("opus", 5, 1)

    async def test_exception_becomes_internal_error(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        retry.error = RuntimeError("kaboom")
        dispatcher.handle_line(_call(10, "claude_generate", prompt="x"))
        await _settle(dispatcher, writer)
        (msg,) = sink.messages()
        assert msg["id"] == 10
        assert msg["error"] == {"code": -32603, "message": "Internal error", "data": "kaboom"}

        # Dispatcher still serves requests afterwards.
        retry.error = None
        dispatcher.handle_line(_call(11, "claude_generate", prompt="y"))
        await _settle(dispatcher, writer)
        assert sink.messages()[-1]["id"] == 11

    async def test_missing_prompt_is_internal_error(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        dispatcher.handle_line(_call(12, "claude_generate"))
        await _settle(dispatcher, writer)
        (msg,) = sink.messages()
        assert msg["error"]["code"] == -32603
        assert msg["error"]["message"] == "Internal error"
        assert "prompt" in msg["error"]["data"]
        assert retry.calls == []


# ------------------------------------------------------------------ #
# Concurrency
# ------------------------------------------------------------------ #


class TestConcurrency:
    async def test_dispatch_does_not_wait_for_tool_calls(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        retry.gate("slow")
        dispatcher.handle_line(_call(1, "claude_generate", prompt="slow"))
        dispatcher.handle_line(_line(id=2, method="tools/list"))
        await writer.drain()

        assert [m["id"] for m in sink.messages()] == [2]
        assert len(dispatcher.pending_tasks) == 1

        retry.gate("slow").set()
        await _settle(dispatcher, writer)
        assert [m["id"] for m in sink.messages()] == [2, 1]

    async def test_responses_in_completion_order(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        retry.gate("first")
        retry.gate("second")
        dispatcher.handle_line(_call("a", "claude_generate", prompt="first"))
        dispatcher.handle_line(_call("b", "claude_generate", prompt="second"))
        await asyncio.sleep(0)
        assert len(retry.calls) == 2  # both running at once

        retry.gate("second").set()
        await asyncio.sleep(0.01)
        retry.gate("first").set()
        await _settle(dispatcher, writer)

        assert [m["id"] for m in sink.messages()] == ["b", "a"]

    async def test_many_parallel_calls(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        for i in range(25):
            dispatcher.handle_line(_call(i, "claude_generate", prompt=f"p{i}"))
        assert len(dispatcher.pending_tasks) == 25
        await _settle(dispatcher, writer)
        assert sorted(m["id"] for m in sink.messages()) == list(range(25))

    async def test_cancel_all(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        retry.gate("never")
        dispatcher.handle_line(_call(1, "claude_generate", prompt="never"))
        await asyncio.sleep(0)
        assert await dispatcher.cancel_all() == 1
        await writer.drain()
        assert sink.messages() == []
        assert not dispatcher.pending_tasks


# ------------------------------------------------------------------ #
# With the real retry controller
# ------------------------------------------------------------------ #


class TestWithRetryController:
    async def test_end_to_end_generate(self) -> None:
        async def _no_sleep(_: float) -> None:
            return None

        class OkRunner:
            async def run(self, prompt: str, args: list[str], timeout: float) -> ExecutionOutcome:
                return ExecutionOutcome.ok('{"result":"ok"}')

        retry = RetryController(OkRunner(), ServerConfig(), sleep=_no_sleep)  # type: ignore[arg-type]
        dispatcher, writer, sink, _ = _make_dispatcher(retry=retry)
        dispatcher.handle_line(_call(1, "claude_generate", prompt="x"))
        await _settle(dispatcher, writer)
        assert sink.messages()[0]["result"] == {"content": [{"type": "text", "text": "ok"}]}

    async def test_unknown_tool_spawns_nothing(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher(retry=RetryController())
        with patch("asyncio.create_subprocess_exec") as spawn:
            dispatcher.handle_line(_call(1, "not_a_tool", prompt="x"))
            await _settle(dispatcher, writer)
        spawn.assert_not_called()
        assert sink.messages()[0]["error"]["code"] == -32601


# ------------------------------------------------------------------ #
# Malformed requests
# ------------------------------------------------------------------ #


class TestMalformedRequests:
    async def test_non_string_tool_name(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        for i, name in enumerate([["x"], {"a": 1}, 7, None]):
            dispatcher.handle_line(
                _line(id=i, method="tools/call", params={"name": name, "arguments": {}})
            )
        dispatcher.handle_line(_line(id="next", method="tools/list"))
        await _settle(dispatcher, writer)

        messages = sink.messages()
        assert [m["id"] for m in messages] == [0, 1, 2, 3, "next"]
        for msg in messages[:4]:
            assert msg["error"]["code"] == -32601
            assert msg["error"]["message"].startswith("Unknown tool: ")
        assert messages[0]["error"]["message"] == "Unknown tool: ['x']"
        assert "tools" in messages[4]["result"]
        assert retry.calls == []

    async def test_non_dict_arguments(self) -> None:
        dispatcher, writer, sink, retry = _make_dispatcher()
        dispatcher.handle_line(
            _line(
                id=1,
                method="tools/call",
                params={"name": "claude_generate", "arguments": ["prompt"]},
            )
        )
        dispatcher.handle_line(_line(id=2, method="ping"))
        await _settle(dispatcher, writer)

        by_id = {m["id"]: m for m in sink.messages()}
        assert by_id[1]["error"]["code"] == -32603
        assert by_id[2]["result"] == {}
        assert retry.calls == []

    async def test_non_string_method(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(json.dumps({"jsonrpc": "2.0", "id": 1, "method": 42}))
        dispatcher.handle_line(_line(id=2, method="ping"))
        await writer.drain()

        first, second = sink.messages()
        assert first["id"] == 1
        assert first["error"]["code"] == -32600
        assert second == {"jsonrpc": "2.0", "id": 2, "result": {}}

    async def test_lone_surrogate_echoed_safely(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line('{"jsonrpc":"2.0","id":1,"method":"\\ud800"}')
        dispatcher.handle_line(
            '{"jsonrpc":"2.0","id":"\\udfff","method":"tools/call",'
            '"params":{"name":"\\ud83d","arguments":{}}}'
        )
        dispatcher.handle_line(_line(id=3, method="ping"))
        await _settle(dispatcher, writer)

        first, second, third = sink.messages()
        assert first["error"]["message"] == "Method not found: \ud800"
        assert second["id"] == "\udfff"
        assert second["error"]["message"] == "Unknown tool: \ud83d"
        assert third == {"jsonrpc": "2.0", "id": 3, "result": {}}

    async def test_non_ascii_round_trips(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        dispatcher.handle_line(_line(id="ключ", method="méthode"))
        await writer.drain()
        (msg,) = sink.messages()
        assert msg["id"] == "ключ"
        assert msg["error"]["message"] == "Method not found: méthode"

    async def test_routing_error_answered_and_dispatcher_survives(self) -> None:
        dispatcher, writer, sink, _ = _make_dispatcher()
        with patch.object(
            Dispatcher, "_handle_initialize", side_effect=RuntimeError("bad state")
        ):
            dispatcher.handle_line(_line(id=1, method="initialize"))
        dispatcher.handle_line(_line(id=2, method="ping"))
        await writer.drain()

        first, second = sink.messages()
        assert first["error"] == {
            "code": -32603,
            "message": "Internal error",
            "data": "bad state",
        }
        assert second["id"] == 2
