"""Tests for the agent runner state machine."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from codeloop.agent.cancel import CancelToken
from codeloop.agent.clarification import NO_REPLY, QueueReplyChannel
from codeloop.agent.config import RunConfig
from codeloop.agent.runner import (
    SUCCESS_WITHOUT_DATA,
    AgentRunner,
    TerminalStatus,
    format_tool_result,
)
from codeloop.llm.message import (
    CallResponse,
    FunctionCall,
    Message,
    TextResponse,
    ToolDefinition,
)
from codeloop.session.wire import EventType, Wire
from codeloop.tool.base import ToolResult
from codeloop.tool.builtin.clarify import CLARIFICATION_TOOL_NAME
from codeloop.tool.errors import file_not_found_error
from codeloop.tool.factory import ToolFactory
from codeloop.tool.registry import ToolRegistry


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ScriptedClient:
    """LLM client that replays a fixed list of replies.

    A reply may be text, a FunctionCall, or an exception to raise. Every
    request is recorded for later inspection.
    """

    def __init__(self, replies: list[Any], native: bool = True) -> None:
        self._replies = list(replies)
        self._native = native
        self.calls: list[dict[str, Any]] = []

    def supports_native_function_calling(self) -> bool:
        return self._native

    async def generate_with_functions(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        tools: Sequence[ToolDefinition],
        *,
        messages: Sequence[Message] | None = None,
    ) -> Any:
        self.calls.append(
            {
                "model": model,
                "prompt": prompt,
                "system_prompt": system_prompt,
                "tools": [t.name for t in tools],
                "messages": list(messages or []),
            }
        )
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, FunctionCall):
            return CallResponse(function_call=reply)
        return reply


class FakeTool:
    """Tool whose behaviour is a coroutine function supplied by the test."""

    description = "A fake tool"

    def __init__(self, name: str, behaviour, schema: dict[str, Any] | None = None) -> None:
        self.name = name
        self._behaviour = behaviour
        self._schema = schema or {"type": "object", "properties": {}}
        self.executions: list[dict[str, Any]] = []

    def parameter_schema(self) -> dict[str, Any]:
        return self._schema

    async def execute(self, arguments: dict[str, Any]) -> ToolResult:
        self.executions.append(arguments)
        return await self._behaviour(arguments)


def _runner(client: ScriptedClient, registry: ToolRegistry, **kwargs: Any) -> AgentRunner:
    config = kwargs.pop("config", None) or RunConfig(max_iterations=10)
    return AgentRunner(client, registry, "You are a test agent.", "test/model", config, **kwargs)


def _tool_messages(messages: list[Message]) -> list[Message]:
    return [m for m in messages if m.role == "tool"]


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_list_write_then_answer(self, tmp_path: Path) -> None:
        registry = ToolFactory(tmp_path).generation_registry()
        client = ScriptedClient(
            [
                FunctionCall("list_directory", {"directory_path": "."}),
                FunctionCall(
                    "write_file",
                    {"file_path": "hello.go", "content": "package main\n"},
                    id="w1",
                ),
                "done",
            ]
        )
        result = await _runner(client, registry).run("create hello.go")

        assert result.success
        assert result.status is TerminalStatus.SUCCESS
        assert result.final_response == "done"
        assert result.iterations == 3
        assert result.tool_calls == 2
        assert (tmp_path / "hello.go").read_text() == "package main\n"

        roles = [m.role for m in result.messages]
        assert roles == ["system", "user", "assistant", "tool", "assistant", "tool", "assistant"]
        # every tool message answers the call right before it
        assert result.messages[2].tool_call.id == "call_1"
        assert result.messages[3].tool_call_id == "call_1"
        assert result.messages[5].tool_call_id == "w1"
        assert result.error_counts == {}

    async def test_iteration_budget(self, tmp_path: Path) -> None:
        registry = ToolFactory(tmp_path).planning_registry()
        client = ScriptedClient([FunctionCall("list_directory", {})])
        runner = _runner(client, registry, config=RunConfig(max_iterations=1))
        result = await runner.run("explore")

        assert not result.success
        assert result.status is TerminalStatus.MAX_ITERATIONS
        assert "maximum iterations" in result.error
        assert result.iterations == 1
        assert result.tool_calls == 1
        assert result.messages[-1].role == "tool"

    async def test_tool_failure_reaches_the_llm(self) -> None:
        async def missing(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult(success=False, error="file not found")

        registry = ToolRegistry([FakeTool("read_file", missing)])
        client = ScriptedClient([FunctionCall("read_file", {"file_path": "x"}), "giving up"])
        result = await _runner(client, registry).run("read x")

        assert result.success
        assert result.final_response == "giving up"
        second_request = client.calls[1]
        assert "file not found" in second_request["messages"][-1].content
        assert "file not found" in second_request["prompt"]
        assert result.error_counts == {"UNCLASSIFIED": 1}

    async def test_clarification_reply_joins_conversation(self, tmp_path: Path) -> None:
        registry = ToolFactory(tmp_path).generation_registry(clarification=True)
        question = {
            "question": "Which of the two handlers should I change?",
            "context_summary": "Two handlers match the request",
            "confidence_level": 0.3,
            "suggested_options": ["The HTTP handler", "The gRPC handler"],
        }
        client = ScriptedClient([FunctionCall(CLARIFICATION_TOOL_NAME, question), "ok"])
        channel = QueueReplyChannel(["use option 2"])
        runner = _runner(
            client,
            registry,
            config=RunConfig(clarification_enabled=True),
            reply_channel=channel,
        )
        result = await runner.run("change the handler")

        assert result.success
        assert result.iterations == 2
        assert result.tool_calls == 1
        assert len(channel.questions) == 1
        assert "Which of the two handlers" in channel.questions[0]
        assert Message.user("use option 2") in result.messages
        tool_msg = _tool_messages(result.messages)[0]
        assert tool_msg.content.startswith("CLARIFICATION NEEDED")
        assert client.calls[1]["messages"][-1] == Message.user("use option 2")

    async def test_clarification_without_channel_continues(self, tmp_path: Path) -> None:
        registry = ToolFactory(tmp_path).planning_registry(clarification=True)
        question = {
            "question": "Should I include the vendored code?",
            "context_summary": "Planning a refactor",
            "confidence_level": 0.5,
        }
        client = ScriptedClient([FunctionCall(CLARIFICATION_TOOL_NAME, question), "plan"])
        result = await _runner(client, registry).run("plan it")

        assert result.success
        assert all(m.content != NO_REPLY for m in result.messages)
        assert [m.role for m in result.messages][-2:] == ["tool", "assistant"]


# ---------------------------------------------------------------------------
# Dispatch failures
# ---------------------------------------------------------------------------


class TestDispatch:
    async def test_unknown_tool(self, tmp_path: Path) -> None:
        registry = ToolFactory(tmp_path).planning_registry()
        client = ScriptedClient([FunctionCall("frobnicate", {}), "sorry"])
        result = await _runner(client, registry).run("frobnicate it")

        assert result.success
        assert result.tool_calls == 1
        assert result.error_counts == {"UNSUPPORTED_OPERATION": 1}
        content = _tool_messages(result.messages)[0].content
        assert "Unknown tool: frobnicate" in content
        assert "read_file, list_directory" in content

    async def test_invalid_arguments_never_reach_the_tool(self) -> None:
        async def ok(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.ok()

        schema = {
            "type": "object",
            "properties": {"file_path": {"type": "string"}},
            "required": ["file_path"],
        }
        tool = FakeTool("read_file", ok, schema)
        client = ScriptedClient([FunctionCall("read_file", {}), "fine"])
        result = await _runner(client, ToolRegistry([tool])).run("read")

        assert tool.executions == []
        assert result.error_counts == {"MISSING_PARAMETER": 1}
        assert "Required parameter 'file_path' is missing" in _tool_messages(result.messages)[0].content

    async def test_standardized_error_rendered(self) -> None:
        async def missing(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.fail(file_not_found_error("a.go"))

        client = ScriptedClient([FunctionCall("read_file", {}), "done"])
        config = RunConfig(max_tool_retries=0)
        registry = ToolRegistry([FakeTool("read_file", missing)])
        result = await _runner(client, registry, config=config).run("x")

        content = _tool_messages(result.messages)[0].content
        assert content.startswith("ERROR: File not found: a.go")
        assert "SUGGESTION:" in content
        assert result.error_details == ["read_file: [FILE_NOT_FOUND] File not found: a.go"]

    async def test_tool_exception_is_internal_error(self) -> None:
        async def broken(arguments: dict[str, Any]) -> ToolResult:
            raise RuntimeError("kaboom")

        client = ScriptedClient([FunctionCall("broken", {}), "recovered"])
        result = await _runner(client, ToolRegistry([FakeTool("broken", broken)])).run("x")

        assert result.success
        assert result.error_counts == {"INTERNAL_ERROR": 1}
        assert "kaboom" in _tool_messages(result.messages)[0].content

    async def test_wrong_return_type_is_internal_error(self) -> None:
        async def sloppy(arguments: dict[str, Any]) -> Any:
            return {"success": True}

        client = ScriptedClient([FunctionCall("sloppy", {}), "ok"])
        result = await _runner(client, ToolRegistry([FakeTool("sloppy", sloppy)])).run("x")
        assert result.error_counts == {"INTERNAL_ERROR": 1}

    async def test_tool_timeout(self) -> None:
        async def slow(arguments: dict[str, Any]) -> ToolResult:
            await asyncio.sleep(10)
            return ToolResult.ok()

        client = ScriptedClient([FunctionCall("slow", {}), "moving on"])
        config = RunConfig(tool_timeout=0.05)
        result = await _runner(client, ToolRegistry([FakeTool("slow", slow)]), config=config).run("x")

        assert result.success
        assert result.error_counts == {"TIMEOUT": 1}
        assert "did not finish within 0.05 seconds" in _tool_messages(result.messages)[0].content

    async def test_missing_call_id_assigned(self) -> None:
        async def ok(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.ok("fine")

        client = ScriptedClient([FunctionCall("t", {}), FunctionCall("t", {}), "done"])
        result = await _runner(client, ToolRegistry([FakeTool("t", ok)])).run("x")
        ids = [m.tool_call_id for m in _tool_messages(result.messages)]
        assert ids == ["call_1", "call_2"]

    async def test_clarification_marker_with_loose_data(self) -> None:
        async def ask(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.ok(
                {
                    "clarification_needed": True,
                    "question": "which?",
                    "confidence_level": "high",
                    "suggested_options": "either",
                }
            )

        client = ScriptedClient([FunctionCall("ask", {}), "ok"])
        channel = QueueReplyChannel(["the first"])
        registry = ToolRegistry([FakeTool("ask", ask)])
        result = await _runner(client, registry, reply_channel=channel).run("x")

        assert result.success
        content = _tool_messages(result.messages)[0].content
        assert "CONFIDENCE LEVEL: high" in content
        assert "SUGGESTED OPTIONS" not in content
        assert "QUESTION: which?" in channel.questions[0]
        assert Message.user("the first") in result.messages


# ---------------------------------------------------------------------------
# Retry prompting
# ---------------------------------------------------------------------------


def _failing_read():
    async def read(arguments: dict[str, Any]) -> ToolResult:
        return ToolResult.fail(file_not_found_error(arguments.get("file_path", "")))

    return read


class TestRetries:
    async def test_correctable_failure_gets_retry_prompt(self) -> None:
        client = ScriptedClient([FunctionCall("read_file", {"file_path": "a.go"}), "gave up"])
        registry = ToolRegistry([FakeTool("read_file", _failing_read())])
        result = await _runner(client, registry).run("x")

        content = _tool_messages(result.messages)[0].content
        assert content.startswith(
            "Your previous attempt to use the tool 'read_file' failed (attempt 1 of 3)."
        )
        assert "ERROR DETAILS:\nERROR: File not found: a.go" in content
        assert content.endswith("Please provide your corrected response:")
        assert result.tool_retries == 1
        assert result.to_dict()["tool_retries"] == 1

    async def test_retries_run_out(self) -> None:
        call = FunctionCall("read_file", {"file_path": "a.go"})
        client = ScriptedClient([call, call, "gave up"])
        registry = ToolRegistry([FakeTool("read_file", _failing_read())])
        config = RunConfig(max_tool_retries=1)
        result = await _runner(client, registry, config=config).run("x")

        first, second = (m.content for m in _tool_messages(result.messages))
        assert "(attempt 1 of 2)" in first
        assert second.startswith("ERROR: File not found: a.go")
        assert result.tool_retries == 1
        assert result.error_counts == {"FILE_NOT_FOUND": 2}

    async def test_success_resets_the_count(self) -> None:
        outcomes = [False, True, False]

        async def flaky(arguments: dict[str, Any]) -> ToolResult:
            if outcomes.pop(0):
                return ToolResult.ok("contents")
            return ToolResult.fail(file_not_found_error("a.go"))

        call = FunctionCall("read_file", {"file_path": "a.go"})
        client = ScriptedClient([call, call, call, "done"])
        config = RunConfig(max_tool_retries=1)
        registry = ToolRegistry([FakeTool("read_file", flaky)])
        result = await _runner(client, registry, config=config).run("x")

        contents = [m.content for m in _tool_messages(result.messages)]
        assert contents[0].startswith("Your previous attempt")
        assert contents[1] == "contents"
        assert contents[2].startswith("Your previous attempt")
        assert result.tool_retries == 2

    async def test_arguments_are_part_of_the_signature(self) -> None:
        client = ScriptedClient(
            [
                FunctionCall("read_file", {"file_path": "a.go"}),
                FunctionCall("read_file", {"file_path": "b.go"}),
                "done",
            ]
        )
        config = RunConfig(max_tool_retries=1)
        registry = ToolRegistry([FakeTool("read_file", _failing_read())])
        result = await _runner(client, registry, config=config).run("x")

        assert all(
            m.content.startswith("Your previous attempt") for m in _tool_messages(result.messages)
        )
        assert result.tool_retries == 2

    async def test_unknown_tool_is_not_retried(self) -> None:
        client = ScriptedClient([FunctionCall("frobnicate", {}), "sorry"])
        result = await _runner(client, ToolRegistry()).run("x")

        assert _tool_messages(result.messages)[0].content.startswith("ERROR: Unknown tool")
        assert result.tool_retries == 0

    @pytest.mark.parametrize(("abort", "retries"), [(True, 2), (False, 3)])
    async def test_repeated_error_code(self, abort: bool, retries: int) -> None:
        client = ScriptedClient(
            [FunctionCall("read_file", {"file_path": name}) for name in ("a", "b", "c")] + ["done"]
        )
        config = RunConfig(max_tool_retries=5, abort_on_repeated_errors=abort)
        registry = ToolRegistry([FakeTool("read_file", _failing_read())])
        result = await _runner(client, registry, config=config).run("x")

        last = _tool_messages(result.messages)[-1].content
        assert last.startswith("ERROR: File not found: c") is abort
        assert result.tool_retries == retries


# ---------------------------------------------------------------------------
# Terminal statuses
# ---------------------------------------------------------------------------


class TestTermination:
    async def test_llm_failure(self) -> None:
        client = ScriptedClient([ConnectionError("provider down")])
        result = await _runner(client, ToolRegistry()).run("x")

        assert result.status is TerminalStatus.ERROR
        assert result.error == "LLM call failed: provider down"
        assert result.iterations == 1
        assert [m.role for m in result.messages] == ["system", "user"]

    async def test_cancel_during_tool(self) -> None:
        started = asyncio.Event()
        interrupted = asyncio.Event()

        async def slow(arguments: dict[str, Any]) -> ToolResult:
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                interrupted.set()
                raise
            return ToolResult.ok()

        token = CancelToken()
        client = ScriptedClient([FunctionCall("slow", {})])
        runner = _runner(client, ToolRegistry([FakeTool("slow", slow)]))
        task = asyncio.create_task(runner.run("x", token))
        await started.wait()
        token.cancel("user abort")
        result = await task

        assert result.status is TerminalStatus.CANCELLED
        assert result.error == "run cancelled: user abort"
        assert result.tool_calls == 1
        assert interrupted.is_set()
        # the call is recorded even though no result came back
        assert result.messages[-1].tool_call is not None

    async def test_cancel_before_start(self) -> None:
        token = CancelToken()
        token.cancel("never mind")
        client = ScriptedClient(["unused"])
        result = await _runner(client, ToolRegistry()).run("x", token)

        assert result.status is TerminalStatus.CANCELLED
        assert client.calls == []

    async def test_run_deadline(self) -> None:
        async def slow(arguments: dict[str, Any]) -> ToolResult:
            await asyncio.sleep(10)
            return ToolResult.ok()

        config = RunConfig(tool_timeout=30, run_timeout=0.05)
        client = ScriptedClient([FunctionCall("slow", {})])
        result = await _runner(client, ToolRegistry([FakeTool("slow", slow)]), config=config).run("x")

        assert result.status is TerminalStatus.CANCELLED
        assert "deadline exceeded" in result.error
        assert not result.success

    async def test_max_iterations_keeps_last_text(self) -> None:
        async def ok(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.ok()

        client = ScriptedClient(
            [
                'Listing first. {"name": "t", "arguments": {}}',
                'Step one is done. {"name": "t", "arguments": {}} Checking again.',
            ],
            native=False,
        )
        config = RunConfig(max_iterations=2)
        result = await _runner(client, ToolRegistry([FakeTool("t", ok)]), config=config).run("x")

        assert result.status is TerminalStatus.MAX_ITERATIONS
        assert result.error == "reached maximum iterations (2)"
        assert result.final_response == "Step one is done.\nChecking again."
        assert result.tool_calls == 2
        calls = [m for m in result.messages if m.tool_call is not None]
        assert calls[0].content == "Listing first."
        assert "Listing first.\n[Called tool: t]" in client.calls[1]["prompt"]

    async def test_max_iterations_without_text(self) -> None:
        async def ok(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.ok()

        client = ScriptedClient([FunctionCall("t", {})])
        config = RunConfig(max_iterations=1)
        result = await _runner(client, ToolRegistry([FakeTool("t", ok)]), config=config).run("x")

        assert result.status is TerminalStatus.MAX_ITERATIONS
        assert result.final_response == ""


# ---------------------------------------------------------------------------
# Prompt mode and events
# ---------------------------------------------------------------------------


class TestPromptMode:
    async def test_tools_described_in_system_prompt(self, tmp_path: Path) -> None:
        registry = ToolFactory(tmp_path).planning_registry()
        client = ScriptedClient(
            ['I will look around. {"name": "list_directory", "arguments": {}}', "done"],
            native=False,
        )
        result = await _runner(client, registry).run("explore")

        assert result.success
        assert result.tool_calls == 1
        system = client.calls[0]["system_prompt"]
        assert system.startswith("You are a test agent.")
        assert "Available tools:" in system
        assert "- list_directory:" in system
        assert result.messages[0].content == system

    async def test_native_prompt_unchanged(self) -> None:
        client = ScriptedClient(["hi"])
        await _runner(client, ToolRegistry()).run("x")
        assert client.calls[0]["system_prompt"] == "You are a test agent."


class TestWireEvents:
    async def test_event_sequence(self) -> None:
        async def ok(arguments: dict[str, Any]) -> ToolResult:
            return ToolResult.ok({"n": 1})

        wire = Wire()
        queue = wire.subscribe()
        client = ScriptedClient([FunctionCall("t", {"a": 1}), "done"])
        await _runner(client, ToolRegistry([FakeTool("t", ok)]), wire=wire).run("go")
        wire.close()

        events = []
        while (event := queue.get_nowait()) is not None:
            events.append(event)

        types = [e.type for e in events if e.type is not EventType.PHASE]
        assert types == [
            EventType.RUN_BEGIN,
            EventType.STEP_BEGIN,
            EventType.TOOL_CALL,
            EventType.TOOL_RESULT,
            EventType.STEP_BEGIN,
            EventType.TEXT,
            EventType.RUN_END,
        ]
        call = next(e for e in events if e.type is EventType.TOOL_CALL)
        assert call.data["name"] == "t"
        assert call.data["arguments"] == {"a": 1}
        end = events[-1]
        assert end.data == {"status": "success", "iterations": 2, "tool_calls": 1}
        phases = [e.data["phase"] for e in events if e.type is EventType.PHASE]
        assert phases[:5] == ["await_llm", "normalize", "dispatch", "await_tool", "append"]

    async def test_error_event(self) -> None:
        wire = Wire()
        queue = wire.subscribe()
        client = ScriptedClient([RuntimeError("nope")])
        await _runner(client, ToolRegistry(), wire=wire).run("go")

        types = []
        while not queue.empty():
            types.append(queue.get_nowait().type)
        assert types[-2:] == [EventType.ERROR, EventType.RUN_END]


class TestConcurrency:
    async def test_runs_do_not_share_state(self) -> None:
        class EchoClient:
            def supports_native_function_calling(self) -> bool:
                return True

            async def generate_with_functions(self, model, prompt, system_prompt, tools, *, messages=None):
                await asyncio.sleep(0.01)
                return TextResponse(text=f"echo: {messages[1].content}")

        runner = AgentRunner(EchoClient(), ToolRegistry(), "sys", "m")
        first, second = await asyncio.gather(runner.run("one"), runner.run("two"))
        assert first.final_response == "echo: one"
        assert second.final_response == "echo: two"
        assert len(first.messages) == len(second.messages) == 3


class TestFormatToolResult:
    def test_shapes(self) -> None:
        assert format_tool_result(ToolResult.ok()) == SUCCESS_WITHOUT_DATA
        assert format_tool_result(ToolResult.ok("plain")) == "plain"
        assert format_tool_result(ToolResult.ok({"a": 1})) == '{\n  "a": 1\n}'
        assert format_tool_result(ToolResult.fail("bad")) == "Error: bad"

    @pytest.mark.parametrize("data", [[1, 2], {"nested": {"x": [1]}}])
    def test_json_data(self, data: Any) -> None:
        assert format_tool_result(ToolResult.ok(data)).startswith(("[", "{"))
