"""The agent runner: one request in, one classified result out.

Each iteration asks the LLM for its next move, normalizes the answer,
and either finishes (text) or runs exactly one tool and feeds the result
back. Tool calls within a run are strictly sequential.

    INIT -> {AWAIT_LLM -> NORMALIZE -> DISPATCH -> AWAIT_TOOL -> APPEND}*
         -> TERMINAL{SUCCESS, MAX_ITERATIONS, ERROR, CANCELLED}
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any

from codeloop.agent.cancel import CancelToken, RunCancelled
from codeloop.agent.clarification import (
    ReplyChannel,
    clarification_options,
    clarification_prompt,
    is_clarification,
)
from codeloop.agent.config import RunConfig
from codeloop.llm.message import FunctionCall, Message, TextResponse
from codeloop.llm.normalize import format_tools_for_prompt, normalize, render_transcript
from codeloop.llm.provider import LLMClient
from codeloop.session.wire import EventType, Wire, WireEvent
from codeloop.tool.base import ToolResult
from codeloop.tool.errors import (
    ErrorCode,
    internal_error,
    tool_timeout_error,
    unknown_tool_error,
)
from codeloop.tool.registry import ToolRegistry
from codeloop.tool.truncation import truncate_output
from codeloop.tool.validation import validate_arguments

logger = logging.getLogger(__name__)

SUCCESS_WITHOUT_DATA = "Tool executed successfully"

# A retry prompt cannot help with these.
NON_RETRIABLE = frozenset(
    {ErrorCode.UNSUPPORTED_OPERATION, ErrorCode.INTERNAL_ERROR, ErrorCode.FILE_ALREADY_EXISTS}
)


class TerminalStatus(enum.Enum):
    """How a run ended."""

    SUCCESS = "success"
    MAX_ITERATIONS = "max_iterations"  # Budget spent without a text answer
    ERROR = "error"  # LLM transport or provider failure
    CANCELLED = "cancelled"  # Token fired or run deadline passed


class RunPhase(enum.Enum):
    INIT = "init"
    AWAIT_LLM = "await_llm"
    NORMALIZE = "normalize"
    DISPATCH = "dispatch"
    AWAIT_TOOL = "await_tool"
    APPEND = "append"
    TERMINAL = "terminal"


@dataclass
class AgentResult:
    """Terminal output of a run.

    Always carries either ``final_response`` or ``error``, and the full
    transcript, whatever the status.
    """

    success: bool
    status: TerminalStatus
    iterations: int = 0
    tool_calls: int = 0
    tool_retries: int = 0
    final_response: str = ""
    error: str = ""
    messages: list[Message] = field(default_factory=list)
    error_details: list[str] = field(default_factory=list)
    error_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "iterations": self.iterations,
            "tool_calls": self.tool_calls,
            "tool_retries": self.tool_retries,
            "final_response": self.final_response,
            "error": self.error,
            "messages": [m.to_dict() for m in self.messages],
            "error_details": list(self.error_details),
            "error_counts": dict(self.error_counts),
        }


@dataclass
class _RunState:
    """Everything one run mutates. Never shared between runs."""

    messages: list[Message]
    iterations: int = 0
    tool_calls: int = 0
    tool_retries: int = 0
    last_text: str = ""
    phase: RunPhase = RunPhase.INIT
    error_details: list[str] = field(default_factory=list)
    error_counts: Counter[str] = field(default_factory=Counter)
    # Retry prompts sent per call signature since its last success
    retries: dict[str, int] = field(default_factory=dict)

    def record(self, name: str, result: ToolResult) -> None:
        if result.success:
            return
        err = result.standardized_error
        code = err.code.value if err is not None else "UNCLASSIFIED"
        message = err.message if err is not None else result.error
        self.error_counts[code] += 1
        self.error_details.append(f"{name}: [{code}] {message}")

    def finish(
        self,
        status: TerminalStatus,
        *,
        final_response: str = "",
        error: str = "",
    ) -> AgentResult:
        self.phase = RunPhase.TERMINAL
        return AgentResult(
            success=status is TerminalStatus.SUCCESS,
            status=status,
            iterations=self.iterations,
            tool_calls=self.tool_calls,
            tool_retries=self.tool_retries,
            final_response=final_response,
            error=error,
            messages=list(self.messages),
            error_details=list(self.error_details),
            error_counts=dict(self.error_counts),
        )


def format_tool_result(result: ToolResult) -> str:
    """The tool message content the LLM sees for ``result``."""
    if result.success:
        if is_clarification(result):
            return clarification_prompt(result.data)
        if result.data is None:
            return SUCCESS_WITHOUT_DATA
        if isinstance(result.data, str):
            return result.data
        return json.dumps(result.data, indent=2, default=str)
    if result.standardized_error is not None:
        return result.standardized_error.format_for_llm()
    return f"Error: {result.error}"


def retry_prompt(tool_name: str, result: ToolResult, attempt: int, max_retries: int) -> str:
    """Tool message content asking the LLM to correct a failed call."""
    lines = [
        f"Your previous attempt to use the tool '{tool_name}' failed "
        f"(attempt {attempt} of {max_retries + 1}).",
        "",
    ]
    if result.standardized_error is not None:
        lines += ["ERROR DETAILS:", result.standardized_error.format_for_llm(), ""]
    else:
        lines += [f"Error: {result.error}", ""]
    lines += [
        "INSTRUCTIONS FOR RETRY:",
        "1. Carefully review the error message above",
        "2. Identify what went wrong with your parameters",
        "3. Provide a corrected tool call with the proper parameters",
        "4. If you cannot fix the issue, explain why and suggest an alternative approach",
        "",
        "Please provide your corrected response:",
    ]
    return "\n".join(lines)


def call_signature(call: FunctionCall) -> str:
    """Identifies repeated attempts at the same call."""
    return f"{call.name}:{json.dumps(call.arguments, sort_keys=True, default=str)}"


class AgentRunner:
    """Drives one LLM through a role's tools until it answers in text.

    The runner holds no per-run state, so one instance may serve several
    concurrent ``run`` calls against the same registry.
    """

    def __init__(
        self,
        client: LLMClient,
        registry: ToolRegistry,
        system_prompt: str,
        model: str,
        config: RunConfig | None = None,
        *,
        wire: Wire | None = None,
        reply_channel: ReplyChannel | None = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.system_prompt = system_prompt
        self.model = model
        self.config = config or RunConfig.default()
        self.wire = wire
        self.reply_channel = reply_channel

    async def run(self, request: str, cancel: CancelToken | None = None) -> AgentResult:
        """Run ``request`` to a terminal status.

        Tool and LLM failures are classified, never raised. Cancelling the
        task that awaits this coroutine propagates ``CancelledError``.
        """
        token = cancel or CancelToken()
        system = self._effective_system_prompt()
        state = _RunState(messages=[Message.system(system), Message.user(request)])

        logger.info(
            "Run started: role=%s model=%s max_iterations=%d",
            self.config.role.value,
            self.model,
            self.config.max_iterations,
        )
        self._send(EventType.RUN_BEGIN, request=request, role=self.config.role.value)

        try:
            async with asyncio.timeout(self.config.run_timeout):
                result = await self._loop(state, token, system)
        except TimeoutError:
            logger.warning("Run deadline of %ss exceeded", self.config.run_timeout)
            result = state.finish(
                TerminalStatus.CANCELLED,
                error=f"run cancelled: deadline exceeded ({self.config.run_timeout:g}s)",
            )

        if result.error and self.wire is not None:
            self.wire.send_error(result.error, code=result.status.value)
        self._send(
            EventType.RUN_END,
            status=result.status.value,
            iterations=result.iterations,
            tool_calls=result.tool_calls,
        )
        logger.info(
            "Run finished: %s after %d iterations, %d tool calls",
            result.status.value,
            result.iterations,
            result.tool_calls,
        )
        return result

    def _effective_system_prompt(self) -> str:
        if self.client.supports_native_function_calling():
            return self.system_prompt
        tools = format_tools_for_prompt(self.registry.definitions())
        return f"{self.system_prompt}\n\n{tools}" if self.system_prompt else tools

    async def _loop(self, state: _RunState, token: CancelToken, system: str) -> AgentResult:
        definitions = self.registry.definitions()
        max_iterations = self.config.max_iterations

        while state.iterations < max_iterations:
            state.iterations += 1
            logger.info("Step %d/%d", state.iterations, max_iterations)
            self._send(EventType.STEP_BEGIN, iteration=state.iterations)

            # 1. Ask the LLM for its next move
            self._enter(state, RunPhase.AWAIT_LLM)
            try:
                raw = await token.race(
                    self.client.generate_with_functions(
                        self.model,
                        render_transcript(state.messages),
                        system,
                        definitions,
                        messages=list(state.messages),
                    )
                )
            except RunCancelled as e:
                return state.finish(TerminalStatus.CANCELLED, error=f"run cancelled: {e.reason}")
            except Exception as e:
                logger.error("LLM call failed at step %d: %s", state.iterations, e, exc_info=True)
                return state.finish(TerminalStatus.ERROR, error=f"LLM call failed: {e}")

            # 2. Text ends the run; a call gets dispatched
            self._enter(state, RunPhase.NORMALIZE)
            response = normalize(raw)
            if isinstance(response, TextResponse):
                state.messages.append(Message.assistant(response.text))
                state.last_text = response.text
                if self.wire is not None:
                    self.wire.send_text(response.text)
                return state.finish(TerminalStatus.SUCCESS, final_response=response.text)

            call = response.function_call
            if not call.id:
                call = replace(call, id=f"call_{state.tool_calls + 1}")
            state.tool_calls += 1
            state.messages.append(Message.assistant(response.text, tool_call=call))
            if response.text:
                state.last_text = response.text
                if self.wire is not None:
                    self.wire.send_text(response.text)

            self._enter(state, RunPhase.DISPATCH)
            if self.wire is not None:
                self.wire.send_tool_call(call.id, call.name, dict(call.arguments))
            try:
                result = await self._dispatch(state, call, token)
            except RunCancelled as e:
                return state.finish(TerminalStatus.CANCELLED, error=f"run cancelled: {e.reason}")

            # 3. Feed the result back
            self._enter(state, RunPhase.APPEND)
            try:
                content = self._result_content(state, call, result)
            except Exception as e:
                logger.error("Formatting %s result failed: %s", call.name, e, exc_info=True)
                result = ToolResult.fail(internal_error(call.name, e))
                content = format_tool_result(result)
            state.record(call.name, result)
            content = truncate_output(content)
            state.messages.append(Message.tool_result(call.id, call.name, content))
            if self.wire is not None:
                self.wire.send_tool_result(call.id, call.name, content, not result.success)

            if is_clarification(result):
                try:
                    await self._clarify(state, result, token)
                except RunCancelled as e:
                    return state.finish(
                        TerminalStatus.CANCELLED, error=f"run cancelled: {e.reason}"
                    )

        logger.warning("Run hit max iterations (%d)", max_iterations)
        return state.finish(
            TerminalStatus.MAX_ITERATIONS,
            final_response=state.last_text,
            error=f"reached maximum iterations ({max_iterations})",
        )

    async def _dispatch(
        self, state: _RunState, call: FunctionCall, token: CancelToken
    ) -> ToolResult:
        """Run one call. Only :class:`RunCancelled` escapes."""
        tool = self.registry.get(call.name)
        if tool is None:
            logger.warning("LLM called unknown tool %r", call.name)
            return ToolResult.fail(unknown_tool_error(call.name, self.registry.names()))

        try:
            invalid = validate_arguments(call.arguments, tool.parameter_schema())
        except Exception as e:
            logger.error("Validating arguments for %s failed: %s", call.name, e, exc_info=True)
            return ToolResult.fail(internal_error(call.name, e))
        if invalid is not None:
            return ToolResult.fail(invalid)

        self._enter(state, RunPhase.AWAIT_TOOL)
        timeout = self.config.tool_timeout
        try:
            result = await token.race(
                asyncio.wait_for(tool.execute(dict(call.arguments)), timeout=timeout)
            )
        except RunCancelled:
            raise
        except TimeoutError:
            logger.warning("Tool %s timed out after %ss", call.name, timeout)
            return ToolResult.fail(tool_timeout_error(call.name, timeout))
        except Exception as e:
            logger.error("Tool %s raised: %s", call.name, e, exc_info=True)
            return ToolResult.fail(internal_error(call.name, e))

        if not isinstance(result, ToolResult):
            fault = TypeError(f"execute returned {type(result).__name__}, not ToolResult")
            logger.error("Tool %s: %s", call.name, fault)
            return ToolResult.fail(internal_error(call.name, fault))
        return result

    def _result_content(self, state: _RunState, call: FunctionCall, result: ToolResult) -> str:
        """Result text for the LLM, or a retry prompt for a correctable failure."""
        signature = call_signature(call)
        if result.success:
            state.retries.pop(signature, None)
            return format_tool_result(result)

        attempts = state.retries.get(signature, 0)
        if not self._should_retry(state, result, attempts):
            return format_tool_result(result)

        state.retries[signature] = attempts + 1
        state.tool_retries += 1
        logger.debug("Retry prompt %d for %s", attempts + 1, call.name)
        return retry_prompt(call.name, result, attempts + 1, self.config.max_tool_retries)

    def _should_retry(self, state: _RunState, result: ToolResult, attempts: int) -> bool:
        if attempts >= self.config.max_tool_retries:
            return False
        err = result.standardized_error
        if err is None:
            return True
        if err.code in NON_RETRIABLE:
            return False
        if self.config.abort_on_repeated_errors and state.error_counts[err.code.value] > 2:
            return False
        return True

    async def _clarify(self, state: _RunState, result: ToolResult, token: CancelToken) -> None:
        """Suspend for a human answer. Does not count as an iteration."""
        question = clarification_prompt(result.data)
        options = clarification_options(result.data)
        if self.wire is not None:
            self.wire.send_clarification(question, options)
        if self.reply_channel is None:
            logger.info("Clarification requested but no reply channel; continuing")
            return

        logger.info("Waiting for clarification reply")
        if self.wire is not None:
            self.wire.send_status("waiting for a clarification reply")
        reply = await token.race(self.reply_channel.ask(question, options))
        state.messages.append(Message.user(reply))

    # --- Events ---

    def _enter(self, state: _RunState, phase: RunPhase) -> None:
        state.phase = phase
        if self.wire is not None:
            self.wire.send_phase(phase.value, state.iterations)

    def _send(self, event_type: EventType, **data: Any) -> None:
        if self.wire is not None:
            self.wire.send(WireEvent(type=event_type, data=data))
