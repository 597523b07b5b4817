"""Reply channels for the clarification protocol.

When a tool result is flagged as a clarification request, the runner
hands the question to a :class:`ReplyChannel` and waits. Whatever the
channel returns is appended to the conversation as the user's answer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol, runtime_checkable

from rich.console import Console
from rich.panel import Panel

from codeloop.tool.base import ToolResult
from codeloop.tool.builtin.clarify import format_clarification

logger = logging.getLogger(__name__)

NO_REPLY = "No answer was provided. Proceed with your best judgement."


@runtime_checkable
class ReplyChannel(Protocol):
    """Where clarification questions go and answers come from."""

    async def ask(self, question: str, options: list[str]) -> str: ...


class ConsoleReplyChannel:
    """Asks on the terminal.

    ``input()`` runs in a worker thread so the event loop keeps serving
    the cancellation token while the operator types.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    async def ask(self, question: str, options: list[str]) -> str:
        self._console.print(Panel(question, title="Clarification", border_style="yellow"))
        reply = (await asyncio.to_thread(input, "> ")).strip()
        if reply.isdigit() and options:
            index = int(reply) - 1
            if 0 <= index < len(options):
                return options[index]
        return reply or NO_REPLY


class CallbackReplyChannel:
    """Delegates to an async callback, for embedding in other front ends."""

    def __init__(self, callback: Callable[[str, list[str]], Awaitable[str]]) -> None:
        self._callback = callback

    async def ask(self, question: str, options: list[str]) -> str:
        return await self._callback(question, options)


class QueueReplyChannel:
    """Answers from a fixed script; used by tests and non-interactive runs."""

    def __init__(self, answers: Iterable[str] = ()) -> None:
        self._answers = list(answers)
        self.questions: list[str] = []

    async def ask(self, question: str, options: list[str]) -> str:
        self.questions.append(question)
        if self._answers:
            return self._answers.pop(0)
        logger.warning("Clarification asked with no scripted answer left")
        return NO_REPLY


# ---------------------------------------------------------------------------
# Detection and rendering
# ---------------------------------------------------------------------------


def is_clarification(result: ToolResult) -> bool:
    """True when a successful result carries the clarification marker."""
    return (
        result.success
        and isinstance(result.data, dict)
        and result.data.get("clarification_needed") is True
    )


def clarification_prompt(data: dict[str, Any]) -> str:
    """The text shown to the human for a clarification request."""
    formatted = data.get("formatted_message")
    if isinstance(formatted, str) and formatted:
        return formatted
    return format_clarification(data)


def clarification_options(data: dict[str, Any]) -> list[str]:
    options = data.get("suggested_options")
    if not isinstance(options, (list, tuple)):
        return []
    return [str(o) for o in options]

