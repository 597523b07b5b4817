"""Agent system: run configuration, cancellation, clarification, and the runner."""

from codeloop.agent.cancel import CancelToken, RunCancelled
from codeloop.agent.clarification import (
    CallbackReplyChannel,
    ConsoleReplyChannel,
    QueueReplyChannel,
    ReplyChannel,
)
from codeloop.agent.config import RunConfig
from codeloop.agent.runner import AgentResult, AgentRunner, RunPhase, TerminalStatus

__all__ = [
    "CancelToken",
    "RunCancelled",
    "CallbackReplyChannel",
    "ConsoleReplyChannel",
    "QueueReplyChannel",
    "ReplyChannel",
    "RunConfig",
    "AgentResult",
    "AgentRunner",
    "RunPhase",
    "TerminalStatus",
]
