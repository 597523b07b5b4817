"""Wire protocol: decouples the runner from whatever renders its progress.

Events flow from the runner to subscribers. The CLI subscribes and prints
them; tests subscribe and assert on them.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    RUN_BEGIN = "run_begin"
    RUN_END = "run_end"
    STEP_BEGIN = "step_begin"
    PHASE = "phase"
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    CLARIFICATION = "clarification"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: runner -> subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_text(self, text: str) -> None:
        self.send(WireEvent(type=EventType.TEXT, data={"text": text}))

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str, code: str = "") -> None:
        data: dict[str, Any] = {"error": error}
        if code:
            data["code"] = code
        self.send(WireEvent(type=EventType.ERROR, data=data))

    def send_phase(self, phase: str, iteration: int) -> None:
        self.send(
            WireEvent(
                type=EventType.PHASE,
                data={"phase": phase, "iteration": iteration},
            )
        )

    def send_tool_call(self, call_id: str, name: str, arguments: dict[str, Any]) -> None:
        self.send(
            WireEvent(
                type=EventType.TOOL_CALL,
                data={"id": call_id, "name": name, "arguments": arguments},
            )
        )

    def send_tool_result(
        self,
        call_id: str,
        name: str,
        content: str,
        is_error: bool,
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.TOOL_RESULT,
                data={
                    "id": call_id,
                    "name": name,
                    "content": content,
                    "is_error": is_error,
                },
            )
        )

    def send_clarification(self, question: str, options: list[str]) -> None:
        self.send(
            WireEvent(
                type=EventType.CLARIFICATION,
                data={"question": question, "options": options},
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        if self._closed:
            return
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
