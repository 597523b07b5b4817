"""Session store: finished runs persisted as JSONL files.

Each file starts with one ``{"_type": "session", ...}`` header line,
followed by one line per transcript message. Listing reads only the
headers.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiofiles

from codeloop.agent.runner import AgentResult
from codeloop.llm.message import Message

logger = logging.getLogger(__name__)

SUFFIX = ".jsonl"


@dataclass
class SessionRecord:
    """One saved run."""

    id: str
    role: str
    model: str
    request: str
    status: str
    success: bool
    iterations: int
    tool_calls: int
    final_response: str = ""
    error: str = ""
    started_at: float = 0.0
    finished_at: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)

    def header(self) -> dict[str, Any]:
        return {
            "_type": "session",
            "id": self.id,
            "role": self.role,
            "model": self.model,
            "request": self.request,
            "status": self.status,
            "success": self.success,
            "iterations": self.iterations,
            "tool_calls": self.tool_calls,
            "final_response": self.final_response,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error_counts": dict(self.error_counts),
        }

    @classmethod
    def from_header(cls, data: dict[str, Any]) -> SessionRecord:
        return cls(
            id=data["id"],
            role=data.get("role", ""),
            model=data.get("model", ""),
            request=data.get("request", ""),
            status=data.get("status", ""),
            success=bool(data.get("success", False)),
            iterations=int(data.get("iterations", 0)),
            tool_calls=int(data.get("tool_calls", 0)),
            final_response=data.get("final_response", ""),
            error=data.get("error", ""),
            started_at=float(data.get("started_at", 0.0)),
            finished_at=float(data.get("finished_at", 0.0)),
            error_counts=dict(data.get("error_counts") or {}),
        )


class SessionStore:
    """Directory of saved runs, one JSONL file each."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or session_id.startswith("."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.directory / f"{session_id}{SUFFIX}"

    async def save(
        self,
        result: AgentResult,
        *,
        role: str,
        model: str,
        request: str,
        started_at: float,
        session_id: str | None = None,
    ) -> SessionRecord:
        """Persist a finished run. The transcript is copied, never shared."""
        record = SessionRecord(
            id=session_id or _new_id(),
            role=role,
            model=model,
            request=request,
            status=result.status.value,
            success=result.success,
            iterations=result.iterations,
            tool_calls=result.tool_calls,
            final_response=result.final_response,
            error=result.error,
            started_at=started_at,
            finished_at=time.time(),
            error_counts=dict(result.error_counts),
            messages=list(result.messages),
        )
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(record.id)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(record.header(), ensure_ascii=False) + "\n")
            for msg in record.messages:
                await f.write(json.dumps(msg.to_dict(), ensure_ascii=False) + "\n")
        logger.info("Saved session %s to %s", record.id, path)
        return record

    async def load(self, session_id: str) -> SessionRecord:
        """Load a saved run with its transcript.

        Raises:
            FileNotFoundError: No session with that id.
            ValueError: The file has no session header.
        """
        path = self._path(session_id)
        record: SessionRecord | None = None
        messages: list[Message] = []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed JSONL line in %s", path)
                    continue
                if data.get("_type") == "session":
                    record = SessionRecord.from_header(data)
                elif "role" in data:
                    messages.append(Message.from_dict(data))

        if record is None:
            raise ValueError(f"{path} has no session header")
        record.messages = messages
        return record

    async def list_sessions(self) -> list[SessionRecord]:
        """All saved runs without transcripts, newest first."""
        if not self.directory.is_dir():
            return []
        records: list[SessionRecord] = []
        for path in self.directory.glob(f"*{SUFFIX}"):
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                first = await f.readline()
            try:
                data = json.loads(first)
            except json.JSONDecodeError:
                logger.warning("Skipping %s: unreadable header", path)
                continue
            if isinstance(data, dict) and data.get("_type") == "session":
                records.append(SessionRecord.from_header(data))
        records.sort(key=lambda r: r.started_at, reverse=True)
        return records


def _new_id() -> str:
    return time.strftime("%Y%m%d-%H%M%S") + "-" + uuid.uuid4().hex[:6]
