"""Message types for the LLM abstraction."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal


Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class FunctionCall:
    """A structured request from the LLM to invoke a named tool."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "arguments": dict(self.arguments)}
        if self.id:
            d["id"] = self.id
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionCall:
        return cls(
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
            id=data.get("id", "") or "",
        )


# ---------------------------------------------------------------------------
# FunctionCallResponse: either text or a call, never both
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextResponse:
    """The model answered in prose."""

    text: str
    type: Literal["text"] = "text"

    @property
    def is_text_response(self) -> bool:
        return True


@dataclass(frozen=True)
class CallResponse:
    """The model asked for a tool to be run.

    ``text`` is any prose the model wrote alongside the call.
    """

    function_call: FunctionCall
    text: str = ""
    type: Literal["function_call"] = "function_call"

    @property
    def is_text_response(self) -> bool:
        return False


FunctionCallResponse = TextResponse | CallResponse


@dataclass(frozen=True)
class ToolDefinition:
    """The LLM-facing projection of a tool."""

    name: str
    description: str
    parameters: dict[str, Any]

    def to_openai_spec(self) -> dict[str, Any]:
        """Convert to OpenAI function tool specification."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class Message:
    """A single conversation turn."""

    role: Role
    content: str = ""
    tool_call: FunctionCall | None = None
    tool_call_id: str = ""
    name: str = ""

    # --- Convenience constructors ---

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role="system", content=text)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=text)

    @classmethod
    def assistant(cls, text: str = "", tool_call: FunctionCall | None = None) -> Message:
        return cls(role="assistant", content=text, tool_call=tool_call)

    @classmethod
    def tool_result(cls, tool_call_id: str, name: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)

    def to_openai_dict(self) -> dict[str, Any]:
        """Convert to OpenAI API format."""
        if self.role == "tool":
            return {
                "role": "tool",
                "tool_call_id": self.tool_call_id,
                "name": self.name,
                "content": self.content,
            }

        if self.role == "assistant" and self.tool_call is not None:
            return {
                "role": "assistant",
                "content": self.content or None,
                "tool_calls": [
                    {
                        "id": self.tool_call.id,
                        "type": "function",
                        "function": {
                            "name": self.tool_call.name,
                            "arguments": json.dumps(self.tool_call.arguments),
                        },
                    }
                ],
            }

        return {"role": self.role, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for session persistence."""
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call is not None:
            d["tool_call"] = self.tool_call.to_dict()
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        if self.name:
            d["name"] = self.name
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        tool_call = data.get("tool_call")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            tool_call=FunctionCall.from_dict(tool_call) if tool_call else None,
            tool_call_id=data.get("tool_call_id", ""),
            name=data.get("name", ""),
        )
