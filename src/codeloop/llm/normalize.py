"""Function-call normalization: one response shape for every provider.

Providers with native function calling hand back a structured call.
Providers without it answer in text, which may contain a JSON function
call somewhere among the prose. :func:`normalize` folds both into a
:data:`FunctionCallResponse`. It performs no I/O and never raises:
anything it cannot read as a call is a text response.

Accepted call shapes (inside text or as a native dict)::

    {"name": "read_file", "arguments": {"path": "main.go"}, "id": "call_1"}
    {"function_call": {"name": ..., "arguments": ...}}
    {"tool_call": {"name": ..., "arguments": ...}}

``arguments`` may be an object or a JSON string encoding an object.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Sequence
from typing import Any

from codeloop.llm.message import (
    CallResponse,
    FunctionCall,
    FunctionCallResponse,
    Message,
    TextResponse,
    ToolDefinition,
)

logger = logging.getLogger(__name__)

# Upper bound on brace-balanced spans examined in a single response.
MAX_CANDIDATES = 64

_WRAPPER_KEYS = ("function_call", "tool_call")
_MISSING = object()


def normalize(raw: Any) -> FunctionCallResponse:
    """Normalize raw LLM output into a text-or-call response."""
    if isinstance(raw, (TextResponse, CallResponse)):
        return raw
    if isinstance(raw, FunctionCall):
        return CallResponse(function_call=raw)
    if isinstance(raw, dict):
        call = _native_call(raw)
        if call is not None:
            return CallResponse(function_call=call)
        return TextResponse(text=_dump(raw))
    if raw is None:
        return TextResponse(text="")
    if not isinstance(raw, str):
        raw = str(raw)
    return parse_function_call(raw)


def _dump(raw: dict[str, Any]) -> str:
    try:
        return json.dumps(raw, default=str)
    except (TypeError, ValueError):
        return str(raw)


def parse_function_call(text: str) -> FunctionCallResponse:
    """Find the first valid function call embedded in ``text``.

    Prose around the call is kept on the response.
    """
    for start, end in _candidate_spans(text):
        try:
            obj = json.loads(text[start:end])
        except (ValueError, RecursionError):
            continue
        call = _call_from_object(obj)
        if call is not None:
            logger.debug("Parsed function call %s from text response", call.name)
            prose = (text[:start].rstrip() + "\n" + text[end:].lstrip()).strip()
            return CallResponse(function_call=call, text=prose)
    return TextResponse(text=text)


def iter_json_candidates(text: str, limit: int = MAX_CANDIDATES) -> Iterator[str]:
    """Yield brace-balanced ``{...}`` spans in order of their opening brace.

    Every ``{`` is a potential start, so nested objects are yielded after
    the object that contains them. Braces inside JSON string literals do
    not count toward the balance.
    """
    for start, end in _candidate_spans(text, limit):
        yield text[start:end]


def _candidate_spans(text: str, limit: int = MAX_CANDIDATES) -> Iterator[tuple[int, int]]:
    yielded = 0
    start = text.find("{")
    while start != -1 and yielded < limit:
        end = _matching_brace(text, start)
        if end is not None:
            yield start, end + 1
            yielded += 1
        start = text.find("{", start + 1)


def _matching_brace(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def _call_from_object(obj: Any) -> FunctionCall | None:
    """Direct shape first, then the two wrapper shapes."""
    if not isinstance(obj, dict):
        return None
    call = _coerce_call(obj)
    if call is not None:
        return call
    for key in _WRAPPER_KEYS:
        call = _coerce_call(obj.get(key))
        if call is not None:
            return call
    return None


def _coerce_call(obj: Any) -> FunctionCall | None:
    if not isinstance(obj, dict):
        return None
    name = obj.get("name")
    if not isinstance(name, str) or not name:
        return None

    arguments = _coerce_arguments(obj.get("arguments", _MISSING))
    if arguments is None:
        return None

    call_id = obj.get("id")
    return FunctionCall(
        name=name,
        arguments=arguments,
        id=call_id if isinstance(call_id, str) else "",
    )


def _coerce_arguments(value: Any) -> dict[str, Any] | None:
    """Arguments as a dict, or None when present but not an object."""
    if value is _MISSING or value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        if not value.strip():
            return {}
        try:
            decoded = json.loads(value)
        except (ValueError, RecursionError):
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _native_call(raw: dict[str, Any]) -> FunctionCall | None:
    """A provider's structured call, including the OpenAI tool-call shape."""
    function = raw.get("function")
    if isinstance(function, dict):
        call = _coerce_call({**function, "id": raw.get("id", "")})
        if call is not None:
            return call
    return _call_from_object(raw)


# ---------------------------------------------------------------------------
# Prompt-mode helpers (providers without native function calling)
# ---------------------------------------------------------------------------


def format_tools_for_prompt(definitions: Sequence[ToolDefinition]) -> str:
    """Describe the tools and the JSON reply format in plain prompt text."""
    if not definitions:
        return ""

    lines = ["", "", "Available tools:"]
    for d in definitions:
        lines.append(f"- {d.name}: {d.description}")
        lines.append(f"  Parameters: {json.dumps(d.parameters)}")
    lines.append("")
    lines.append("To use a tool, respond with JSON in this format:")
    lines.append('{"name": "tool_name", "arguments": {"param1": "value1", "param2": "value2"}}')
    lines.append("")
    lines.append("If you don't need to use a tool, respond normally with text.")
    return "\n".join(lines) + "\n"


def render_transcript(messages: Sequence[Message]) -> str:
    """Flatten conversation history into a single prompt string.

    System messages are skipped; they travel as the separate system prompt.
    """
    parts: list[str] = []
    for msg in messages:
        if msg.role == "user":
            parts.append(f"User: {msg.content}")
        elif msg.role == "assistant":
            if msg.tool_call is not None:
                called = f"[Called tool: {msg.tool_call.name}]"
                if msg.content:
                    called = f"{msg.content}\n{called}"
                parts.append(f"Assistant: {called}")
            else:
                parts.append(f"Assistant: {msg.content}")
        elif msg.role == "tool":
            parts.append(f"Tool ({msg.name}): {msg.content}")
    return "\n\n".join(parts)
