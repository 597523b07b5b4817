"""Tool registry: the name-keyed set of tools a run may dispatch to."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from codeloop.llm.message import ToolDefinition
from codeloop.tool.base import Tool, definition_of

logger = logging.getLogger(__name__)


class ToolRegistrationError(ValueError):
    """A tool name is already taken in this registry."""


class ToolRegistry:
    """Registry of tools available to one workflow role.

    Names are unique: registering a second tool under a taken name fails
    and the first registration stays in place. A registry is built once
    per role and only read while runs use it.
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        self.register_many(tools)

    def register(self, tool: Tool) -> None:
        """Register a tool instance.

        Raises:
            ToolRegistrationError: a tool with this name is already registered.
        """
        if not tool.name:
            raise ToolRegistrationError("tool name must not be empty")
        if tool.name in self._tools:
            logger.warning("Rejected duplicate registration of tool %s", tool.name)
            raise ToolRegistrationError(f"tool {tool.name!r} already registered")
        self._tools[tool.name] = tool

    def register_many(self, tools: Iterable[Tool]) -> None:
        """Register multiple tools."""
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Tool | None:
        """Exact-match lookup."""
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        """LLM-facing definitions of every registered tool."""
        return [definition_of(t) for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))
