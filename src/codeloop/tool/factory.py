"""Per-role registry construction.

What a role can do is decided here, by which tools are registered:
planning never receives a tool that writes files or runs commands.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from codeloop.tool.base import Tool
from codeloop.tool.builtin.checks import CommandTemplate, RunLinterTool, RunTestsTool
from codeloop.tool.builtin.clarify import ClarificationTool
from codeloop.tool.builtin.list_directory import ListDirectoryTool
from codeloop.tool.builtin.read_file import ReadFileTool
from codeloop.tool.builtin.shell import DEFAULT_ALLOWED_COMMANDS, ShellTool
from codeloop.tool.builtin.write_file import WriteFileTool
from codeloop.tool.registry import ToolRegistry
from codeloop.tool.workspace import Workspace

logger = logging.getLogger(__name__)


class Role(enum.Enum):
    """Workflow roles, each with its own tool set."""

    PLANNING = "planning"
    GENERATION = "generation"
    REVIEW = "review"


class ToolFactory:
    """Builds role registries over one workspace.

    All collaborators arrive through the constructor. Tool instances are
    created once and shared by every registry this factory builds.
    ``extra_tools`` are given per role, so each role only receives the
    extras it is meant to have.
    """

    def __init__(
        self,
        workspace_root: str | Path,
        *,
        allowed_commands: Iterable[str] = DEFAULT_ALLOWED_COMMANDS,
        test_command: CommandTemplate | None = None,
        lint_command: CommandTemplate | None = None,
        extra_tools: Mapping[Role, Iterable[Tool]] | None = None,
    ) -> None:
        self.workspace = Workspace(Path(workspace_root))
        self._read_file = ReadFileTool(self.workspace)
        self._list_directory = ListDirectoryTool(self.workspace)
        self._write_file = WriteFileTool(self.workspace)
        self._shell = ShellTool(self.workspace, allowed_commands)
        self._run_tests = RunTestsTool(self.workspace, test_command)
        self._run_linter = RunLinterTool(self.workspace, lint_command)
        self._clarification = ClarificationTool()
        self._extra = {role: list(tools) for role, tools in (extra_tools or {}).items()}

    def planning_tools(self) -> list[Tool]:
        """Read-only exploration."""
        return [self._read_file, self._list_directory]

    def generation_tools(self) -> list[Tool]:
        return [*self.planning_tools(), self._write_file, self._shell]

    def review_tools(self) -> list[Tool]:
        return [*self.generation_tools(), self._run_tests, self._run_linter]

    def build(self, role: Role, *, clarification: bool = False) -> ToolRegistry:
        """A fresh registry for ``role``."""
        tools = {
            Role.PLANNING: self.planning_tools,
            Role.GENERATION: self.generation_tools,
            Role.REVIEW: self.review_tools,
        }[role]()
        registry = ToolRegistry(tools)
        registry.register_many(self._extra.get(role, ()))
        if clarification:
            registry.register(self._clarification)
        logger.debug("Built %s registry: %s", role.value, ", ".join(registry.names()))
        return registry

    def planning_registry(self, *, clarification: bool = False) -> ToolRegistry:
        return self.build(Role.PLANNING, clarification=clarification)

    def generation_registry(self, *, clarification: bool = False) -> ToolRegistry:
        return self.build(Role.GENERATION, clarification=clarification)

    def review_registry(self, *, clarification: bool = False) -> ToolRegistry:
        return self.build(Role.REVIEW, clarification=clarification)
