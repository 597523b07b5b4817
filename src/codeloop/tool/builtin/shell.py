"""Shell command tool: allowlisted programs, no shell, inside the workspace."""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Iterable
from typing import ClassVar

from pydantic import BaseModel, Field

from codeloop.tool.base import BaseTool, ToolResult
from codeloop.tool.builtin.process import MAX_TIMEOUT_SECONDS, run_process
from codeloop.tool.errors import (
    ErrorCode,
    StandardizedToolError,
    directory_not_found_error,
    parameter_error,
)
from codeloop.tool.workspace import Workspace

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_COMMANDS = (
    "go", "git", "ls", "cat", "grep", "find", "wc", "head", "tail",
    "npm", "yarn", "node", "python", "python3", "pip", "pip3",
    "make", "cmake", "cargo", "rustc", "javac", "java", "mvn",
    "docker", "kubectl", "helm", "terraform",
    "test", "echo", "pwd", "which", "whoami",
)  # fmt: skip

DEFAULT_TIMEOUT_SECONDS = 30


class ShellParams(BaseModel):
    command: str = Field(
        min_length=1,
        description="The command line to run, e.g. 'go build ./...'. No pipes or redirection.",
    )
    working_directory: str = Field(
        default="",
        description="Working directory relative to the workspace root (default: the root).",
    )
    timeout_seconds: int = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        ge=1,
        le=MAX_TIMEOUT_SECONDS,
        description="Timeout in seconds.",
    )


class ShellTool(BaseTool[ShellParams]):
    """Run an allowlisted program and return its combined output.

    The command line is split with shell quoting rules but never handed
    to a shell, so pipes, redirection, and substitution have no effect.
    """

    name: ClassVar[str] = "run_shell_command"
    description: ClassVar[str] = (
        "Executes a command in the workspace and returns its standard output and "
        "standard error. Only allowed programs can be run, and the command is not "
        "interpreted by a shell (no pipes, redirection, or globbing).\n\n"
        "USAGE EXAMPLES:\n"
        '- run_shell_command({"command": "go build ./..."})\n'
        '- run_shell_command({"command": "git status", "timeout_seconds": 10})'
    )
    param_model: ClassVar[type[BaseModel]] = ShellParams

    def __init__(
        self,
        workspace: Workspace,
        allowed_commands: Iterable[str] = DEFAULT_ALLOWED_COMMANDS,
    ) -> None:
        self._workspace = workspace
        self._allowed = frozenset(allowed_commands)

    @property
    def allowed_commands(self) -> frozenset[str]:
        return self._allowed

    async def handle(self, params: ShellParams) -> ToolResult:
        try:
            argv = shlex.split(params.command)
        except ValueError as e:
            raise parameter_error("command", f"cannot be parsed: {e}")
        if not argv:
            raise parameter_error("command", "must not be empty")

        base = os.path.basename(argv[0])
        if base not in self._allowed:
            raise StandardizedToolError(
                ErrorCode.INVALID_COMMAND_ARGS,
                f"Command not allowed: {base}",
                "Use one of the allowed commands: " + ", ".join(sorted(self._allowed)),
            ).with_detail("command", base)

        cwd = self._workspace.root
        if params.working_directory.strip() not in ("", "."):
            cwd = self._workspace.resolve(params.working_directory, "working_directory")
            if not cwd.is_dir():
                raise directory_not_found_error(params.working_directory)

        logger.info("Running command: %s", params.command)
        outcome = await run_process(argv, cwd, params.timeout_seconds)

        if outcome.timed_out:
            raise StandardizedToolError(
                ErrorCode.COMMAND_TIMEOUT,
                f"Command timed out after {params.timeout_seconds} seconds: {params.command}",
                "Increase timeout_seconds or run a narrower command",
            ).with_detail("timeout_seconds", params.timeout_seconds)

        data = {
            "command": params.command,
            "working_directory": params.working_directory or ".",
            "output": outcome.output,
            "exit_code": outcome.exit_code,
        }
        if outcome.exit_code != 0:
            err = (
                StandardizedToolError(
                    ErrorCode.COMMAND_FAILED,
                    f"Command exited with code {outcome.exit_code}: {params.command}",
                    "Read the output below, fix the cause, and try again",
                )
                .with_detail("exit_code", outcome.exit_code)
                .with_detail("output", outcome.output)
            )
            result = ToolResult.fail(err)
            result.data = data
            return result
        return ToolResult.ok(data)
