"""Test and lint tools: run the project's own checkers and report pass/fail.

The command for each is either configured or detected from marker files
at the workspace root. Output is returned raw (bounded); interpreting it
is left to the LLM.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field

from codeloop.tool.base import BaseTool, ToolResult
from codeloop.tool.builtin.process import MAX_TIMEOUT_SECONDS, ProcessOutcome, run_process
from codeloop.tool.errors import (
    ErrorCode,
    StandardizedToolError,
    directory_not_found_error,
    suggestion_for,
    tests_failed_error,
)
from codeloop.tool.workspace import Workspace

logger = logging.getLogger(__name__)

TEST_TIMEOUT_SECONDS = 300
LINT_TIMEOUT_SECONDS = 120

_FAILURE_LINE = re.compile(r"^(--- FAIL|FAILED |FAIL:|test .* \.\.\. FAILED)", re.MULTILINE)


@dataclass(frozen=True)
class CommandTemplate:
    """How to invoke a checker.

    ``pattern_args`` are appended when a test pattern is given, with
    ``{pattern}`` substituted. ``target`` is the default path argument;
    an empty ``target`` means the checker does not take one.
    """

    argv: tuple[str, ...]
    pattern_args: tuple[str, ...] = ()
    target: str = ""

    def build(self, target_path: str = "", pattern: str | None = None) -> list[str]:
        argv = list(self.argv)
        if pattern and self.pattern_args:
            argv.extend(a.replace("{pattern}", pattern) for a in self.pattern_args)
        if self.target:
            argv.append(target_path or self.target)
        return argv


_TEST_COMMANDS: tuple[tuple[str, CommandTemplate], ...] = (
    ("go.mod", CommandTemplate(("go", "test"), ("-run", "{pattern}"), "./...")),
    ("Cargo.toml", CommandTemplate(("cargo", "test"), ("{pattern}",))),
    ("pyproject.toml", CommandTemplate(("python", "-m", "pytest", "-q"), ("-k", "{pattern}"), ".")),
    ("setup.py", CommandTemplate(("python", "-m", "pytest", "-q"), ("-k", "{pattern}"), ".")),
    ("package.json", CommandTemplate(("npm", "test", "--"), ("{pattern}",))),
)

_LINT_COMMANDS: tuple[tuple[str, CommandTemplate], ...] = (
    ("go.mod", CommandTemplate(("go", "vet"), target="./...")),
    ("Cargo.toml", CommandTemplate(("cargo", "clippy", "--quiet"))),
    ("pyproject.toml", CommandTemplate(("ruff", "check"), target=".")),
    ("setup.py", CommandTemplate(("ruff", "check"), target=".")),
    ("package.json", CommandTemplate(("npm", "run", "lint"))),
)


def detect_test_command(root: Path) -> CommandTemplate | None:
    """Test command for the project at ``root``, judged by marker files."""
    return _detect(root, _TEST_COMMANDS)


def detect_lint_command(root: Path) -> CommandTemplate | None:
    """Lint command for the project at ``root``, judged by marker files."""
    return _detect(root, _LINT_COMMANDS)


def _detect(root: Path, table: tuple[tuple[str, CommandTemplate], ...]) -> CommandTemplate | None:
    for marker, template in table:
        if (root / marker).exists():
            return template
    return None


class _CheckTool:
    """Shared plumbing for tools that run a project checker."""

    kind: ClassVar[str]

    def __init__(self, workspace: Workspace, command: CommandTemplate | None = None) -> None:
        self._workspace = workspace
        self._command = command

    def _template(self) -> CommandTemplate:
        template = self._command or self._detect()
        if template is None:
            raise StandardizedToolError(
                ErrorCode.UNSUPPORTED_OPERATION,
                f"No {self.kind} command is configured for this workspace",
                f"The project type could not be detected; continue without running {self.kind}",
            )
        return template

    def _detect(self) -> CommandTemplate | None:
        raise NotImplementedError

    def _target(self, target_path: str) -> str:
        if target_path.strip() in ("", "."):
            return ""
        path = self._workspace.resolve(target_path, "target_path")
        if not path.exists():
            raise directory_not_found_error(target_path)
        # Checkers are run from the root, so keep the path relative to it.
        rel = self._workspace.relative(path)
        return rel if rel.startswith(".") else f"./{rel}"

    async def _run(self, argv: list[str], timeout: int) -> ProcessOutcome:
        logger.info("Running %s: %s", self.kind, " ".join(argv))
        outcome = await run_process(argv, self._workspace.root, timeout)
        if outcome.timed_out:
            raise StandardizedToolError(
                ErrorCode.COMMAND_TIMEOUT,
                f"{self.kind.capitalize()} timed out after {timeout} seconds",
                "Run a narrower target or increase timeout_seconds",
            ).with_detail("timeout_seconds", timeout)
        return outcome


# ---------------------------------------------------------------------------
# run_tests
# ---------------------------------------------------------------------------


class RunTestsParams(BaseModel):
    target_path: str = Field(
        default="",
        description="Directory or package to test, relative to the workspace root (default: all).",
    )
    test_pattern: str | None = Field(
        default=None, description="Only run tests whose names match this pattern."
    )
    timeout_seconds: int = Field(
        default=TEST_TIMEOUT_SECONDS,
        ge=1,
        le=MAX_TIMEOUT_SECONDS,
        description="Timeout in seconds.",
    )


class RunTestsTool(_CheckTool, BaseTool[RunTestsParams]):
    """Run the project's test suite."""

    kind: ClassVar[str] = "tests"
    name: ClassVar[str] = "run_tests"
    description: ClassVar[str] = (
        "Runs the project's tests and returns the output. A failed run is reported "
        "as TEST_FAILURE with the test output in the details.\n\n"
        "USAGE EXAMPLES:\n"
        '- run_tests({})\n'
        '- run_tests({"target_path": "pkg/parser", "test_pattern": "TestParse"})'
    )
    param_model: ClassVar[type[BaseModel]] = RunTestsParams

    def _detect(self) -> CommandTemplate | None:
        return detect_test_command(self._workspace.root)

    async def handle(self, params: RunTestsParams) -> ToolResult:
        template = self._template()
        pattern = params.test_pattern
        if pattern is not None and (not pattern.strip() or pattern.startswith("-")):
            raise StandardizedToolError(
                ErrorCode.INVALID_TEST_PATTERN,
                f"Invalid test pattern: {pattern!r}",
                "Provide a test name or regular expression that does not start with '-'",
            ).with_detail("test_pattern", pattern)

        argv = template.build(self._target(params.target_path), pattern)
        outcome = await self._run(argv, params.timeout_seconds)

        data = {
            "command": " ".join(argv),
            "passed": outcome.ok,
            "exit_code": outcome.exit_code,
            "output": outcome.output,
        }
        if outcome.ok:
            return ToolResult.ok(data)

        failures = len(_FAILURE_LINE.findall(outcome.output))
        if failures:
            err = tests_failed_error(failures, outcome.output)
        else:
            err = StandardizedToolError(
                ErrorCode.TEST_FAILURE,
                f"Test command exited with code {outcome.exit_code}",
                suggestion_for(ErrorCode.TEST_FAILURE),
            ).with_detail("details", outcome.output)
        result = ToolResult.fail(err)
        result.data = data
        return result


# ---------------------------------------------------------------------------
# run_linter
# ---------------------------------------------------------------------------


class RunLinterParams(BaseModel):
    target_path: str = Field(
        default="",
        description="Directory to lint, relative to the workspace root (default: all).",
    )
    timeout_seconds: int = Field(
        default=LINT_TIMEOUT_SECONDS,
        ge=1,
        le=MAX_TIMEOUT_SECONDS,
        description="Timeout in seconds.",
    )


class RunLinterTool(_CheckTool, BaseTool[RunLinterParams]):
    """Run the project's linter."""

    kind: ClassVar[str] = "linter"
    name: ClassVar[str] = "run_linter"
    description: ClassVar[str] = (
        "Runs the project's linter and returns its findings. Findings are reported "
        "as LINT_ERRORS with the linter output in the details.\n\n"
        "USAGE EXAMPLES:\n"
        '- run_linter({})\n'
        '- run_linter({"target_path": "internal"})'
    )
    param_model: ClassVar[type[BaseModel]] = RunLinterParams

    def _detect(self) -> CommandTemplate | None:
        return detect_lint_command(self._workspace.root)

    async def handle(self, params: RunLinterParams) -> ToolResult:
        argv = self._template().build(self._target(params.target_path))
        outcome = await self._run(argv, params.timeout_seconds)

        data = {
            "command": " ".join(argv),
            "clean": outcome.ok,
            "exit_code": outcome.exit_code,
            "output": outcome.output,
        }
        if outcome.ok:
            return ToolResult.ok(data)

        err = (
            StandardizedToolError(
                ErrorCode.LINT_ERRORS,
                f"Linter reported problems (exit code {outcome.exit_code})",
                "Fix the reported problems, then run the linter again",
            )
            .with_detail("exit_code", outcome.exit_code)
            .with_detail("output", outcome.output)
        )
        result = ToolResult.fail(err)
        result.data = data
        return result
