"""Standardized tool errors: a closed code taxonomy the LLM can act on.

A bare error string gives the model nothing to correct against. Every
recoverable tool failure therefore carries a code, a human-readable
message, and a concrete next step (``suggestion_for_llm``). The rendered
form produced by :meth:`StandardizedToolError.format_for_llm` becomes the
content of the tool message fed back into the conversation.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorCode(str, enum.Enum):
    """Closed set of tool error codes, grouped by domain."""

    # Parameter validation
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    MISSING_PARAMETER = "MISSING_PARAMETER"
    INVALID_PATH_FORMAT = "INVALID_PATH_FORMAT"
    PATH_OUTSIDE_WORKSPACE = "PATH_OUTSIDE_WORKSPACE"

    # Filesystem
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    DIRECTORY_NOT_FOUND = "DIRECTORY_NOT_FOUND"
    FILE_ALREADY_EXISTS = "FILE_ALREADY_EXISTS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INSUFFICIENT_SPACE = "INSUFFICIENT_SPACE"

    # Content validation
    INVALID_FILE_FORMAT = "INVALID_FILE_FORMAT"
    CONTENT_TOO_LARGE = "CONTENT_TOO_LARGE"
    INVALID_LINE_RANGE = "INVALID_LINE_RANGE"
    INVALID_ENCODING = "INVALID_ENCODING"

    # Version control
    GIT_NOT_REPOSITORY = "GIT_NOT_REPOSITORY"
    GIT_NOTHING_TO_COMMIT = "GIT_NOTHING_TO_COMMIT"
    GIT_CONFLICT = "GIT_CONFLICT"
    INVALID_COMMIT_MESSAGE = "INVALID_COMMIT_MESSAGE"

    # Test / lint
    TEST_FAILURE = "TEST_FAILURE"
    LINT_ERRORS = "LINT_ERRORS"
    COMPILATION_FAILURE = "COMPILATION_FAILURE"
    INVALID_TEST_PATTERN = "INVALID_TEST_PATTERN"

    # Command execution
    COMMAND_NOT_FOUND = "COMMAND_NOT_FOUND"
    COMMAND_TIMEOUT = "COMMAND_TIMEOUT"
    COMMAND_FAILED = "COMMAND_FAILED"
    INVALID_COMMAND_ARGS = "INVALID_COMMAND_ARGS"

    # System / internal
    INTERNAL_ERROR = "INTERNAL_ERROR"
    TIMEOUT = "TIMEOUT"
    RESOURCE_LIMIT = "RESOURCE_LIMIT"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"


class StandardizedToolError(Exception):
    """A structured, LLM-actionable tool failure.

    It is an exception so that helpers deep inside a tool (path
    resolution, size checks) can ``raise`` it; :class:`BaseTool` turns it
    into a failed :class:`ToolResult` before it reaches the runner.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion_for_llm: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = ErrorCode(code)
        self.message = message
        self.suggestion_for_llm = suggestion_for_llm
        self.details: dict[str, Any] = dict(details or {})
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return f"StandardizedToolError(code={self.code.value!r}, message={self.message!r})"

    def with_detail(self, key: str, value: Any) -> StandardizedToolError:
        """Attach a detail and return self, for chaining."""
        self.details[key] = value
        return self

    def format_for_llm(self) -> str:
        """Render as the text the LLM sees in the tool message."""
        parts = [f"ERROR: {self.message}"]
        if self.suggestion_for_llm:
            parts.append(f"SUGGESTION: {self.suggestion_for_llm}")
        if self.details:
            rendered = ", ".join(f"{k}: {v}" for k, v in self.details.items())
            parts.append(f"DETAILS: {rendered}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "suggestion_for_llm": self.suggestion_for_llm,
        }
        if self.details:
            d["details"] = dict(self.details)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StandardizedToolError:
        return cls(
            code=ErrorCode(data["code"]),
            message=data.get("message", ""),
            suggestion_for_llm=data.get("suggestion_for_llm", ""),
            details=data.get("details"),
        )


# ---------------------------------------------------------------------------
# Factories for the common failures
# ---------------------------------------------------------------------------


def parameter_error(param: str, reason: str) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.INVALID_PARAMETERS,
        f"Invalid parameter '{param}': {reason}",
        f"Please check the '{param}' parameter and ensure it meets the requirements: {reason}",
    ).with_detail("parameter", param)


def missing_parameter_error(param: str) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.MISSING_PARAMETER,
        f"Required parameter '{param}' is missing",
        f"Please provide the required parameter '{param}' in your tool call",
    ).with_detail("parameter", param)


def file_not_found_error(path: str) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.FILE_NOT_FOUND,
        f"File not found: {path}",
        f"The file '{path}' does not exist. Use the 'list_directory' tool to verify "
        "the correct path, or check if the file needs to be created first",
    ).with_detail("file_path", path)


def directory_not_found_error(path: str) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.DIRECTORY_NOT_FOUND,
        f"Directory not found: {path}",
        f"The directory '{path}' does not exist. Use the 'list_directory' tool to verify "
        "the correct path, or ensure parent directories are created first",
    ).with_detail("directory_path", path)


def path_outside_workspace_error(path: str) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.PATH_OUTSIDE_WORKSPACE,
        f"Path is outside workspace: {path}",
        "Ensure all file paths are relative to the workspace root and do not use '..' "
        "or absolute paths that escape the workspace boundary",
    ).with_detail("invalid_path", path)


def invalid_line_range_error(start_line: int, end_line: int) -> StandardizedToolError:
    return (
        StandardizedToolError(
            ErrorCode.INVALID_LINE_RANGE,
            f"Invalid line range: start_line={start_line}, end_line={end_line}",
            "Ensure start_line is less than or equal to end_line, and both are positive "
            "integers within the file's line count",
        )
        .with_detail("start_line", start_line)
        .with_detail("end_line", end_line)
    )


def content_too_large_error(size: int, max_size: int) -> StandardizedToolError:
    return (
        StandardizedToolError(
            ErrorCode.CONTENT_TOO_LARGE,
            f"Content too large: {size} bytes (max: {max_size})",
            f"Reduce the content size to under {max_size} bytes, or consider breaking "
            "it into smaller chunks",
        )
        .with_detail("size", size)
        .with_detail("max_size", max_size)
    )


def git_not_repository_error(path: str) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.GIT_NOT_REPOSITORY,
        f"Not a git repository: {path}",
        "Ensure you are working within a git repository. Initialize with 'git init' "
        "if this is a new project",
    ).with_detail("path", path)


def tests_failed_error(failure_count: int, details: str) -> StandardizedToolError:
    return (
        StandardizedToolError(
            ErrorCode.TEST_FAILURE,
            f"Tests failed: {failure_count} failures",
            "Review the test failures and fix the underlying issues, then run the "
            "tests again",
        )
        .with_detail("failure_count", failure_count)
        .with_detail("details", details)
    )


def internal_error(tool_name: str, exc: BaseException) -> StandardizedToolError:
    """Wrap an unexpected fault so the LLM still gets closure for its call."""
    return StandardizedToolError(
        ErrorCode.INTERNAL_ERROR,
        f"Internal error in tool '{tool_name}': {exc}",
        suggestion_for(ErrorCode.INTERNAL_ERROR),
    ).with_detail("tool", tool_name)


def unknown_tool_error(tool_name: str, available: list[str]) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.UNSUPPORTED_OPERATION,
        f"Unknown tool: {tool_name}",
        "Call one of the available tools: " + ", ".join(available),
    ).with_detail("tool", tool_name)


def tool_timeout_error(tool_name: str, timeout: float) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.TIMEOUT,
        f"Tool '{tool_name}' did not finish within {timeout:g} seconds",
        "Retry with a smaller scope, or use a different approach",
    ).with_detail("timeout_seconds", timeout)


# ---------------------------------------------------------------------------
# Generic per-code suggestions
# ---------------------------------------------------------------------------

ERROR_CODE_SUGGESTIONS: dict[ErrorCode, str] = {
    ErrorCode.INVALID_PARAMETERS: (
        "Carefully review the tool's parameter schema and ensure all parameters "
        "match the expected types and formats"
    ),
    ErrorCode.MISSING_PARAMETER: (
        "Check the tool's required parameters and provide all mandatory fields"
    ),
    ErrorCode.FILE_NOT_FOUND: (
        "Use 'list_directory' to verify file existence and correct paths"
    ),
    ErrorCode.DIRECTORY_NOT_FOUND: (
        "Use 'list_directory' to verify directory structure and ensure parent "
        "directories exist"
    ),
    ErrorCode.PATH_OUTSIDE_WORKSPACE: (
        "Use relative paths within the workspace and avoid '..' or absolute paths"
    ),
    ErrorCode.INVALID_LINE_RANGE: (
        "Ensure start_line <= end_line and both are within the file's line count"
    ),
    ErrorCode.CONTENT_TOO_LARGE: (
        "Break large content into smaller chunks or use streaming operations"
    ),
    ErrorCode.GIT_NOT_REPOSITORY: (
        "Ensure you're working within a git repository or initialize one if needed"
    ),
    ErrorCode.TEST_FAILURE: (
        "Review test failures and fix underlying issues before proceeding"
    ),
    ErrorCode.COMMAND_FAILED: (
        "Check command syntax, arguments, and ensure required dependencies are available"
    ),
    ErrorCode.TIMEOUT: (
        "Reduce operation scope or increase timeout limits for complex operations"
    ),
    ErrorCode.UNSUPPORTED_OPERATION: (
        "Only call tools from the list of available tools"
    ),
    ErrorCode.INTERNAL_ERROR: (
        "This is not caused by your arguments. Try a different approach or continue "
        "without this tool"
    ),
}


def suggestion_for(code: ErrorCode) -> str:
    """Generic suggestion for a code, or an empty string when none is defined."""
    return ERROR_CODE_SUGGESTIONS.get(code, "")
