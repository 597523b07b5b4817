"""Built-in coding tools."""

from codeloop.tool.builtin.checks import (
    CommandTemplate,
    RunLinterTool,
    RunTestsTool,
    detect_lint_command,
    detect_test_command,
)
from codeloop.tool.builtin.clarify import CLARIFICATION_TOOL_NAME, ClarificationTool
from codeloop.tool.builtin.list_directory import ListDirectoryTool
from codeloop.tool.builtin.read_file import ReadFileTool
from codeloop.tool.builtin.shell import ShellTool
from codeloop.tool.builtin.write_file import WriteFileTool

__all__ = [
    "CLARIFICATION_TOOL_NAME",
    "ClarificationTool",
    "CommandTemplate",
    "ListDirectoryTool",
    "ReadFileTool",
    "RunLinterTool",
    "RunTestsTool",
    "ShellTool",
    "WriteFileTool",
    "detect_lint_command",
    "detect_test_command",
]
