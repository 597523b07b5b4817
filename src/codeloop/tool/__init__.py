"""Tool system: contract, errors, validation, registry, and role factories."""

from codeloop.tool.base import BaseTool, Tool, ToolResult, definition_of
from codeloop.tool.errors import ErrorCode, StandardizedToolError
from codeloop.tool.factory import Role, ToolFactory
from codeloop.tool.registry import ToolRegistrationError, ToolRegistry
from codeloop.tool.truncation import truncate_output
from codeloop.tool.validation import validate_arguments
from codeloop.tool.workspace import Workspace

__all__ = [
    "BaseTool",
    "Tool",
    "ToolResult",
    "definition_of",
    "ErrorCode",
    "StandardizedToolError",
    "Role",
    "ToolFactory",
    "ToolRegistrationError",
    "ToolRegistry",
    "truncate_output",
    "validate_arguments",
    "Workspace",
]
