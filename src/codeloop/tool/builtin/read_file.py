"""Read file tool."""

from __future__ import annotations

from typing import ClassVar

import aiofiles
from pydantic import BaseModel, Field

from codeloop.tool.base import BaseTool, ToolResult
from codeloop.tool.errors import (
    ErrorCode,
    StandardizedToolError,
    content_too_large_error,
    file_not_found_error,
    invalid_line_range_error,
    parameter_error,
)
from codeloop.tool.workspace import Workspace, check_size

MAX_READ_BYTES = 1024 * 1024  # 1MB without a line range


class ReadFileParams(BaseModel):
    file_path: str = Field(
        min_length=1, description="Path to the file, relative to the workspace root."
    )
    start_line: int | None = Field(
        default=None, ge=1, description="First line to read (1-based, inclusive)."
    )
    end_line: int | None = Field(
        default=None, ge=1, description="Last line to read (1-based, inclusive)."
    )


class ReadFileTool(BaseTool[ReadFileParams]):
    """Read a workspace file, optionally a line range of it."""

    name: ClassVar[str] = "read_file"
    description: ClassVar[str] = (
        "Reads the contents of a file in the workspace.\n\n"
        "USAGE EXAMPLES:\n"
        '- read_file({"file_path": "main.go"})\n'
        '- read_file({"file_path": "src/app.py", "start_line": 10, "end_line": 40})\n\n'
        "NOTES:\n"
        "- Lines are 1-based and the range is inclusive\n"
        f"- Files over {MAX_READ_BYTES} bytes must be read in line ranges\n"
        "- Use list_directory first if you are unsure a file exists"
    )
    param_model: ClassVar[type[BaseModel]] = ReadFileParams

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    async def handle(self, params: ReadFileParams) -> ToolResult:
        path = self._workspace.resolve(params.file_path, "file_path")
        if not path.exists():
            raise file_not_found_error(params.file_path)
        if path.is_dir():
            raise parameter_error(
                "file_path",
                f"'{params.file_path}' is a directory; use list_directory instead",
            )

        start, end = params.start_line, params.end_line
        if start is not None and end is not None and start > end:
            raise invalid_line_range_error(start, end)

        ranged = start is not None or end is not None
        size = path.stat().st_size
        if not ranged and size > MAX_READ_BYTES:
            err = content_too_large_error(size, MAX_READ_BYTES)
            err.suggestion_for_llm = (
                "Read the file in parts using start_line and end_line"
            )
            raise err
        check_size(size)

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                lines = (await f.read()).splitlines(keepends=True)
        except UnicodeDecodeError:
            raise StandardizedToolError(
                ErrorCode.INVALID_ENCODING,
                f"File is not valid UTF-8 text: {params.file_path}",
                "This looks like a binary file; it cannot be read as text",
            ).with_detail("file_path", params.file_path)
        except PermissionError:
            raise StandardizedToolError(
                ErrorCode.PERMISSION_DENIED,
                f"Cannot access file: {params.file_path}",
                "Check file permissions and ensure the file is accessible",
            ).with_detail("file_path", params.file_path)

        total = len(lines)
        first = start or 1
        last = end if end is not None else total
        if ranged and (first > max(total, 1) or last > total):
            raise invalid_line_range_error(first, last).with_detail("total_lines", total)

        content = "".join(lines[first - 1 : last])
        return ToolResult.ok(
            {
                "file_path": params.file_path,
                "content": content,
                "start_line": first,
                "end_line": last,
                "total_lines": total,
                "size": size,
            }
        )
