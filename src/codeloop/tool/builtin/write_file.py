"""Write file tool."""

from __future__ import annotations

from typing import Any, ClassVar

import aiofiles
from pydantic import BaseModel, Field

from codeloop.tool.base import BaseTool, ToolResult
from codeloop.tool.errors import (
    ErrorCode,
    StandardizedToolError,
    directory_not_found_error,
)
from codeloop.tool.workspace import Workspace, check_size

MAX_WRITE_BYTES = 1024 * 1024  # 1MB


class WriteFileParams(BaseModel):
    file_path: str = Field(
        min_length=1,
        max_length=260,
        description="Path to the file to write, relative to the workspace root.",
    )
    content: str = Field(description="The full content to write to the file.")
    create_dirs_if_needed: bool = Field(
        default=True, description="Create missing parent directories."
    )
    overwrite: bool = Field(
        default=True, description="Replace the file if it already exists."
    )


class WriteFileTool(BaseTool[WriteFileParams]):
    """Write content to a workspace file, creating parent directories as needed."""

    name: ClassVar[str] = "write_file"
    description: ClassVar[str] = (
        "Writes content to a file, creating the file and parent directories if needed.\n\n"
        "USAGE EXAMPLES:\n"
        '- write_file({"file_path": "src/main.go", "content": "package main\\n..."})\n'
        '- write_file({"file_path": "docs/README.md", "content": "# Project", "overwrite": false})\n\n'
        "NOTES:\n"
        "- The path must be relative to the workspace root\n"
        "- Existing files are overwritten unless overwrite=false\n"
        f"- Content is limited to {MAX_WRITE_BYTES} bytes"
    )
    param_model: ClassVar[type[BaseModel]] = WriteFileParams

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    async def handle(self, params: WriteFileParams) -> ToolResult:
        path = self._workspace.resolve(params.file_path, "file_path")
        encoded = params.content.encode("utf-8")
        check_size(len(encoded), MAX_WRITE_BYTES)

        if path.is_dir():
            raise StandardizedToolError(
                ErrorCode.INVALID_PATH_FORMAT,
                f"Path is a directory: {params.file_path}",
                "Provide a file path, not a directory path",
            ).with_detail("file_path", params.file_path)

        existed = path.exists()
        original_size = path.stat().st_size if existed else 0
        if existed and not params.overwrite:
            raise StandardizedToolError(
                ErrorCode.FILE_ALREADY_EXISTS,
                f"File already exists: {params.file_path}",
                "Set overwrite=true to replace it, or choose a different path",
            ).with_detail("file_path", params.file_path)

        parent = path.parent
        created_dirs = False
        if not parent.exists():
            if not params.create_dirs_if_needed:
                raise directory_not_found_error(
                    self._workspace.relative(parent)
                ).with_detail("suggestion", "Set create_dirs_if_needed=true")
            parent.mkdir(parents=True, exist_ok=True)
            created_dirs = True
        elif not parent.is_dir():
            raise StandardizedToolError(
                ErrorCode.INVALID_PATH_FORMAT,
                f"Parent path is not a directory: {self._workspace.relative(parent)}",
                "Ensure the parent path points to a directory, not a file",
            ).with_detail("file_path", params.file_path)

        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(encoded)
        except PermissionError as e:
            raise StandardizedToolError(
                ErrorCode.PERMISSION_DENIED,
                f"Failed to write file: {params.file_path}",
                "Check write permissions for the file and its parent directory",
            ).with_detail("file_path", params.file_path).with_detail("os_error", str(e))

        data: dict[str, Any] = {
            "file_path": params.file_path,
            "bytes_written": len(encoded),
            "created_dirs": created_dirs,
            "overwritten": existed,
        }
        if existed:
            data["original_size"] = original_size
            data["message"] = (
                f"Successfully overwrote {params.file_path} "
                f"({len(encoded)} bytes written, was {original_size} bytes)"
            )
        else:
            data["message"] = (
                f"Successfully created {params.file_path} ({len(encoded)} bytes written)"
            )
        return ToolResult.ok(data)
