"""List directory tool."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from codeloop.tool.base import BaseTool, ToolResult
from codeloop.tool.errors import (
    ErrorCode,
    StandardizedToolError,
    directory_not_found_error,
    parameter_error,
)
from codeloop.tool.workspace import Workspace

# Directories that are never worth showing to the model.
SKIPPED_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        "vendor",
        "__pycache__",
        ".venv",
        "venv",
        ".mypy_cache",
        ".pytest_cache",
        ".tox",
        "dist",
        "build",
        "target",
    }
)

MAX_ENTRIES = 1000


class ListDirectoryParams(BaseModel):
    directory_path: str = Field(
        default=".",
        description="Directory to list, relative to the workspace root ('.' for the root).",
    )
    recursive: bool = Field(
        default=False, description="Whether to list subdirectories recursively."
    )
    include_hidden: bool = Field(
        default=False, description="Whether to include hidden files and directories."
    )
    max_depth: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum depth for recursive listing (ignored unless recursive).",
    )


class ListDirectoryTool(BaseTool[ListDirectoryParams]):
    """List files and subdirectories inside the workspace."""

    name: ClassVar[str] = "list_directory"
    description: ClassVar[str] = (
        "Lists files and subdirectories within a directory of the workspace. "
        "Directories come first, then files, each sorted by name.\n\n"
        "USAGE EXAMPLES:\n"
        '- list_directory({"directory_path": "."})\n'
        '- list_directory({"directory_path": "src", "recursive": true, "max_depth": 2})\n\n'
        "NOTES:\n"
        "- Paths are relative to the workspace root\n"
        "- Version-control and dependency directories are skipped\n"
        "- Use this to verify a path before reading or writing it"
    )
    param_model: ClassVar[type[BaseModel]] = ListDirectoryParams

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    async def handle(self, params: ListDirectoryParams) -> ToolResult:
        if params.directory_path.strip() in ("", "."):
            target = self._workspace.root
        else:
            target = self._workspace.resolve(params.directory_path, "directory_path")

        if not target.exists():
            raise directory_not_found_error(params.directory_path)
        if not target.is_dir():
            raise parameter_error(
                "directory_path", f"'{params.directory_path}' is not a directory"
            )

        depth = params.max_depth if params.recursive else 1
        try:
            entries = self._collect(target, depth, params.include_hidden)
        except PermissionError:
            raise StandardizedToolError(
                ErrorCode.PERMISSION_DENIED,
                f"Cannot access directory: {params.directory_path}",
                "Check directory permissions and ensure the directory is accessible",
            ).with_detail("directory_path", params.directory_path)

        truncated = len(entries) > MAX_ENTRIES
        entries = entries[:MAX_ENTRIES]
        total_dirs = sum(1 for e in entries if e["is_directory"])
        total_files = len(entries) - total_dirs

        data: dict[str, Any] = {
            "directory_path": params.directory_path,
            "files": entries,
            "total_files": total_files,
            "total_dirs": total_dirs,
            "recursive": params.recursive,
            "message": (
                f"Listed {total_files} files and {total_dirs} directories "
                f"in {params.directory_path}"
            ),
        }
        if truncated:
            data["truncated"] = True
            data["message"] += f" (first {MAX_ENTRIES} entries)"
        return ToolResult.ok(data)

    def _collect(self, top: Path, depth: int, include_hidden: bool) -> list[dict[str, Any]]:
        collected: list[dict[str, Any]] = []
        for entry in _sorted_entries(top):
            name = entry.name
            if not include_hidden and name.startswith("."):
                continue
            is_dir = entry.is_dir(follow_symlinks=False)
            if is_dir and name in SKIPPED_DIRS:
                continue

            path = Path(entry.path)
            info: dict[str, Any] = {
                "name": name,
                "path": self._workspace.relative(path),
                "is_directory": is_dir,
            }
            if not is_dir:
                try:
                    info["size"] = entry.stat(follow_symlinks=False).st_size
                except OSError:
                    info["size"] = None
            collected.append(info)

            if is_dir and depth > 1:
                try:
                    collected.extend(self._collect(path, depth - 1, include_hidden))
                except PermissionError:
                    continue
            if len(collected) > MAX_ENTRIES:
                break
        return collected


def _sorted_entries(top: Path) -> list[os.DirEntry[str]]:
    """Directories first, then files, by name."""
    with os.scandir(top) as it:
        entries = list(it)
    return sorted(entries, key=lambda e: (not e.is_dir(follow_symlinks=False), e.name))
