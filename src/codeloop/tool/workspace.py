"""Workspace confinement for path-like tool parameters.

Paths come from an untrusted LLM. They must be relative, must not use
``..``, and must resolve (symlinks included) to a location inside the
workspace root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from codeloop.tool.errors import (
    content_too_large_error,
    missing_parameter_error,
    path_outside_workspace_error,
)

MAX_FILE_BYTES = 10 * 1024 * 1024  # 10MB


@dataclass(frozen=True)
class Workspace:
    """The directory tree a run's tools are allowed to touch."""

    root: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root).expanduser().resolve())

    def resolve(self, path: str, param: str = "path") -> Path:
        """Resolve a workspace-relative path.

        Raises:
            StandardizedToolError: MISSING_PARAMETER for an empty path,
                PATH_OUTSIDE_WORKSPACE for anything that could escape.
        """
        if not path or not path.strip():
            raise missing_parameter_error(param)
        if os.path.isabs(path) or ".." in Path(path).parts or "\x00" in path:
            raise path_outside_workspace_error(path)

        resolved = (self.root / path).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise path_outside_workspace_error(path)
        return resolved

    def relative(self, path: Path) -> str:
        """Workspace-relative display form of an absolute path."""
        rel = path.relative_to(self.root).as_posix()
        return rel or "."


def check_size(size: int, max_size: int = MAX_FILE_BYTES) -> None:
    """Raise CONTENT_TOO_LARGE when ``size`` exceeds ``max_size`` bytes."""
    if size > max_size:
        raise content_too_large_error(size, max_size)
