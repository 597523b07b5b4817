"""Run configuration and the per-role presets."""

from __future__ import annotations

from dataclasses import dataclass, replace

from codeloop.tool.factory import Role

DEFAULT_TOOL_TIMEOUT = 60.0


@dataclass(frozen=True)
class RunConfig:
    """Immutable limits for one run.

    ``run_timeout`` is a deadline for the whole run, ``None`` for none.
    A failing call gets up to ``max_tool_retries`` retry prompts before
    its error is passed on plainly. With ``abort_on_repeated_errors``,
    retry prompting stops for an error code seen more than twice.
    """

    max_iterations: int = 10
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    run_timeout: float | None = 300.0
    max_tool_retries: int = 2
    abort_on_repeated_errors: bool = False
    clarification_enabled: bool = False
    role: Role = Role.GENERATION

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.tool_timeout <= 0:
            raise ValueError("tool_timeout must be positive")
        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ValueError("run_timeout must be positive")
        if self.max_tool_retries < 0:
            raise ValueError("max_tool_retries must not be negative")

    @classmethod
    def default(cls) -> RunConfig:
        return cls()

    @classmethod
    def planning(cls) -> RunConfig:
        return cls(
            max_iterations=5,
            run_timeout=180.0,
            max_tool_retries=1,
            abort_on_repeated_errors=True,
            role=Role.PLANNING,
        )

    @classmethod
    def generation(cls) -> RunConfig:
        return cls(
            max_iterations=15,
            run_timeout=600.0,
            max_tool_retries=3,
            role=Role.GENERATION,
        )

    @classmethod
    def review(cls) -> RunConfig:
        return cls(
            max_iterations=20,
            run_timeout=900.0,
            max_tool_retries=2,
            abort_on_repeated_errors=True,
            role=Role.REVIEW,
        )

    @classmethod
    def for_role(cls, role: Role) -> RunConfig:
        return {
            Role.PLANNING: cls.planning,
            Role.GENERATION: cls.generation,
            Role.REVIEW: cls.review,
        }[role]()

    def with_overrides(self, **changes: object) -> RunConfig:
        """Copy with the given fields replaced.

        Every value is applied, so ``run_timeout=None`` removes the deadline.
        """
        return replace(self, **changes)
