"""Tool contract and the pydantic-backed base class."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ValidationError

from codeloop.llm.message import ToolDefinition
from codeloop.tool.errors import (
    StandardizedToolError,
    missing_parameter_error,
    parameter_error,
)

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)


@dataclass
class ToolResult:
    """Outcome of one tool execution.

    A failed result carries a plain ``error`` string and, for failures the
    LLM can correct, a ``standardized_error``.
    """

    success: bool
    data: Any = None
    error: str = ""
    standardized_error: StandardizedToolError | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: StandardizedToolError | str) -> ToolResult:
        if isinstance(error, StandardizedToolError):
            return cls(success=False, error=error.message, standardized_error=error)
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.error:
            d["error"] = self.error
        if self.standardized_error is not None:
            d["standardized_error"] = self.standardized_error.to_dict()
        return d


@runtime_checkable
class Tool(Protocol):
    """A named capability the LLM can invoke.

    ``execute`` returns a failed :class:`ToolResult` for domain failures.
    It raises only for internal faults, which the runner wraps as
    INTERNAL_ERROR. Implementations must not keep per-call state on the
    instance: one tool object serves concurrent runs.
    """

    name: str
    description: str

    def parameter_schema(self) -> dict[str, Any]: ...

    async def execute(self, arguments: dict[str, Any]) -> ToolResult: ...


def definition_of(tool: Tool) -> ToolDefinition:
    """The LLM-facing projection of a tool."""
    return ToolDefinition(
        name=tool.name,
        description=tool.description,
        parameters=tool.parameter_schema(),
    )


class BaseTool(ABC, Generic[P]):
    """Base class for tools whose parameters are a pydantic model.

    The schema shown to the LLM is derived from ``param_model``. Arguments
    are validated into the model before :meth:`handle` runs, and any
    :class:`StandardizedToolError` raised by ``handle`` becomes a failed
    result.

    Usage:
        class ReadParams(BaseModel):
            path: str

        class ReadTool(BaseTool[ReadParams]):
            name = "read"
            description = "Read a file"
            param_model = ReadParams

            async def handle(self, params: ReadParams) -> ToolResult:
                return ToolResult.ok({"content": "..."})
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    def parameter_schema(self) -> dict[str, Any]:
        schema = self.param_model.model_json_schema()
        # Pydantic's title and $defs are noise to the LLM
        schema.pop("title", None)
        schema.pop("$defs", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    async def execute(self, arguments: dict[str, Any]) -> ToolResult:
        try:
            params = self.param_model.model_validate(arguments)
        except ValidationError as e:
            return ToolResult.fail(_from_validation_error(e))

        try:
            return await self.handle(params)  # type: ignore[arg-type]
        except StandardizedToolError as e:
            logger.debug("Tool %s failed: %s", self.name, e)
            return ToolResult.fail(e)

    @abstractmethod
    async def handle(self, params: P) -> ToolResult:
        """Run the tool with validated parameters."""
        ...

    def to_definition(self) -> ToolDefinition:
        return definition_of(self)


def _from_validation_error(exc: ValidationError) -> StandardizedToolError:
    """First pydantic error as a standardized error."""
    first = exc.errors()[0]
    param = ".".join(str(p) for p in first.get("loc", ())) or "arguments"
    if first.get("type") == "missing":
        return missing_parameter_error(param)
    err = parameter_error(param, first.get("msg", "invalid value"))
    if exc.error_count() > 1:
        err.with_detail("error_count", exc.error_count())
    return err

