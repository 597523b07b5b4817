"""Argument validation against a tool's JSON Schema parameters.

Runs before ``execute`` so that a malformed call from the LLM comes back
as a standardized error naming the offending parameter.
"""

from __future__ import annotations

import re
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, ValidationError

from codeloop.tool.errors import (
    ErrorCode,
    StandardizedToolError,
    missing_parameter_error,
    parameter_error,
)


def validate_arguments(
    arguments: Any,
    schema: dict[str, Any],
) -> StandardizedToolError | None:
    """Validate *arguments* against *schema*.

    Returns ``None`` when valid, or the first violation found. Missing
    required parameters are reported ahead of other violations.
    """
    if not isinstance(arguments, dict):
        return StandardizedToolError(
            ErrorCode.INVALID_PARAMETERS,
            "Tool arguments must be a JSON object",
            "Pass arguments as an object mapping parameter names to values",
        ).with_detail("received_type", type(arguments).__name__)

    try:
        Draft202012Validator.check_schema(schema)
        errors = list(Draft202012Validator(schema).iter_errors(arguments))
    except SchemaError as e:
        return _schema_error(e.message)
    except re.error as e:
        return _schema_error(f"invalid regex pattern: {e}")

    if not errors:
        return None
    errors.sort(key=lambda e: (e.validator != "required", len(e.path)))
    return _to_tool_error(errors[0])


def _to_tool_error(err: ValidationError) -> StandardizedToolError:
    prefix = _format_path(err.path)

    if err.validator == "required" and isinstance(err.instance, dict):
        missing = [name for name in err.validator_value if name not in err.instance]
        if missing:
            return missing_parameter_error(_join(prefix, missing[0]))

    if err.validator == "additionalProperties" and isinstance(err.instance, dict):
        allowed = sorted((err.schema.get("properties") or {}).keys())
        extra = sorted(k for k in err.instance if k not in allowed)
        if extra:
            return parameter_error(
                _join(prefix, extra[0]),
                f"unknown parameter; allowed parameters are: {', '.join(allowed)}",
            )

    return parameter_error(prefix or "arguments", err.message)


def _schema_error(reason: str) -> StandardizedToolError:
    return StandardizedToolError(
        ErrorCode.INTERNAL_ERROR,
        f"Tool parameter schema is invalid: {reason}",
        "This is a tool definition error, not a problem with your arguments",
    )


def _format_path(path: Any) -> str:
    out = ""
    for part in path:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out = _join(out, str(part))
    return out


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name
