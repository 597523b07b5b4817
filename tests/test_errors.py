"""Tests for codeloop.tool.errors."""

from __future__ import annotations

import pytest

from codeloop.tool import errors
from codeloop.tool.errors import (
    ERROR_CODE_SUGGESTIONS,
    ErrorCode,
    StandardizedToolError,
    content_too_large_error,
    file_not_found_error,
    internal_error,
    invalid_line_range_error,
    missing_parameter_error,
    parameter_error,
    path_outside_workspace_error,
    suggestion_for,
    tool_timeout_error,
    unknown_tool_error,
)


class TestErrorCode:
    def test_codes_are_their_own_wire_strings(self) -> None:
        for code in ErrorCode:
            assert code.value == code.name

    def test_closed_set(self) -> None:
        assert len(ErrorCode) == 29
        with pytest.raises(ValueError):
            ErrorCode("NOT_A_CODE")


class TestStandardizedToolError:
    def test_is_an_exception(self) -> None:
        with pytest.raises(StandardizedToolError) as info:
            raise missing_parameter_error("file_path")
        assert info.value.code is ErrorCode.MISSING_PARAMETER
        assert str(info.value) == "[MISSING_PARAMETER] Required parameter 'file_path' is missing"

    def test_format_for_llm(self) -> None:
        err = StandardizedToolError(
            ErrorCode.FILE_NOT_FOUND,
            "File not found: a.go",
            "Use list_directory",
        ).with_detail("file_path", "a.go")
        assert err.format_for_llm() == (
            "ERROR: File not found: a.go\n"
            "SUGGESTION: Use list_directory\n"
            "DETAILS: file_path: a.go"
        )

    def test_format_without_suggestion_or_details(self) -> None:
        err = StandardizedToolError(ErrorCode.TIMEOUT, "took too long")
        assert err.format_for_llm() == "ERROR: took too long"

    def test_to_dict_omits_empty_details(self) -> None:
        err = StandardizedToolError(ErrorCode.TIMEOUT, "slow", "wait")
        assert err.to_dict() == {
            "code": "TIMEOUT",
            "message": "slow",
            "suggestion_for_llm": "wait",
        }

    def test_from_dict(self) -> None:
        original = invalid_line_range_error(9, 3)
        restored = StandardizedToolError.from_dict(original.to_dict())
        assert restored.code is ErrorCode.INVALID_LINE_RANGE
        assert restored.details == {"start_line": 9, "end_line": 3}

    def test_details_not_shared(self) -> None:
        details = {"a": 1}
        err = StandardizedToolError(ErrorCode.TIMEOUT, "x", details=details)
        err.with_detail("b", 2)
        assert details == {"a": 1}


class TestFactories:
    def test_parameter_error_names_parameter(self) -> None:
        err = parameter_error("max_depth", "must be <= 10")
        assert err.code is ErrorCode.INVALID_PARAMETERS
        assert "max_depth" in err.message
        assert err.details["parameter"] == "max_depth"

    def test_file_not_found_suggests_listing(self) -> None:
        err = file_not_found_error("main.go")
        assert err.code is ErrorCode.FILE_NOT_FOUND
        assert "list_directory" in err.suggestion_for_llm

    def test_path_outside_workspace(self) -> None:
        err = path_outside_workspace_error("../etc/passwd")
        assert err.code is ErrorCode.PATH_OUTSIDE_WORKSPACE
        assert err.details["invalid_path"] == "../etc/passwd"

    def test_content_too_large(self) -> None:
        err = content_too_large_error(2048, 1024)
        assert err.details == {"size": 2048, "max_size": 1024}

    def test_tests_failed(self) -> None:
        err = errors.tests_failed_error(3, "--- FAIL: TestA")
        assert err.code is ErrorCode.TEST_FAILURE
        assert err.message == "Tests failed: 3 failures"

    def test_internal_error_wraps_exception(self) -> None:
        err = internal_error("read_file", RuntimeError("disk on fire"))
        assert err.code is ErrorCode.INTERNAL_ERROR
        assert "disk on fire" in err.message
        assert err.details["tool"] == "read_file"

    def test_unknown_tool_lists_alternatives(self) -> None:
        err = unknown_tool_error("frobnicate", ["read_file", "write_file"])
        assert err.code is ErrorCode.UNSUPPORTED_OPERATION
        assert "read_file, write_file" in err.suggestion_for_llm

    def test_tool_timeout(self) -> None:
        err = tool_timeout_error("run_tests", 60.0)
        assert err.code is ErrorCode.TIMEOUT
        assert "60 seconds" in err.message


class TestSuggestions:
    def test_known_code(self) -> None:
        assert suggestion_for(ErrorCode.FILE_NOT_FOUND) == ERROR_CODE_SUGGESTIONS[
            ErrorCode.FILE_NOT_FOUND
        ]

    def test_unknown_code_is_empty(self) -> None:
        assert suggestion_for(ErrorCode.GIT_CONFLICT) == ""
