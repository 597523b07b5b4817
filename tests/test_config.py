"""Tests for codeloop.config and the run presets."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from codeloop.agent.config import RunConfig
from codeloop.config import CodeloopConfig, LLMConfig
from codeloop.tool.factory import Role

ENV_VARS = (
    "CODELOOP_MODEL",
    "CODELOOP_WORKSPACE",
    "CODELOOP_MAX_ITERATIONS",
    "CODELOOP_TOOL_TIMEOUT",
    "CODELOOP_NATIVE_FUNCTIONS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("codeloop.config.load_dotenv", lambda **kwargs: False)


class TestRunConfig:
    def test_defaults(self) -> None:
        config = RunConfig.default()
        assert config.max_iterations == 10
        assert config.tool_timeout == 60.0
        assert config.clarification_enabled is False

    def test_presets(self) -> None:
        assert RunConfig.planning().max_iterations == 5
        assert RunConfig.generation().max_iterations == 15
        assert RunConfig.review().max_iterations == 20
        assert RunConfig.for_role(Role.PLANNING).role == Role.PLANNING

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_iterations": 0},
            {"tool_timeout": 0},
            {"run_timeout": -1.0},
            {"max_tool_retries": -1},
        ],
    )
    def test_invalid(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RunConfig(**kwargs)

    def test_no_run_deadline(self) -> None:
        assert RunConfig(run_timeout=None).run_timeout is None

    def test_with_overrides(self) -> None:
        base = RunConfig.review()
        changed = base.with_overrides(max_iterations=3)
        assert changed.max_iterations == 3
        assert changed.tool_timeout == base.tool_timeout
        assert base.max_iterations == 20

    def test_with_overrides_can_remove_deadline(self) -> None:
        assert RunConfig.review().with_overrides(run_timeout=None).run_timeout is None

    @pytest.mark.parametrize(
        ("preset", "retries", "abort"),
        [
            (RunConfig.planning, 1, True),
            (RunConfig.generation, 3, False),
            (RunConfig.review, 2, True),
            (RunConfig.default, 2, False),
        ],
    )
    def test_retry_presets(self, preset, retries: int, abort: bool) -> None:
        config = preset()
        assert config.max_tool_retries == retries
        assert config.abort_on_repeated_errors is abort

    def test_frozen(self) -> None:
        with pytest.raises(AttributeError):
            RunConfig().max_iterations = 2  # type: ignore[misc]


class TestCodeloopConfig:
    def test_defaults(self) -> None:
        config = CodeloopConfig.load()
        assert config.llm.model == LLMConfig().model
        assert config.workspace == "."
        assert "go" in config.allowed_commands

    def test_file(self, tmp_path: Path) -> None:
        path = tmp_path / "codeloop.json"
        path.write_text(
            json.dumps(
                {
                    "llm": {"model": "openai/gpt-4o", "native_function_calling": False},
                    "roles": {"review": {"max_iterations": 4, "clarification": True}},
                    "allowed_commands": ["go"],
                }
            )
        )
        config = CodeloopConfig.load(str(path))
        assert config.llm.model == "openai/gpt-4o"
        assert config.llm.native_function_calling is False
        assert config.allowed_commands == ["go"]

        review = config.run_config(Role.REVIEW)
        assert review.max_iterations == 4
        assert review.clarification_enabled is True
        assert review.role == Role.REVIEW
        assert config.run_config(Role.PLANNING).max_iterations == 5

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = CodeloopConfig.load(str(tmp_path / "missing.json"))
        assert config.workspace == "."

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "codeloop.json"
        path.write_text(json.dumps({"llm": {"model": "openai/gpt-4o"}, "workspace": "/srv"}))
        monkeypatch.setenv("CODELOOP_MODEL", "ollama/llama3")
        monkeypatch.setenv("CODELOOP_WORKSPACE", "/tmp/ws")
        monkeypatch.setenv("CODELOOP_NATIVE_FUNCTIONS", "no")

        config = CodeloopConfig.load(str(path))
        assert config.llm.model == "ollama/llama3"
        assert config.llm.native_function_calling is False
        assert config.workspace == "/tmp/ws"

    def test_env_limits_apply_to_every_role(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODELOOP_MAX_ITERATIONS", "7")
        monkeypatch.setenv("CODELOOP_TOOL_TIMEOUT", "12.5")
        config = CodeloopConfig.load()
        for role in Role:
            run = config.run_config(role)
            assert run.max_iterations == 7
            assert run.tool_timeout == 12.5

    def test_bad_bool(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODELOOP_NATIVE_FUNCTIONS", "maybe")
        with pytest.raises(ValueError, match="CODELOOP_NATIVE_FUNCTIONS"):
            CodeloopConfig.load()

    def test_unknown_role_setting_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "codeloop.json"
        path.write_text(json.dumps({"roles": {"planning": {"max_iters": 3}}}))
        with pytest.raises(ValidationError):
            CodeloopConfig.load(str(path))

    def test_role_limits_validated(self, tmp_path: Path) -> None:
        path = tmp_path / "codeloop.json"
        path.write_text(json.dumps({"roles": {"planning": {"max_iterations": 0}}}))
        with pytest.raises(ValidationError):
            CodeloopConfig.load(str(path))

    def test_explicit_null_run_timeout_removes_deadline(self, tmp_path: Path) -> None:
        path = tmp_path / "codeloop.json"
        path.write_text(
            json.dumps(
                {
                    "roles": {
                        "review": {"run_timeout": None, "max_tool_retries": 0},
                        "planning": {"max_iterations": None},
                    }
                }
            )
        )
        config = CodeloopConfig.load(str(path))
        review = config.run_config(Role.REVIEW)
        assert review.run_timeout is None
        assert review.max_tool_retries == 0
        assert review.abort_on_repeated_errors is True
        assert config.run_config(Role.PLANNING) == RunConfig.planning()
        assert config.run_config(Role.GENERATION).run_timeout == RunConfig.generation().run_timeout
