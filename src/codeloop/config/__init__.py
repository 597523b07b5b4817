"""Configuration: pydantic models for codeloop settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from codeloop.agent.config import RunConfig
from codeloop.tool.builtin.shell import DEFAULT_ALLOWED_COMMANDS
from codeloop.tool.factory import Role

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class LLMConfig(BaseModel):
    """LLM provider configuration.

    Model names use litellm's provider-prefix format:
        "anthropic/claude-sonnet-4-5-20250929"
        "openai/gpt-4o"
        "ollama/llama3"

    API keys are read from env vars automatically by litellm
    (ANTHROPIC_API_KEY, OPENAI_API_KEY, GEMINI_API_KEY).
    """

    model: str = Field(default="anthropic/claude-sonnet-4-5-20250929")
    temperature: float | None = Field(default=None)
    max_tokens: int | None = Field(default=None)
    native_function_calling: bool | None = Field(
        default=None,
        description=(
            "Force native tool calling on or off. Unset asks litellm whether the "
            "model supports it; prompt mode is used otherwise."
        ),
    )
    embedding_model: str | None = Field(default=None)


class RoleConfig(BaseModel):
    """Per-role overrides of the built-in run presets. Unset keeps the preset.

    ``run_timeout`` set explicitly to null removes the run deadline.
    """

    model_config = ConfigDict(extra="forbid")

    max_iterations: int | None = Field(default=None, ge=1)
    tool_timeout: float | None = Field(default=None, gt=0)
    run_timeout: float | None = Field(default=None, gt=0)
    max_tool_retries: int | None = Field(
        default=None, ge=0, description="Retry prompts per failing call signature"
    )
    abort_on_repeated_errors: bool | None = Field(
        default=None,
        description="Stop retry prompting for an error code seen more than twice",
    )
    clarification: bool = Field(
        default=False, description="Offer request_human_clarification to this role"
    )

    def run_overrides(self) -> dict[str, Any]:
        """The explicitly set fields, keyed by :class:`RunConfig` field name."""
        changes = self.model_dump(exclude_unset=True)
        if "clarification" in changes:
            changes["clarification_enabled"] = changes.pop("clarification")
        return {k: v for k, v in changes.items() if v is not None or k == "run_timeout"}


class RolesConfig(BaseModel):
    planning: RoleConfig = Field(default_factory=RoleConfig)
    generation: RoleConfig = Field(default_factory=RoleConfig)
    review: RoleConfig = Field(default_factory=RoleConfig)

    def for_role(self, role: Role) -> RoleConfig:
        return getattr(self, role.value)


class CodeloopConfig(BaseModel):
    """Top-level codeloop configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    roles: RolesConfig = Field(default_factory=RolesConfig)
    workspace: str = Field(default=".", description="Root every tool is confined to")
    allowed_commands: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_COMMANDS),
        description="Base commands run_shell_command may execute",
    )
    prompts_dir: str = Field(
        default=".codeloop/prompts",
        description="Directory of markdown role prompt overrides",
    )
    session_dir: str = Field(
        default="~/.codeloop/sessions", description="Directory for saved runs"
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> CodeloopConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            ANTHROPIC_API_KEY          - Anthropic API key (read by litellm automatically)
            OPENAI_API_KEY             - OpenAI API key (read by litellm automatically)
            CODELOOP_MODEL             - Override the model (litellm format with provider prefix)
            CODELOOP_WORKSPACE         - Override the workspace root
            CODELOOP_MAX_ITERATIONS    - Iteration budget for every role
            CODELOOP_TOOL_TIMEOUT      - Per-tool timeout in seconds for every role
            CODELOOP_NATIVE_FUNCTIONS  - Force native tool calling (true/false)
        """
        # .env values take precedence over stale shell exports
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        llm = config_data.get("llm", {})

        env_model = os.environ.get("CODELOOP_MODEL")
        if env_model:
            llm["model"] = env_model

        env_native = os.environ.get("CODELOOP_NATIVE_FUNCTIONS")
        if env_native:
            llm["native_function_calling"] = _parse_bool("CODELOOP_NATIVE_FUNCTIONS", env_native)

        if llm:
            config_data["llm"] = llm

        env_workspace = os.environ.get("CODELOOP_WORKSPACE")
        if env_workspace:
            config_data["workspace"] = env_workspace

        role_overrides: dict[str, Any] = {}
        env_iterations = os.environ.get("CODELOOP_MAX_ITERATIONS")
        if env_iterations:
            role_overrides["max_iterations"] = int(env_iterations)
        env_tool_timeout = os.environ.get("CODELOOP_TOOL_TIMEOUT")
        if env_tool_timeout:
            role_overrides["tool_timeout"] = float(env_tool_timeout)

        if role_overrides:
            roles = config_data.get("roles", {})
            for role in Role:
                roles.setdefault(role.value, {}).update(role_overrides)
            config_data["roles"] = roles

        return cls.model_validate(config_data)

    def run_config(self, role: Role) -> RunConfig:
        """The immutable run limits for ``role``: preset plus overrides."""
        return RunConfig.for_role(role).with_overrides(**self.roles.for_role(role).run_overrides())


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{name} must be true or false, got {value!r}")
