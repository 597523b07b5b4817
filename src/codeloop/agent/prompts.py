"""Role system prompts.

Built-in prompts cover the three roles. A prompts directory may override
them with markdown files carrying YAML frontmatter:

    ---
    role: review
    max_iterations: 8
    ---

    You are a meticulous reviewer...

Frontmatter keys other than ``role`` are run settings, validated like the
per-role settings of the config file and then applied to the role's
:class:`RunConfig`. Unknown keys are logged and ignored.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from codeloop.agent.config import RunConfig
from codeloop.config import RoleConfig
from codeloop.tool.factory import Role

logger = logging.getLogger(__name__)

PLANNING_PROMPT = """\
You are an expert software architect and project planner.

Your task is to analyze the user's goal and the codebase to create a detailed \
development plan. You can read files and list directories; use them to gather \
the context you need. You cannot modify anything.

Your final response must be a plan covering: the overall goal, an ordered list \
of tasks (each with the files to modify, create or delete, the estimated effort \
and its dependencies), a short summary, and the risks worth considering."""

GENERATION_PROMPT = """\
You are an expert software engineer specializing in code generation.

Your task is to implement the given task by making precise code changes. You \
have tools to read existing files, write new files or replace existing ones, \
list directory contents, and run allowlisted shell commands.

For each change you make:
1. First read the existing file (if modifying)
2. Write the complete new content with write_file
3. Keep changes precise and consistent with the surrounding code

Work systematically through the task. When every change is made, reply with a \
summary of what was implemented and do not call any more tools."""

REVIEW_PROMPT = """\
You are an expert software engineer specializing in code review and debugging.

Your task is to find and fix test failures and lint issues with precise code \
changes. You have tools to read and write files, run tests, and run the linter.

For each issue:
1. Run the tests or linter to see the failure
2. Read the relevant files to understand the current code
3. Make a targeted fix
4. Verify the fix by running the tests or linter again

Focus on minimal changes that address the root cause. When everything passes, \
reply with a summary of the fixes."""

CLARIFICATION_ADDENDUM = """\

If the instructions are ambiguous, or your confidence in the next step is \
below 0.7, call request_human_clarification instead of guessing."""

_BUILTIN: dict[Role, str] = {
    Role.PLANNING: PLANNING_PROMPT,
    Role.GENERATION: GENERATION_PROMPT,
    Role.REVIEW: REVIEW_PROMPT,
}

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n(.*)", re.DOTALL)

_SETTING_KEYS = frozenset(
    {
        "max_iterations",
        "tool_timeout",
        "run_timeout",
        "max_tool_retries",
        "abort_on_repeated_errors",
        "clarification_enabled",
    }
)


@dataclass
class RolePrompt:
    """A system prompt plus any run settings it carries.

    ``overrides`` are keyed by :class:`RunConfig` field name.
    """

    role: Role
    text: str
    overrides: dict[str, Any] = field(default_factory=dict)

    def apply(self, config: RunConfig) -> RunConfig:
        """``config`` with this prompt's frontmatter settings applied."""
        return config.with_overrides(**self.overrides)


def system_prompt(role: Role, *, clarification: bool = False) -> str:
    """Built-in system prompt for ``role``."""
    text = _BUILTIN[role]
    if clarification:
        text += CLARIFICATION_ADDENDUM
    return text


def load_prompt_file(path: str) -> RolePrompt:
    """Load a role prompt from a markdown file with YAML frontmatter."""
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    meta, body = _parse_frontmatter(content)
    role_name = meta.pop("role", None)
    if role_name is None:
        role_name = os.path.splitext(os.path.basename(path))[0]
    try:
        role = Role(str(role_name).lower())
    except ValueError:
        raise ValueError(f"{path}: unknown role {role_name!r}") from None
    return RolePrompt(role=role, text=body.strip(), overrides=_run_settings(path, meta))


def discover_prompts(prompts_dir: str) -> dict[Role, RolePrompt]:
    """All role prompt overrides found in ``prompts_dir``.

    Files that fail to parse are logged and skipped.
    """
    found: dict[Role, RolePrompt] = {}
    if not os.path.isdir(prompts_dir):
        return found
    for fname in sorted(os.listdir(prompts_dir)):
        if not fname.endswith(".md"):
            continue
        full_path = os.path.join(prompts_dir, fname)
        try:
            prompt = load_prompt_file(full_path)
        except (OSError, ValueError) as e:
            logger.warning("Skipping prompt file %s: %s", full_path, e)
            continue
        if prompt.text:
            found[prompt.role] = prompt
    return found


def _run_settings(path: str, meta: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(str(k) for k in meta if k not in _SETTING_KEYS)
    if unknown:
        logger.warning("Ignoring unknown settings in %s: %s", path, ", ".join(unknown))

    settings = {k: v for k, v in meta.items() if k in _SETTING_KEYS}
    if "clarification_enabled" in settings:
        settings["clarification"] = settings.pop("clarification_enabled")
    try:
        return RoleConfig.model_validate(settings).run_overrides()
    except ValidationError as e:
        raise ValueError(f"{path}: invalid run settings: {e}") from e


def _parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Returns (frontmatter_dict, body_text)."""
    import yaml  # lazy import, only needed for prompt overrides

    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}, content

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"invalid frontmatter: {e}") from e
    if not isinstance(meta, dict):
        raise ValueError("frontmatter must be a mapping")
    return meta, match.group(2)
