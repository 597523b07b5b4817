"""Human clarification tool: lets the LLM ask instead of guessing.

The tool itself does nothing but package the question. Its result data
carries ``clarification_needed: true``; the runner detects that marker,
suspends, and waits for a human reply.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from codeloop.tool.base import BaseTool, ToolResult

CLARIFICATION_TOOL_NAME = "request_human_clarification"

Urgency = Literal["low", "medium", "high", "critical"]
Option = Annotated[str, Field(min_length=5, max_length=200)]


class ClarificationParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(
        min_length=10,
        max_length=1000,
        description="The specific question or clarification needed from the user.",
    )
    context_summary: str = Field(
        min_length=5,
        max_length=500,
        description="Brief summary of the current context that led to this question.",
    )
    confidence_level: float = Field(
        ge=0.0,
        le=1.0,
        description="Your confidence in proceeding without clarification (0.0-1.0).",
    )
    urgency: Urgency = Field(
        default="medium", description="Priority level for this clarification."
    )
    suggested_options: list[Option] = Field(
        default_factory=list,
        max_length=5,
        description="Options or approaches for the user to choose from.",
    )


class ClarificationTool(BaseTool[ClarificationParams]):
    """Ask the human operator a question and wait for the answer."""

    name: ClassVar[str] = CLARIFICATION_TOOL_NAME
    description: ClassVar[str] = (
        "Request clarification from the human user when instructions are ambiguous "
        "or when confidence is low.\n\n"
        "Use this tool when:\n"
        "- Instructions are unclear or could be interpreted multiple ways\n"
        "- You have low confidence in your planned action (< 0.7)\n"
        "- You need context that isn't available in the codebase\n"
        "- There are several valid approaches and the user's preference matters\n"
        "- An operation is risky enough to need confirmation\n\n"
        "Execution pauses and the question is shown to the user. Their reply is "
        "added to the conversation for you to continue.\n\n"
        "Example questions:\n"
        '- "I found two authentication systems. Which one should I modify?"\n'
        '- "This change deletes existing data. Should I proceed or back it up first?"'
    )
    param_model: ClassVar[type[BaseModel]] = ClarificationParams

    async def handle(self, params: ClarificationParams) -> ToolResult:
        data: dict[str, Any] = {
            "clarification_needed": True,
            "question": params.question,
            "context_summary": params.context_summary,
            "confidence_level": params.confidence_level,
            "urgency": params.urgency,
            "suggested_options": list(params.suggested_options),
        }
        data["formatted_message"] = format_clarification(data)
        return ToolResult.ok(data)


def format_clarification(data: dict[str, Any]) -> str:
    """Render a clarification request for a human to read.

    ``data`` may come from any tool, so values are rendered as given when
    they are not the expected types.
    """
    message = (
        "CLARIFICATION NEEDED\n\n"
        f"CONTEXT: {data.get('context_summary', '')}\n\n"
        f"QUESTION: {data.get('question', '')}\n\n"
        f"CONFIDENCE LEVEL: {_confidence(data.get('confidence_level', 0.0))}\n"
        f"URGENCY: {data.get('urgency', 'medium')}"
    )
    options = data.get("suggested_options")
    if isinstance(options, (list, tuple)) and options:
        message += "\n\nSUGGESTED OPTIONS:"
        for i, option in enumerate(options, start=1):
            message += f"\n{i}. {option}"
    message += "\n\nPlease provide your guidance or choose from the options above."
    return message


def _confidence(value: Any) -> str:
    if isinstance(value, bool):
        return str(value)
    try:
        return f"{float(value):.1f}/1.0"
    except (TypeError, ValueError, OverflowError):
        return str(value)
