"""LLM abstraction layer: messages, call normalization, and the litellm client."""

from codeloop.llm.message import (
    CallResponse,
    FunctionCall,
    FunctionCallResponse,
    Message,
    TextResponse,
    ToolDefinition,
)
from codeloop.llm.normalize import (
    format_tools_for_prompt,
    normalize,
    parse_function_call,
    render_transcript,
)
from codeloop.llm.provider import (
    LiteLLMClient,
    LLMClient,
    LLMError,
    ProviderConfig,
    create_client,
)

__all__ = [
    "CallResponse",
    "FunctionCall",
    "FunctionCallResponse",
    "Message",
    "TextResponse",
    "ToolDefinition",
    "format_tools_for_prompt",
    "normalize",
    "parse_function_call",
    "render_transcript",
    "LiteLLMClient",
    "LLMClient",
    "LLMError",
    "ProviderConfig",
    "create_client",
]
