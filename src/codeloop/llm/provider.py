"""LLM client abstraction: unified via litellm.

The runner only sees :class:`LLMClient`. Transport, retries, and
provider-specific request shapes live here: litellm detects the provider
from the model string prefix (``"anthropic/..."``, ``"gemini/..."``,
``"ollama/..."``) and reads API keys from environment variables.

Providers without native function calling get no ``tools`` payload;
their text reply is handed back raw and normalized by the runner.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from codeloop.llm.message import (
    CallResponse,
    FunctionCallResponse,
    Message,
    TextResponse,
    ToolDefinition,
)
from codeloop.llm.normalize import normalize

if TYPE_CHECKING:
    from litellm import CustomStreamWrapper, ModelResponse, ModelResponseStream

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The provider answered, but not with anything usable."""


@dataclass
class ProviderConfig:
    """Configuration for an LLM client."""

    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    # None means "ask litellm whether the model supports it"
    native_function_calling: bool | None = None
    embedding_model: str | None = None


@runtime_checkable
class LLMClient(Protocol):
    """What the agent runner needs from an LLM provider."""

    async def generate(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        tools: Sequence[ToolDefinition] | None = None,
    ) -> str:
        """Plain completion; returns the reply text."""
        ...

    async def generate_with_functions(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        tools: Sequence[ToolDefinition],
        *,
        messages: Sequence[Message] | None = None,
    ) -> FunctionCallResponse | str:
        """Completion that may answer with a function call.

        Natively structured providers return a :data:`FunctionCallResponse`.
        Others may return raw text, which the caller normalizes.
        """
        ...

    def stream(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
    ) -> AsyncIterator[str]:
        """Stream reply text chunks."""
        ...

    async def list_available_models(self) -> list[str]: ...

    def supports_native_function_calling(self) -> bool: ...

    def supports_embeddings(self) -> bool: ...

    async def embed(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# litellm client
# ---------------------------------------------------------------------------


@dataclass
class LiteLLMClient:
    """Unified LLM client using litellm."""

    _config: ProviderConfig

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def _base_kwargs(self, model: str, messages: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model or self._config.model,
            "messages": messages,
        }
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens
        return kwargs

    async def generate(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        tools: Sequence[ToolDefinition] | None = None,
    ) -> str:
        kwargs = self._base_kwargs(model, _prompt_messages(prompt, system_prompt))
        if tools and self.supports_native_function_calling():
            kwargs["tools"] = [t.to_openai_spec() for t in tools]
        response = await _acompletion_with_retry(**kwargs)
        message = _first_message(response)
        return getattr(message, "content", None) or ""

    async def generate_with_functions(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        tools: Sequence[ToolDefinition],
        *,
        messages: Sequence[Message] | None = None,
    ) -> FunctionCallResponse | str:
        native = self.supports_native_function_calling()

        if native and messages:
            api_messages = [{"role": "system", "content": system_prompt}]
            api_messages.extend(m.to_openai_dict() for m in messages if m.role != "system")
        else:
            api_messages = _prompt_messages(prompt, system_prompt)

        kwargs = self._base_kwargs(model, api_messages)
        if native and tools:
            kwargs["tools"] = [t.to_openai_spec() for t in tools]
            kwargs["tool_choice"] = "auto"

        response = await _acompletion_with_retry(**kwargs)
        message = _first_message(response)
        content = getattr(message, "content", None) or ""

        if not native:
            return content

        tool_calls = getattr(message, "tool_calls", None)
        if tool_calls:
            if len(tool_calls) > 1:
                logger.info(
                    "Model returned %d tool calls; running the first only",
                    len(tool_calls),
                )
            tc = tool_calls[0]
            result = normalize(
                {
                    "id": tc.id or "",
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
            )
            if isinstance(result, CallResponse):
                return CallResponse(function_call=result.function_call, text=content)
            logger.warning("Discarding malformed native tool call: %s", tc.function.name)
        return TextResponse(text=content)

    async def stream(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
    ) -> AsyncIterator[str]:
        """Stream from litellm, yielding text deltas."""
        kwargs = self._base_kwargs(model, _prompt_messages(prompt, system_prompt))
        kwargs["stream"] = True
        response = await _acompletion_with_retry(**kwargs)

        async for chunk in response:  # type: ignore[union-attr]
            text = _chunk_text(chunk)
            if text:
                yield text

    async def list_available_models(self) -> list[str]:
        """Models litellm can reach with the API keys present in the env."""
        import litellm

        return list(litellm.get_valid_models())

    def supports_native_function_calling(self) -> bool:
        if self._config.native_function_calling is not None:
            return self._config.native_function_calling
        import litellm

        return bool(litellm.supports_function_calling(model=self._config.model))

    def supports_embeddings(self) -> bool:
        return self._config.embedding_model is not None

    async def embed(self, text: str) -> list[float]:
        if self._config.embedding_model is None:
            raise LLMError(f"No embedding model configured for {self._config.model}")
        import litellm

        response = await litellm.aembedding(
            model=self._config.embedding_model, input=[text]
        )
        data = response.data
        if not data:
            raise LLMError("Embedding response contained no vectors")
        item = data[0]
        vector = item["embedding"] if isinstance(item, dict) else item.embedding
        return list(vector)


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _acompletion_with_retry(**kwargs: Any) -> CustomStreamWrapper | ModelResponse:
    """Call litellm.acompletion with retry on transient errors."""
    import litellm

    return await litellm.acompletion(**kwargs)


def _prompt_messages(prompt: str, system_prompt: str) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


def _first_message(response: Any) -> Any:
    choices = getattr(response, "choices", None)
    if not choices:
        raise LLMError("LLM response contained no choices")
    return choices[0].message


def _chunk_text(chunk: ModelResponseStream) -> str:
    """Text delta of a litellm stream chunk (OpenAI ChatCompletionChunk shape)."""
    choices = getattr(chunk, "choices", None)
    if not choices:
        return ""
    delta = choices[0].delta
    return getattr(delta, "content", None) or ""


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_client(
    model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    native_function_calling: bool | None = None,
    embedding_model: str | None = None,
) -> LLMClient:
    """Create a litellm-backed client.

    Args:
        model: Model name with provider prefix (e.g. "anthropic/claude-sonnet-4-5-20250929",
               "openai/gpt-4o", "ollama/llama3").
        temperature: Sampling temperature.
        max_tokens: Max output tokens.
        native_function_calling: Force native tool calling on or off.
            ``None`` asks litellm whether the model supports it.
        embedding_model: Model used by ``embed``; embeddings are disabled when unset.
    """
    config = ProviderConfig(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        native_function_calling=native_function_calling,
        embedding_model=embedding_model,
    )
    return LiteLLMClient(_config=config)
