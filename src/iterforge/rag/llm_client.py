"""LiteLLM client wrapper with retry, backoff, and API key validation.

All LLM + embedding calls in the pipeline route through this module.
LiteLLM's built-in retry is used (num_retries=3, exponential backoff).
Every call is async; each one is an independent suspension point.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

CHARS_PER_TOKEN = 4


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


async def acomplete(
    model: str,
    messages: list[dict],
    *,
    max_tokens: int = 4096,
    temperature: float = 0.0,
    num_retries: int = 3,
    timeout: float | None = None,
    json_mode: bool = False,
) -> str:
    """Call litellm.acompletion() with retry/backoff. Returns the content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    kwargs: dict = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        **kwargs,
    )
    return response.choices[0].message.content or ""


async def astream(
    model: str,
    messages: list[dict],
    *,
    max_tokens: int = 4096,
    temperature: float = 0.0,
    num_retries: int = 3,
    timeout: float | None = None,
    json_mode: bool = False,
) -> AsyncIterator[str]:
    """Stream content deltas from litellm.acompletion(stream=True)."""
    kwargs: dict = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        stream=True,
        **kwargs,
    )
    async for chunk in response:
        delta = chunk.choices[0].delta.content if chunk.choices else None
        if delta:
            yield delta


async def acall_tool(
    model: str,
    messages: list[dict],
    tool: dict,
    *,
    temperature: float = 0.3,
    num_retries: int = 3,
    timeout: float | None = None,
) -> str:
    """Force a single function/tool call and return its raw JSON arguments.

    Raises:
        ValueError: If the model answered without calling the tool.
    """
    kwargs: dict = {}
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        tools=[{"type": "function", "function": tool}],
        tool_choice={"type": "function", "function": {"name": tool["name"]}},
        temperature=temperature,
        num_retries=num_retries,
        **kwargs,
    )
    tool_calls = response.choices[0].message.tool_calls or []
    if not tool_calls:
        raise ValueError("No tool call in model response")
    return tool_calls[0].function.arguments


async def aembed(model: str, text: str, num_retries: int = 3) -> list[float]:
    """Call litellm.aembedding() with retry/backoff. Returns the embedding vector."""
    response = await litellm.aembedding(
        model=model,
        input=[text],
        num_retries=num_retries,
    )
    return response.data[0]["embedding"]


def estimate_tokens(chars: int) -> int:
    """Character-based approximation: 4 chars ≈ 1 token."""
    return chars // CHARS_PER_TOKEN


def get_context_window(model: str) -> int:
    """Return the context window size for *model* in tokens.

    Uses litellm.get_model_info() with a fallback table for common models.
    Returns 8192 if the model is unknown.
    """
    try:
        info = litellm.get_model_info(model)
        return info.get("max_input_tokens") or info.get("max_tokens") or 8192
    except Exception:
        pass

    _FALLBACK: dict[str, int] = {
        "openai/gpt-4o": 128_000,
        "openai/gpt-4o-mini": 128_000,
        "openai/gpt-4.1": 1_047_576,
        "anthropic/claude-3-5-sonnet-20241022": 200_000,
        "anthropic/claude-3-5-haiku-20241022": 200_000,
    }
    return _FALLBACK.get(model, 8_192)
