"""
ChatCal Assistant: reasoning-service client.

`complete()` is the only entry point. Intent resolution and reply
synthesis both call it, and both treat any exception it raises as
"reasoning unavailable" and fall back to local logic.

The provider is chosen from LLM_PROVIDER on first use:
gemini (default), anthropic, openai, cohere.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# Upper bound for one round trip; a slow provider must not stall the chat turn.
REQUEST_TIMEOUT_SECONDS = 30.0

_CallFn = Callable[[str, str, str, str, int], Awaitable[str]]


class LLMError(Exception):
    """The provider answered, but with nothing usable."""


# ---------------------------------------------------------------------------
# Provider calls
# ---------------------------------------------------------------------------


async def _call_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(model_name=model, system_instruction=system)
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _call_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    texts = [block.text for block in response.content if getattr(block, "type", "text") == "text"]
    return "".join(texts)


async def _call_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _call_cohere(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------

# name -> (call, default model)
PROVIDERS: dict[str, tuple[_CallFn, str]] = {
    "gemini":    (_call_gemini,    "gemini-2.0-flash"),
    "anthropic": (_call_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_call_openai,    "gpt-4o-mini"),
    "cohere":    (_call_cohere,    "command-a-03-2025"),
}


@dataclass(frozen=True)
class ProviderChoice:
    name: str
    call: _CallFn
    model: str
    api_key: str


def select_provider(name: str, model: str = "", api_key: str = "") -> ProviderChoice:
    """Resolve a provider name to its call function and model."""
    key = name.lower().strip()
    if key not in PROVIDERS:
        raise ValueError(f"Unknown LLM_PROVIDER={name!r}. Supported: {', '.join(PROVIDERS)}")
    call, default_model = PROVIDERS[key]
    return ProviderChoice(name=key, call=call, model=model or default_model, api_key=api_key)


_choice: ProviderChoice | None = None


def _current_choice() -> ProviderChoice:
    global _choice
    if _choice is None:
        from src.config import settings

        _choice = select_provider(settings.LLM_PROVIDER, settings.LLM_MODEL, settings.LLM_API_KEY)
        logger.info("LLM provider: %s, model: %s", _choice.name, _choice.model)
    return _choice


def reset_provider() -> None:
    """Forget the cached provider so the next call re-reads settings."""
    global _choice
    _choice = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(system: str, user_message: str, max_tokens: int = 256) -> str:
    """Send one prompt to the configured provider and return its text.

    Raises asyncio.TimeoutError, LLMError or the provider's own exception.
    """
    choice = _current_choice()
    text = await asyncio.wait_for(
        choice.call(choice.api_key, choice.model, system, user_message, max_tokens),
        timeout=REQUEST_TIMEOUT_SECONDS,
    )
    if not isinstance(text, str) or not text.strip():
        raise LLMError(f"{choice.name} returned an empty completion")
    return text
