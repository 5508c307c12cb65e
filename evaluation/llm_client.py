"""
Shared OpenAI-compatible chat helper for the evaluation pipeline.

Used by:
  - ai_generator.py      (Step 5, question generation)
  - routers/ai_status.py (provider status)

Provider order:
  1. OpenRouter  (OPENROUTER_API_KEY, model OPENROUTER_MODEL, default openai/gpt-4o-mini)
  2. OpenAI      (OPENAI_API_KEY, model GPT_MODEL, default gpt-4o-mini)

A missing or placeholder key ("your_..._here") means the provider is not configured.
"""

import logging
import os
from typing import Dict, Optional

from openai import AsyncOpenAI

from evaluation.errors import ConfigurationError

log = logging.getLogger(__name__)

# ── Provider config ────────────────────────────────────────────────────────────
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
OPENAI_BASE_URL = "https://api.openai.com/v1"

DEFAULT_SYSTEM = "You are an expert teacher. Output only valid JSON."

# Lazy singleton
_client: AsyncOpenAI | None = None
_client_provider: str | None = None


def _is_real_key(key: Optional[str]) -> bool:
    if not key or not key.strip():
        return False
    k = key.strip().lower()
    return not (k.startswith("your_") and k.endswith("_here"))


def resolve_provider() -> Optional[str]:
    """'openrouter', 'openai', or None when no usable key is configured."""
    if _is_real_key(os.getenv("OPENROUTER_API_KEY")):
        return "openrouter"
    if _is_real_key(os.getenv("OPENAI_API_KEY")):
        return "openai"
    return None


def is_configured() -> bool:
    return resolve_provider() is not None


def current_model(provider: Optional[str] = None) -> Optional[str]:
    provider = provider or resolve_provider()
    if provider == "openrouter":
        return os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini")
    if provider == "openai":
        return os.getenv("GPT_MODEL", "gpt-4o-mini")
    return None


def vision_model(provider: Optional[str] = None) -> Optional[str]:
    provider = provider or resolve_provider()
    if provider == "openrouter":
        return os.getenv("VISION_MODEL", "openai/gpt-4o")
    if provider == "openai":
        return os.getenv("VISION_MODEL", "gpt-4o")
    return None


def provider_settings(provider: Optional[str] = None) -> Dict[str, object]:
    """
    api_key, base_url and extra headers for a provider.

    Raises:
        ConfigurationError: no usable key for the provider
    """
    provider = provider or resolve_provider()
    if provider == "openrouter":
        return {
            "api_key": os.getenv("OPENROUTER_API_KEY", "").strip(),
            "base_url": OPENROUTER_BASE_URL,
            "headers": {
                "HTTP-Referer": os.getenv("OPENROUTER_SITE_URL", "http://localhost:3000"),
                "X-Title": os.getenv("OPENROUTER_APP_NAME", "Smart Student"),
            },
        }
    if provider == "openai":
        return {
            "api_key": os.getenv("OPENAI_API_KEY", "").strip(),
            "base_url": OPENAI_BASE_URL,
            "headers": {},
        }
    raise ConfigurationError(
        "No AI provider configured. Set OPENROUTER_API_KEY or OPENAI_API_KEY in your .env file."
    )


def _get_client() -> AsyncOpenAI:
    global _client, _client_provider
    provider = resolve_provider()
    if _client is None or _client_provider != provider:
        settings = provider_settings(provider)
        _client = AsyncOpenAI(
            api_key=settings["api_key"],
            base_url=settings["base_url"],
            default_headers=settings["headers"] or None,
        )
        _client_provider = provider
        log.info(f"[LLM] Client ready: provider={provider} model={current_model(provider)}")
    return _client


def reset_client() -> None:
    """Drop the cached client (tests, key rotation)."""
    global _client, _client_provider
    _client = None
    _client_provider = None


async def complete(
    prompt: str,
    system: str = DEFAULT_SYSTEM,
    temperature: float = 0.7,
    max_tokens: int = 4000,
    json_mode: bool = False,
) -> str:
    """
    Call Chat Completions and return the assistant message text.

    Args:
        prompt:      User-turn message
        system:      System prompt
        temperature: Sampling temperature
        max_tokens:  Max response tokens
        json_mode:   Ask the provider for a JSON object response

    Returns:
        Raw string content of the model response (may still be fenced)

    Raises:
        ConfigurationError: no provider configured
    """
    client = _get_client()
    kwargs = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat.completions.create(
        model=current_model(),
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
        **kwargs,
    )
    return response.choices[0].message.content or ""


def provider_status() -> Dict[str, object]:
    provider = resolve_provider()
    if provider is None:
        return {
            "isActive": False,
            "provider": None,
            "model": None,
            "reason": "No AI provider configured (OPENROUTER_API_KEY / OPENAI_API_KEY)",
        }
    return {
        "isActive": True,
        "provider": provider,
        "model": current_model(provider),
        "reason": None,
    }
