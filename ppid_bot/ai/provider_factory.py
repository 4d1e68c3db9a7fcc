"""
Provider Factory - choose the generation backend from settings.

Resolution order:
1. explicit ``llm_provider`` in runtime settings, else ``LLM_PROVIDER``
2. Groq when an API key is available (runtime settings or environment)
3. Ollama

A backend that lacks what it needs (Groq without a key) is never chosen;
the factory falls back to Ollama and logs why.
"""
from __future__ import annotations

from typing import Optional

from ppid_bot.ai.base_provider import BaseLLMProvider
from ppid_bot.core.circuit_breaker import get_llm_circuit_breaker
from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger
from ppid_bot.db.models import RuntimeSettings

logger = get_logger(__name__)

_provider: BaseLLMProvider | None = None


def _create_provider(provider_type: str, api_key: Optional[str]) -> BaseLLMProvider:
    if provider_type == "groq":
        from ppid_bot.ai.groq_provider import GroqProvider

        return GroqProvider(api_key=api_key or "", circuit_breaker=get_llm_circuit_breaker("groq"))

    if provider_type == "ollama":
        from ppid_bot.ai.ollama_provider import OllamaProvider

        return OllamaProvider(circuit_breaker=get_llm_circuit_breaker("ollama"))

    raise ValueError(f"Unknown LLM provider: {provider_type}")


def select_provider_type(runtime_settings: RuntimeSettings) -> tuple[str, Optional[str]]:
    """Return (provider_type, api_key) after the capability check."""
    api_key = runtime_settings.groq_api_key or settings.GROQ_API_KEY
    requested = (runtime_settings.llm_provider or settings.LLM_PROVIDER or "").lower()

    if requested == "ollama":
        return "ollama", None
    if requested == "groq" or not requested:
        if api_key:
            return "groq", api_key
        if requested == "groq":
            logger.warning("Groq requested but no API key is configured, using Ollama")
    return "ollama", None


def configure_llm_provider(runtime_settings: RuntimeSettings) -> BaseLLMProvider:
    """Resolve and install the provider; called at startup and on settings change."""
    global _provider
    provider_type, api_key = select_provider_type(runtime_settings)
    _provider = _create_provider(provider_type, api_key)
    logger.info("LLM provider configured", extra_data={"provider": _provider.provider_name})
    return _provider


def get_llm_provider() -> BaseLLMProvider:
    global _provider
    if _provider is None:
        return configure_llm_provider(RuntimeSettings())
    return _provider


def reset_providers() -> None:
    """Testing only."""
    global _provider
    _provider = None
