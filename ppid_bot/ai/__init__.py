"""
Text-generation backends and the response generator.
"""
from ppid_bot.ai.base_provider import BaseLLMProvider
from ppid_bot.ai.provider_factory import configure_llm_provider, get_llm_provider

__all__ = ["BaseLLMProvider", "configure_llm_provider", "get_llm_provider"]
