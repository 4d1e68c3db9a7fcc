"""
Base interface for text-generation backends.

Business logic depends only on this interface; the concrete backend is
chosen once by ``provider_factory`` and re-chosen when settings change.
"""
from __future__ import annotations

from abc import ABC, abstractmethod


class BaseLLMProvider(ABC):
    """
    A single chat-completion call per invocation.

    Implementations own retries and their circuit breaker. A failure must
    raise ``GenerationError`` (or a subclass of ``ExternalServiceException``);
    an empty string is a valid, distinct outcome.
    """

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        """
        Args:
            system_prompt: persona and context instructions.
            user_prompt: the user's message or the task text.
            temperature: sampling temperature.
            json_mode: ask the backend for a JSON object response.

        Raises:
            GenerationError: backend failure.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used in logs and the operator status view."""
