"""
Groq Provider - hosted chat completions (llama-3.3-70b-versatile).
"""
from __future__ import annotations

from groq import AsyncGroq, APIError

from ppid_bot.core.circuit_breaker import CircuitBreaker
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import GenerationError
from ppid_bot.core.logging import get_logger
from ppid_bot.ai.base_provider import BaseLLMProvider

logger = get_logger(__name__)


class GroqProvider(BaseLLMProvider):
    def __init__(
        self,
        api_key: str,
        circuit_breaker: CircuitBreaker,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Groq provider needs an API key")
        self._client = AsyncGroq(api_key=api_key, max_retries=1)
        self._circuit_breaker = circuit_breaker
        self._model = model or settings.GROQ_MODEL
        self._max_tokens = max_tokens or settings.GROQ_MAX_TOKENS

    @property
    def provider_name(self) -> str:
        return "groq"

    async def _create(self, messages: list[dict], temperature: float, json_mode: bool) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=self._max_tokens,
                **kwargs,
            )
        except APIError as exc:
            raise GenerationError(
                self.provider_name,
                exc.__class__.__name__,
                details={"status_code": getattr(exc, "status_code", None)},
            ) from exc

        if not response.choices:
            raise GenerationError(self.provider_name, "no choices in response")
        return response.choices[0].message.content or ""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self._circuit_breaker.execute(
            lambda: self._create(messages, temperature, json_mode)
        )
