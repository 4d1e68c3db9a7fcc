"""
Ollama Provider - self-hosted chat model.
"""
from __future__ import annotations

import httpx
import ollama

from ppid_bot.core.circuit_breaker import CircuitBreaker
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import GenerationError
from ppid_bot.core.logging import get_logger
from ppid_bot.ai.base_provider import BaseLLMProvider

logger = get_logger(__name__)


class OllamaProvider(BaseLLMProvider):
    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        base_url: str | None = None,
        model: str | None = None,
    ) -> None:
        self._client = ollama.AsyncClient(host=base_url or settings.OLLAMA_BASE_URL)
        self._circuit_breaker = circuit_breaker
        self._model = model or settings.OLLAMA_MODEL

    @property
    def provider_name(self) -> str:
        return "ollama"

    async def _chat(self, messages: list[dict], temperature: float, json_mode: bool) -> str:
        try:
            response = await self._client.chat(
                model=self._model,
                messages=messages,
                format="json" if json_mode else "",
                options={"temperature": temperature},
            )
        except ollama.ResponseError as exc:
            raise GenerationError(
                self.provider_name,
                exc.error,
                details={"status_code": exc.status_code},
            ) from exc
        except (httpx.HTTPError, ConnectionError) as exc:
            raise GenerationError(self.provider_name, f"unreachable: {exc}") from exc

        return response["message"]["content"] or ""

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
            lambda: self._chat(messages, temperature, json_mode)
        )
