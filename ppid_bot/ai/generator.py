"""
Response Generator - persona prompt + one backend call per request.

End users never see raw errors: any failure (backend error, timeout, open
circuit, empty text) becomes ``APOLOGY_MESSAGE`` and the cause is logged.
"""
import asyncio
import json
import re
from typing import Callable, Optional

from ppid_bot.ai.base_provider import BaseLLMProvider
from ppid_bot.ai.prompts import (
    QUESTIONS_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    build_questions_prompt,
    build_system_prompt,
    format_transcript,
)
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import AppException
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator

logger = get_logger(__name__)

APOLOGY_MESSAGE = "Maaf, sistem sedang mengalami gangguan koneksi ke server AI. Silakan coba lagi nanti."

SUMMARY_FALLBACK = {"summary": "failed", "category": "uncategorized"}

MAX_GENERATED_QUESTIONS = 5

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class ResponseGenerator:
    """
    Args:
        provider_getter: returns the current backend; re-read on every call so
            a settings update takes effect without rebuilding the generator.
    """

    def __init__(
        self,
        provider_getter: Callable[[], BaseLLMProvider],
        timeout_seconds: Optional[float] = None,
    ):
        self._provider_getter = provider_getter
        self.timeout_seconds = timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS

    async def _complete(self, system_prompt: str, user_prompt: str, **kwargs) -> str:
        provider = self._provider_getter()
        return await asyncio.wait_for(
            provider.complete(system_prompt, user_prompt, **kwargs),
            timeout=self.timeout_seconds,
        )

    async def generate(
        self,
        query: str,
        context: str,
        chat_id: str = "",
        humor_level: int = 0,
        temperature: float = 0.7,
    ) -> str:
        """Never returns an empty string."""
        system_prompt = build_system_prompt(context, humor_level)
        try:
            text = await self._complete(system_prompt, query, temperature=temperature)
        except asyncio.TimeoutError:
            logger.error(
                "Generation timed out",
                extra_data={"chat_id": ChatIdValidator.mask(chat_id), "timeout_seconds": self.timeout_seconds},
            )
            return APOLOGY_MESSAGE
        except AppException as exc:
            logger.error(
                "Generation failed",
                extra_data={"chat_id": ChatIdValidator.mask(chat_id), "error": exc.message},
            )
            return APOLOGY_MESSAGE

        text = (text or "").strip()
        if not text:
            logger.warning("Generation returned empty text", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})
            return APOLOGY_MESSAGE
        return text

    async def summarize(self, messages: list[dict]) -> dict:
        """``{summary, category}``; any failure returns ``SUMMARY_FALLBACK``."""
        transcript = format_transcript(messages)
        try:
            raw = await self._complete(SUMMARY_SYSTEM_PROMPT, transcript, temperature=0.3, json_mode=True)
        except (asyncio.TimeoutError, AppException) as exc:
            logger.warning("Summary generation failed", extra_data={"error": str(exc)})
            return dict(SUMMARY_FALLBACK)

        match = _JSON_OBJECT_RE.search(raw or "")
        try:
            data = json.loads(match.group(0)) if match else None
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict) or not data.get("summary"):
            logger.warning("Summary response was not valid JSON", extra_data={"preview": (raw or "")[:100]})
            return dict(SUMMARY_FALLBACK)

        return {
            "summary": str(data["summary"]),
            "category": str(data.get("category") or SUMMARY_FALLBACK["category"]),
        }

    async def generate_questions(self, context: str) -> list[str]:
        """Up to five question lines; an empty list on failure."""
        try:
            raw = await self._complete(QUESTIONS_SYSTEM_PROMPT, build_questions_prompt(context), temperature=0.7)
        except (asyncio.TimeoutError, AppException) as exc:
            logger.warning("Question generation failed", extra_data={"error": str(exc)})
            return []

        questions = []
        for line in (raw or "").splitlines():
            line = line.strip().lstrip("-*0123456789. ").strip()
            if len(line) > 10 and "?" in line:
                questions.append(line)
        return questions[:MAX_GENERATED_QUESTIONS]
