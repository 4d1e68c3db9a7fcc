"""
Recap Service - summarize a closed conversation into a Recap record.
"""
from typing import Optional, Protocol

from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator
from ppid_bot.db.models import BufferedMessage, Recap, RecapStatus
from ppid_bot.db.repositories import RecapRepository

logger = get_logger(__name__)

MIN_MESSAGES_FOR_RECAP = 2


class Summarizer(Protocol):
    async def summarize(self, messages: list[dict]) -> dict: ...


class RecapService:
    def __init__(self, repository: RecapRepository, summarizer: Summarizer):
        self.repository = repository
        self.summarizer = summarizer

    async def generate_recap(
        self,
        chat_id: str,
        buffer: list[BufferedMessage],
        final_rating: Optional[int],
        customer_name: Optional[str] = None,
        evaluation: Optional[str] = None,
    ) -> Optional[Recap]:
        """No-op (returns None) when the buffer holds fewer than two messages."""
        if len(buffer) < MIN_MESSAGES_FOR_RECAP:
            logger.debug(
                "Buffer too short for recap",
                extra_data={"chat_id": ChatIdValidator.mask(chat_id), "messages": len(buffer)},
            )
            return None

        result = await self.summarizer.summarize([m.model_dump() for m in buffer])
        recap = Recap(
            chat_id=chat_id,
            customer_name=customer_name,
            summary=result["summary"],
            category=result["category"],
            rating=final_rating,
            status=RecapStatus.from_rating(final_rating),
            evaluation=evaluation,
        )
        await self.repository.add(recap)
        logger.info(
            "Recap generated",
            extra_data={
                "chat_id": ChatIdValidator.mask(chat_id),
                "category": recap.category,
                "status": recap.status.value,
            },
        )
        return recap

    async def list_recaps(self, limit: Optional[int] = None) -> list[Recap]:
        recaps = await self.repository.list_all()
        return recaps[:limit] if limit else recaps
