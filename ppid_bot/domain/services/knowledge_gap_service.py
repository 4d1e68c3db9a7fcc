"""
Knowledge Gap Service - questions the index could not answer.
"""
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator
from ppid_bot.db.models import AUTO_GENERATED_CHAT_ID, KnowledgeGap
from ppid_bot.db.repositories import KnowledgeGapRepository

logger = get_logger(__name__)

AUTO_GENERATED_CONTACT = "AI Analysis"


class KnowledgeGapService:
    def __init__(self, repository: KnowledgeGapRepository):
        self.repository = repository

    async def log_gap(self, question: str, chat_id: str, contact: str) -> bool:
        """Idempotent per question text. Returns True when a new gap was stored."""
        added = await self.repository.add_if_absent(
            KnowledgeGap(question=question, chat_id=chat_id, contact=contact)
        )
        if added:
            logger.info(
                "Knowledge gap logged",
                extra_data={"chat_id": ChatIdValidator.mask(chat_id), "question": question[:50]},
            )
        return added

    async def add_generated(self, questions: list[str]) -> int:
        added = 0
        for question in questions:
            if await self.log_gap(question, AUTO_GENERATED_CHAT_ID, AUTO_GENERATED_CONTACT):
                added += 1
        return added

    async def list_gaps(self) -> list[KnowledgeGap]:
        return await self.repository.list_all()

    async def dismiss(self, question: str) -> bool:
        return await self.repository.remove(question)
