"""
Survey Service - satisfaction ratings and their statistics.
"""
from typing import Optional

from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator
from ppid_bot.db.models import SurveyResult
from ppid_bot.db.repositories import SurveyResultRepository

logger = get_logger(__name__)

LOW_RATING_THRESHOLD = 3
RECENT_RESULTS = 10


def clamp_rating(rating: int) -> int:
    return max(1, min(5, int(rating)))


class SurveyService:
    def __init__(self, repository: SurveyResultRepository):
        self.repository = repository

    async def record_survey(self, chat_id: str, rating: int, customer_name: Optional[str] = None) -> bool:
        """
        Append one rating.

        Returns:
            True when the rating is low enough to ask for feedback.
        """
        await self.repository.append(
            SurveyResult(chat_id=chat_id, rating=rating, customer_name=customer_name)
        )
        needs_feedback = rating < LOW_RATING_THRESHOLD
        logger.info(
            "Survey recorded",
            extra_data={
                "chat_id": ChatIdValidator.mask(chat_id),
                "rating": rating,
                "needs_feedback": needs_feedback,
            },
        )
        return needs_feedback

    async def get_survey_stats(self) -> dict:
        """
        ``{total, average, distribution, recent}``.

        ``distribution[i]`` counts rating ``i + 1``; out-of-range ratings are
        clamped into [1, 5] first so the buckets always sum to ``total``.
        """
        results = await self.repository.list_all()
        total = len(results)
        distribution = [0] * 5
        for result in results:
            distribution[clamp_rating(result.rating) - 1] += 1

        average = round(sum(r.rating for r in results) / total, 1) if total else 0.0
        recent = [r.model_dump(mode="json") for r in reversed(results[-RECENT_RESULTS:])]
        return {
            "total": total,
            "average": average,
            "distribution": distribution,
            "recent": recent,
        }
