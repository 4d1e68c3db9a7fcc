"""
Persisted Models
"""
from ppid_bot.db.models.conversation_session import (
    BufferedMessage,
    ConversationPhase,
    ConversationSession,
)
from ppid_bot.db.models.evaluation import Evaluation, EvaluationStatus
from ppid_bot.db.models.knowledge_gap import KnowledgeGap, AUTO_GENERATED_CHAT_ID
from ppid_bot.db.models.recap import Recap, RecapStatus
from ppid_bot.db.models.runtime_settings import RuntimeSettings
from ppid_bot.db.models.survey_result import SurveyResult

__all__ = [
    "AUTO_GENERATED_CHAT_ID",
    "BufferedMessage",
    "ConversationPhase",
    "ConversationSession",
    "Evaluation",
    "EvaluationStatus",
    "KnowledgeGap",
    "Recap",
    "RecapStatus",
    "RuntimeSettings",
    "SurveyResult",
]
