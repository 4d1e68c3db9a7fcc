"""
Domain Services
"""
from ppid_bot.domain.services.admin_notification_service import AdminNotificationService
from ppid_bot.domain.services.knowledge_gap_service import KnowledgeGapService
from ppid_bot.domain.services.rate_limiter import RateGovernor
from ppid_bot.domain.services.recap_service import RecapService
from ppid_bot.domain.services.survey_service import SurveyService

__all__ = [
    "AdminNotificationService",
    "KnowledgeGapService",
    "RateGovernor",
    "RecapService",
    "SurveyService",
]
