"""
Knowledge Gap Model - questions the index could not answer
"""
from datetime import datetime, timezone

from pydantic import BaseModel, Field

AUTO_GENERATED_CHAT_ID = "auto-generated"


class KnowledgeGap(BaseModel):
    """Deduplicated by exact question text."""

    question: str
    chat_id: str
    contact: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
