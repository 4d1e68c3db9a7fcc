"""
Recap Model - summary record closing one support interaction
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RecapStatus(str, Enum):
    HANDLED = "successfully handled"
    ALERT = "alert, awaiting CS response"
    IN_PROGRESS = "being handled"

    @classmethod
    def from_rating(cls, rating: Optional[int]) -> "RecapStatus":
        if rating is None:
            return cls.IN_PROGRESS
        if rating >= 4:
            return cls.HANDLED
        if rating <= 2:
            return cls.ALERT
        return cls.IN_PROGRESS


class Recap(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    chat_id: str
    customer_name: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    summary: str
    category: str
    rating: Optional[int] = None
    status: RecapStatus
    # Feedback text from the low-score branch, if any
    evaluation: Optional[str] = None
