"""
Evaluation Model - free-text feedback after a low rating
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class EvaluationStatus(str, Enum):
    PENDING = "pending"
    TRAINED = "trained"
    IGNORED = "ignored"


class Evaluation(BaseModel):
    """Created when a rating below 3 is followed by feedback; status changes only by operator action."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    chat_id: str
    customer_name: Optional[str] = None
    rating: Optional[int] = None
    feedback: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: EvaluationStatus = EvaluationStatus.PENDING
