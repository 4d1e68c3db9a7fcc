"""
Survey Result Model - append-only satisfaction ratings
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class SurveyResult(BaseModel):
    """One 1-5 rating. Never mutated after creation."""

    chat_id: str
    # Not range-checked: statistics clamp legacy or injected values instead
    rating: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    customer_name: Optional[str] = None
