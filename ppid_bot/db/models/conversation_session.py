"""
Conversation Session Model - per-chat escalation state
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ConversationPhase(str, Enum):
    """A session is in exactly one phase, so survey, feedback and handover are mutually exclusive."""

    NORMAL = "normal"
    AWAITING_SURVEY = "awaiting_survey"
    AWAITING_FEEDBACK = "awaiting_feedback"
    HANDED_OFF = "handed_off"


class BufferedMessage(BaseModel):
    role: str  # "user" | "assistant"
    text: str
    timestamp: float


class ConversationSession(BaseModel):
    """Owned by the session store; other components receive copies."""

    chat_id: str
    last_activity_at: float
    customer_name: Optional[str] = None
    # A name the citizen typed takes precedence over the push name
    name_introduced: bool = False
    message_count: int = 0
    phase: ConversationPhase = ConversationPhase.NORMAL
    # Set when a survey goes out; stays set after closing until the next inbound message
    survey_asked: bool = False
    last_rating: Optional[int] = None
    last_question: Optional[str] = None
    buffer: list[BufferedMessage] = Field(default_factory=list)
    needs_follow_up: bool = False
    # Survives touch(); cleared when the conversation closes
    follow_up_asked: bool = False

    @property
    def survey_pending(self) -> bool:
        return self.phase == ConversationPhase.AWAITING_SURVEY

    @property
    def feedback_pending(self) -> bool:
        return self.phase == ConversationPhase.AWAITING_FEEDBACK

    @property
    def handed_off(self) -> bool:
        return self.phase == ConversationPhase.HANDED_OFF
