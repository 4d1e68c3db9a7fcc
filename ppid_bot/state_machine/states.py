"""
Conversation phase transitions.
"""
from ppid_bot.db.models import ConversationPhase

PHASE_TRANSITIONS = {
    ConversationPhase.NORMAL: [
        ConversationPhase.HANDED_OFF,
        ConversationPhase.AWAITING_SURVEY,
    ],
    ConversationPhase.AWAITING_SURVEY: [
        ConversationPhase.AWAITING_SURVEY,  # survey prompt repeated on gratitude
        ConversationPhase.AWAITING_FEEDBACK,  # rating < 3
        ConversationPhase.NORMAL,  # rating >= 3, or sweep rollback
        ConversationPhase.HANDED_OFF,
    ],
    ConversationPhase.AWAITING_FEEDBACK: [
        ConversationPhase.NORMAL,  # any text closes the conversation
        ConversationPhase.AWAITING_SURVEY,
        ConversationPhase.HANDED_OFF,
    ],
    ConversationPhase.HANDED_OFF: [
        ConversationPhase.NORMAL,  # operator release or manual reply
    ],
}


def is_valid_transition(current: ConversationPhase, target: ConversationPhase) -> bool:
    return target in PHASE_TRANSITIONS.get(current, [])
