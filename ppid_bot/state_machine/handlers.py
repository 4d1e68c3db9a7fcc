"""
Message Handler - the escalation and survey state machine.

Processing order for one inbound message:
 1. ignore groups, broadcasts and channels
 2. ignore empty text
 3. welcome message for new or expired sessions
 4. touch session, buffer the message, notify the operator
 5. handed-off chats get no automated reply
 6. handoff request
 7. survey rating
 8. feedback after a low rating
 9. gratitude, or a closing phrase after the follow-up question
10. per-chat cooldown
11. retrieve, generate, pace, send

Session state always changes before the corresponding outbound send.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ppid_bot.ai.generator import ResponseGenerator
from ppid_bot.ai.prompts import FOLLOW_UP_QUESTION
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import AppException, WhatsAppError
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator, TextSanitizer, clean_contact_name
from ppid_bot.db.models import ConversationPhase, ConversationSession, Evaluation
from ppid_bot.db.repositories import EvaluationRepository
from ppid_bot.domain.services.admin_notification_service import AdminNotificationService
from ppid_bot.domain.services.bot_runtime import BotRuntime
from ppid_bot.domain.services.knowledge_gap_service import KnowledgeGapService
from ppid_bot.domain.services.notification_bus import (
    ErrorNotification,
    HandoverRequestNotification,
    MessageInNotification,
    MessageOutNotification,
    NotificationBus,
    SurveyUpdateNotification,
)
from ppid_bot.domain.services.rate_limiter import RateGovernor
from ppid_bot.domain.services.recap_service import RecapService
from ppid_bot.domain.services.survey_service import SurveyService
from ppid_bot.domain.services.whatsapp import BaseWhatsAppProvider
from ppid_bot.rag.retriever import Retriever
from ppid_bot.state_machine import messages
from ppid_bot.state_machine.intents import IntentClassifier
from ppid_bot.state_machine.session_store import SessionStore

logger = get_logger(__name__)


@dataclass
class InboundMessage:
    chat_id: str
    text: str
    push_name: Optional[str] = None
    message_id: Optional[str] = None


class MessageHandler:
    """Handles one inbound message at a time per chat (see ``ChatDispatcher``)."""

    def __init__(
        self,
        *,
        sessions: SessionStore,
        rate_governor: RateGovernor,
        retriever: Retriever,
        generator: ResponseGenerator,
        provider_getter: Callable[[], BaseWhatsAppProvider],
        notifications: NotificationBus,
        surveys: SurveyService,
        recaps: RecapService,
        knowledge_gaps: KnowledgeGapService,
        evaluations: EvaluationRepository,
        intents: IntentClassifier,
        runtime: BotRuntime,
        notify_admins: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.sessions = sessions
        self.rate_governor = rate_governor
        self.retriever = retriever
        self.generator = generator
        self._provider_getter = provider_getter
        self.notifications = notifications
        self.surveys = surveys
        self.recaps = recaps
        self.knowledge_gaps = knowledge_gaps
        self.evaluations = evaluations
        self.intents = intents
        self.runtime = runtime
        self.notify_admins = notify_admins
        self._sleep = sleep

    @property
    def provider(self) -> BaseWhatsAppProvider:
        return self._provider_getter()

    async def handle(self, message: InboundMessage) -> None:
        chat_id = message.chat_id
        if ChatIdValidator.is_ignored(chat_id):
            return

        text = TextSanitizer.sanitize(message.text)
        if not text:
            return

        if not self.runtime.running:
            logger.debug("Auto-reply stopped, ignoring message", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})
            return

        introduced = self.intents.extract_name(text)
        contact = introduced or clean_contact_name(message.push_name, default=messages.DEFAULT_CONTACT_NAME)

        if self.sessions.is_expired(chat_id):
            await self._send_best_effort(chat_id, messages.welcome_message(contact))
            await self._sleep(settings.WELCOME_PAUSE_SECONDS)

        session = await self.sessions.touch(chat_id, contact, introduced=introduced is not None)
        contact = session.customer_name or contact
        await self.sessions.append_to_buffer(chat_id, "user", text)
        self.notifications.publish(
            MessageInNotification(chat_id=chat_id, name=contact, text=TextSanitizer.preview(text))
        )

        if session.handed_off:
            # The operator's manual reply answers this message
            await self.sessions.update(chat_id, last_question=text)
            logger.info("Chat handed off, skipping auto-reply", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})
            return

        if self.intents.is_handoff_request(text):
            await self._hand_off(session, contact, text)
            return

        if session.survey_pending:
            rating = self.intents.parse_rating(text)
            if rating is not None:
                await self._record_rating(session, contact, rating)
                return

        if session.feedback_pending:
            await self._record_feedback(session, contact, text)
            return

        if self.intents.is_gratitude(text) or (session.follow_up_asked and self.intents.is_closing(text)):
            await self._ask_survey(session, contact)
            return

        if not self.rate_governor.try_acquire(chat_id):
            logger.debug(
                "Rate limited, dropping message",
                extra_data={
                    "chat_id": ChatIdValidator.mask(chat_id),
                    "retry_in_seconds": round(self.rate_governor.remaining(chat_id), 2),
                },
            )
            return

        try:
            await self._answer(session, contact, text)
        except AppException as exc:
            logger.error(
                "Failed to answer message",
                extra_data={"chat_id": ChatIdValidator.mask(chat_id), "error": exc.message},
            )
            self.notifications.publish(ErrorNotification(message=exc.message, chat_id=chat_id))
            await self._send_best_effort(chat_id, messages.TECHNICAL_ERROR)

    async def _hand_off(self, session: ConversationSession, contact: str, text: str) -> None:
        chat_id = session.chat_id
        logger.info("Handover request detected", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})

        self.notifications.publish(HandoverRequestNotification(chat_id=chat_id, name=contact, text=text))
        await self.sessions.set_phase(chat_id, ConversationPhase.HANDED_OFF)
        await self._send_best_effort(chat_id, messages.handover_message(contact))

        if self.notify_admins:
            await AdminNotificationService.notify_handover_request(chat_id, contact, text)

    async def _record_rating(self, session: ConversationSession, contact: str, rating: int) -> None:
        chat_id = session.chat_id
        needs_feedback = await self.surveys.record_survey(chat_id, rating, session.customer_name)

        if needs_feedback:
            await self.sessions.set_phase(
                chat_id,
                ConversationPhase.AWAITING_FEEDBACK,
                last_rating=rating,
            )
            await self._send_best_effort(chat_id, messages.LOW_RATING_FEEDBACK_PROMPT)
        else:
            closed = await self.sessions.set_phase(
                chat_id,
                ConversationPhase.NORMAL,
                last_rating=rating,
                follow_up_asked=False,
            )
            await self._send_best_effort(chat_id, messages.rating_thanks(rating))
            await self._close_with_recap(closed, rating)

        self.notifications.publish(SurveyUpdateNotification(chat_id=chat_id, name=contact, rating=rating))

    async def _record_feedback(self, session: ConversationSession, contact: str, text: str) -> None:
        chat_id = session.chat_id
        await self.evaluations.add(
            Evaluation(
                chat_id=chat_id,
                customer_name=session.customer_name,
                rating=session.last_rating,
                feedback=text,
            )
        )
        logger.info("Feedback recorded", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})

        closed = await self.sessions.set_phase(
            chat_id,
            ConversationPhase.NORMAL,
            follow_up_asked=False,
        )
        await self._send_best_effort(chat_id, messages.FEEDBACK_ACK)
        await self._close_with_recap(closed, session.last_rating, evaluation=text)

    async def _close_with_recap(
        self,
        session: ConversationSession,
        rating: Optional[int],
        evaluation: Optional[str] = None,
    ) -> None:
        recap = await self.recaps.generate_recap(
            session.chat_id,
            session.buffer,
            final_rating=rating,
            customer_name=session.customer_name,
            evaluation=evaluation,
        )
        if recap is not None:
            # The interaction is closed; the next one starts a fresh transcript
            await self.sessions.update(session.chat_id, buffer=[])

    async def _ask_survey(self, session: ConversationSession, contact: str) -> None:
        chat_id = session.chat_id
        logger.info("Conversation closing, sending survey", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})
        await self.sessions.set_phase(chat_id, ConversationPhase.AWAITING_SURVEY, survey_asked=True)
        await self._send_best_effort(chat_id, messages.survey_prompt(session.customer_name or contact))

    async def _answer(self, session: ConversationSession, contact: str, text: str) -> None:
        chat_id = session.chat_id

        context = await self.retriever.query(text)
        if not context:
            await self.knowledge_gaps.log_gap(text, chat_id, contact)
            self.notifications.publish(
                MessageInNotification(
                    chat_id=chat_id,
                    name=contact,
                    text=TextSanitizer.preview(text),
                    needs_review=True,
                )
            )
        logger.info("Context retrieved", extra_data={"chat_id": ChatIdValidator.mask(chat_id), "length": len(context)})

        runtime_settings = self.runtime.settings
        reply = await self.generator.generate(
            text,
            context,
            chat_id=chat_id,
            humor_level=runtime_settings.humor_level,
            temperature=runtime_settings.temperature,
        )

        updates: dict = {"last_question": text}
        if self.intents.needs_follow_up(reply):
            updates["needs_follow_up"] = True
            if not session.follow_up_asked:
                reply += FOLLOW_UP_QUESTION
                updates["follow_up_asked"] = True
        await self.sessions.update(chat_id, **updates)

        await self._sleep(self.rate_governor.human_delay())
        try:
            await self.provider.send_presence(chat_id, "composing")
        except WhatsAppError as exc:
            logger.warning("Presence update failed", extra_data={"chat_id": ChatIdValidator.mask(chat_id), "error": exc.message})
        await self._sleep(self.rate_governor.typing_delay(reply))

        await self.provider.send_text(chat_id, reply)
        await self.sessions.append_to_buffer(chat_id, "assistant", reply)
        self.notifications.publish(
            MessageOutNotification(chat_id=chat_id, name=contact, text=TextSanitizer.preview(reply))
        )

    async def _send_best_effort(self, chat_id: str, text: str) -> bool:
        try:
            await self.provider.send_text(chat_id, text)
            return True
        except AppException as exc:
            logger.error(
                "Failed to send message",
                extra_data={"chat_id": ChatIdValidator.mask(chat_id), "error": exc.message},
            )
            self.notifications.publish(ErrorNotification(message=exc.message, chat_id=chat_id))
            return False
