"""
Operator Service - commands issued from the operator console.

Commands that need the WhatsApp transport fail with
``TransportUnavailableError`` while it is not connected. Commands that
wait on the model are bounded by ``OPERATOR_COMMAND_TIMEOUT_SECONDS``
and fail with ``OperatorTimeoutError``, distinct from a generation failure.
"""
import asyncio
import shutil
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ppid_bot.ai.generator import ResponseGenerator
from ppid_bot.ai.provider_factory import configure_llm_provider, get_llm_provider
from ppid_bot.core.circuit_breaker import CircuitBreaker
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import (
    AppException,
    ErrorCode,
    NotFoundException,
    OperatorCommandError,
    OperatorTimeoutError,
    TransportUnavailableError,
)
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator, TextSanitizer, mask_secret
from ppid_bot.db.models import ConversationPhase, Evaluation, EvaluationStatus, KnowledgeGap, RuntimeSettings
from ppid_bot.db.repositories import Repositories
from ppid_bot.domain.services.bot_runtime import BotRuntime
from ppid_bot.domain.services.export_service import export_recaps_csv, export_recaps_xlsx
from ppid_bot.domain.services.knowledge_gap_service import KnowledgeGapService
from ppid_bot.domain.services.notification_bus import (
    ConnectionNotification,
    ErrorNotification,
    LoggedOutNotification,
    MessageOutNotification,
    NotificationBus,
)
from ppid_bot.domain.services.recap_service import RecapService
from ppid_bot.domain.services.survey_service import SurveyService
from ppid_bot.domain.services.whatsapp import BaseWhatsAppProvider, MediaAttachment
from ppid_bot.domain.services.whatsapp.connection import LOGGED_OUT_REASON, ConnectionState
from ppid_bot.rag.retriever import Retriever
from ppid_bot.state_machine import messages
from ppid_bot.state_machine.session_store import SessionStore

logger = get_logger(__name__)

T = TypeVar("T")

MANUAL_SENDER_NAME = "Manual"
TEST_CHAT_ID = "test-user"
QUESTION_SAMPLE_QUERY = "apa saja layanan yang tersedia"
QUESTION_SAMPLE_LIMIT = 1500


def _media_placeholder(media: MediaAttachment) -> str:
    return messages.IMAGE_PLACEHOLDER if media.is_image else messages.DOCUMENT_PLACEHOLDER


class OperatorService:
    def __init__(
        self,
        *,
        runtime: BotRuntime,
        sessions: SessionStore,
        repositories: Repositories,
        retriever: Retriever,
        generator: ResponseGenerator,
        provider_getter: Callable[[], BaseWhatsAppProvider],
        notifications: NotificationBus,
        surveys: SurveyService,
        recaps: RecapService,
        knowledge_gaps: KnowledgeGapService,
        reindex: Optional[Callable[[], Awaitable[Any]]] = None,
        command_timeout_seconds: Optional[float] = None,
        session_path: Optional[Path | str] = None,
    ):
        self.runtime = runtime
        self.sessions = sessions
        self.repositories = repositories
        self.retriever = retriever
        self.generator = generator
        self._provider_getter = provider_getter
        self.notifications = notifications
        self.surveys = surveys
        self.recaps = recaps
        self.knowledge_gaps = knowledge_gaps
        self._reindex = reindex
        self._reindex_task: Optional[asyncio.Task] = None
        self.command_timeout_seconds = command_timeout_seconds or settings.OPERATOR_COMMAND_TIMEOUT_SECONDS
        self.session_path = Path(session_path or settings.WA_SESSION_PATH)

    @property
    def provider(self) -> BaseWhatsAppProvider:
        return self._provider_getter()

    def _require_transport(self, command: str) -> None:
        if not self.runtime.connection.is_open:
            raise TransportUnavailableError(command, self.runtime.connection.state.value)

    async def _bounded(self, command: str, operation: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self.command_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Operator command timed out", extra_data={"command": command})
            raise OperatorTimeoutError(command, self.command_timeout_seconds)

    # ── lifecycle ──

    async def start(self) -> dict:
        self.runtime.running = True
        connection = await self.provider.check_connection()
        if connection.get("state") in {s.value for s in ConnectionState}:
            self.runtime.connection.update(ConnectionState(connection["state"]))
        logger.info("Auto-reply started", extra_data={"transport": connection.get("state")})
        return await self.status()

    async def stop(self) -> dict:
        self.runtime.running = False
        logger.info("Auto-reply stopped")
        return await self.status()

    async def status(self) -> dict:
        sessions = self.sessions.all_sessions()
        index = self.retriever.store.index
        return {
            "running": self.runtime.running,
            "uptime_seconds": round(self.runtime.uptime_seconds, 1),
            "connection": self.runtime.connection.to_dict(),
            "sessions": len(sessions),
            "handed_off": [s.chat_id for s in sessions if s.handed_off],
            "index": {
                "ready": self.retriever.is_ready,
                "chunks": len(index) if index is not None else 0,
                "reindexing": self.reindex_running,
            },
            "llm_provider": get_llm_provider().provider_name,
            "circuit_breakers": {
                name: breaker.snapshot() for name, breaker in CircuitBreaker.all_instances().items()
            },
        }

    # ── conversations ──

    async def manual_reply(self, chat_id: str, message: str, media: Optional[MediaAttachment] = None) -> dict:
        """
        Operator reply sent as the assistant.

        With ``media`` the message becomes the caption. Buffers the reply,
        pairs its text with the chat's last question for active learning,
        then hands the chat back to the bot.
        """
        self._require_transport("manual-reply")
        text = TextSanitizer.sanitize(message)
        if not text and media is None:
            raise OperatorCommandError("manual-reply", "message is empty", ErrorCode.VALIDATION_ERROR)

        try:
            if media is not None:
                await self.provider.send_media(chat_id, media, caption=text)
            else:
                await self.provider.send_text(chat_id, text)
        except AppException as exc:
            self.notifications.publish(
                ErrorNotification(message=f"Gagal kirim balasan manual: {exc.message}", chat_id=chat_id)
            )
            raise OperatorCommandError(
                "manual-reply",
                exc.message,
                ErrorCode.OPERATOR_COMMAND_FAILED,
                status_code=502,
            ) from exc

        buffered = text or _media_placeholder(media)
        await self.sessions.append_to_buffer(chat_id, "assistant", buffered)
        self.notifications.publish(
            MessageOutNotification(chat_id=chat_id, name=MANUAL_SENDER_NAME, text=TextSanitizer.preview(buffered))
        )

        learned = False
        session = self.sessions.get(chat_id)
        if text and session is not None and session.last_question:
            logger.info(
                "Learning from manual reply",
                extra_data={"chat_id": ChatIdValidator.mask(chat_id), "question": session.last_question[:50]},
            )
            learned = await self.retriever.add_learning_data(session.last_question, text)

        released = await self._release(chat_id)
        return {"sent": True, "learned": learned, "released": released}

    async def release_handover(self, chat_id: str) -> dict:
        if self.sessions.get(chat_id) is None:
            raise NotFoundException("session", chat_id, ErrorCode.SESSION_NOT_FOUND)
        return {"released": await self._release(chat_id)}

    async def _release(self, chat_id: str) -> bool:
        session = self.sessions.get(chat_id)
        if session is None or not session.handed_off:
            return False
        await self.sessions.set_phase(chat_id, ConversationPhase.NORMAL)
        logger.info("Handover released", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})
        return True

    async def close_conversation(self, chat_id: str) -> dict:
        """Ask a chat for its rating now instead of waiting for the inactivity sweep."""
        self._require_transport("close-conversation")
        session = self.sessions.get(chat_id)
        if session is None:
            raise NotFoundException("session", chat_id, ErrorCode.SESSION_NOT_FOUND)
        if session.survey_asked:
            return {"sent": False, "reason": "survey already asked"}

        await self.sessions.set_phase(chat_id, ConversationPhase.AWAITING_SURVEY, force=True, survey_asked=True)
        name = session.customer_name or messages.DEFAULT_SURVEY_NAME
        try:
            await self.provider.send_text(chat_id, messages.operator_close_survey_prompt(name))
        except AppException as exc:
            await self.sessions.set_phase(chat_id, session.phase, force=True, survey_asked=False)
            raise OperatorCommandError(
                "close-conversation", exc.message, ErrorCode.OPERATOR_COMMAND_FAILED, status_code=502
            ) from exc
        return {"sent": True}

    # ── knowledge ──

    async def train(self, question: str, answer: str) -> dict:
        question = TextSanitizer.sanitize(question)
        answer = TextSanitizer.sanitize(answer)
        if not question or not answer:
            raise OperatorCommandError("train", "question and answer are required", ErrorCode.VALIDATION_ERROR)

        success = await self._bounded("train", self.retriever.add_learning_data(question, answer))
        if not success:
            raise OperatorCommandError(
                "train", "learning data could not be stored", ErrorCode.OPERATOR_COMMAND_FAILED, status_code=502
            )
        gap_resolved = await self.knowledge_gaps.dismiss(question)
        return {"success": True, "gap_resolved": gap_resolved}

    async def test_prompt(self, query: str) -> dict:
        query = TextSanitizer.sanitize(query)
        if not query:
            raise OperatorCommandError("test-prompt", "query is empty", ErrorCode.VALIDATION_ERROR)

        async def _run() -> dict:
            context = await self.retriever.query(query)
            response = await self.generator.generate(
                query,
                context,
                chat_id=TEST_CHAT_ID,
                humor_level=self.runtime.settings.humor_level,
                temperature=self.runtime.settings.temperature,
            )
            return {"response": response, "context_found": bool(context), "context_length": len(context)}

        return await self._bounded("test-prompt", _run())

    async def list_knowledge_gaps(self) -> list[KnowledgeGap]:
        return await self.knowledge_gaps.list_gaps()

    async def dismiss_knowledge_gap(self, question: str) -> dict:
        if not await self.knowledge_gaps.dismiss(question):
            raise NotFoundException("knowledge gap", question)
        return {"success": True}

    async def generate_questions(self) -> dict:
        async def _run() -> list[str]:
            sample = await self.retriever.sample_context(QUESTION_SAMPLE_QUERY, QUESTION_SAMPLE_LIMIT)
            if not sample:
                logger.info("No indexed content to generate questions from")
                return []
            return await self.generator.generate_questions(sample)

        questions = await self._bounded("generate-questions", _run())
        added = await self.knowledge_gaps.add_generated(questions)
        return {"questions": questions, "added": added}

    def list_documents(self) -> list[dict]:
        return self.retriever.list_source_files()

    @property
    def reindex_running(self) -> bool:
        return self._reindex_task is not None and not self._reindex_task.done()

    async def reindex(self) -> dict:
        """Rebuild the index in the background; one rebuild at a time."""
        if self._reindex is None:
            raise OperatorCommandError("reindex", "reindexing is not available", ErrorCode.OPERATOR_COMMAND_FAILED)
        if self.reindex_running:
            raise OperatorCommandError(
                "reindex", "a rebuild is already running", ErrorCode.OPERATOR_COMMAND_FAILED, status_code=409
            )

        self._reindex_task = asyncio.create_task(self._run_reindex(), name="reindex")
        return {"started": True}

    async def _run_reindex(self) -> None:
        try:
            await self._reindex()
        except (AppException, OSError) as exc:
            message = exc.message if isinstance(exc, AppException) else str(exc)
            logger.error("Reindex failed", extra_data={"error": message})
            self.notifications.publish(ErrorNotification(message=f"Reindex gagal: {message}"))

    # ── settings ──

    def get_settings(self) -> dict:
        current = self.runtime.settings
        return {
            "humor_level": current.humor_level,
            "temperature": current.temperature,
            "groq_api_key": mask_secret(current.groq_api_key or settings.GROQ_API_KEY),
            "llm_provider": current.llm_provider,
            "active_provider": get_llm_provider().provider_name,
        }

    async def update_settings(self, update: dict) -> dict:
        try:
            updated: RuntimeSettings = self.runtime.settings.merged(update)
        except ValueError as exc:
            raise OperatorCommandError("settings-update", "invalid settings", ErrorCode.VALIDATION_ERROR) from exc

        await self.repositories.settings.save(updated)
        self.runtime.settings = updated
        configure_llm_provider(updated)
        logger.info(
            "Settings updated",
            extra_data={"humor_level": updated.humor_level, "temperature": updated.temperature},
        )
        return self.get_settings()

    # ── transport ──

    async def logout(self) -> dict:
        """Terminal: unlink the device and drop local credentials."""
        try:
            await self.provider.logout()
        except AppException as exc:
            logger.warning("Gateway logout failed, clearing local session anyway", extra_data={"error": exc.message})

        await asyncio.to_thread(shutil.rmtree, self.session_path, ignore_errors=True)
        self.runtime.connection.update(ConnectionState.CLOSE, LOGGED_OUT_REASON)
        self.notifications.publish(ConnectionNotification(state=ConnectionState.CLOSE.value, reason=LOGGED_OUT_REASON))
        self.notifications.publish(LoggedOutNotification())
        logger.info("Logged out, QR scan required", extra_data={"session_path": str(self.session_path)})
        return {"success": True, "message": "Logged out. Start the gateway and scan the QR code."}

    # ── analytics ──

    async def survey_stats(self) -> dict:
        return await self.surveys.get_survey_stats()

    async def list_evaluations(self) -> list[Evaluation]:
        return await self.repositories.evaluations.list_all()

    async def resolve_evaluation(self, evaluation_id: str, action: EvaluationStatus) -> dict:
        if action == EvaluationStatus.PENDING:
            raise OperatorCommandError(
                "resolve-evaluation", "action must be trained or ignored", ErrorCode.VALIDATION_ERROR
            )
        if not await self.repositories.evaluations.set_status(evaluation_id, action):
            raise NotFoundException("evaluation", evaluation_id)
        return {"success": True}

    async def list_recaps(self, limit: Optional[int] = None):
        return await self.recaps.list_recaps(limit)

    async def recaps_csv(self) -> str:
        return export_recaps_csv(await self.recaps.list_recaps())

    async def recaps_xlsx(self) -> bytes:
        return export_recaps_xlsx(await self.recaps.list_recaps())
