"""
Service container - builds and owns every long-lived component.

One instance per process, created in the app lifespan and reachable from
routes through ``request.app.state.container``.
"""
from pathlib import Path
from typing import Callable, Optional

from ppid_bot.ai.generator import ResponseGenerator
from ppid_bot.ai.provider_factory import configure_llm_provider, get_llm_provider
from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator
from ppid_bot.db.models import ConversationSession
from ppid_bot.db.repositories import Repositories
from ppid_bot.domain.services.bot_runtime import BotRuntime
from ppid_bot.domain.services.chat_dispatcher import ChatDispatcher
from ppid_bot.domain.services.knowledge_gap_service import KnowledgeGapService
from ppid_bot.domain.services.notification_bus import ConnectionNotification, NotificationBus
from ppid_bot.domain.services.operator_service import OperatorService
from ppid_bot.domain.services.rate_limiter import RateGovernor
from ppid_bot.domain.services.recap_service import RecapService
from ppid_bot.domain.services.survey_service import SurveyService
from ppid_bot.domain.services.whatsapp import BaseWhatsAppProvider, get_whatsapp_provider
from ppid_bot.domain.services.whatsapp.connection import ConnectionState
from ppid_bot.rag.embeddings import OllamaEmbeddings
from ppid_bot.rag.retriever import Embedder, Retriever, build_index
from ppid_bot.rag.vector_store import VectorIndex, VectorStore
from ppid_bot.state_machine import messages
from ppid_bot.state_machine.handlers import InboundMessage, MessageHandler
from ppid_bot.state_machine.intents import IntentClassifier, PhraseIntentClassifier
from ppid_bot.state_machine.session_store import SessionStore

logger = get_logger(__name__)


class ServiceContainer:
    def __init__(
        self,
        *,
        repositories: Optional[Repositories] = None,
        vector_store: Optional[VectorStore] = None,
        embedder: Optional[Embedder] = None,
        provider_getter: Callable[[], BaseWhatsAppProvider] = get_whatsapp_provider,
        generator: Optional[ResponseGenerator] = None,
        sessions: Optional[SessionStore] = None,
        rate_governor: Optional[RateGovernor] = None,
        intents: Optional[IntentClassifier] = None,
        notify_admins: bool = True,
        handler_sleep=None,
    ):
        self.repositories = repositories or Repositories()
        self.vector_store = vector_store or VectorStore(settings.VECTOR_STORE_PATH)
        self.embedder = embedder or OllamaEmbeddings()
        self.retriever = Retriever(self.vector_store, self.embedder)
        self.provider_getter = provider_getter
        self.generator = generator or ResponseGenerator(get_llm_provider)

        self.sessions = sessions or SessionStore()
        self.rate_governor = rate_governor or RateGovernor()
        self.notifications = NotificationBus()
        self.runtime = BotRuntime()

        self.surveys = SurveyService(self.repositories.surveys)
        self.recaps = RecapService(self.repositories.recaps, self.generator)
        self.knowledge_gaps = KnowledgeGapService(self.repositories.knowledge_gaps)

        handler_kwargs = {"sleep": handler_sleep} if handler_sleep is not None else {}
        self.handler = MessageHandler(
            sessions=self.sessions,
            rate_governor=self.rate_governor,
            retriever=self.retriever,
            generator=self.generator,
            provider_getter=self.provider_getter,
            notifications=self.notifications,
            surveys=self.surveys,
            recaps=self.recaps,
            knowledge_gaps=self.knowledge_gaps,
            evaluations=self.repositories.evaluations,
            intents=intents or PhraseIntentClassifier(),
            runtime=self.runtime,
            notify_admins=notify_admins,
            **handler_kwargs,
        )
        self.dispatcher: ChatDispatcher[InboundMessage] = ChatDispatcher(self.handler.handle)

        self.operator = OperatorService(
            runtime=self.runtime,
            sessions=self.sessions,
            repositories=self.repositories,
            retriever=self.retriever,
            generator=self.generator,
            provider_getter=self.provider_getter,
            notifications=self.notifications,
            surveys=self.surveys,
            recaps=self.recaps,
            knowledge_gaps=self.knowledge_gaps,
            reindex=self.rebuild_index,
        )

    @property
    def provider(self) -> BaseWhatsAppProvider:
        return self.provider_getter()

    async def startup(self) -> None:
        self.runtime.settings = await self.repositories.settings.load()
        configure_llm_provider(self.runtime.settings)

        await self.vector_store.load()
        if not self.vector_store.is_ready:
            logger.warning(
                "No vector index yet; answers run without context until documents are ingested",
                extra_data={"docs_folder": settings.DOCS_FOLDER},
            )

        self.sessions.restore(await self.repositories.sessions.list_all())
        await self.refresh_connection()

    async def shutdown(self) -> None:
        await self.dispatcher.close()
        await self.snapshot_sessions()

    def submit(self, message: InboundMessage) -> None:
        self.dispatcher.submit(message.chat_id, message)

    async def send_inactivity_survey(self, session: ConversationSession) -> None:
        """Raises on send failure so the sweep can roll the session back."""
        name = session.customer_name or messages.DEFAULT_SURVEY_NAME
        await self.provider.send_text(session.chat_id, messages.inactivity_survey_prompt(name))
        logger.info("Inactivity survey sent", extra_data={"chat_id": ChatIdValidator.mask(session.chat_id)})

    async def sweep_sessions(self) -> dict:
        return await self.sessions.sweep(self.send_inactivity_survey)

    async def snapshot_sessions(self) -> int:
        snapshot = self.sessions.snapshot()
        await self.repositories.sessions.replace_all(snapshot)
        return len(snapshot)

    async def cleanup_rate_limits(self) -> int:
        return self.rate_governor.cleanup()

    async def rebuild_index(self) -> VectorIndex:
        return await build_index(Path(settings.DOCS_FOLDER), self.vector_store, self.embedder)

    async def refresh_connection(self) -> dict:
        """Poll the gateway and publish a change the webhook may have missed."""
        result = await self.provider.check_connection()
        state = result.get("state")
        if state in {s.value for s in ConnectionState} and state != self.runtime.connection.state.value:
            self.runtime.connection.update(ConnectionState(state))
            self.notifications.publish(ConnectionNotification(state=state))
        return result


def build_container() -> ServiceContainer:
    return ServiceContainer()
