"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Fake WhatsApp transport, generation backend and embedder
- Repositories on a temporary data directory
- A fully wired service container and an ASGI test client
"""
import os

os.environ.setdefault("OPERATOR_API_KEY", "test-operator-key")
os.environ.setdefault("DEBUG", "true")

import hashlib

import pytest
from httpx import ASGITransport, AsyncClient

from ppid_bot.ai import provider_factory as llm_factory
from ppid_bot.ai.base_provider import BaseLLMProvider
from ppid_bot.ai.generator import ResponseGenerator
from ppid_bot.api.webhooks.whatsapp import reset_message_ids
from ppid_bot.core.circuit_breaker import CircuitBreaker
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import GenerationError, WhatsAppError
from ppid_bot.db.repositories import Repositories
from ppid_bot.domain.container import ServiceContainer
from ppid_bot.domain.services.rate_limiter import RateGovernor
from ppid_bot.domain.services.whatsapp import BaseWhatsAppProvider, MediaAttachment
from ppid_bot.domain.services.whatsapp import provider_factory as whatsapp_factory
from ppid_bot.domain.services.whatsapp.connection import ConnectionState
from ppid_bot.rag.vector_store import VectorStore
from ppid_bot.state_machine.session_store import SessionStore

OPERATOR_HEADERS = {"X-Operator-API-Key": "test-operator-key"}


# ============================================================================
# Fakes
# ============================================================================


class FakeWhatsAppProvider(BaseWhatsAppProvider):
    """Records every outbound call; ``fail_sends`` makes text and media sends raise."""

    def __init__(self, state: str = "open"):
        self.sent: list[tuple[str, str]] = []
        self.media: list[tuple[str, MediaAttachment, str]] = []
        self.presence: list[tuple[str, str]] = []
        self.logged_out = False
        self.fail_sends = False
        self.state = state

    async def send_text(self, to: str, text: str) -> None:
        if self.fail_sends:
            raise WhatsAppError("gateway unavailable")
        self.sent.append((to, text))

    async def send_media(self, to: str, media: MediaAttachment, caption: str = "") -> None:
        if self.fail_sends:
            raise WhatsAppError("gateway unavailable")
        self.media.append((to, media, caption))

    async def send_presence(self, to: str, state: str) -> None:
        self.presence.append((to, state))

    async def logout(self) -> None:
        self.logged_out = True

    async def check_connection(self) -> dict:
        return {"connected": self.state == "open", "state": self.state}

    @property
    def provider_name(self) -> str:
        return "fake"

    def texts_to(self, chat_id: str) -> list[str]:
        return [text for to, text in self.sent if to == chat_id]


class FakeLLMProvider(BaseLLMProvider):
    """Returns queued replies in order, then ``default_reply``."""

    def __init__(self, default_reply: str = "Baik, berikut informasinya."):
        self.default_reply = default_reply
        self.replies: list[str] = []
        self.calls: list[dict] = []
        self.fail = False

    async def complete(self, system_prompt, user_prompt, *, temperature=0.7, json_mode=False) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "json_mode": json_mode,
            }
        )
        if self.fail:
            raise GenerationError("fake", "backend down")
        if self.replies:
            return self.replies.pop(0)
        if json_mode:
            return '{"summary": "Warga bertanya layanan", "category": "informasi"}'
        return self.default_reply

    @property
    def provider_name(self) -> str:
        return "fake-llm"


class FakeEmbedder:
    """Deterministic 8-dim vectors derived from the text hash."""

    def __init__(self):
        self.calls = 0
        self.fail = False

    def _vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[:8]]

    async def embed(self, text: str) -> list[float]:
        from ppid_bot.core.exceptions import EmbeddingError

        self.calls += 1
        if self.fail:
            raise EmbeddingError("fake embedder down")
        return self._vector(text)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_singletons():
    """Breakers, provider factories and webhook dedup are process-wide."""
    CircuitBreaker.reset_all()
    whatsapp_factory.reset_providers()
    llm_factory.reset_providers()
    reset_message_ids()
    yield
    CircuitBreaker.reset_all()
    whatsapp_factory.reset_providers()
    llm_factory.reset_providers()
    reset_message_ids()


@pytest.fixture
def data_path(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATA_PATH", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "DOCS_FOLDER", str(tmp_path / "docs"))
    monkeypatch.setattr(settings, "VECTOR_STORE_PATH", str(tmp_path / "data" / "vectorstore"))
    monkeypatch.setattr(settings, "WA_SESSION_PATH", str(tmp_path / "wa_session"))
    return tmp_path


@pytest.fixture
def repositories(data_path) -> Repositories:
    return Repositories(data_path / "data", recap_max_entries=1000)


@pytest.fixture
def fake_whatsapp() -> FakeWhatsAppProvider:
    return FakeWhatsAppProvider()


@pytest.fixture
def fake_llm(monkeypatch) -> FakeLLMProvider:
    provider = FakeLLMProvider()
    monkeypatch.setattr(llm_factory, "_provider", provider)
    return provider


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def container(
    repositories,
    data_path,
    fake_whatsapp,
    fake_llm,
    fake_embedder,
    clock,
    monkeypatch,
) -> ServiceContainer:
    """Fully wired services with fakes at every external boundary."""
    import ppid_bot.domain.container as container_module
    import ppid_bot.domain.services.operator_service as operator_module

    monkeypatch.setattr(container_module, "configure_llm_provider", lambda _settings: fake_llm)
    monkeypatch.setattr(operator_module, "configure_llm_provider", lambda _settings: fake_llm)

    services = ServiceContainer(
        repositories=repositories,
        vector_store=VectorStore(data_path / "data" / "vectorstore"),
        embedder=fake_embedder,
        provider_getter=lambda: fake_whatsapp,
        generator=ResponseGenerator(lambda: fake_llm, timeout_seconds=5.0),
        sessions=SessionStore(inactivity_seconds=30 * 60, purge_seconds=24 * 3600, buffer_size=30, clock=clock),
        rate_governor=RateGovernor(cooldown_seconds=2.0, min_delay_ms=0, max_delay_ms=0, clock=clock),
        notify_admins=False,
        handler_sleep=no_sleep,
    )
    services.runtime.connection.update(ConnectionState.OPEN)
    return services


@pytest.fixture
async def test_client(container):
    """ASGI client over the real app with the fake container; no scheduler."""
    from ppid_bot.main import create_app

    app = create_app(container, run_scheduler=False)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await container.dispatcher.close()


def make_index_with(chunks: list[tuple[str, str]], embedder: FakeEmbedder):
    """Build a VectorIndex from (content, type) pairs."""
    from ppid_bot.rag.vector_store import DocumentChunk, VectorIndex

    return VectorIndex(
        [
            DocumentChunk(
                content=content,
                source="panduan.md",
                type=chunk_type,
                embedding=tuple(embedder._vector(content)),
                metadata={"file_name": "panduan.md"},
            )
            for content, chunk_type in chunks
        ]
    )


CHAT = "6281234567890@s.whatsapp.net"
