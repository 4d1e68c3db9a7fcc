"""
Tests for the WhatsApp transport abstraction.

Covers:
- BaseWhatsAppProvider: abstract interface
- WPPConnectProvider: send, presence, retry, circuit breaker, health
- Provider factory: singletons and separate admin breaker
"""
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from httpx import Response

from ppid_bot.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from ppid_bot.core.exceptions import CircuitBreakerOpenError, WhatsAppError
from ppid_bot.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, MediaAttachment
from ppid_bot.domain.services.whatsapp.provider_factory import (
    get_whatsapp_admin_provider,
    get_whatsapp_provider,
    reset_providers,
)
from ppid_bot.domain.services.whatsapp.wppconnect_provider import WPPConnectProvider

CHAT = "6281234567890@s.whatsapp.net"


def _response(status_code: int, json_data: dict | None = None) -> MagicMock:
    response = MagicMock(spec=Response)
    response.status_code = status_code
    response.text = ""
    response.json.return_value = json_data or {}
    return response


def _mock_client(mock_client_cls: MagicMock, **methods) -> AsyncMock:
    instance = AsyncMock()
    for name, value in methods.items():
        setattr(instance, name, value)
    instance.__aenter__ = AsyncMock(return_value=instance)
    instance.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = instance
    return instance


def _make_provider(failure_threshold: int = 5) -> tuple[WPPConnectProvider, CircuitBreaker]:
    cb = CircuitBreaker("test_wa", CircuitBreakerConfig(failure_threshold=failure_threshold))
    return WPPConnectProvider(circuit_breaker=cb, gateway_url="http://gateway:3000/"), cb


class TestBaseProviderInterface:
    """The base interface cannot be instantiated."""

    @pytest.mark.unit
    def test_cannot_instantiate_abstract_provider(self) -> None:
        """BaseWhatsAppProvider is abstract"""
        with pytest.raises(TypeError):
            BaseWhatsAppProvider()  # type: ignore[abstract]

    @pytest.mark.unit
    def test_concrete_provider_must_implement_all_methods(self) -> None:
        """A provider missing a method cannot be created"""

        class IncompleteProvider(BaseWhatsAppProvider):
            async def send_text(self, to: str, text: str) -> None:
                return None

        with pytest.raises(TypeError):
            IncompleteProvider()  # type: ignore[abstract]


class TestWPPConnectSend:
    """Outbound calls to the gateway."""

    @pytest.mark.unit
    async def test_send_text_success(self) -> None:
        """The text goes to /send with phone and message"""
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(200)))

            await provider.send_text(to=CHAT, text="Selamat pagi")

            url = instance.post.call_args[0][0]
            assert url == "http://gateway:3000/send"
            assert instance.post.call_args[1]["json"] == {"phone": CHAT, "message": "Selamat pagi"}

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "mimetype,kind",
        [("image/jpeg", "image"), ("application/pdf", "document"), ("text/plain", "document")],
    )
    async def test_send_media(self, mimetype: str, kind: str) -> None:
        """Attachments go to /send-media base64-encoded, images inline and the rest as documents"""
        provider, _ = _make_provider()
        media = MediaAttachment(mimetype=mimetype, data=b"%PDF-1.4", filename="formulir.pdf")

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(200)))

            await provider.send_media(CHAT, media, caption="Formulir keberatan")

            assert instance.post.call_args[0][0] == "http://gateway:3000/send-media"
            assert instance.post.call_args[1]["json"] == {
                "phone": CHAT,
                "kind": kind,
                "mimetype": mimetype,
                "filename": "formulir.pdf",
                "data": "JVBERi0xLjQ=",
                "caption": "Formulir keberatan",
            }

    @pytest.mark.unit
    async def test_send_media_goes_through_breaker(self) -> None:
        """An open circuit rejects media before any request"""
        provider, _ = _make_provider(failure_threshold=1)

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(400)))
            with pytest.raises(WhatsAppError):
                await provider.send_media(CHAT, MediaAttachment(mimetype="image/png", data=b"x"))

            with pytest.raises(CircuitBreakerOpenError):
                await provider.send_media(CHAT, MediaAttachment(mimetype="image/png", data=b"x"))

            assert instance.post.call_count == 1

    @pytest.mark.unit
    async def test_send_presence(self) -> None:
        """Composing indicator goes to /presence"""
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(200)))

            await provider.send_presence(CHAT, "composing")

            assert instance.post.call_args[0][0].endswith("/presence")
            assert instance.post.call_args[1]["json"] == {"phone": CHAT, "state": "composing"}

    @pytest.mark.unit
    async def test_retry_on_transient_status(self) -> None:
        """502 is retried and the second attempt succeeds"""
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client, \
             patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            instance = _mock_client(
                mock_client, post=AsyncMock(side_effect=[_response(502), _response(200)])
            )

            await provider.send_text(CHAT, "retry")

            assert instance.post.call_count == 2
            mock_sleep.assert_awaited_once_with(1)

    @pytest.mark.unit
    async def test_retry_on_timeout_then_fail(self) -> None:
        """Timeouts on every attempt raise WhatsAppError with the attempt count"""
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client, \
             patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            instance = _mock_client(
                mock_client, post=AsyncMock(side_effect=httpx.TimeoutException("slow"))
            )

            with pytest.raises(WhatsAppError) as exc_info:
                await provider.send_text(CHAT, "timeout")

            assert instance.post.call_count == 3
            assert exc_info.value.details["timeout"] is True
            assert [c.args[0] for c in mock_sleep.await_args_list] == [1, 2]

    @pytest.mark.unit
    async def test_permanent_error_is_not_retried(self) -> None:
        """400 fails immediately"""
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(400)))

            with pytest.raises(WhatsAppError) as exc_info:
                await provider.send_text(CHAT, "bad")

            assert instance.post.call_count == 1
            assert exc_info.value.details["status_code"] == 400

    @pytest.mark.unit
    async def test_circuit_breaker_opens_after_failures(self) -> None:
        """Repeated send failures open the breaker and block further sends"""
        provider, cb = _make_provider(failure_threshold=2)

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, post=AsyncMock(return_value=_response(400)))

            for _ in range(2):
                with pytest.raises(WhatsAppError):
                    await provider.send_text(CHAT, "x")

            assert cb.is_open
            with pytest.raises(CircuitBreakerOpenError):
                await provider.send_text(CHAT, "x")

    @pytest.mark.unit
    async def test_logout_bypasses_open_breaker(self) -> None:
        """Logout still reaches the gateway while the breaker is open"""
        provider, cb = _make_provider(failure_threshold=1)
        cb.record_failure()
        assert cb.is_open

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client, post=AsyncMock(return_value=_response(200)))

            await provider.logout()

            assert instance.post.call_args[0][0].endswith("/logout")


class TestWPPConnectHealth:
    """check_connection never raises."""

    @pytest.mark.unit
    async def test_connected(self) -> None:
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=AsyncMock(return_value=_response(200, {"state": "open", "phone": "628"})))

            result = await provider.check_connection()

        assert result == {"connected": True, "state": "open", "phone": "628"}

    @pytest.mark.unit
    async def test_gateway_reports_connecting(self) -> None:
        """Gateway up but the device is still pairing"""
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=AsyncMock(return_value=_response(200, {"state": "connecting"})))

            result = await provider.check_connection()

        assert result["connected"] is False
        assert result["state"] == "connecting"

    @pytest.mark.unit
    async def test_unreachable_gateway(self) -> None:
        provider, _ = _make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=AsyncMock(side_effect=httpx.ConnectError("refused")))

            result = await provider.check_connection()

        assert result["connected"] is False
        assert "refused" in result["error"]


class TestProviderFactory:
    """Provider singletons."""

    @pytest.mark.unit
    def test_singleton(self) -> None:
        """Same instance until reset"""
        first = get_whatsapp_provider()
        assert get_whatsapp_provider() is first

        reset_providers()
        assert get_whatsapp_provider() is not first

    @pytest.mark.unit
    def test_admin_provider_uses_separate_breaker(self) -> None:
        """Admin alerts never trip the citizen breaker"""
        citizen = get_whatsapp_provider()
        admin = get_whatsapp_admin_provider()

        assert citizen is not admin
        assert citizen._circuit_breaker is not admin._circuit_breaker
        assert admin._circuit_breaker.service_name == "whatsapp_admin"
