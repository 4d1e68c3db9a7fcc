"""
WPPConnect Provider - BaseWhatsAppProvider over the Node.js gateway.

The gateway exposes:
- POST /send      {"phone", "message"}
- POST /send-media {"phone", "kind": "image|document", "mimetype", "filename", "data" (base64), "caption"}
- POST /presence  {"phone", "state"}
- POST /logout
- GET  /health    {"state": "connecting|open|close", ...}
"""
from __future__ import annotations

import asyncio
import base64

import httpx

from ppid_bot.core.circuit_breaker import CircuitBreaker
from ppid_bot.core.config import parse_csv_setting, settings
from ppid_bot.core.exceptions import WhatsAppError
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator
from ppid_bot.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, MediaAttachment

logger = get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0
HEALTH_TIMEOUT_SECONDS = 5.0


class WPPConnectProvider(BaseWhatsAppProvider):
    def __init__(self, circuit_breaker: CircuitBreaker, gateway_url: str | None = None) -> None:
        self._circuit_breaker = circuit_breaker
        self._gateway_url = (gateway_url or settings.WHATSAPP_GATEWAY_URL).rstrip("/")
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._transient_status_codes = {
            int(code) for code in parse_csv_setting(settings.WHATSAPP_TRANSIENT_STATUS_CODES)
        }

    @property
    def provider_name(self) -> str:
        return "wppconnect"

    async def _backoff(self, operation_name: str, attempt: int, extra: dict) -> None:
        backoff = 2 ** attempt
        logger.warning(
            f"{operation_name} failed transiently, retrying",
            extra_data={**extra, "attempt": attempt + 1, "max_retries": self._max_retries, "backoff_seconds": backoff},
        )
        await asyncio.sleep(backoff)

    async def _request_with_retry(
        self,
        endpoint: str,
        payload: dict,
        operation_name: str,
    ) -> None:
        """POST to the gateway with exponential backoff.

        Raises WhatsAppError once every attempt has failed.
        """
        chat_masked = ChatIdValidator.mask(payload.get("phone", ""))
        last_attempt = self._max_retries - 1

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
            for attempt in range(self._max_retries):
                try:
                    response = await client.post(f"{self._gateway_url}/{endpoint}", json=payload)
                except httpx.TimeoutException:
                    if attempt < last_attempt:
                        await self._backoff(operation_name, attempt, {"chat_id": chat_masked, "timeout": True})
                        continue
                    raise WhatsAppError(
                        message=f"gateway /{endpoint} timeout after retries",
                        details={"timeout": True, "attempts": self._max_retries},
                    )
                except httpx.RequestError as exc:
                    if attempt < last_attempt:
                        await self._backoff(operation_name, attempt, {"chat_id": chat_masked, "error": str(exc)})
                        continue
                    raise WhatsAppError(
                        message=f"gateway /{endpoint} network error: {exc}",
                        details={"network_error": True, "attempts": self._max_retries},
                    )

                if response.status_code == 200:
                    return
                if response.status_code in self._transient_status_codes and attempt < last_attempt:
                    await self._backoff(
                        operation_name, attempt, {"chat_id": chat_masked, "status_code": response.status_code}
                    )
                    continue
                raise WhatsAppError.from_response(
                    endpoint,
                    response,
                    message=f"gateway /{endpoint} returned status {response.status_code}",
                )

    async def send_text(self, to: str, text: str) -> None:
        payload = {"phone": to, "message": text}
        await self._circuit_breaker.execute(
            lambda: self._request_with_retry("send", payload, "WhatsApp send")
        )

    async def send_media(self, to: str, media: MediaAttachment, caption: str = "") -> None:
        payload = {
            "phone": to,
            "kind": "image" if media.is_image else "document",
            "mimetype": media.mimetype,
            "filename": media.filename,
            "data": base64.b64encode(media.data).decode("ascii"),
            "caption": caption,
        }
        await self._circuit_breaker.execute(
            lambda: self._request_with_retry("send-media", payload, "WhatsApp media send")
        )

    async def send_presence(self, to: str, state: str) -> None:
        payload = {"phone": to, "state": state}
        await self._circuit_breaker.execute(
            lambda: self._request_with_retry("presence", payload, "WhatsApp presence")
        )

    async def logout(self) -> None:
        # Not behind the breaker: logout must go through even after send failures.
        await self._request_with_retry("logout", {}, "WhatsApp logout")

    async def check_connection(self) -> dict:
        try:
            async with httpx.AsyncClient(timeout=HEALTH_TIMEOUT_SECONDS) as client:
                response = await client.get(f"{self._gateway_url}/health")
        except httpx.RequestError as exc:
            return {"connected": False, "state": "close", "error": str(exc)}

        if response.status_code != 200:
            return {"connected": False, "state": "close", "status_code": response.status_code}

        try:
            data = response.json()
        except ValueError:
            data = {}
        state = str(data.get("state") or "open")
        return {"connected": state == "open", "state": state, **{k: v for k, v in data.items() if k != "state"}}
