"""
WhatsApp Webhook Handler - gateway entry point.

Messages are acknowledged immediately and handed to the per-chat
dispatcher; the gateway never waits on retrieval or generation.
"""
from collections import OrderedDict
from typing import Annotated, Literal, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ppid_bot.api.dependencies.services import get_container
from ppid_bot.api.dependencies.webhook_auth import verify_webhook_secret
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator
from ppid_bot.domain.container import ServiceContainer
from ppid_bot.domain.services.notification_bus import (
    ConnectionNotification,
    LoggedOutNotification,
    QrNotification,
)
from ppid_bot.domain.services.whatsapp.connection import ConnectionState
from ppid_bot.state_machine import messages
from ppid_bot.state_machine.handlers import InboundMessage

logger = get_logger(__name__)

router = APIRouter()

_RECENT_MESSAGE_IDS_LIMIT = 1000

_MEDIA_PLACEHOLDERS = {
    "image": messages.IMAGE_PLACEHOLDER,
    "document": messages.DOCUMENT_PLACEHOLDER,
}


class RecentMessageIds:
    """Bounded set of recently seen message ids; gateways redeliver on timeout."""

    def __init__(self, limit: int = _RECENT_MESSAGE_IDS_LIMIT):
        self.limit = limit
        self._ids: OrderedDict[str, None] = OrderedDict()

    def seen(self, message_id: Optional[str]) -> bool:
        """Record ``message_id``; True if it was already recorded."""
        if not message_id:
            return False
        if message_id in self._ids:
            self._ids.move_to_end(message_id)
            return True
        self._ids[message_id] = None
        while len(self._ids) > self.limit:
            self._ids.popitem(last=False)
        return False

    def clear(self) -> None:
        self._ids.clear()


_recent_message_ids = RecentMessageIds()


def reset_message_ids() -> None:
    """Testing only."""
    _recent_message_ids.clear()


class WhatsAppMessage(BaseModel):
    """Incoming WhatsApp message structure"""

    # Stable conversation id, e.g. 628123456789@c.us
    from_number: str
    message_id: Optional[str] = None
    push_name: Optional[str] = None
    text: str = ""
    timestamp: Optional[int] = None
    # image | document | video | audio | sticker
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    caption: Optional[str] = None

    def conversation_text(self) -> str:
        """Body text, else the media caption, else a placeholder for images and documents."""
        if self.text.strip():
            return self.text
        if self.caption and self.caption.strip():
            return self.caption
        return _MEDIA_PLACEHOLDERS.get(self.media_type or "", "")


class WebhookPayload(BaseModel):
    messages: list[WhatsAppMessage] = Field(default_factory=list)


class ConnectionEvent(BaseModel):
    event: Literal["connection"]
    state: ConnectionState
    reason: Optional[str] = None


class QrEvent(BaseModel):
    event: Literal["qr"]
    qr: str


GatewayEvent = Annotated[Union[ConnectionEvent, QrEvent], Field(discriminator="event")]


@router.post("/webhook", dependencies=[Depends(verify_webhook_secret)])
async def whatsapp_webhook(
    payload: WebhookPayload,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    accepted = 0
    skipped = 0
    for message in payload.messages:
        if _recent_message_ids.seen(message.message_id):
            logger.info("Skipping duplicate message", extra_data={"message_id": message.message_id})
            skipped += 1
            continue

        text = message.conversation_text()
        if not text.strip():
            logger.debug(
                "Ignoring message without text",
                extra_data={
                    "chat_id": ChatIdValidator.mask(message.from_number),
                    "media_type": message.media_type,
                },
            )
            skipped += 1
            continue

        container.submit(
            InboundMessage(
                chat_id=message.from_number,
                text=text,
                push_name=message.push_name,
                message_id=message.message_id,
            )
        )
        accepted += 1

    return {"ok": True, "accepted": accepted, "skipped": skipped}


@router.post("/events", dependencies=[Depends(verify_webhook_secret)])
async def whatsapp_events(
    event: GatewayEvent,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Connection lifecycle and pairing QR codes from the gateway."""
    connection = container.runtime.connection

    if isinstance(event, QrEvent):
        connection.set_qr(event.qr)
        container.notifications.publish(QrNotification(qr=event.qr))
        return {"ok": True}

    terminal = connection.update(event.state, event.reason)
    container.notifications.publish(ConnectionNotification(state=event.state.value, reason=event.reason))
    if terminal:
        logger.warning("WhatsApp session logged out, QR scan required")
        container.notifications.publish(LoggedOutNotification())
    return {"ok": True, "terminal": terminal}
