"""
Operator notification bus.

Notifications are a tagged union keyed by ``type``; the operator console
consumes them over server-sent events. Each subscriber owns a bounded
queue; a slow subscriber loses its oldest notifications, never blocks
the publisher.
"""
import asyncio
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)

SUBSCRIBER_QUEUE_SIZE = 200


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Notification(BaseModel):
    timestamp: datetime = Field(default_factory=_now)


class MessageInNotification(_Notification):
    type: Literal["message-in"] = "message-in"
    chat_id: str
    name: str
    text: str
    needs_review: bool = False


class MessageOutNotification(_Notification):
    type: Literal["message-out"] = "message-out"
    chat_id: str
    name: str
    text: str


class HandoverRequestNotification(_Notification):
    type: Literal["handover-request"] = "handover-request"
    chat_id: str
    name: str
    text: str


class SurveyUpdateNotification(_Notification):
    type: Literal["survey-update"] = "survey-update"
    chat_id: str
    name: str
    rating: int


class QrNotification(_Notification):
    type: Literal["qr"] = "qr"
    qr: str


class ConnectionNotification(_Notification):
    type: Literal["connection"] = "connection"
    state: str
    reason: Optional[str] = None


class ErrorNotification(_Notification):
    type: Literal["error"] = "error"
    message: str
    chat_id: Optional[str] = None


class LoggedOutNotification(_Notification):
    type: Literal["logged-out"] = "logged-out"


Notification = Annotated[
    Union[
        MessageInNotification,
        MessageOutNotification,
        HandoverRequestNotification,
        SurveyUpdateNotification,
        QrNotification,
        ConnectionNotification,
        ErrorNotification,
        LoggedOutNotification,
    ],
    Field(discriminator="type"),
]


class NotificationBus:
    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def publish(self, notification: _Notification) -> None:
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
                logger.warning("Operator subscriber lagging, dropped oldest notification")
            queue.put_nowait(notification)
        logger.debug(
            "Notification published",
            extra_data={"type": getattr(notification, "type", None), "subscribers": len(self._subscribers)},
        )
