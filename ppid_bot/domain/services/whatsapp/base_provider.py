"""
Base interface for the WhatsApp transport - dependency inversion.

Business logic depends only on this interface, never on a concrete gateway.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MediaAttachment:
    """A file sent with a caption: images inline, anything else as a document."""

    mimetype: str
    data: bytes
    filename: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.mimetype.startswith("image/")


class BaseWhatsAppProvider(ABC):
    """
    Uniform interface for sending WhatsApp messages.

    Every implementation is responsible for:
    - the HTTP / SDK call
    - retry + circuit breaker
    - chat id formatting expected by the gateway
    """

    @abstractmethod
    async def send_text(self, to: str, text: str) -> None:
        """
        Send a text message as-is.

        Args:
            to: chat id (``628...@s.whatsapp.net``) or bare phone number.
            text: message body, WhatsApp formatting (``*bold*``).

        Raises:
            WhatsAppError: on send failure.
        """

    @abstractmethod
    async def send_media(self, to: str, media: MediaAttachment, caption: str = "") -> None:
        """
        Send an image or document, with an optional caption.

        Raises:
            WhatsAppError: on send failure.
        """

    @abstractmethod
    async def send_presence(self, to: str, state: str) -> None:
        """
        Presence update for a chat (``composing``, ``paused``, ``available``).

        Raises:
            WhatsAppError: on failure.
        """

    @abstractmethod
    async def logout(self) -> None:
        """Terminate the linked-device session on the gateway."""

    @abstractmethod
    async def check_connection(self) -> dict:
        """
        Gateway health: ``{"connected": bool, "state": str, ...}``.

        Never raises; an unreachable gateway reports ``connected=False``.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider name for logs and diagnostics."""
