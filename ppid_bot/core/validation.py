"""
Input Validation Utilities

- WhatsApp chat id classification and masking for logs
- Contact name cleaning
- Text sanitization for inbound messages and operator input
"""
import re


class ChatIdValidator:
    """WhatsApp chat identifier helpers (``628123...@s.whatsapp.net`` style)."""

    GROUP_SUFFIX = "@g.us"
    STATUS_BROADCAST = "status@broadcast"
    IGNORED_SUFFIXES = ("@g.us", "@broadcast", "@newsletter")

    @staticmethod
    def is_ignored(chat_id: str) -> bool:
        """Groups, status updates, broadcast lists and channels are out of scope."""
        if not chat_id:
            return True
        if chat_id == ChatIdValidator.STATUS_BROADCAST:
            return True
        return chat_id.endswith(ChatIdValidator.IGNORED_SUFFIXES)

    @staticmethod
    def user_part(chat_id: str) -> str:
        return chat_id.split("@", 1)[0]

    @staticmethod
    def mask(chat_id: str) -> str:
        """
        Mask a chat id for logging (privacy).

        ``6281234567890@s.whatsapp.net`` -> ``628123****@s.whatsapp.net``
        """
        if not chat_id:
            return "****"
        user, sep, domain = chat_id.partition("@")
        if len(user) < 4:
            return "****" + sep + domain
        return user[:-4] + "****" + sep + domain


_NAME_SYMBOLS_RE = re.compile(r"[^\w\s]", re.UNICODE)


def clean_contact_name(push_name: str | None, default: str = "Kak") -> str:
    """Strip emoji and punctuation from a WhatsApp push-name."""
    if not push_name:
        return default
    cleaned = re.sub(r"\s+", " ", _NAME_SYMBOLS_RE.sub("", push_name)).strip()
    return cleaned or default


class TextSanitizer:
    """Text sanitization for security"""

    @staticmethod
    def sanitize(text: str, max_length: int = 4000) -> str:
        """
        Sanitize text input for processing and storage.

        Trims whitespace, enforces max length, removes null bytes and
        control characters (newlines and tabs are kept).
        """
        if not text:
            return ""

        sanitized = TextSanitizer.remove_control_characters(text.replace("\x00", ""))
        sanitized = sanitized.strip()[:max_length]
        return re.sub(r" +", " ", sanitized)

    @staticmethod
    def remove_control_characters(text: str) -> str:
        if not text:
            return ""
        return "".join(
            char for char in text
            if char >= " " or char in "\n\r\t"
        )

    @staticmethod
    def preview(text: str, length: int = 100) -> str:
        """Short single-line preview used in operator notifications."""
        if not text:
            return ""
        return text[:length]


def mask_secret(value: str | None) -> str:
    """Render an API key for operator display without leaking it."""
    if not value:
        return ""
    if len(value) <= 8:
        return "****"
    return value[:4] + "****" + value[-2:]
