"""
Parser for exported WhatsApp chat transcripts (.txt).

Turns past conversations into style examples: every adjacent pair of
messages from different senders becomes one ``User: ...\\nAssistant: ...``
document tagged ``chat-history``.
"""
import re
from dataclasses import dataclass, field

from langchain_core.documents import Document

from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)

CHAT_HISTORY_TYPE = "chat-history"

# Both export flavours:
#   [29/01/24 10.30] Name: message
#   29/01/24, 10.30 - Name: message
#   [1/29/24, 10:30:15 PM] Name: message
_HEADER_RE = re.compile(
    r"^\[?(?P<date>\d{1,4}[/.-]\d{1,2}[/.-]\d{1,4}),?\s+"
    r"(?P<time>\d{1,2}[.:]\d{2}(?:[.:]\d{2})?(?:\s?[APap]\.?[Mm]\.?)?)\]?"
    r"\s*(?:-\s*)?(?P<sender>[^:\n]+?):\s(?P<text>.*)$"
)

_SYSTEM_MARKERS = (
    "Messages and calls are end-to-end encrypted",
    "Pesan dan panggilan terenkripsi secara end-to-end",
)


@dataclass
class ChatMessage:
    sender: str
    lines: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def parse_messages(content: str) -> list[ChatMessage]:
    """Header lines start a message; other non-blank lines continue the current one."""
    messages: list[ChatMessage] = []
    current: ChatMessage | None = None

    for line in content.splitlines():
        match = _HEADER_RE.match(line.strip())
        if match:
            current = ChatMessage(sender=match.group("sender").strip(), lines=[match.group("text").strip()])
            messages.append(current)
        elif current is not None and line.strip():
            current.lines.append(line.strip())

    return messages


def _is_system_message(message: ChatMessage) -> bool:
    return any(marker in message.text for marker in _SYSTEM_MARKERS)


def parse_whatsapp_chat(content: str, filename: str) -> list[Document]:
    """
    Parse an exported chat into conversation-pair documents.

    A file that yields no messages is logged and returns an empty list.
    """
    messages = parse_messages(content)
    if not messages:
        logger.warning(
            "No messages parsed from chat export, format might be unsupported",
            extra_data={"file": filename},
        )
        return []

    documents = []
    for first, second in zip(messages, messages[1:]):
        if _is_system_message(first) or _is_system_message(second):
            continue
        if first.sender == second.sender:
            continue
        documents.append(
            Document(
                page_content=f"User: {first.text}\nAssistant: {second.text}",
                metadata={
                    "source": filename,
                    "file_name": filename,
                    "type": CHAT_HISTORY_TYPE,
                    "user": first.sender,
                    "assistant": second.sender,
                },
            )
        )

    logger.info(
        "Parsed chat export",
        extra_data={"file": filename, "messages": len(messages), "pairs": len(documents)},
    )
    return documents
