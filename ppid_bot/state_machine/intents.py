"""
Message intent detection.

``IntentClassifier`` is the seam; ``PhraseIntentClassifier`` matches the
configured phrase lists case-insensitively.
"""
import re
from typing import Optional, Protocol

from ppid_bot.core.config import parse_csv_setting, settings

_RATING_RE = re.compile(r"^[1-5]$")

# Self-introductions; the bare forms only match the whole message
_NAME_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"nama saya (\w+)",
        r"panggil saya (\w+)",
        r"saya bernama (\w+)",
        r"perkenalkan,? saya (\w+)",
        r"^aku (\w+)$",
        r"^saya (\w+)$",
        r"^ini (\w+)$",
    )
]

# Words that follow "saya"/"aku"/"ini" without being a name
_NOT_NAMES = frozenset(
    """
    mau ingin akan bisa boleh harus perlu sedang tanya nanya bertanya tahu tau
    cari mencari dari yang untuk dengan ini itu ada tidak minta mohon tolong
    bantu lihat cek kasih adalah sudah belum juga saja aja dong ya
    apa siapa mana bagaimana kapan kenapa mengapa berapa
    """.split()
)


class IntentClassifier(Protocol):
    def is_handoff_request(self, text: str) -> bool: ...

    def is_gratitude(self, text: str) -> bool: ...

    def is_closing(self, text: str) -> bool: ...

    def parse_rating(self, text: str) -> Optional[int]: ...

    def needs_follow_up(self, reply: str) -> bool: ...

    def extract_name(self, text: str) -> Optional[str]: ...


class PhraseIntentClassifier:
    def __init__(
        self,
        handoff_phrases: Optional[list[str]] = None,
        gratitude_phrases: Optional[list[str]] = None,
        closing_phrases: Optional[list[str]] = None,
        follow_up_triggers: Optional[list[str]] = None,
    ):
        self.handoff_phrases = self._lower(handoff_phrases, settings.HANDOFF_PHRASES)
        self.gratitude_phrases = self._lower(gratitude_phrases, settings.GRATITUDE_PHRASES)
        self.closing_phrases = self._lower(closing_phrases, settings.CLOSING_PHRASES)
        self.follow_up_triggers = self._lower(follow_up_triggers, settings.FOLLOW_UP_TRIGGERS)

    @staticmethod
    def _lower(phrases: Optional[list[str]], fallback: str) -> list[str]:
        return [p.lower() for p in (phrases if phrases is not None else parse_csv_setting(fallback))]

    def is_handoff_request(self, text: str) -> bool:
        lower = text.lower()
        return any(p in lower for p in self.handoff_phrases)

    def is_gratitude(self, text: str) -> bool:
        lower = text.lower()
        return any(p in lower for p in self.gratitude_phrases)

    def is_closing(self, text: str) -> bool:
        """Whole message, or a phrase at the start or end ("oke deh", "sudah oke")."""
        lower = text.lower().strip()
        return any(
            lower == p or lower.startswith(p + " ") or lower.endswith(" " + p)
            for p in self.closing_phrases
        )

    def parse_rating(self, text: str) -> Optional[int]:
        stripped = text.strip()
        return int(stripped) if _RATING_RE.match(stripped) else None

    def needs_follow_up(self, reply: str) -> bool:
        lower = reply.lower()
        return any(t in lower for t in self.follow_up_triggers)

    def extract_name(self, text: str) -> Optional[str]:
        """Name from a self-introduction ("nama saya budi" -> "Budi"), else None."""
        stripped = text.strip()
        for pattern in _NAME_PATTERNS:
            match = pattern.search(stripped)
            if match:
                candidate = match.group(1)
                if candidate.lower() in _NOT_NAMES or candidate.isdigit():
                    return None
                return candidate.capitalize()
        return None
