"""
Rate/Delay Governor - per-chat reply cooldown and human-like pacing.

The cooldown check is a plain timestamp comparison: synchronous and
non-blocking. Pacing delays are computed here and awaited by the caller.
"""
import random
import time
from typing import Callable, Optional

from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)


class RateGovernor:
    def __init__(
        self,
        cooldown_seconds: Optional[float] = None,
        min_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        per_char_ms: Optional[int] = None,
        typing_cap_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.RATE_LIMIT_COOLDOWN_SECONDS
        )
        self.min_delay_ms = min_delay_ms if min_delay_ms is not None else settings.MIN_REPLY_DELAY_MS
        self.max_delay_ms = max_delay_ms if max_delay_ms is not None else settings.MAX_REPLY_DELAY_MS
        self.per_char_ms = per_char_ms if per_char_ms is not None else settings.TYPING_DELAY_PER_CHAR_MS
        self.typing_cap_ms = typing_cap_ms if typing_cap_ms is not None else settings.TYPING_DELAY_CAP_MS
        self._clock = clock
        self._rng = rng or random.Random()
        self._last_reply: dict[str, float] = {}

    def can_process(self, chat_id: str) -> bool:
        last = self._last_reply.get(chat_id)
        return last is None or self._clock() - last >= self.cooldown_seconds

    def record(self, chat_id: str) -> None:
        self._last_reply[chat_id] = self._clock()

    def try_acquire(self, chat_id: str) -> bool:
        """Check and record in one step. A refused chat leaves no trace."""
        if not self.can_process(chat_id):
            return False
        self.record(chat_id)
        return True

    def remaining(self, chat_id: str) -> float:
        """Seconds until ``chat_id`` may be answered again."""
        last = self._last_reply.get(chat_id)
        if last is None:
            return 0.0
        return max(0.0, self.cooldown_seconds - (self._clock() - last))

    def cleanup(self, max_age_seconds: Optional[float] = None) -> int:
        """Forget chats idle longer than ``max_age_seconds``."""
        max_age = max_age_seconds if max_age_seconds is not None else settings.RATE_LIMIT_CLEANUP_MAX_AGE_SECONDS
        now = self._clock()
        stale = [chat_id for chat_id, ts in self._last_reply.items() if now - ts > max_age]
        for chat_id in stale:
            del self._last_reply[chat_id]
        if stale:
            logger.debug("Rate limiter cleanup", extra_data={"removed": len(stale), "tracked": len(self._last_reply)})
        return len(stale)

    def human_delay(self) -> float:
        """Random pause before replying, in seconds."""
        return self._rng.randint(self.min_delay_ms, self.max_delay_ms) / 1000

    def typing_delay(self, text: str) -> float:
        """Composing-indicator time proportional to reply length, in seconds."""
        return min(len(text) * self.per_char_ms, self.typing_cap_ms) / 1000
