"""
Conversation Session Store - in-memory per-chat state.

One process-wide instance. Every read-modify-write for a chat id runs
under that chat's ``asyncio.Lock``; different chats never contend.
Callers receive copies, so a session can only change through this store.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional

from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import (
    AppException,
    ErrorCode,
    InvalidStateTransitionError,
    NotFoundException,
)
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator
from ppid_bot.db.models import BufferedMessage, ConversationPhase, ConversationSession
from ppid_bot.state_machine.states import is_valid_transition

logger = get_logger(__name__)

SurveySender = Callable[[ConversationSession], Awaitable[None]]


class SessionStore:
    def __init__(
        self,
        inactivity_seconds: Optional[float] = None,
        purge_seconds: Optional[float] = None,
        buffer_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.inactivity_seconds = (
            inactivity_seconds if inactivity_seconds is not None else settings.SESSION_INACTIVITY_MINUTES * 60
        )
        self.purge_seconds = purge_seconds if purge_seconds is not None else settings.SESSION_PURGE_HOURS * 3600
        self.buffer_size = buffer_size or settings.SESSION_BUFFER_SIZE
        self._clock = clock
        self._sessions: dict[str, ConversationSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    def get(self, chat_id: str) -> Optional[ConversationSession]:
        session = self._sessions.get(chat_id)
        return session.model_copy(deep=True) if session else None

    def all_sessions(self) -> list[ConversationSession]:
        return [s.model_copy(deep=True) for s in self._sessions.values()]

    def is_expired(self, chat_id: str) -> bool:
        """New chats count as expired: both get a welcome message."""
        session = self._sessions.get(chat_id)
        if session is None:
            return True
        return self._clock() - session.last_activity_at > self.inactivity_seconds

    async def touch(
        self,
        chat_id: str,
        customer_name: Optional[str] = None,
        introduced: bool = False,
    ) -> ConversationSession:
        """
        Mark activity; creates the session on first contact.

        An ``introduced`` name latches: later push names no longer replace it.
        """
        async with self._lock_for(chat_id):
            session = self._sessions.get(chat_id)
            if session is None:
                session = ConversationSession(chat_id=chat_id, last_activity_at=self._clock())
                self._sessions[chat_id] = session
                logger.debug("Session created", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})

            session.last_activity_at = self._clock()
            session.message_count += 1
            session.needs_follow_up = False
            if session.phase == ConversationPhase.NORMAL and session.survey_asked:
                # First message after a closed conversation starts a new lifecycle
                session.survey_asked = False
            if customer_name and (introduced or not session.name_introduced):
                session.customer_name = customer_name
                session.name_introduced = session.name_introduced or introduced
            return session.model_copy(deep=True)

    async def append_to_buffer(self, chat_id: str, role: str, text: str) -> None:
        """Bounded FIFO: the oldest messages are evicted past ``buffer_size``."""
        async with self._lock_for(chat_id):
            session = self._sessions.get(chat_id)
            if session is None:
                return
            session.buffer.append(BufferedMessage(role=role, text=text, timestamp=self._clock()))
            overflow = len(session.buffer) - self.buffer_size
            if overflow > 0:
                del session.buffer[:overflow]

    async def update(self, chat_id: str, **fields) -> Optional[ConversationSession]:
        """Set plain fields (``last_question``, ``follow_up_asked``, ...). Not for ``phase``."""
        if "phase" in fields:
            raise ValueError("use set_phase() to change the conversation phase")
        async with self._lock_for(chat_id):
            session = self._sessions.get(chat_id)
            if session is None:
                return None
            for name, value in fields.items():
                setattr(session, name, value)
            return session.model_copy(deep=True)

    async def set_phase(
        self,
        chat_id: str,
        target: ConversationPhase,
        *,
        force: bool = False,
        **fields,
    ) -> ConversationSession:
        """
        Move a session to ``target`` together with related fields, atomically.

        Raises:
            NotFoundException: unknown chat id.
            InvalidStateTransitionError: transition not in the table (unless ``force``).
        """
        async with self._lock_for(chat_id):
            session = self._sessions.get(chat_id)
            if session is None:
                raise NotFoundException("session", chat_id, ErrorCode.SESSION_NOT_FOUND)
            if not force and session.phase != target and not is_valid_transition(session.phase, target):
                raise InvalidStateTransitionError(chat_id, session.phase.value, target.value)

            previous = session.phase
            session.phase = target
            for name, value in fields.items():
                setattr(session, name, value)
            if previous != target:
                logger.info(
                    "Conversation phase changed",
                    extra_data={
                        "chat_id": ChatIdValidator.mask(chat_id),
                        "from": previous.value,
                        "to": target.value,
                    },
                )
            return session.model_copy(deep=True)

    async def sweep(self, send_survey: SurveySender) -> dict:
        """
        Periodic housekeeping.

        - purge sessions idle for ``purge_seconds``
        - ask idle NORMAL sessions for a survey once per lifecycle; the
          phase moves first and is rolled back if the send fails
        """
        now = self._clock()
        purged = 0
        surveyed = 0
        failed = 0

        for chat_id in list(self._sessions):
            async with self._lock_for(chat_id):
                session = self._sessions.get(chat_id)
                if session is None:
                    continue
                idle = now - session.last_activity_at

                if idle >= self.purge_seconds:
                    del self._sessions[chat_id]
                    purged += 1
                    continue

                if (
                    idle < self.inactivity_seconds
                    or session.survey_asked
                    or session.phase != ConversationPhase.NORMAL
                ):
                    continue

                session.phase = ConversationPhase.AWAITING_SURVEY
                session.survey_asked = True
                snapshot = session.model_copy(deep=True)

            try:
                await send_survey(snapshot)
                surveyed += 1
            except AppException as exc:
                failed += 1
                await self._rollback_survey(chat_id)
                logger.error(
                    "Inactivity survey not delivered",
                    extra_data={"chat_id": ChatIdValidator.mask(chat_id), "error": exc.message},
                )

        for chat_id in [c for c in self._locks if c not in self._sessions and not self._locks[c].locked()]:
            del self._locks[chat_id]

        result = {"purged": purged, "surveyed": surveyed, "failed": failed, "active": len(self._sessions)}
        if purged or surveyed or failed:
            logger.info("Session sweep finished", extra_data=result)
        return result

    async def _rollback_survey(self, chat_id: str) -> None:
        async with self._lock_for(chat_id):
            session = self._sessions.get(chat_id)
            if session is not None and session.phase == ConversationPhase.AWAITING_SURVEY:
                session.phase = ConversationPhase.NORMAL
                session.survey_asked = False

    def snapshot(self) -> list[ConversationSession]:
        return self.all_sessions()

    def restore(self, sessions: list[ConversationSession]) -> int:
        """Replace in-memory state with persisted sessions (startup only)."""
        self._sessions = {s.chat_id: s.model_copy(deep=True) for s in sessions}
        logger.info("Sessions restored", extra_data={"count": len(self._sessions)})
        return len(self._sessions)
