"""
Transport connection state as reported by gateway lifecycle events.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)

LOGGED_OUT_REASON = "logged_out"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class ConnectionMonitor:
    """Last known transport state plus the latest pairing QR code."""

    def __init__(self) -> None:
        self.state = ConnectionState.CLOSE
        self.reason: Optional[str] = None
        self.qr: Optional[str] = None
        self.updated_at: float = time.time()

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    def update(self, state: ConnectionState, reason: Optional[str] = None) -> bool:
        """Record a lifecycle event. Returns True when the close is terminal (logged out)."""
        previous = self.state
        self.state = state
        self.reason = reason
        self.updated_at = time.time()
        if state == ConnectionState.OPEN:
            self.qr = None

        terminal = state == ConnectionState.CLOSE and reason == LOGGED_OUT_REASON
        logger.info(
            "Transport connection state changed",
            extra_data={"from": previous.value, "to": state.value, "reason": reason, "terminal": terminal},
        )
        return terminal

    def set_qr(self, qr: str) -> None:
        self.qr = qr
        self.state = ConnectionState.CONNECTING
        self.updated_at = time.time()

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "reason": self.reason,
            "has_qr": self.qr is not None,
            "updated_at": self.updated_at,
        }
