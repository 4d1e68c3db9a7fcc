"""
Process-wide runtime state shared by the handler and the operator API.
"""
import time
from typing import Optional

from ppid_bot.db.models import RuntimeSettings
from ppid_bot.domain.services.whatsapp.connection import ConnectionMonitor


class BotRuntime:
    """Operator settings, the auto-reply switch and the transport state."""

    def __init__(self, runtime_settings: Optional[RuntimeSettings] = None):
        self.settings = runtime_settings or RuntimeSettings()
        # Cleared by the operator "stop" command; inbound messages are then ignored
        self.running = True
        self.connection = ConnectionMonitor()
        self.started_at = time.time()

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at
