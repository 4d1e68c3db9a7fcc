"""
WhatsApp Provider Abstraction Layer

Lets the gateway be swapped without touching business logic.
"""
from ppid_bot.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, MediaAttachment
from ppid_bot.domain.services.whatsapp.provider_factory import (
    get_whatsapp_admin_provider,
    get_whatsapp_provider,
)

__all__ = [
    "BaseWhatsAppProvider",
    "MediaAttachment",
    "get_whatsapp_provider",
    "get_whatsapp_admin_provider",
]
