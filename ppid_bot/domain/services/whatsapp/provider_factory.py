"""
Provider Factory - build the WhatsApp provider from settings.

Two access points:
- get_whatsapp_provider(): replies to citizens
- get_whatsapp_admin_provider(): alerts to admins (separate circuit breaker)
"""
from __future__ import annotations

from ppid_bot.core.circuit_breaker import (
    get_whatsapp_admin_circuit_breaker,
    get_whatsapp_circuit_breaker,
)
from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger
from ppid_bot.domain.services.whatsapp.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)

_provider: BaseWhatsAppProvider | None = None
_admin_provider: BaseWhatsAppProvider | None = None


def _create_provider(provider_type: str, *, is_admin: bool = False) -> BaseWhatsAppProvider:
    if provider_type == "wppconnect":
        from ppid_bot.domain.services.whatsapp.wppconnect_provider import WPPConnectProvider

        circuit_breaker = (
            get_whatsapp_admin_circuit_breaker() if is_admin
            else get_whatsapp_circuit_breaker()
        )
        return WPPConnectProvider(circuit_breaker=circuit_breaker)

    raise ValueError(f"Unknown WhatsApp provider type: {provider_type}")


def get_whatsapp_provider() -> BaseWhatsAppProvider:
    global _provider
    if _provider is None:
        _provider = _create_provider(settings.WHATSAPP_PROVIDER)
        logger.info(
            "WhatsApp provider initialized",
            extra_data={"provider": _provider.provider_name, "context": "citizen"},
        )
    return _provider


def get_whatsapp_admin_provider() -> BaseWhatsAppProvider:
    global _admin_provider
    if _admin_provider is None:
        _admin_provider = _create_provider(settings.WHATSAPP_PROVIDER, is_admin=True)
        logger.info(
            "WhatsApp admin provider initialized",
            extra_data={"provider": _admin_provider.provider_name, "context": "admin"},
        )
    return _admin_provider


def reset_providers() -> None:
    """Testing only."""
    global _provider, _admin_provider
    _provider = None
    _admin_provider = None
