"""
Health checks - liveness is trivial; readiness checks every dependency.
"""
from typing import Any

import httpx

from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger
from ppid_bot.domain.services.whatsapp import BaseWhatsAppProvider
from ppid_bot.rag.retriever import Retriever

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Filtered errors: no infrastructure details in the response
_ERROR_WHATSAPP = "error: whatsapp_unavailable"
_ERROR_WHATSAPP_DISCONNECTED = "error: whatsapp_disconnected"
_ERROR_OLLAMA = "error: ollama_unavailable"
_ERROR_INDEX = "error: index_not_built"


async def _check_whatsapp_gateway(provider: BaseWhatsAppProvider) -> str:
    result = await provider.check_connection()
    if result.get("error") or result.get("status_code"):
        logger.warning("WhatsApp gateway health check failed", extra_data=result)
        return _ERROR_WHATSAPP
    if not result.get("connected"):
        logger.warning("WhatsApp gateway up but not connected", extra_data={"state": result.get("state")})
        return _ERROR_WHATSAPP_DISCONNECTED
    return _CHECK_OK


async def _check_ollama() -> str:
    """Embeddings always come from Ollama, whichever backend generates text."""
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{settings.OLLAMA_BASE_URL.rstrip('/')}/api/tags")
    except httpx.RequestError as exc:
        logger.warning("Ollama health check failed", extra_data={"error": str(exc)})
        return _ERROR_OLLAMA
    if response.status_code != 200:
        logger.warning("Ollama returned unexpected status", extra_data={"status_code": response.status_code})
        return _ERROR_OLLAMA
    return _CHECK_OK


def _check_index(retriever: Retriever) -> str:
    return _CHECK_OK if retriever.is_ready else _ERROR_INDEX


async def check_readiness(provider: BaseWhatsAppProvider, retriever: Retriever) -> dict[str, Any]:
    checks = {
        "whatsapp_gateway": await _check_whatsapp_gateway(provider),
        "ollama": await _check_ollama(),
        "vector_index": _check_index(retriever),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED, **checks}
