"""
Shared-secret check for gateway webhook calls.

The gateway is configured to send ``X-Webhook-Secret`` with every request.
"""
import hmac

from fastapi import Header, HTTPException, status

from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)


async def verify_webhook_secret(
    x_webhook_secret: str | None = Header(None),
) -> None:
    """
    - ``WHATSAPP_WEBHOOK_SECRET`` unset: no check.
    - header missing or different: 403.
    """
    expected = settings.WHATSAPP_WEBHOOK_SECRET
    if not expected:
        return

    if not x_webhook_secret:
        logger.warning("Webhook request without X-Webhook-Secret header")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing webhook secret",
        )

    if not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("Webhook request with wrong secret")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid webhook secret",
        )
