"""
API key check for the operator console endpoints.

Usage:
    @router.post("/start")
    async def start(_: None = Depends(require_operator_api_key)):
        ...
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from ppid_bot.core.config import settings
from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Operator-API-Key", auto_error=False)


async def require_operator_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    401 when the key is missing, 403 when it does not match.
    With OPERATOR_API_KEY unset every request is refused.
    """
    if not settings.OPERATOR_API_KEY:
        logger.warning("Operator endpoint refused, OPERATOR_API_KEY is not set")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="OPERATOR_API_KEY is not configured",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key, header required: X-Operator-API-Key",
        )

    if not hmac.compare_digest(api_key, settings.OPERATOR_API_KEY):
        logger.warning("Operator endpoint refused, wrong API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
