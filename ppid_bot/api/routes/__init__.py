"""
API Routes
"""
from fastapi import APIRouter

from ppid_bot.api.routes.operator import router as operator_router
from ppid_bot.api.webhooks.whatsapp import router as whatsapp_router

router = APIRouter()

router.include_router(operator_router, prefix="/operator", tags=["operator"])
router.include_router(whatsapp_router, prefix="/whatsapp", tags=["webhooks"])
