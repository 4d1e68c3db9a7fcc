"""
Admin Notification Service - WhatsApp alerts to staff numbers.

Alerts go through the admin provider, which has its own circuit breaker,
so a failing admin number never blocks replies to citizens.
"""
from ppid_bot.core.config import parse_csv_setting, settings
from ppid_bot.core.exceptions import AppException
from ppid_bot.core.logging import get_logger
from ppid_bot.core.validation import ChatIdValidator, TextSanitizer
from ppid_bot.domain.services.whatsapp import BaseWhatsAppProvider, get_whatsapp_admin_provider

logger = get_logger(__name__)


class AdminNotificationService:
    """Service for sending notifications to admins"""

    @staticmethod
    def _admin_numbers() -> list[str]:
        return parse_csv_setting(settings.WHATSAPP_ADMIN_NUMBERS)

    @staticmethod
    async def notify_handover_request(
        chat_id: str,
        customer_name: str,
        text: str,
        provider: BaseWhatsAppProvider | None = None,
    ) -> bool:
        """
        Tell staff that a citizen asked for a human.

        Returns True when at least one admin was reached. Failures are
        logged per recipient; the others are still tried.
        """
        targets = AdminNotificationService._admin_numbers()
        if not targets:
            return False

        provider = provider or get_whatsapp_admin_provider()
        message = (
            "🔔 *Permintaan CS*\n\n"
            f"Nama: {customer_name}\n"
            f"Nomor: {ChatIdValidator.user_part(chat_id)}\n"
            f"Pesan: {TextSanitizer.preview(text, 200)}\n\n"
            "_Balas melalui konsol operator._"
        )

        success = False
        for target in targets:
            try:
                await provider.send_text(target, message)
                success = True
            except AppException as exc:
                logger.error(
                    "Failed to send handover alert to admin",
                    extra_data={"admin": ChatIdValidator.mask(target), "error": exc.message},
                )
        return success
