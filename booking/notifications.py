# booking/notifications.py
import asyncio
import html
import logging

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


async def _send(chat_id, text: str):
    bot = Bot(
        settings.TELEGRAM_BOT_TOKEN,
        default=DefaultBotProperties(parse_mode="HTML")
    )
    try:
        await bot.send_message(chat_id, text)
    finally:
        await bot.session.close()


def send_telegram(chat_id=None, text: str = "") -> bool:
    """Deliver ``text`` to a Telegram chat.

    Returns False without raising when the bot is not configured, the chat is
    unknown or delivery fails; a missed notification never breaks a booking.
    """
    if not settings.TELEGRAM_BOT_TOKEN or not chat_id:
        return False

    try:
        asyncio.run(_send(chat_id, text))
        return True
    except Exception:
        logger.exception("Telegram send to %s failed", chat_id)
        return False


def appointment_message(appointment) -> str:
    start = timezone.localtime(appointment.start_time)
    lines = [
        "<b>New booking</b>",
        f"{html.escape(appointment.service.name)} ({appointment.service.duration_minutes} min)",
        f"{start:%d.%m.%Y %H:%M}",
        f"Client: {html.escape(appointment.client_name)}",
    ]
    if appointment.client_phone:
        lines.append(f"Phone: {html.escape(appointment.client_phone)}")
    if appointment.notes:
        lines.append(f"Notes: {html.escape(appointment.notes)}")
    return "\n".join(lines)


def notify_new_appointment(appointment) -> bool:
    return send_telegram(appointment.staff.telegram_chat_id, appointment_message(appointment))
