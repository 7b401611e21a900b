"""Best-effort notification dispatch for Telegram and ntfy."""

import asyncio
import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger("sharesync.notifications")


async def _send_telegram(config: "Config", chat_id: str, message: str) -> bool:
    """Send a notification via Telegram. Returns True on success."""
    if not config.telegram.bot_token:
        logger.warning("Telegram not configured for notifications")
        return False

    try:
        from .telegram import TelegramClient
        client = TelegramClient(config)
        await client.send_message(chat_id, message)
        return True
    except Exception as e:
        logger.error("Failed to send Telegram notification (chat: %s): %s", chat_id, e)
        return False


def _send_ntfy(
    config: "Config", topic: str, message: str, title: str | None = None,
) -> bool:
    """Send a notification via ntfy. Returns True on success."""
    url = f"{config.ntfy.server_url.rstrip('/')}/{topic}"
    headers = {"Priority": str(config.ntfy.priority)}
    if config.ntfy.token:
        headers["Authorization"] = f"Bearer {config.ntfy.token}"
    if title:
        headers["Title"] = title

    try:
        response = httpx.post(url, content=message.encode("utf-8"), headers=headers, timeout=10)
        response.raise_for_status()
        return True
    except Exception as e:
        logger.error("Failed to send ntfy notification (topic: %s): %s", topic, e)
        return False


def send_notification(
    config: "Config",
    channel: str,
    message: str,
    *,
    title: str | None = None,
) -> bool:
    """Send ``message`` to ``channel`` (Telegram chat id or ntfy topic).

    The surface comes from ``config.notifications.surface``. Failures are
    logged, never raised.
    """
    if not channel:
        logger.debug("No notification channel, message dropped")
        return False

    surface = config.notifications.surface
    if surface == "telegram":
        sent = asyncio.run(_send_telegram(config, channel, message))
    elif surface == "ntfy":
        sent = _send_ntfy(config, channel, message, title=title)
    else:
        logger.warning("Unknown notification surface %r", surface)
        sent = False

    if not sent:
        logger.warning("Notification not delivered (channel: %s, surface: %s)", channel, surface)
    return sent


def format_import_notice(title: str, count: int, folder_label: str | None = None) -> str:
    noun = "file" if count == 1 else "files"
    text = f"{title}: {count} new {noun} imported"
    if folder_label:
        text += f" into {folder_label}"
    return text
