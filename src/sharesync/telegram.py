"""Telegram Bot API client (outgoing messages only)."""

import logging

import httpx

from .config import Config

logger = logging.getLogger("sharesync.telegram")

# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks of at most ``limit`` chars, preferring line breaks."""
    if len(text) <= limit:
        return [text]
    parts = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        parts.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        parts.append(remaining)
    return parts


class TelegramClient:
    """Client for the Telegram Bot API."""

    def __init__(self, config: Config):
        self.config = config
        self.base_url = f"{config.telegram.api_url.rstrip('/')}/bot{config.telegram.bot_token}"

    async def send_message(self, chat_id: str, text: str) -> list[dict]:
        """Send a message (split if too long). Returns the API results."""
        results = []
        async with httpx.AsyncClient(timeout=15.0) as client:
            for part in split_message(text):
                logger.debug("Sending message to chat %s (%d chars)", chat_id, len(part))
                response = await client.post(
                    f"{self.base_url}/sendMessage",
                    json={
                        "chat_id": chat_id,
                        "text": part,
                        "disable_web_page_preview": True,
                    },
                )
                response.raise_for_status()
                results.append(response.json().get("result", {}))
        return results
