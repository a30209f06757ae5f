"""Telegram Bot API client used to deliver notifications."""

import logging
import os
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class TelegramAPIError(Exception):
    """Raised when Telegram refuses or fails to deliver a message."""
    pass


class TelegramBotClient:
    """Minimal client for the Bot API ``sendMessage`` method."""

    API_URL = "https://api.telegram.org"
    REQUEST_TIMEOUT_SECONDS = 20

    def __init__(self, token: Optional[str] = None):
        """
        Args:
            token: Bot token. If None, uses TELEGRAM_BOT_TOKEN env var.
        """
        if token is None:
            token = os.getenv("TELEGRAM_BOT_TOKEN")
        if not token:
            raise ValueError("TELEGRAM_BOT_TOKEN must be set")
        self.token = token

    def send_message(self, chat_id: int, text: str, parse_mode: Optional[str] = "Markdown") -> None:
        """
        Send one message to a chat.

        Raises:
            TelegramAPIError: If the request fails or Telegram reports an error
        """
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            response = requests.post(
                f"{self.API_URL}/bot{self.token}/sendMessage",
                json=payload,
                timeout=self.REQUEST_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as e:
            raise TelegramAPIError(f"Request to Telegram failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200 or not body.get("ok"):
            description = body.get("description") or response.text
            raise TelegramAPIError(f"sendMessage to {chat_id} failed ({response.status_code}): {description}")
