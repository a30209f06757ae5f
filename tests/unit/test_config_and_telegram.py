"""Unit tests for config.py and infrastructure/telegram_client.py"""

import os
import unittest
from unittest.mock import Mock, patch

import requests

from releasebot.config import Settings
from releasebot.infrastructure.telegram_client import TelegramAPIError, TelegramBotClient


class TestSettings(unittest.TestCase):

    @patch.dict(os.environ, {
        "GITHUB_TOKEN": "gh",
        "TELEGRAM_BOT_TOKEN": "tg",
        "UPDATE_INTERVAL": "60",
        "FETCH_DEPTH": "5",
        "LOG_LEVEL": "debug",
    }, clear=True)
    def test_reads_environment(self):
        settings = Settings.from_env()

        self.assertEqual(settings.github_token, "gh")
        self.assertEqual(settings.telegram_token, "tg")
        self.assertEqual(settings.update_interval, 60)
        self.assertEqual(settings.fetch_depth, 5)
        self.assertEqual(settings.max_message_length, 4096)
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertIsNone(settings.log_file)

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        settings = Settings.from_env()

        self.assertEqual(settings.update_interval, 300)
        self.assertEqual(settings.fetch_depth, 1)

    @patch.dict(os.environ, {"UPDATE_INTERVAL": "soon"}, clear=True)
    def test_rejects_non_integer(self):
        with self.assertRaises(ValueError):
            Settings.from_env()

    @patch.dict(os.environ, {"FETCH_DEPTH": "0"}, clear=True)
    def test_rejects_non_positive(self):
        with self.assertRaises(ValueError):
            Settings.from_env()


POST = "releasebot.infrastructure.telegram_client.requests.post"


class TestTelegramBotClient(unittest.TestCase):

    def setUp(self):
        self.client = TelegramBotClient(token="123:abc")

    @patch(POST)
    def test_send_message(self, mock_post):
        mock_post.return_value = Mock(status_code=200, json=Mock(return_value={"ok": True}))

        self.client.send_message(42, "*hi*")

        url = mock_post.call_args.args[0]
        payload = mock_post.call_args.kwargs["json"]
        self.assertEqual(url, "https://api.telegram.org/bot123:abc/sendMessage")
        self.assertEqual(payload["chat_id"], 42)
        self.assertEqual(payload["text"], "*hi*")
        self.assertEqual(payload["parse_mode"], "Markdown")

    @patch(POST)
    def test_api_error_raises(self, mock_post):
        mock_post.return_value = Mock(
            status_code=403,
            text="Forbidden",
            json=Mock(return_value={"ok": False, "description": "bot was blocked by the user"}),
        )

        with self.assertRaisesRegex(TelegramAPIError, "blocked"):
            self.client.send_message(42, "hi")

    @patch(POST)
    def test_transport_error_raises(self, mock_post):
        mock_post.side_effect = requests.exceptions.ReadTimeout("slow")

        with self.assertRaises(TelegramAPIError):
            self.client.send_message(42, "hi")

    @patch.dict(os.environ, {}, clear=True)
    def test_requires_token(self):
        with self.assertRaises(ValueError):
            TelegramBotClient()


if __name__ == "__main__":
    unittest.main()
