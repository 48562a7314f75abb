"""
smartcrm/telegram.py

Minimal Telegram Bot API client (sendMessage only).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

logger = logging.getLogger(__name__)


class TelegramError(RuntimeError):
    """Telegram API call failed."""


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    base_url: str = "https://api.telegram.org"
    timeout: int = 10


class TelegramClient:
    def __init__(self, cfg: TelegramConfig):
        if not cfg.bot_token:
            raise ValueError("Telegram bot token is missing (TELEGRAM_BOT_TOKEN).")
        self.cfg = cfg

    @classmethod
    def from_app_config(cls, config) -> "TelegramClient":
        return cls(
            TelegramConfig(
                bot_token=config.get("TELEGRAM_BOT_TOKEN", ""),
                timeout=int(config.get("TELEGRAM_TIMEOUT", 10)),
            )
        )

    def _url(self, method: str) -> str:
        return f"{self.cfg.base_url}/bot{self.cfg.bot_token}/{method}"

    def send_message(self, chat_id: str, text: str) -> dict[str, Any]:
        r = requests.post(
            self._url("sendMessage"),
            json={"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
            timeout=self.cfg.timeout,
        )
        if r.status_code >= 400:
            raise TelegramError(f"Telegram sendMessage failed: {r.status_code} – {r.text}")
        return r.json()
