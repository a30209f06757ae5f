"""Runtime configuration read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


@dataclass(frozen=True)
class Settings:
    github_token: Optional[str]
    telegram_token: Optional[str]
    update_interval: int = 300
    fetch_depth: int = 1
    max_message_length: int = 4096
    log_file: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            github_token=os.getenv("GITHUB_TOKEN"),
            telegram_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            update_interval=_int_env("UPDATE_INTERVAL", 300),
            fetch_depth=_int_env("FETCH_DEPTH", 1),
            max_message_length=_int_env("MAX_MESSAGE_LENGTH", 4096),
            log_file=os.getenv("LOG_FILE") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        for name in ("update_interval", "fetch_depth", "max_message_length"):
            if getattr(settings, name) <= 0:
                raise ValueError(f"{name.upper()} must be positive")
        return settings
