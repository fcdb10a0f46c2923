from __future__ import annotations

import os
from dataclasses import dataclass

from relay_bot_orx.completion_client import DEFAULT_OPENAI_BASE_URL

DEFAULT_TELEGRAM_API_BASE_URL = "https://api.telegram.org"
DEFAULT_BOT_CONTACT = "@ku113p"


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    redis_url: str
    database_path: str = "relay_bot.sqlite3"
    telegram_api_base_url: str = DEFAULT_TELEGRAM_API_BASE_URL
    telegram_webhook_secret: str | None = None
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    openai_timeout_seconds: float = 45.0
    redis_timeout_seconds: float = 5.0
    bot_contact: str = DEFAULT_BOT_CONTACT
    bot_reply_delay_min_seconds: float = 1.0
    bot_reply_delay_max_seconds: float = 5.0
    bot_update_dedupe_ttl_seconds: int = 300
    bot_webhook_host: str = "127.0.0.1"
    bot_webhook_port: int = 8001

    @classmethod
    def from_env(cls) -> Settings:
        missing: list[str] = []

        required = {
            "telegram_bot_token": os.getenv("TELEGRAM_BOT_TOKEN"),
            "redis_url": os.getenv("REDIS_URL"),
        }

        for key, value in required.items():
            if not value:
                missing.append(key.upper())

        if missing:
            details = ", ".join(sorted(missing))
            raise RuntimeError(f"Missing required environment variables: {details}")

        delay_min = float(os.getenv("BOT_REPLY_DELAY_MIN_SECONDS", "1"))
        delay_max = float(os.getenv("BOT_REPLY_DELAY_MAX_SECONDS", "5"))
        if delay_min < 0 or delay_max < delay_min:
            raise RuntimeError(
                "Invalid reply delay range: BOT_REPLY_DELAY_MIN_SECONDS must be "
                "non-negative and not above BOT_REPLY_DELAY_MAX_SECONDS"
            )

        return cls(
            telegram_bot_token=required["telegram_bot_token"] or "",
            redis_url=required["redis_url"] or "",
            database_path=os.getenv("DATABASE_PATH", "relay_bot.sqlite3"),
            telegram_api_base_url=os.getenv(
                "TELEGRAM_API_BASE_URL", DEFAULT_TELEGRAM_API_BASE_URL
            ),
            telegram_webhook_secret=_optional_env("TELEGRAM_WEBHOOK_SECRET"),
            openai_base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL),
            openai_timeout_seconds=float(os.getenv("OPENAI_TIMEOUT_SECONDS", "45")),
            redis_timeout_seconds=float(os.getenv("REDIS_TIMEOUT_SECONDS", "5")),
            bot_contact=os.getenv("BOT_CONTACT", DEFAULT_BOT_CONTACT),
            bot_reply_delay_min_seconds=delay_min,
            bot_reply_delay_max_seconds=delay_max,
            bot_update_dedupe_ttl_seconds=int(
                os.getenv("BOT_UPDATE_DEDUPE_TTL_SECONDS", "300")
            ),
            bot_webhook_host=os.getenv("BOT_WEBHOOK_HOST", "127.0.0.1"),
            bot_webhook_port=int(os.getenv("BOT_WEBHOOK_PORT", "8001")),
        )


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
