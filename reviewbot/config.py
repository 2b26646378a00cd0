"""Process-wide configuration loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from reviewbot.conversation.timeouts import TimeoutConfig
from reviewbot.quota.gate import QuotaConfig
from reviewbot.transport.telegram import TelegramConfig


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BotConfig:
    # Telegram
    telegram_bot_token: str = ""
    poll_timeout_s: int = 30

    # Shared store
    redis_url: str = "redis://localhost:6379/0"
    store_backend: str = "redis"
    draft_backend: str = "memory"
    draft_ttl_seconds: int = 3600

    # Quota
    daily_message_limit: int = 100
    lifetime_message_limit: int = 3000
    quota_timezone: str = "UTC"

    # Session timeouts
    session_timeout_minutes: int = 30
    timeout_warning_minutes: int = 5
    local_timeout_timers: bool = False
    sweep_interval_seconds: int = 60

    # Catalog / logging
    course_catalog_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        return cls(
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            poll_timeout_s=int(os.getenv("TELEGRAM_POLL_TIMEOUT", "30")),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            store_backend=os.getenv("STORE_BACKEND", "redis"),
            draft_backend=os.getenv("DRAFT_BACKEND", "memory"),
            draft_ttl_seconds=int(os.getenv("DRAFT_TTL_SECONDS", "3600")),
            daily_message_limit=int(os.getenv("DAILY_MESSAGE_LIMIT", "100")),
            lifetime_message_limit=int(os.getenv("LIFETIME_MESSAGE_LIMIT", "3000")),
            quota_timezone=os.getenv("QUOTA_TIMEZONE", "UTC"),
            session_timeout_minutes=int(os.getenv("SESSION_TIMEOUT_MINUTES", "30")),
            timeout_warning_minutes=int(os.getenv("TIMEOUT_WARNING_MINUTES", "5")),
            local_timeout_timers=_env_bool("LOCAL_TIMEOUT_TIMERS", False),
            sweep_interval_seconds=int(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
            course_catalog_path=os.getenv("COURSE_CATALOG_PATH") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @property
    def session_timeout_s(self) -> float:
        return self.session_timeout_minutes * 60.0

    def quota(self) -> QuotaConfig:
        return QuotaConfig(
            daily_limit=self.daily_message_limit,
            lifetime_limit=self.lifetime_message_limit,
            timezone=self.quota_timezone,
        )

    def timeouts(self) -> TimeoutConfig:
        return TimeoutConfig(
            inactivity_window_s=self.session_timeout_s,
            warning_lead_s=self.timeout_warning_minutes * 60.0,
        )

    def telegram(self) -> TelegramConfig:
        return TelegramConfig(
            bot_token=self.telegram_bot_token,
            poll_timeout_s=self.poll_timeout_s,
        )
