"""Environment-driven configuration for the feed importer."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_PG_DSN = "dbname=autoposter user=autoposter password=autoposter host=localhost port=5432"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; RSSImporter/1.0)"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Importer configuration with validation."""

    pg_dsn: str = DEFAULT_PG_DSN

    # AI text generation (any OpenAI-compatible chat completions API)
    openai_api_key: str = ""
    ai_base_url: str = ""
    ai_model: str = "gpt-4o-mini"
    ai_max_tokens: int = 4096
    ai_temperature: float = 0.3
    ai_timeout: float = 120.0
    target_language: str = "Croatian"
    post_locale: str = "hr"

    # Pipeline
    poller_enabled: bool = False
    batch_size: int = 5
    lock_timeout_ms: int = 300_000
    max_retries: int = 3
    rate_max_concurrent: int = 2
    rate_min_interval_ms: int = 3000

    # HTTP
    request_timeout: float = 10.0
    image_timeout: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT

    # Publishing
    schedule_min_hours: int = 1
    schedule_max_hours: int = 48
    image_max_width: int = 1200
    image_quality: int = 85

    # Monitoring
    queue_alert_threshold: int = 50
    failure_rate_alert_pct: float = 20.0

    # Worker schedules
    poll_interval_minutes: int = 30
    process_interval_minutes: int = 5

    @classmethod
    def from_env(cls, *, require_ai: bool = False) -> "Config":
        """Load and validate configuration from environment variables"""
        config = cls(
            pg_dsn=os.getenv("PG_DSN", DEFAULT_PG_DSN),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            ai_base_url=os.getenv("AI_BASE_URL", ""),
            ai_model=os.getenv("AI_MODEL", "gpt-4o-mini"),
            ai_max_tokens=int(os.getenv("AI_MAX_TOKENS", "4096")),
            ai_temperature=float(os.getenv("AI_TEMPERATURE", "0.3")),
            ai_timeout=float(os.getenv("AI_TIMEOUT", "120")),
            target_language=os.getenv("TARGET_LANGUAGE", "Croatian"),
            post_locale=os.getenv("POST_LOCALE", "hr"),
            poller_enabled=_env_bool("RSS_POLLER_ENABLED"),
            batch_size=int(os.getenv("RSS_BATCH_SIZE", "5")),
            lock_timeout_ms=int(os.getenv("RSS_LOCK_TIMEOUT_MS", "300000")),
            max_retries=int(os.getenv("RSS_MAX_RETRIES", "3")),
            rate_max_concurrent=int(os.getenv("RSS_MAX_CONCURRENT", "2")),
            rate_min_interval_ms=int(os.getenv("RSS_RATE_LIMIT_DELAY_MS", "3000")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "10")),
            image_timeout=float(os.getenv("IMAGE_TIMEOUT", "15")),
            user_agent=os.getenv("IMPORTER_USER_AGENT", DEFAULT_USER_AGENT),
            schedule_min_hours=int(os.getenv("SCHEDULE_MIN_HOURS", "1")),
            schedule_max_hours=int(os.getenv("SCHEDULE_MAX_HOURS", "48")),
            image_max_width=int(os.getenv("IMAGE_MAX_WIDTH", "1200")),
            image_quality=int(os.getenv("IMAGE_QUALITY", "85")),
            queue_alert_threshold=int(os.getenv("QUEUE_ALERT_THRESHOLD", "50")),
            failure_rate_alert_pct=float(os.getenv("FAILURE_RATE_ALERT_PCT", "20")),
            poll_interval_minutes=int(os.getenv("POLL_INTERVAL_MINUTES", "30")),
            process_interval_minutes=int(os.getenv("PROCESS_INTERVAL_MINUTES", "5")),
        )
        config._validate(require_ai=require_ai)
        return config

    def _validate(self, *, require_ai: bool = False) -> None:
        """Validate configuration values"""
        errors = []

        if not self.pg_dsn:
            errors.append("PG_DSN is required")

        if require_ai and not self.openai_api_key:
            errors.append("OPENAI_API_KEY is required for content processing")

        if self.batch_size < 1 or self.batch_size > 100:
            errors.append("RSS_BATCH_SIZE should be between 1 and 100")

        if self.lock_timeout_ms < 1000:
            errors.append("RSS_LOCK_TIMEOUT_MS should be at least 1000")

        if self.max_retries < 1:
            errors.append("RSS_MAX_RETRIES should be at least 1")

        if self.rate_max_concurrent < 1:
            errors.append("RSS_MAX_CONCURRENT should be at least 1")

        if self.rate_min_interval_ms < 0:
            errors.append("RSS_RATE_LIMIT_DELAY_MS cannot be negative")

        if self.request_timeout <= 0 or self.image_timeout <= 0 or self.ai_timeout <= 0:
            errors.append("Timeouts must be positive (REQUEST_TIMEOUT, IMAGE_TIMEOUT, AI_TIMEOUT)")

        if self.schedule_min_hours < 0 or self.schedule_max_hours < self.schedule_min_hours:
            errors.append("SCHEDULE_MIN_HOURS/SCHEDULE_MAX_HOURS must form a non-negative range")

        if not 1 <= self.image_quality <= 95:
            errors.append("IMAGE_QUALITY should be between 1 and 95")

        if self.image_max_width < 16:
            errors.append("IMAGE_MAX_WIDTH is too small")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise ConfigurationError(error_msg)

        logger.debug("Configuration validated successfully")

    @property
    def lock_timeout_seconds(self) -> float:
        return self.lock_timeout_ms / 1000.0

    @property
    def rate_min_interval_seconds(self) -> float:
        return self.rate_min_interval_ms / 1000.0
