"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    openai_api_key: str
    database_url: str
    cron_secret: str
    openai_base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    batch_size: int = 50
    staleness_days: int = 7
    completion_window: str = "24h"
    max_output_tokens: int = 400
    worker_port: int = 9000


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d", name, raw, default)
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    openai_api_key = os.getenv("OPENAI_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    cron_secret = os.getenv("CRON_SECRET", "")
    openai_base_url = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
    model = os.getenv("BATCH_MODEL", "gpt-4o-mini")
    completion_window = os.getenv("BATCH_COMPLETION_WINDOW", "24h")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not openai_api_key:
        logger.warning("OPENAI_API_KEY is not configured; batch submissions will fail.")
    if not cron_secret:
        logger.warning("CRON_SECRET is not configured; every trigger request will be rejected.")

    return Settings(
        openai_api_key=openai_api_key,
        database_url=database_url,
        cron_secret=cron_secret,
        openai_base_url=openai_base_url,
        model=model,
        batch_size=_int_env("BATCH_SIZE", 50),
        staleness_days=_int_env("SCORE_STALENESS_DAYS", 7),
        completion_window=completion_window,
        max_output_tokens=_int_env("BATCH_MAX_OUTPUT_TOKENS", 400),
        worker_port=_int_env("WORKER_PORT", 9000),
    )
