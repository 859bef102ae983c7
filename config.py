import os
import logging

logger = logging.getLogger(__name__)


class Config:
    """Application configuration."""
    API_TOKEN_TTL_SECONDS = int(os.getenv("API_TOKEN_TTL_SECONDS", "86400"))
    N8N_WEBHOOK_URL = os.getenv("N8N_WEBHOOK_URL")
    WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "15"))
    RECURRENCE_PREVIEW_COUNT = int(os.getenv("RECURRENCE_PREVIEW_COUNT", "5"))
    RECURRENCE_PREVIEW_MAX = int(os.getenv("RECURRENCE_PREVIEW_MAX", "60"))
    DASHBOARD_CACHE_TIMEOUT = int(os.getenv("DASHBOARD_CACHE_TIMEOUT", "60"))
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "0") == "1"
    LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "10 per minute")

    @classmethod
    def validate(cls) -> None:
        if not cls.N8N_WEBHOOK_URL:
            logger.warning(
                "N8N_WEBHOOK_URL not set - notifications depend on the "
                "n8n_webhook_mensagens system setting"
            )
        if not cls.SCHEDULER_ENABLED:
            logger.info("SCHEDULER_ENABLED != 1 - recurring task jobs will not run in this process")
