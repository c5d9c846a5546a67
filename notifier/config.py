"""Environment configuration for the notification engine."""

import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _int_list(raw: str) -> list[int]:
    return [int(part) for part in raw.split(",") if part.strip()]


class Settings:
    """Application settings loaded from environment variables.

    Built once at process start and handed to each component's constructor.
    Keyword overrides exist so tests can build isolated instances.
    """

    def __init__(self, **overrides) -> None:
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "")
        self.CRON_SECRET: str = os.getenv("CRON_SECRET", "")

        # Worker configuration
        self.WORKER_BATCH_SIZE: int = int(os.getenv("WORKER_BATCH_SIZE", "50"))
        self.WORKER_MAX_RETRIES: int = int(os.getenv("WORKER_MAX_RETRIES", "3"))
        self.WORKER_POLL_INTERVAL_SECONDS: int = int(
            os.getenv("WORKER_POLL_INTERVAL_SECONDS", "60")
        )
        self.RETRY_BACKOFF_SECONDS: list[int] = _int_list(
            os.getenv("RETRY_BACKOFF_SECONDS", "60,300,900")
        )
        self.CLAIM_LEASE_SECONDS: int = int(os.getenv("CLAIM_LEASE_SECONDS", "300"))

        # Outbound rate limits (per 60 second window)
        self.EMAIL_RATE_LIMIT_PER_MINUTE: int = int(
            os.getenv("EMAIL_RATE_LIMIT_PER_MINUTE", "100")
        )
        self.SMS_RATE_LIMIT_PER_MINUTE: int = int(
            os.getenv("SMS_RATE_LIMIT_PER_MINUTE", "10")
        )

        self.MILESTONES: list[int] = _int_list(
            os.getenv("MILESTONES", "7,14,21,30,60,90,100,180,365")
        )
        self.DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "UTC")

        # Webhooks
        self.STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
        self.EMAIL_WEBHOOK_SECRET: str = os.getenv("EMAIL_WEBHOOK_SECRET", "")
        self.WEBHOOK_TOLERANCE_SECONDS: int = int(
            os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300")
        )

        # Twilio (SMS + voice)
        self.TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
        self.TWILIO_PHONE_NUMBER: str = os.getenv("TWILIO_PHONE_NUMBER", "")

        # APNs (push)
        self.APNS_KEY_ID: str = os.getenv("APNS_KEY_ID", "")
        self.APNS_TEAM_ID: str = os.getenv("APNS_TEAM_ID", "")
        self.APNS_PRIVATE_KEY: str = os.getenv("APNS_PRIVATE_KEY", "")
        self.APNS_BUNDLE_ID: str = os.getenv("APNS_BUNDLE_ID", "com.visionary.app")
        self.APNS_ENVIRONMENT: str = os.getenv("APNS_ENVIRONMENT", "development")

        # Resend (email)
        self.RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
        self.EMAIL_FROM: str = os.getenv("EMAIL_FROM", "Visionary <coach@visionary.app>")

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    def validate(self) -> None:
        """Validate that required environment variables are set."""
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is required")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    return settings
