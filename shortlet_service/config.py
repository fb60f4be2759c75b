from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./shortlet.db"
    # This service only VERIFIES tokens; issuing them is the auth service's job
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # --- KAFKA SETTINGS ---
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_AVAILABILITY_TOPIC: str = "shortlet_availability"

    REDIS_URL: str = "redis://redis:6379/0"

    LOG_LEVEL: str = "INFO"

    # --- Search pagination ---
    SEARCH_MAX_LIMIT: int = 80
    SEARCH_DEFAULT_LIMIT: int = 24

    # --- Availability ---
    AVAILABILITY_WINDOW_DAYS: int = 180
    NEXT_END_SEARCH_LIMIT_DAYS: int = 365

    # --- Booking lifecycle ---
    HOST_RESPONSE_WINDOW_HOURS: int = 12
    # When True, bookings start in pending_payment and only reach the host
    # once the payment webhook reports success.
    PAYMENT_BEFORE_CONFIRMATION: bool = True
    DEFAULT_CURRENCY: str = "NGN"
    # Shared secret expected in the X-Webhook-Secret header; unset disables the check
    PAYMENT_WEBHOOK_SECRET: Optional[str] = None

    # --- Payment return page ---
    RETURN_POLL_TIMEOUT_MS: int = 60_000

    # --- Background tasks ---
    SCHEDULER_POLL_INTERVAL_SECONDS: int = 3600
    OUTBOX_POLL_INTERVAL_SECONDS: int = 5

    model_config = SettingsConfigDict(env_file=".env", frozen=True, extra="ignore")


settings = Settings()
