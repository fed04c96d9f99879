"""
Application configuration using Pydantic Settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    APP_NAME: str = "Phone Credits API"
    LOG_LEVEL: str = "INFO"

    # Storage; an empty URI selects the in-memory store
    MONGO_URI: str = ""
    MONGO_DB: str = "phone_credits"
    MONGO_TRANSACTIONS: bool = True
    LEDGER_LOG_PATH: Path = Path("logs/credit_ledger.log")
    CATALOG_CACHE_TTL_SECONDS: int = 300

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_API_BASE: str = "https://api.stripe.com/v1"
    STRIPE_API_VERSION: str = "2023-10-16"
    STRIPE_TIMEOUT_SECONDS: float = 20.0
    CREDIT_PACKAGES: List[int] = [5, 10, 25, 50, 100]

    # Identity is asserted by the upstream auth proxy
    AUTH_USER_HEADER: str = "X-User-Id"
    ADMIN_USER_IDS: List[str] = []

    # Number provisioning
    NUMBER_PROVIDER_WEBHOOK_SECRET: Optional[str] = None
    VERIFICATION_WINDOW_MINUTES: int = 5
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 0

    SEED_CATALOG: bool = True

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
