# exchange/settings.py
"""
Exchange service settings, read from the environment and an optional .env file.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # =========================================================================
    # Shopify loyalty ledger
    # =========================================================================
    SHOPIFY_STORE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SHOPIFY_STORE_URL", "LEDGER_STORE_URL"),
    )
    SHOPIFY_ACCESS_TOKEN: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SHOPIFY_ACCESS_TOKEN", "LEDGER_ACCESS_TOKEN"),
    )
    SHOPIFY_API_VERSION: str = "2023-07"
    LEDGER_TIMEOUT_SECONDS: float = 30.0
    LEDGER_CACHE_TTL_SECONDS: float = 60.0
    LEDGER_POINTS_NAMESPACE: str = "loyalty"
    LEDGER_POINTS_KEY: str = "points"

    # =========================================================================
    # Credit assignment
    # =========================================================================
    CREDIT_CURRENCY: str = "INR"
    CREDIT_DUPLICATE_GUARD: bool = Field(
        default=True,
        description="Reject a second credit assignment once one reached the ledger",
    )

    # =========================================================================
    # Email (mock-sends when SMTP_HOST is empty)
    # =========================================================================
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "SwapCred <no-reply@swapcred.com>"
    DASHBOARD_URL: str = "https://swapcred.com/dashboard"
    SHOP_URL: str = "https://swapcred.com/shop"

    # =========================================================================
    # Logging / HTTP
    # =========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[Path] = None
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def ledger_configured(self) -> bool:
        return bool(self.SHOPIFY_STORE_URL and self.SHOPIFY_ACCESS_TOKEN)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST)


@lru_cache
def get_settings() -> Settings:
    return Settings()
