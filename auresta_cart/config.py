"""
Application configuration

All settings can be overridden with AURESTA_-prefixed environment
variables or a .env file.
"""
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import BundleOffer


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AURESTA_", env_file=".env", extra="ignore")

    APP_NAME: str = "Auresta Cart Service"

    # Special offer: first BUNDLE_UNITS units for BUNDLE_PRICE
    BUNDLE_PRICE: Decimal = Decimal("999")
    BUNDLE_UNITS: int = 3

    # Unset keeps carts in memory for the life of the process
    STORAGE_DIR: Optional[str] = None

    # Live carts held in memory; idle ones beyond this are evicted
    MAX_SESSIONS: int = 10000

    CURRENCY_SYMBOL: str = "₹"
    LOG_LEVEL: str = "INFO"

    # When set, creating coupons requires the x-api-key header
    ADMIN_API_KEY: Optional[str] = None

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def bundle(self) -> BundleOffer:
        return BundleOffer(price=self.BUNDLE_PRICE, units=self.BUNDLE_UNITS)


@lru_cache
def get_settings() -> Settings:
    return Settings()
