"""
Configuration for the spot price service.

Fixed constants live at module level; credentials and deployment knobs are read
from the environment (or a local .env file) through pydantic-settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# ══════════════════════════════════════════════════════════════════════════════
# Constants
# ══════════════════════════════════════════════════════════════════════════════

CURRENCY = "CAD"
GRAMS_PER_TROY_OUNCE = 31.1034768
CACHE_TTL_SECONDS = 600  # 10 minutes
NISAB_GRAMS = 85  # Nisab is 85 grams of 24k gold
MONTHLY_FALLBACK_PROVIDER = "monthly-fallback"
METAL_SYMBOLS = {
    "gold": "XAU",
    "silver": "XAG",
}
# Relative tolerance when a provider supplies both ounce and gram prices
GRAM_PRICE_TOLERANCE = 0.005


def price_per_gram(price_per_unit: float) -> float:
    """Convert a troy-ounce price to a per-gram price."""
    return price_per_unit / GRAMS_PER_TROY_OUNCE


# ══════════════════════════════════════════════════════════════════════════════
# Settings
# ══════════════════════════════════════════════════════════════════════════════

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SPOTPRICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Provider credentials keep their historical, unprefixed names
    gold_api_key_1: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GOLD_API_KEY_1", "SPOTPRICE_GOLD_API_KEY_1")
    )
    gold_api_key_2: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GOLD_API_KEY_2", "SPOTPRICE_GOLD_API_KEY_2")
    )
    gold_api_key_3: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("GOLD_API_KEY_3", "SPOTPRICE_GOLD_API_KEY_3")
    )
    metals_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("METALS_API_KEY", "SPOTPRICE_METALS_API_KEY")
    )
    fcs_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("FCS_API_KEY", "SPOTPRICE_FCS_API_KEY")
    )
    update_monthly_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("UPDATE_MONTHLY_SECRET", "SPOTPRICE_UPDATE_MONTHLY_SECRET"),
    )

    snapshot_dir: Path = Path("public")
    request_timeout_seconds: float = 5.0
    yahoo_fallback_enabled: bool = True
    log_level: str = "INFO"

    def gold_api_keys(self) -> list[tuple[str, Optional[str]]]:
        """goldapi.io keys in the order they should be tried."""
        return [
            ("GOLD_API_KEY_1", self.gold_api_key_1),
            ("GOLD_API_KEY_2", self.gold_api_key_2),
            ("GOLD_API_KEY_3", self.gold_api_key_3),
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
