"""
Data model and error types shared by providers, the chain and the resolver.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from spotprice.config import CURRENCY, GRAM_PRICE_TOLERANCE, METAL_SYMBOLS, price_per_gram

# ══════════════════════════════════════════════════════════════════════════════
# Models
# ══════════════════════════════════════════════════════════════════════════════


class Metal(str, Enum):
    gold = "gold"
    silver = "silver"

    @property
    def symbol(self) -> str:
        return METAL_SYMBOLS[self.value]

    @property
    def cache_key(self) -> str:
        return f"{self.symbol}-{CURRENCY}"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class PricePayload(BaseModel):
    """
    A normalized spot price, per troy ounce and per gram.

    `price_per_gram` is derived from the ounce price when the source does not
    quote one. When it does, both figures must agree within GRAM_PRICE_TOLERANCE.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    metal: Metal
    price_per_unit: float = Field(
        gt=0, allow_inf_nan=False, validation_alias=AliasChoices("price_per_unit", "price_oz")
    )
    price_per_gram: float = Field(
        gt=0, allow_inf_nan=False, validation_alias=AliasChoices("price_per_gram", "price_gram_24k")
    )
    currency: str = CURRENCY
    provider: str

    @model_validator(mode="before")
    @classmethod
    def _derive_gram_price(cls, data):
        if not isinstance(data, dict):
            return data
        if data.get("price_per_gram") is None and data.get("price_gram_24k") is None:
            unit = data.get("price_per_unit", data.get("price_oz"))
            if isinstance(unit, (int, float)) and not isinstance(unit, bool):
                data = {**data, "price_per_gram": price_per_gram(unit)}
        return data

    @model_validator(mode="after")
    def _check_gram_consistency(self):
        expected = price_per_gram(self.price_per_unit)
        if not math.isclose(self.price_per_gram, expected, rel_tol=GRAM_PRICE_TOLERANCE):
            raise ValueError(
                f"price_per_gram {self.price_per_gram} disagrees with "
                f"price_per_unit {self.price_per_unit} (expected ~{expected:.4f})"
            )
        return self


class ResolvedPrice(BaseModel):
    payload: PricePayload
    cached: bool = False

    def as_response(self, grams: bool = False) -> dict:
        payload = self.payload
        return {
            "price": payload.price_per_gram if grams else payload.price_per_unit,
            "price_per_unit": payload.price_per_unit,
            "price_per_gram": payload.price_per_gram,
            "currency": payload.currency,
            "provider": payload.provider,
            "cached": self.cached,
        }


class NisabQuote(BaseModel):
    nisab: float
    price_per_gram: float
    nisab_grams: int
    currency: str
    provider: str
    type: str = "Gold"
    cached: bool = False


class ProviderDiagnostic(BaseModel):
    provider: str
    message: str


# ══════════════════════════════════════════════════════════════════════════════
# Provider outcomes
# ══════════════════════════════════════════════════════════════════════════════


class OutcomeStatus(str, Enum):
    ok = "ok"
    missing_key = "missing_key"
    unavailable = "unavailable"
    parse_error = "parse_error"


@dataclass(frozen=True)
class ProviderOutcome:
    """Result of one adapter attempt. Only `ok` outcomes carry a payload."""

    provider: str
    status: OutcomeStatus
    payload: Optional[PricePayload] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.ok and self.payload is not None

    @property
    def skipped(self) -> bool:
        return self.status is OutcomeStatus.missing_key


@dataclass
class ChainResult:
    payload: Optional[PricePayload] = None
    diagnostics: list[ProviderDiagnostic] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.payload is None


# ══════════════════════════════════════════════════════════════════════════════
# Errors
# ══════════════════════════════════════════════════════════════════════════════


class ProviderError(Exception):
    """Base exception for a single provider attempt."""

    status = OutcomeStatus.unavailable


class CredentialMissingError(ProviderError):
    """No credential is configured for this provider."""

    status = OutcomeStatus.missing_key


class ProviderUnavailableError(ProviderError):
    """Network failure, timeout or non-success status."""

    status = OutcomeStatus.unavailable


class ProviderParseError(ProviderError):
    """Success status, but the body has no usable price."""

    status = OutcomeStatus.parse_error


class PriceUnavailableError(Exception):
    """Every provider failed and no monthly snapshot exists."""

    def __init__(self, metal: Metal, diagnostics: Optional[list[ProviderDiagnostic]] = None):
        self.metal = metal
        self.diagnostics = diagnostics or []
        super().__init__(f"Failed to fetch {metal.value} price from all providers")

    def to_dict(self, include_diagnostics: bool = False) -> dict:
        content = {"error": str(self)}
        if include_diagnostics:
            content["debug"] = [d.model_dump() for d in self.diagnostics]
        return content
