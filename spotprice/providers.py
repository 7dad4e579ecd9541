"""
Upstream spot price providers.

Every provider exposes the same contract: `try_fetch(metal)` performs at most
one request per configured credential and returns a ProviderOutcome. Faults are
never raised out of `try_fetch`; they become `missing_key`, `unavailable` or
`parse_error` outcomes so the chain can treat every provider the same way.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional, Sequence

import httpx
from pydantic import ValidationError

from spotprice.config import CURRENCY, Settings
from spotprice.fx import get_exchange_rate
from spotprice.models import (
    CredentialMissingError,
    Metal,
    OutcomeStatus,
    PricePayload,
    ProviderError,
    ProviderOutcome,
    ProviderParseError,
    ProviderUnavailableError,
)

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "application/json",
}


class Credential(NamedTuple):
    label: str
    secret: Optional[str]


def positive_number(value: Any, field: str) -> float:
    """Coerce an upstream field to a finite, positive float or raise ProviderParseError."""
    if value is None or isinstance(value, bool):
        raise ProviderParseError(f"Missing {field}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ProviderParseError(f"Non-numeric {field}: {value!r}")
    if not math.isfinite(number) or number <= 0:
        raise ProviderParseError(f"Invalid {field}: {value!r}")
    return number


# ══════════════════════════════════════════════════════════════════════════════
# Provider contract
# ══════════════════════════════════════════════════════════════════════════════


class PriceProvider(ABC):
    """Base class for one upstream quote source."""

    name: str = "provider"
    requires_credential = True
    # Include the credential label in the provider tag (e.g. "goldapi.io (GOLD_API_KEY_2)")
    tag_with_credential = False

    def __init__(self, client: httpx.AsyncClient, credentials: Sequence[Credential] = ()):
        self._client = client
        self._credentials = list(credentials)

    def _attempts(self) -> list[Optional[Credential]]:
        if not self.requires_credential:
            return [None]
        return [credential for credential in self._credentials if credential.secret]

    def provider_tag(self, credential: Optional[Credential]) -> str:
        if self.tag_with_credential and credential is not None:
            return f"{self.name} ({credential.label})"
        return self.name

    def _payload(
        self,
        metal: Metal,
        credential: Optional[Credential],
        price_per_unit: float,
        price_per_gram: Optional[float] = None,
        provider: Optional[str] = None,
    ) -> PricePayload:
        return PricePayload(
            metal=metal,
            price_per_unit=price_per_unit,
            price_per_gram=price_per_gram,
            currency=CURRENCY,
            provider=provider or self.provider_tag(credential),
        )

    async def _get_json(self, url: str, **kwargs) -> Any:
        response = await self._client.get(url, **kwargs)
        if not response.is_success:
            raise ProviderUnavailableError(f"Failed with status {response.status_code}")
        try:
            return response.json()
        except ValueError:
            raise ProviderParseError("Response body is not valid JSON")

    @abstractmethod
    async def fetch(self, metal: Metal, credential: Optional[Credential]) -> PricePayload:
        """One upstream request. Raises ProviderError (or an httpx error) on failure."""

    async def try_fetch(self, metal: Metal) -> ProviderOutcome:
        log_tag = f"[{self.name}/{metal.value}]"
        attempts = self._attempts()
        if not attempts:
            logging.info(f"{log_tag} Skipping - no API key configured")
            return ProviderOutcome(self.name, OutcomeStatus.missing_key, message="No API key configured")

        failures: list[str] = []
        status = OutcomeStatus.unavailable
        for credential in attempts:
            label = credential.label if credential else self.name
            try:
                payload = await self.fetch(metal, credential)
            except ProviderError as e:
                status, message = e.status, str(e)
            except httpx.TimeoutException:
                status, message = OutcomeStatus.unavailable, "Request timed out"
            except httpx.HTTPError as e:
                status, message = OutcomeStatus.unavailable, f"HTTP error: {str(e)}"
            except ValidationError as e:
                status, message = OutcomeStatus.parse_error, f"Invalid price data: {e.errors()[0]['msg']}"
            except Exception as e:
                logging.exception(f"{log_tag} Unexpected error using {label}")
                status, message = OutcomeStatus.unavailable, f"Unexpected error: {str(e)}"
            else:
                logging.info(f"{log_tag} Success using {label}")
                return ProviderOutcome(self.name, OutcomeStatus.ok, payload=payload)

            logging.warning(f"{log_tag} {label} failed: {message}")
            failures.append(f"{label}: {message}" if len(attempts) > 1 else message)

        return ProviderOutcome(self.name, status, message="; ".join(failures))


# ══════════════════════════════════════════════════════════════════════════════
# Providers
# ══════════════════════════════════════════════════════════════════════════════


class GoldApiProvider(PriceProvider):
    """goldapi.io, quoting both the ounce and the 24k gram price. Tries each key in turn."""

    name = "goldapi.io"
    tag_with_credential = True

    async def fetch(self, metal: Metal, credential: Optional[Credential]) -> PricePayload:
        if credential is None:
            raise CredentialMissingError("No API key configured")
        data = await self._get_json(
            f"https://www.goldapi.io/api/{metal.symbol}/{CURRENCY}",
            headers={"x-access-token": credential.secret, "Content-Type": "application/json"},
        )
        if not isinstance(data, dict):
            raise ProviderParseError("Unexpected response format")

        return self._payload(
            metal,
            credential,
            price_per_unit=positive_number(data.get("price"), "price"),
            price_per_gram=positive_number(data.get("price_gram_24k"), "price_gram_24k"),
        )


class MetalsApiProvider(PriceProvider):
    """
    metals-api.com latest rates.

    With the target currency as base, the rate for XAU/XAG is troy ounces per
    unit of currency, so the ounce price is its inverse.
    """

    name = "metals-api"

    async def fetch(self, metal: Metal, credential: Optional[Credential]) -> PricePayload:
        if credential is None:
            raise CredentialMissingError("No API key configured")
        data = await self._get_json(
            "https://metals-api.com/api/latest",
            params={"access_key": credential.secret, "base": CURRENCY, "symbols": metal.symbol},
        )
        if not isinstance(data, dict):
            raise ProviderParseError("Unexpected response format")
        if not data.get("success"):
            error = data.get("error") or {}
            info = (error.get("info") or error.get("type")) if isinstance(error, dict) else error
            raise ProviderUnavailableError(f"API returned an error: {info or 'unknown'}")

        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ProviderParseError("No rates in response")
        rate = positive_number(rates.get(metal.symbol), f"rates.{metal.symbol}")
        return self._payload(metal, credential, price_per_unit=1 / rate)


class FcsApiProvider(PriceProvider):
    """fcsapi.com forex quotes for XAU/CAD and XAG/CAD."""

    name = "fcsapi"

    async def fetch(self, metal: Metal, credential: Optional[Credential]) -> PricePayload:
        if credential is None:
            raise CredentialMissingError("No API key configured")
        data = await self._get_json(
            "https://fcsapi.com/api-v3/forex/latest",
            params={"symbol": f"{metal.symbol}/{CURRENCY}", "access_key": credential.secret},
        )
        if not isinstance(data, dict):
            raise ProviderParseError("Unexpected response format")
        if not data.get("status"):
            raise ProviderUnavailableError(f"API returned an error: {data.get('msg') or 'unknown'}")

        quotes = data.get("response")
        if not isinstance(quotes, list) or not quotes or not isinstance(quotes[0], dict):
            raise ProviderParseError("No quote in response")
        return self._payload(metal, credential, price_per_unit=positive_number(quotes[0].get("price"), "price"))


class YahooFinanceProvider(PriceProvider):
    """
    Yahoo Finance chart API, keyless.

    Uses futures contracts (GC=F, SI=F), which closely track spot, quoted in
    USD and converted to the target currency. When the FX lookup fails the
    hardcoded fallback rate is used and the provider tag says so.
    """

    name = "yahoo-finance"
    requires_credential = False
    symbols = {
        Metal.gold: "GC=F",
        Metal.silver: "SI=F",
    }

    async def fetch(self, metal: Metal, credential: Optional[Credential]) -> PricePayload:
        data = await self._get_json(
            f"https://query1.finance.yahoo.com/v8/finance/chart/{self.symbols[metal]}",
            params={"interval": "1m", "range": "1d"},
            headers=BROWSER_HEADERS,
        )
        chart = data.get("chart") if isinstance(data, dict) else None
        result = chart.get("result") if isinstance(chart, dict) else None
        if not isinstance(result, list) or not result or not isinstance(result[0], dict):
            raise ProviderParseError("No chart result in response")
        meta = result[0].get("meta")
        if not isinstance(meta, dict):
            raise ProviderParseError("No chart metadata in response")
        usd_price = positive_number(meta.get("regularMarketPrice"), "regularMarketPrice")

        exchange = await get_exchange_rate(self._client, "USD", CURRENCY)
        provider = f"{self.name} (fallback fx)" if exchange.is_fallback else self.name
        return self._payload(metal, credential, price_per_unit=usd_price * exchange.rate, provider=provider)


def build_providers(client: httpx.AsyncClient, settings: Settings) -> list[PriceProvider]:
    """All providers in priority order."""
    providers: list[PriceProvider] = [
        GoldApiProvider(client, [Credential(label, key) for label, key in settings.gold_api_keys()]),
        MetalsApiProvider(client, [Credential("METALS_API_KEY", settings.metals_api_key)]),
        FcsApiProvider(client, [Credential("FCS_API_KEY", settings.fcs_api_key)]),
    ]
    if settings.yahoo_fallback_enabled:
        providers.append(YahooFinanceProvider(client))
    return providers
