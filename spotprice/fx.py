import logging
import re
from typing import NamedTuple, Optional

import httpx
from bs4 import BeautifulSoup

# Approximate USD rates, used only when the live lookup fails.
# TODO: confirm with product whether a stale rate is acceptable or the attempt should fail instead.
FALLBACK_RATES = {
    "CAD": 1.36,
}

_RATE_PATTERN = re.compile(r"\d+\.\d{4,}")


class ExchangeRate(NamedTuple):
    rate: float
    is_fallback: bool


def _fallback_rate(from_currency: str, to_currency: str) -> float:
    if from_currency == "USD":
        return FALLBACK_RATES.get(to_currency, 1.0)
    return 1.0 / FALLBACK_RATES.get(from_currency, 1.0)


def parse_rate(html: str) -> Optional[float]:
    """Pick the first plausible rate out of an XE converter page."""
    soup = BeautifulSoup(html, "lxml")
    for elem in soup.find_all(string=_RATE_PATTERN)[:10]:
        match = _RATE_PATTERN.search(elem.replace(",", ""))
        if not match:
            continue
        try:
            potential_rate = float(match.group(0))
        except ValueError:
            continue
        if 0.01 < potential_rate < 10000:
            return potential_rate
    return None


async def get_exchange_rate(client: httpx.AsyncClient, from_currency: str, to_currency: str) -> ExchangeRate:
    """Get the exchange rate between two currencies, falling back to FALLBACK_RATES."""
    if from_currency == to_currency:
        return ExchangeRate(1.0, False)

    rate = None
    try:
        response = await client.get(
            f"https://www.xe.com/currencyconverter/convert/?Amount=1&From={from_currency}&To={to_currency}",
            headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"},
        )
        if response.status_code == 200:
            rate = parse_rate(response.text)
        else:
            logging.warning(f"[fx] {from_currency}/{to_currency} lookup failed with status {response.status_code}")
    except httpx.HTTPError as e:
        logging.warning(f"[fx] {from_currency}/{to_currency} lookup error: {str(e)}")

    if rate is None:
        rate = _fallback_rate(from_currency, to_currency)
        logging.warning(f"[fx] Using hardcoded fallback rate {from_currency}/{to_currency} = {rate}")
        return ExchangeRate(rate, True)

    return ExchangeRate(rate, False)
