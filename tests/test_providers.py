import asyncio
from typing import Callable

import httpx
import pytest

from spotprice.config import Settings
from spotprice.models import Metal, OutcomeStatus, ProviderOutcome, ProviderParseError
from spotprice.providers import (
    Credential,
    FcsApiProvider,
    GoldApiProvider,
    MetalsApiProvider,
    PriceProvider,
    YahooFinanceProvider,
    build_providers,
    positive_number,
)

GOLD_KEYS = [
    Credential("GOLD_API_KEY_1", "key-one"),
    Credential("GOLD_API_KEY_2", "key-two"),
    Credential("GOLD_API_KEY_3", None),
]


def run_fetch(
    provider_cls: type[PriceProvider],
    handler: Callable[[httpx.Request], httpx.Response],
    metal: Metal = Metal.gold,
    credentials: list[Credential] | None = None,
) -> ProviderOutcome:
    async def _run() -> ProviderOutcome:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await provider_cls(client, credentials or []).try_fetch(metal)

    return asyncio.run(_run())


def test_positive_number_accepts_numeric_strings() -> None:
    assert positive_number("2700.50", "price") == 2700.5


@pytest.mark.parametrize("value", [None, True, "abc", 0, -5, float("nan"), float("inf")])
def test_positive_number_rejects_bad_values(value) -> None:
    with pytest.raises(ProviderParseError):
        positive_number(value, "price")


def test_goldapi_tries_keys_in_order_and_tags_the_winner() -> None:
    seen_tokens: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        token = request.headers["x-access-token"]
        seen_tokens.append(token)
        assert request.url.path == "/api/XAU/CAD"
        if token == "key-one":
            return httpx.Response(401, json={"error": "Invalid API key"})
        return httpx.Response(200, json={"price": 6274.64, "price_gram_24k": 201.7344})

    outcome = run_fetch(GoldApiProvider, handler, credentials=GOLD_KEYS)

    assert seen_tokens == ["key-one", "key-two"]
    assert outcome.succeeded
    assert outcome.payload is not None
    assert outcome.payload.provider == "goldapi.io (GOLD_API_KEY_2)"
    assert outcome.payload.price_per_unit == 6274.64
    assert outcome.payload.price_per_gram == 201.7344
    assert outcome.payload.currency == "CAD"


def test_goldapi_without_keys_is_skipped_without_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    outcome = run_fetch(GoldApiProvider, handler, credentials=[Credential("GOLD_API_KEY_1", None)])

    assert outcome.status is OutcomeStatus.missing_key
    assert outcome.skipped
    assert outcome.payload is None


def test_goldapi_all_keys_failing_reports_each_key() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    outcome = run_fetch(GoldApiProvider, handler, credentials=GOLD_KEYS)

    assert outcome.status is OutcomeStatus.unavailable
    assert outcome.message == "GOLD_API_KEY_1: Failed with status 403; GOLD_API_KEY_2: Failed with status 403"


def test_goldapi_missing_gram_price_is_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"price": 6274.64})

    outcome = run_fetch(GoldApiProvider, handler, credentials=GOLD_KEYS[:1])

    assert outcome.status is OutcomeStatus.parse_error
    assert "price_gram_24k" in outcome.message


def test_goldapi_inconsistent_prices_are_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"price": 6274.64, "price_gram_24k": 10.0})

    outcome = run_fetch(GoldApiProvider, handler, credentials=GOLD_KEYS[:1])

    assert outcome.status is OutcomeStatus.parse_error


def test_invalid_json_body_is_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    outcome = run_fetch(GoldApiProvider, handler, credentials=GOLD_KEYS[:1])

    assert outcome.status is OutcomeStatus.parse_error


def test_timeout_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    outcome = run_fetch(GoldApiProvider, handler, credentials=GOLD_KEYS[:1])

    assert outcome.status is OutcomeStatus.unavailable
    assert outcome.message == "Request timed out"


def test_unexpected_error_never_escapes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("boom")

    outcome = run_fetch(FcsApiProvider, handler, credentials=[Credential("FCS_API_KEY", "fcs")])

    assert outcome.status is OutcomeStatus.unavailable
    assert "boom" in outcome.message


def test_metals_api_inverts_rate() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["base"] == "CAD"
        assert request.url.params["symbols"] == "XAG"
        assert request.url.params["access_key"] == "metals"
        return httpx.Response(200, json={"success": True, "rates": {"XAG": 0.025}})

    outcome = run_fetch(
        MetalsApiProvider, handler, Metal.silver, credentials=[Credential("METALS_API_KEY", "metals")]
    )

    assert outcome.succeeded
    assert outcome.payload is not None
    assert outcome.payload.price_per_unit == pytest.approx(40.0)
    assert outcome.payload.price_per_gram == pytest.approx(40.0 / 31.1034768)
    assert outcome.payload.provider == "metals-api"


def test_metals_api_error_body_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": {"code": 104, "info": "Usage limit reached"}})

    outcome = run_fetch(MetalsApiProvider, handler, credentials=[Credential("METALS_API_KEY", "metals")])

    assert outcome.status is OutcomeStatus.unavailable
    assert "Usage limit reached" in outcome.message


def test_fcsapi_parses_string_price() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["symbol"] == "XAU/CAD"
        return httpx.Response(200, json={"status": True, "response": [{"price": "6274.64", "s": "XAU/CAD"}]})

    outcome = run_fetch(FcsApiProvider, handler, credentials=[Credential("FCS_API_KEY", "fcs")])

    assert outcome.succeeded
    assert outcome.payload is not None
    assert outcome.payload.price_per_unit == 6274.64
    assert outcome.payload.provider == "fcsapi"


def test_fcsapi_empty_response_is_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": True, "response": []})

    outcome = run_fetch(FcsApiProvider, handler, credentials=[Credential("FCS_API_KEY", "fcs")])

    assert outcome.status is OutcomeStatus.parse_error


def _yahoo_handler(xe_response: httpx.Response) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "query1.finance.yahoo.com":
            assert request.url.path.endswith("/GC=F")
            return httpx.Response(200, json={"chart": {"result": [{"meta": {"regularMarketPrice": 2000.0}}]}})
        if request.url.host == "www.xe.com":
            return xe_response
        raise AssertionError(f"unexpected request {request.url}")

    return handler


def test_yahoo_converts_usd_with_live_rate() -> None:
    xe_page = httpx.Response(200, text="<html><body><p>1.00 US Dollar =</p><p>1.4000 Canadian Dollars</p></body></html>")

    outcome = run_fetch(YahooFinanceProvider, _yahoo_handler(xe_page))

    assert outcome.succeeded
    assert outcome.payload is not None
    assert outcome.payload.price_per_unit == pytest.approx(2800.0)
    assert outcome.payload.provider == "yahoo-finance"


def test_yahoo_uses_fallback_rate_when_fx_lookup_fails() -> None:
    outcome = run_fetch(YahooFinanceProvider, _yahoo_handler(httpx.Response(503)))

    assert outcome.succeeded
    assert outcome.payload is not None
    assert outcome.payload.price_per_unit == pytest.approx(2000.0 * 1.36)
    assert outcome.payload.provider == "yahoo-finance (fallback fx)"


@pytest.mark.parametrize(
    "body",
    [
        {"chart": None},
        {"chart": {"result": None}},
        {"chart": {"result": []}},
        {"chart": {"result": [{"meta": None}]}},
        {"chart": {"result": [{"meta": {}}]}},
        ["not", "an", "object"],
    ],
)
def test_yahoo_malformed_chart_is_parse_error(body) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "query1.finance.yahoo.com"
        return httpx.Response(200, json=body)

    outcome = run_fetch(YahooFinanceProvider, handler)

    assert outcome.status is OutcomeStatus.parse_error
    assert "Unexpected error" not in outcome.message


def test_build_providers_priority_order() -> None:
    settings = Settings(_env_file=None, gold_api_key_1="a", metals_api_key="b")

    async def _build() -> list[str]:
        async with httpx.AsyncClient() as client:
            return [provider.name for provider in build_providers(client, settings)]

    assert asyncio.run(_build()) == ["goldapi.io", "metals-api", "fcsapi", "yahoo-finance"]


def test_build_providers_can_disable_yahoo() -> None:
    settings = Settings(_env_file=None, yahoo_fallback_enabled=False)

    async def _build() -> list[str]:
        async with httpx.AsyncClient() as client:
            return [provider.name for provider in build_providers(client, settings)]

    assert asyncio.run(_build()) == ["goldapi.io", "metals-api", "fcsapi"]
