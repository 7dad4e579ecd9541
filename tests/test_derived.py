import math

import pytest
from pydantic import ValidationError

from spotprice.config import GRAMS_PER_TROY_OUNCE, price_per_gram
from spotprice.derived import nisab_from_gold, nisab_value
from spotprice.models import Metal, PricePayload, ResolvedPrice
from tests.fakes import make_payload


def test_price_per_gram_from_ounce_price() -> None:
    assert price_per_gram(6274.64) == pytest.approx(201.7344, abs=1e-3)
    assert price_per_gram(GRAMS_PER_TROY_OUNCE) == pytest.approx(1.0)


def test_nisab_is_85_grams_of_gold() -> None:
    assert nisab_value(201.7344) == pytest.approx(17147.42, abs=0.01)


def test_payload_derives_gram_price_when_missing() -> None:
    payload = PricePayload(metal=Metal.gold, price_per_unit=6274.64, provider="goldapi.io")

    assert payload.price_per_gram == pytest.approx(6274.64 / GRAMS_PER_TROY_OUNCE)
    assert payload.currency == "CAD"


def test_payload_keeps_supplied_gram_price_within_tolerance() -> None:
    payload = PricePayload(metal=Metal.gold, price_per_unit=6274.64, price_per_gram=201.73, provider="x")

    assert payload.price_per_gram == 201.73


def test_payload_rejects_disagreeing_gram_price() -> None:
    with pytest.raises(ValidationError):
        PricePayload(metal=Metal.gold, price_per_unit=6274.64, price_per_gram=150.0, provider="x")


@pytest.mark.parametrize("price", [0, -1.0, math.inf, math.nan])
def test_payload_rejects_non_positive_or_non_finite_prices(price: float) -> None:
    with pytest.raises(ValidationError):
        PricePayload(metal=Metal.silver, price_per_unit=price, provider="x")


def test_payload_is_immutable() -> None:
    payload = make_payload()

    with pytest.raises(ValidationError):
        payload.price_per_unit = 1.0  # type: ignore[misc]


def test_payload_accepts_legacy_field_names() -> None:
    payload = PricePayload.model_validate(
        {"metal": "silver", "price_oz": 42.15, "price_gram_24k": 1.3552, "provider": "fcsapi"}
    )

    assert payload.metal is Metal.silver
    assert payload.price_per_unit == 42.15
    assert payload.price_per_gram == 1.3552


def test_nisab_from_gold_quote() -> None:
    resolved = ResolvedPrice(payload=make_payload(price=6274.64, provider="goldapi.io (GOLD_API_KEY_1)"), cached=True)

    quote = nisab_from_gold(resolved)

    assert quote.nisab == pytest.approx(17147.42, abs=0.01)
    assert quote.price_per_gram == pytest.approx(201.7344, abs=1e-3)
    assert quote.nisab_grams == 85
    assert quote.currency == "CAD"
    assert quote.provider == "goldapi.io (GOLD_API_KEY_1)"
    assert quote.type == "Gold"
    assert quote.cached is True


def test_nisab_from_silver_is_rejected() -> None:
    resolved = ResolvedPrice(payload=make_payload(Metal.silver, 42.15))

    with pytest.raises(ValueError):
        nisab_from_gold(resolved)
