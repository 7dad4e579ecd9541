"""The Nisab threshold, derived from a resolved gold price."""

from spotprice.config import NISAB_GRAMS
from spotprice.models import Metal, NisabQuote, ResolvedPrice


def nisab_value(gold_per_gram: float) -> float:
    """Market value of NISAB_GRAMS of 24k gold."""
    return gold_per_gram * NISAB_GRAMS


def nisab_from_gold(resolved: ResolvedPrice) -> NisabQuote:
    payload = resolved.payload
    if payload.metal is not Metal.gold:
        raise ValueError(f"Nisab is defined on gold, got {payload.metal.value}")

    return NisabQuote(
        nisab=nisab_value(payload.price_per_gram),
        price_per_gram=payload.price_per_gram,
        nisab_grams=NISAB_GRAMS,
        currency=payload.currency,
        provider=payload.provider,
        type=Metal.gold.label,
        cached=resolved.cached,
    )
