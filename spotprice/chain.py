import logging
from typing import Iterable

from spotprice.models import ChainResult, Metal, ProviderDiagnostic
from spotprice.providers import PriceProvider


class ProviderChain:
    """
    Providers in priority order; the first one that returns a price wins.

    Providers are awaited one after another, never raced, so the attribution
    and the order of diagnostics are deterministic.
    """

    def __init__(self, providers: Iterable[PriceProvider]):
        self.providers: list[PriceProvider] = []
        seen: set[str] = set()
        for provider in providers:
            if provider.name in seen:
                logging.warning(f"[Provider Chain] Dropping duplicate provider {provider.name}")
                continue
            seen.add(provider.name)
            self.providers.append(provider)

    @property
    def names(self) -> list[str]:
        return [provider.name for provider in self.providers]

    async def resolve(self, metal: Metal, diagnostics: bool = False) -> ChainResult:
        result = ChainResult()
        for provider in self.providers:
            outcome = await provider.try_fetch(metal)
            if outcome.succeeded:
                result.payload = outcome.payload
                return result

            if diagnostics:
                result.diagnostics.append(
                    ProviderDiagnostic(provider=outcome.provider, message=outcome.message or outcome.status.value)
                )

        logging.error(f"[{metal.label} Provider Chain] All {len(self.providers)} providers failed")
        return result
