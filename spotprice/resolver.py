"""
Price resolution: request cache, then the provider chain, then the monthly snapshot.
"""

import logging

import httpx

from spotprice.cache import RequestCache
from spotprice.chain import ProviderChain
from spotprice.config import Settings
from spotprice.models import Metal, PricePayload, PriceUnavailableError, ResolvedPrice
from spotprice.providers import build_providers
from spotprice.snapshots import SnapshotStore


class PriceResolver:
    def __init__(self, chain: ProviderChain, cache: RequestCache, snapshots: SnapshotStore):
        self.chain = chain
        self.cache = cache
        self.snapshots = snapshots

    async def resolve(
        self,
        metal: Metal,
        bypass_cache: bool = False,
        diagnostics: bool = False,
        refresh_snapshot: bool = True,
    ) -> ResolvedPrice:
        """
        Resolve the current price of `metal`.

        Diagnostics mode always skips the cache read so the live chain runs and
        per-provider failures are reported; the cache and snapshot are still
        written on success. Callers that persist the snapshot themselves pass
        `refresh_snapshot=False`.

        Raises:
            PriceUnavailableError: no provider answered and no snapshot exists.
        """
        if not (bypass_cache or diagnostics):
            cached = self.cache.get(metal.cache_key)
            if cached is not None:
                return ResolvedPrice(payload=cached, cached=True)

        result = await self.chain.resolve(metal, diagnostics=diagnostics)
        if result.payload is not None:
            self.cache.set(metal.cache_key, result.payload)
            if refresh_snapshot:
                self._after_live_success(metal, result.payload)
            return ResolvedPrice(payload=result.payload, cached=False)

        fallback = self.snapshots.read(metal)
        if fallback is not None:
            return ResolvedPrice(payload=fallback, cached=False)

        logging.error(f"[{metal.label} API] All providers failed and no monthly snapshot exists")
        raise PriceUnavailableError(metal, result.diagnostics)

    def _after_live_success(self, metal: Metal, payload: PricePayload) -> None:
        """Refresh the monthly snapshot. The outcome never affects the resolution."""
        try:
            self.snapshots.write(metal, payload)
        except Exception:
            logging.exception(f"[{metal.label} Monthly File] Snapshot write raised")


def build_resolver(client: httpx.AsyncClient, settings: Settings) -> PriceResolver:
    """Wire the default provider chain, an empty cache and the snapshot directory."""
    return PriceResolver(
        chain=ProviderChain(build_providers(client, settings)),
        cache=RequestCache(),
        snapshots=SnapshotStore(settings.snapshot_dir),
    )
