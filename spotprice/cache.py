import logging
import time
from typing import Callable, Optional

from spotprice.config import CACHE_TTL_SECONDS
from spotprice.models import PricePayload


class RequestCache:
    """
    In-memory cache of the last live price per metal.

    Entries expire lazily: a stale entry is evicted by the read that finds it.
    There is no lock, so two concurrent misses may both go to the providers.
    """

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[PricePayload, float]] = {}

    def get(self, key: str) -> Optional[PricePayload]:
        entry = self._entries.get(key)
        if entry is None:
            logging.info(f"[Cache MISS] {key}")
            return None

        payload, inserted_at = entry
        age = self._clock() - inserted_at
        if age > self._ttl:
            del self._entries[key]
            logging.info(f"[Cache EXPIRED] {key}")
            return None

        logging.info(f"[Cache HIT] {key} (age: {round(age)}s)")
        return payload

    def set(self, key: str, payload: PricePayload) -> None:
        self._entries[key] = (payload, self._clock())

    def age_seconds(self, key: str) -> Optional[int]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return int(self._clock() - entry[1])
