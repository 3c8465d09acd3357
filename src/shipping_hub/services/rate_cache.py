from __future__ import annotations

import threading
import time
from typing import Callable, Hashable, Optional

from shipping_hub.models import ShippingRate

DEFAULT_TTL_SECONDS = 300.0


class RateCache:
    """Short-lived memo of aggregated quotes.

    Keyed by RateRequest.cache_key(), i.e. (from, to, weight, mode), so a
    pincode or weight change is always a miss.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, tuple[ShippingRate, ...]]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[list[ShippingRate]]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, rates = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            return list(rates)

    def set(self, key: Hashable, rates: list[ShippingRate]) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, tuple(rates))

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, (exp, _) in self._entries.items() if now >= exp]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
