"""TTL-based OAuth2 token cache with hit/miss stats and single-flight fetches.

Entries are keyed by (client_id, token_url). An entry is served only while
now < expires_at; expired entries count as absent. Concurrent callers that
miss on the same key share one pending fetch.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

CacheKey = tuple[str, str]

DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True)
class CachedToken:
    access_token: str
    expires_at_epoch_millis: float

    def is_valid(self, now_millis: float) -> bool:
        return now_millis < self.expires_at_epoch_millis


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    fetches: int = 0

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "fetches": self.fetches,
            "hit_rate": round(self.hit_rate, 3),
        }


class TokenCache:
    """In-memory token store. One instance per AuthProvider unless shared explicitly."""

    def __init__(self, clock: Callable[[], float] = time.time, max_size: int = 1_000):
        self._clock = clock
        self.max_size = max_size
        self._store: dict[CacheKey, CachedToken] = {}
        self._pending: dict[CacheKey, asyncio.Future] = {}
        self.stats = CacheStats()

    def now_millis(self) -> float:
        return self._clock() * 1000

    def get(self, key: CacheKey) -> Optional[CachedToken]:
        entry = self._store.get(key)
        if entry and entry.is_valid(self.now_millis()):
            self.stats.hits += 1
            return entry
        if entry:
            del self._store[key]
        self.stats.misses += 1
        return None

    def put(self, key: CacheKey, access_token: str, expires_in: Optional[float] = None) -> CachedToken:
        if key not in self._store and len(self._store) >= self.max_size:
            # Evict the entry closest to expiry
            oldest = min(self._store, key=lambda k: self._store[k].expires_at_epoch_millis)
            del self._store[oldest]
        ttl = DEFAULT_TTL_SECONDS if expires_in is None else expires_in
        entry = CachedToken(access_token, self.now_millis() + ttl * 1000)
        self._store[key] = entry
        return entry

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[tuple[str, Optional[float]]]],
    ) -> str:
        """Return a cached token or run ``fetch`` once for all concurrent callers.

        ``fetch`` returns (access_token, expires_in_seconds). A failed fetch
        propagates to every waiter and leaves nothing cached.
        """
        hit = self.get(key)
        if hit:
            return hit.access_token
        pending = self._pending.get(key)
        if pending is not None:
            await asyncio.wait({pending})
            if pending.cancelled():
                # The fetching caller was cancelled; take over the fetch
                return await self.get_or_fetch(key, fetch)
            return pending.result()

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            self.stats.fetches += 1
            token, expires_in = await fetch()
            self.put(key, token, expires_in)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited failure does not log a warning
            future.exception()
            raise
        else:
            future.set_result(token)
            return token
        finally:
            self._pending.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        entry = self._store.get(key)  # type: ignore[arg-type]
        return entry is not None and entry.is_valid(self.now_millis())
