"""
TokenCache - process-wide OAuth bearer token cache with single-flight refresh.

One instance is created at startup and passed to every credentialed courier
client. Each courier gets its own cache entry. When an entry is missing or
expired, the first caller starts a refresh; every concurrent caller for the
same key awaits that same refresh and shares its token (or its error).

Usage:
    cache = TokenCache()
    await cache.start()

    token = await cache.get(Courier.FEDEX, client.fetch_token)

    await cache.close()
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

# Tokens are treated as expired this many seconds before the provider says so
EXPIRY_MARGIN_SECONDS = 60

Clock = Callable[[], float]


@dataclass
class AccessToken:
    value: str
    expires_at: float  # clock() timestamp

    @classmethod
    def from_expires_in(
        cls,
        value: str,
        expires_in: float,
        clock: Clock = time.monotonic,
    ) -> "AccessToken":
        ttl = max(0.0, float(expires_in) - EXPIRY_MARGIN_SECONDS)
        return cls(value=value, expires_at=clock() + ttl)

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


@dataclass
class _CacheEntry:
    token: Optional[AccessToken] = None
    refresh: Optional[asyncio.Future] = None
    refresh_count: int = field(default=0)


class TokenCache:
    """Per-key bearer token cache. One in-flight refresh per key at most."""

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._entries: Dict[Hashable, _CacheEntry] = {}
        self._started = False

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Open the cache for use."""
        self._started = True
        logger.debug("TokenCache started")

    async def close(self) -> None:
        """Abort in-flight refreshes and drop every cached token."""
        self._started = False
        for key, entry in self._entries.items():
            if entry.refresh is not None and not entry.refresh.done():
                entry.refresh.cancel()
                logger.debug(f"Cancelled in-flight token refresh for {key}")
        pending = [e.refresh for e in self._entries.values() if e.refresh is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._entries.clear()
        logger.debug("TokenCache closed")

    async def get(
        self,
        key: Hashable,
        refresh: Callable[[], Awaitable[AccessToken]],
    ) -> str:
        """
        Return a valid token for ``key``, refreshing it at most once concurrently.

        Args:
            key: Cache key (one per courier)
            refresh: Coroutine factory that fetches a new AccessToken

        Returns:
            Bearer token string

        Raises:
            Whatever ``refresh`` raises, shared by all concurrent waiters.
        """
        if not self._started:
            raise RuntimeError("TokenCache not started. Call await cache.start() first.")

        entry = self._entries.setdefault(key, _CacheEntry())
        if entry.token is not None and entry.token.is_valid(self._clock()):
            return entry.token.value

        if entry.refresh is None:
            entry.refresh = asyncio.ensure_future(self._run_refresh(key, entry, refresh))

        # Shield so one cancelled caller does not abort the refresh for the others
        token = await asyncio.shield(entry.refresh)
        return token.value

    async def _run_refresh(
        self,
        key: Hashable,
        entry: _CacheEntry,
        refresh: Callable[[], Awaitable[AccessToken]],
    ) -> AccessToken:
        try:
            logger.debug(f"Refreshing access token for {key}")
            token = await refresh()
            entry.token = token
            entry.refresh_count += 1
            return token
        finally:
            entry.refresh = None

    def invalidate(self, key: Hashable) -> None:
        """Forget the cached token for ``key``. The next get() refreshes."""
        entry = self._entries.get(key)
        if entry is not None:
            entry.token = None

    def refresh_count(self, key: Hashable) -> int:
        """Number of successful refreshes performed for ``key``."""
        entry = self._entries.get(key)
        return entry.refresh_count if entry else 0
