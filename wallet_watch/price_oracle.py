"""
Price Oracle - USD price of a mint from an unreliable multi-source feed.

Resolution order:
1. Pegged stablecoins return a constant, no network
2. Fresh cache hit (younger than TTL)
3. Ordered source chain through the shared RequestThrottle
4. Last known price, marked stale
5. None (unknown - never zero)

Native and wrapped SOL share one cache key.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Optional, Sequence

from .clock import ClockProtocol, SystemClock
from .exceptions import UnknownPrice, UpstreamError
from .models import USDC_MINT, USDT_MINT, PricePoint, normalize_mint, short_address
from .sources.base import PriceSource, parse_positive_float
from .state import PipelineState
from .throttle import RequestThrottle


logger = logging.getLogger(__name__)


PEGGED_STABLECOINS: dict[str, float] = {
    USDC_MINT: 1.0,
    USDT_MINT: 1.0,
}


class PriceOracle:
    """
    Resolves USD prices with a TTL cache and stale fallback.

    Concurrent lookups of the same mint share one in-flight refresh, so
    a burst of events for one token costs one pass over the chain.
    """

    DEFAULT_CACHE_TTL = 300  # 5 minutes

    def __init__(
        self,
        sources: Sequence[PriceSource],
        throttle: RequestThrottle,
        state: Optional[PipelineState] = None,
        clock: Optional[ClockProtocol] = None,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL,
        pegged: Optional[dict[str, float]] = None,
    ) -> None:
        self._sources = list(sources)
        self._throttle = throttle
        self._state = state or PipelineState()
        self._clock = clock or SystemClock()
        self._cache_ttl = cache_ttl_seconds
        self._pegged = PEGGED_STABLECOINS if pegged is None else pegged

        self._inflight: dict[str, asyncio.Future] = {}

        self._stats = {
            "requests": 0,
            "pegged": 0,
            "cache_hits": 0,
            "refreshes": 0,
            "stale_served": 0,
            "unknown": 0,
            "source_failures": 0,
        }

    @property
    def _cache(self) -> dict[str, PricePoint]:
        return self._state.price_cache

    @property
    def source_names(self) -> list[str]:
        return [source.name for source in self._sources]

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def get_price_usd(self, mint: str) -> Optional[PricePoint]:
        """
        Get the USD price of a mint.

        NEVER raises.

        Returns:
            PricePoint (possibly stale), or None when no price was ever observed
        """
        self._stats["requests"] += 1
        key = normalize_mint(mint)

        if key in self._pegged:
            self._stats["pegged"] += 1
            return PricePoint(
                mint=key,
                price_usd=self._pegged[key],
                observed_at=self._clock.now(),
                source="pegged",
            )

        cached = self._fresh(key)
        if cached is not None:
            self._stats["cache_hits"] += 1
            return cached

        inflight = self._inflight.get(key)
        if inflight is None:
            inflight = asyncio.ensure_future(self._refresh(key))
            self._inflight[key] = inflight
            inflight.add_done_callback(lambda _: self._inflight.pop(key, None))

        return await asyncio.shield(inflight)

    def peek(self, mint: str) -> Optional[PricePoint]:
        """Cached price regardless of age, without any network call."""
        return self._cache.get(normalize_mint(mint))

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "cache_size": len(self._cache),
            "sources": self.source_names,
        }

    # ─────────────────────────────────────────────────────────────
    # Internal methods
    # ─────────────────────────────────────────────────────────────

    def _fresh(self, key: str) -> Optional[PricePoint]:
        cached = self._cache.get(key)
        if cached is None:
            return None
        if cached.age_seconds(self._clock.now()) <= self._cache_ttl:
            return cached
        return None

    async def _refresh(self, key: str) -> Optional[PricePoint]:
        """Walk the source chain once for a key."""
        self._stats["refreshes"] += 1

        for source in self._sources:
            price = await self._try_source(source, key)
            if price is None:
                continue

            point = PricePoint(
                mint=key,
                price_usd=price,
                observed_at=self._clock.now(),
                source=source.name,
            )
            self._cache[key] = point
            logger.debug(f"[{source.name}] {short_address(key)} = ${price:.8g}")
            return point

        previous = self._cache.get(key)
        if previous is not None:
            self._stats["stale_served"] += 1
            logger.warning(
                f"All price sources failed for {short_address(key)}, "
                f"using stale price (age={previous.age_seconds(self._clock.now()):.0f}s)"
            )
            return replace(previous, stale=True)

        self._stats["unknown"] += 1
        logger.warning(str(UnknownPrice(key)))
        return None

    async def _try_source(self, source: PriceSource, key: str) -> Optional[float]:
        try:
            raw = await self._throttle.execute(
                lambda: source.try_fetch(key),
                source=source.name,
            )
        except UpstreamError as e:
            self._stats["source_failures"] += 1
            logger.warning(f"[{source.name}] Price fetch failed for {short_address(key)}: {e}")
            return None
        except Exception as e:
            self._stats["source_failures"] += 1
            logger.warning(
                f"[{source.name}] Unexpected price error for {short_address(key)}: {e}"
            )
            return None

        price = parse_positive_float(raw)
        if price is None:
            logger.debug(f"[{source.name}] No usable price for {short_address(key)}")
        return price
