"""
Significance Engine - Decides which events deserve an alert.

Two detectors:

1. Large swap: a single SwapEvent worth at least `swap_threshold_usd`.
   The sold leg is priced first; the bought leg is the fallback. Without
   any price there is no alert.

2. Coordinated buy: incoming transfers accumulate in a (day, mint) bucket.
   The first time a bucket reaches `min_wallets` distinct wallets, and the
   mint has not alerted in the current window, one alert fires. The bucket
   keeps accumulating silently afterwards.

Bucket lifecycle:
    Idle -> Accumulating -> Alerted -> (Accumulating, silent)

`sweep()` evicts buckets outside the retention window (today + yesterday
by default), clears the alerted set and opens a new window.

A retained bucket keeps its wallets across a sweep. If it is already at
`min_wallets`, its next incoming transfer alerts again in the new window,
even when that transfer comes from a wallet already counted. At most one
such alert per mint per window.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Optional

from .clock import ClockProtocol, SystemClock
from .config import SignificanceConfig
from .exceptions import UpstreamError
from .models import (
    AccumulatorBucket,
    Alert,
    AlertKind,
    BucketKey,
    Event,
    PricePoint,
    SwapEvent,
    TokenIdentity,
    TransferEvent,
    normalize_mint,
    short_address,
)
from .price_oracle import PriceOracle
from .sources.base import LiquiditySource, parse_positive_float
from .state import PipelineState
from .throttle import RequestThrottle
from .token_registry import TokenRegistry


logger = logging.getLogger(__name__)


WALLET_PREVIEW_LIMIT = 5


def format_amount(amount: float) -> str:
    if amount >= 1:
        return f"{amount:,.2f}"
    return f"{amount:.6g}"


def format_usd(value: Optional[float]) -> str:
    if value is None:
        return "Unknown"
    return f"${value:,.2f}"


class SignificanceEngine:
    """
    Evaluates events against swap and coordinated-buy thresholds.

    Usage:
        engine = SignificanceEngine(registry, oracle, state=state)
        alerts = await engine.evaluate(event)
    """

    def __init__(
        self,
        registry: TokenRegistry,
        oracle: PriceOracle,
        state: Optional[PipelineState] = None,
        clock: Optional[ClockProtocol] = None,
        config: Optional[SignificanceConfig] = None,
        liquidity_source: Optional[LiquiditySource] = None,
        throttle: Optional[RequestThrottle] = None,
    ) -> None:
        self._registry = registry
        self._oracle = oracle
        self._state = state or PipelineState()
        self._clock = clock or SystemClock()
        self._config = config or SignificanceConfig()
        self._liquidity_source = liquidity_source
        self._throttle = throttle

        self._bucket_locks: dict[BucketKey, asyncio.Lock] = {}

        self._stats = {
            "transfers_accumulated": 0,
            "transfers_ignored": 0,
            "swaps_evaluated": 0,
            "swaps_unpriced": 0,
            "swaps_below_threshold": 0,
            "coordinated_alerts": 0,
            "swap_alerts": 0,
            "sweeps": 0,
            "buckets_evicted": 0,
        }

    @property
    def window(self) -> int:
        return self._state.window

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def evaluate(self, event: Event) -> list[Alert]:
        """
        Evaluate one event.

        Raises:
            TypeError: For anything that is not a known event type
        """
        if isinstance(event, TransferEvent):
            return await self._on_transfer(event)
        if isinstance(event, SwapEvent):
            return await self._on_swap(event)
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    def sweep(self) -> int:
        """
        Evict buckets outside the retention window and open a new window.

        Retained buckets at or above `min_wallets` re-alert once on their
        next incoming transfer.

        Returns:
            Number of buckets evicted
        """
        retained = set(self._retained_days())
        expired = [key for key in self._state.buckets if key[0] not in retained]
        for key in expired:
            del self._state.buckets[key]

        for key in list(self._bucket_locks):
            if key not in self._state.buckets and not self._bucket_locks[key].locked():
                del self._bucket_locks[key]

        cleared = len(self._state.alerted_mints)
        self._state.alerted_mints.clear()
        self._state.window += 1

        self._stats["sweeps"] += 1
        self._stats["buckets_evicted"] += len(expired)
        logger.info(
            f"Sweep: evicted {len(expired)} bucket(s), cleared {cleared} alerted mint(s), "
            f"window={self._state.window}"
        )
        return len(expired)

    def get_bucket(self, day: date, mint: str) -> Optional[AccumulatorBucket]:
        return self._state.buckets.get((day, normalize_mint(mint)))

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "buckets": len(self._state.buckets),
            "alerted_mints": len(self._state.alerted_mints),
            "window": self._state.window,
        }

    # ─────────────────────────────────────────────────────────────
    # Coordinated buying
    # ─────────────────────────────────────────────────────────────

    def _retained_days(self) -> list[date]:
        today = self._clock.today()
        days = max(1, self._config.bucket_retention_days)
        return [today - timedelta(days=offset) for offset in range(days)]

    def _bucket_day(self, event: TransferEvent) -> date:
        today = self._clock.today()
        if event.block_time is None:
            return today
        return min(event.block_time.date(), today)

    async def _on_transfer(self, event: TransferEvent) -> list[Alert]:
        if not event.is_incoming:
            self._stats["transfers_ignored"] += 1
            return []

        minimum = self._config.min_transfer_amount
        if minimum and event.ui_amount < minimum:
            self._stats["transfers_ignored"] += 1
            logger.debug(
                f"Transfer of {event.ui_amount} {short_address(event.mint)} below minimum {minimum}"
            )
            return []

        day = self._bucket_day(event)
        if day < min(self._retained_days()):
            self._stats["transfers_ignored"] += 1
            logger.debug(f"Transfer {event.signature[:16]} from {day} is outside the window")
            return []

        mint = normalize_mint(event.mint)
        token = await self._registry.resolve(mint)
        price = await self._oracle.get_price_usd(mint)
        price_usd = price.price_usd if price is not None else None

        key: BucketKey = (day, mint)
        lock = self._bucket_locks.setdefault(key, asyncio.Lock())
        async with lock:
            bucket = self._state.buckets.get(key)
            if bucket is None:
                bucket = AccumulatorBucket(day=day, mint=mint, token=token)
                self._state.buckets[key] = bucket

            bucket.add(event.wallet, event.ui_amount, price_usd, self._clock.now())
            self._stats["transfers_accumulated"] += 1

            if bucket.wallet_count < self._config.min_wallets:
                return []
            if mint in self._state.alerted_mints:
                return []

            self._state.alerted_mints.add(mint)
            self._stats["coordinated_alerts"] += 1

        logger.info(
            f"Coordinated buy: {bucket.wallet_count} wallets bought {token.display_name} "
            f"({short_address(mint)}) on {day}"
        )
        return [self._coordinated_alert(bucket, token, price)]

    def _coordinated_alert(
        self,
        bucket: AccumulatorBucket,
        token: TokenIdentity,
        price: Optional[PricePoint],
    ) -> Alert:
        preview = [short_address(w) for w in bucket.wallet_order[:WALLET_PREVIEW_LIMIT]]
        extra = bucket.wallet_count - len(preview)
        if extra > 0:
            preview.append(f"+{extra} more")

        usd_volume = bucket.total_amount * price.price_usd if price is not None else None
        drift = bucket.price_drift_pct

        fields = {
            "Token": f"{token.display_name} ({token.name})",
            "Address": bucket.mint,
            "Wallets": str(bucket.wallet_count),
            "Buyers": ", ".join(preview),
            "Total volume": f"{format_amount(bucket.total_amount)} {token.display_name}",
            "Average buy": f"{format_amount(bucket.average_amount)} {token.display_name}",
            "USD volume": format_usd(usd_volume),
            "Price drift": f"{drift:+.2f}%" if drift is not None else "n/a",
        }

        return Alert(
            kind=AlertKind.COORDINATED_BUY,
            dedup_key=f"coordinated:{bucket.mint}:{self._state.window}",
            mint=bucket.mint,
            title=f"Coordinated buying: {token.display_name}",
            fields=fields,
            warnings=self._token_warnings(token, price),
        )

    # ─────────────────────────────────────────────────────────────
    # Large swaps
    # ─────────────────────────────────────────────────────────────

    async def _on_swap(self, event: SwapEvent) -> list[Alert]:
        self._stats["swaps_evaluated"] += 1

        sold_mint = normalize_mint(event.sold_mint)
        bought_mint = normalize_mint(event.bought_mint)

        sold_price = await self._oracle.get_price_usd(sold_mint)
        bought_price = await self._oracle.get_price_usd(bought_mint)

        if sold_price is not None:
            value = abs(event.sold_amount) * sold_price.price_usd
            leg, leg_price = "sold", sold_price
        elif bought_price is not None:
            value = abs(event.bought_amount) * bought_price.price_usd
            leg, leg_price = "bought", bought_price
        else:
            self._stats["swaps_unpriced"] += 1
            logger.debug(f"Swap {event.signature[:16]} has no priced leg, not significant")
            return []

        threshold = self._config.swap_threshold_usd
        if value < threshold:
            self._stats["swaps_below_threshold"] += 1
            logger.debug(f"Swap {event.signature[:16]} worth ${value:,.2f} below ${threshold:,.0f}")
            return []

        sold_token = await self._registry.resolve(sold_mint)
        bought_token = await self._registry.resolve(bought_mint)

        warnings = self._token_warnings(bought_token, leg_price)
        if self._config.liquidity_check and bought_token.source != "builtin":
            liquidity = await self._get_liquidity(bought_mint)
            if liquidity is not None and liquidity < self._config.low_liquidity_multiple * value:
                warnings.append(
                    f"Low liquidity: {format_usd(liquidity)} pooled vs {format_usd(value)} swapped"
                )

        dedup_key = (
            f"swap:{event.signature}" if event.signature
            else f"swap:{event.wallet}:{sold_mint}:{bought_mint}:{event.sold_amount}"
        )

        self._stats["swap_alerts"] += 1
        logger.info(
            f"Large swap: {short_address(event.wallet)} sold {sold_token.display_name} "
            f"for {bought_token.display_name} worth {format_usd(value)}"
        )

        return [Alert(
            kind=AlertKind.LARGE_SWAP,
            dedup_key=dedup_key,
            mint=bought_mint,
            title=f"Large swap: {sold_token.display_name} → {bought_token.display_name}",
            fields={
                "Wallet": event.wallet,
                "Sold": f"{format_amount(event.sold_amount)} {sold_token.display_name}",
                "Bought": f"{format_amount(event.bought_amount)} {bought_token.display_name}",
                "Value": format_usd(value),
                "Priced by": f"{leg} leg ({leg_price.source})",
            },
            warnings=warnings,
            signature=event.signature or None,
        )]

    async def _get_liquidity(self, mint: str) -> Optional[float]:
        """Pooled USD liquidity of a mint, or None when unavailable."""
        source = self._liquidity_source
        if source is None:
            return None

        try:
            if self._throttle is not None:
                raw = await self._throttle.execute(
                    lambda: source.try_fetch(mint),
                    source=source.name,
                )
            else:
                raw = await source.try_fetch(mint)
        except UpstreamError as e:
            logger.warning(f"[{source.name}] Liquidity lookup failed for {short_address(mint)}: {e}")
            return None
        except Exception as e:
            logger.warning(
                f"[{source.name}] Unexpected liquidity error for {short_address(mint)}: {e}"
            )
            return None

        return parse_positive_float(raw)

    @staticmethod
    def _token_warnings(token: TokenIdentity, price: Optional[PricePoint]) -> list[str]:
        warnings = []
        if token.is_scam:
            warnings.append("Token is on the known-scam list")
        elif not token.verified:
            warnings.append("Unverified token")
        if price is not None and price.stale:
            warnings.append("Price is stale (all price sources failed)")
        return warnings
