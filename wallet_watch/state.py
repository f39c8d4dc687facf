"""
Pipeline State - All mutable in-memory state of the core.

One instance is created at startup and injected into every component.
Nothing here survives a restart.
"""

from dataclasses import dataclass, field
from typing import Any

from .models import AccumulatorBucket, BucketKey, PricePoint, TokenIdentity


@dataclass
class PipelineState:
    """Owned state shared by oracle, registry, engine and deduplicator."""

    # PriceOracle: normalized mint -> last observed price
    price_cache: dict[str, PricePoint] = field(default_factory=dict)

    # TokenRegistry: mint -> resolved identity (never expires)
    token_cache: dict[str, TokenIdentity] = field(default_factory=dict)

    # SignificanceEngine: (day, mint) -> bucket
    buckets: dict[BucketKey, AccumulatorBucket] = field(default_factory=dict)

    # SignificanceEngine: mints already alerted in the current window
    alerted_mints: set[str] = field(default_factory=set)
    window: int = 0

    # Deduplicator
    seen_signatures: set[str] = field(default_factory=set)
    sent_alert_keys: set[str] = field(default_factory=set)

    def summary(self) -> dict[str, Any]:
        return {
            "price_cache_entries": len(self.price_cache),
            "token_cache_entries": len(self.token_cache),
            "buckets": len(self.buckets),
            "alerted_mints": len(self.alerted_mints),
            "window": self.window,
            "seen_signatures": len(self.seen_signatures),
            "sent_alerts": len(self.sent_alert_keys),
        }
