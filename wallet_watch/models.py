"""
Wallet Watch Data Models - Token identity, prices, events and alerts.

Events are a closed set of types (TransferEvent | SwapEvent). Consumers
dispatch on the concrete type and reject anything else.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


# Native SOL has no mint; the system program id and the literal "SOL" are
# used for it in parsed transactions. Both map to the wrapped SOL mint.
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
NATIVE_SOL_ADDRESS = "11111111111111111111111111111111"
NATIVE_SOL_ALIASES = frozenset({NATIVE_SOL_ADDRESS, "SOL", "sol", WRAPPED_SOL_MINT})

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"


def normalize_mint(mint: str) -> str:
    """Map native and wrapped SOL to one key; other mints are unchanged."""
    if mint in NATIVE_SOL_ALIASES:
        return WRAPPED_SOL_MINT
    return mint


def short_address(address: str, length: int = 6) -> str:
    """Shorten an address for display."""
    if len(address) <= length:
        return address
    return f"{address[:length]}..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TokenIdentity:
    """Resolved identity of a mint."""
    address: str
    symbol: str
    name: str
    decimals: int
    verified: bool = False
    is_scam: bool = False
    source: str = "placeholder"
    resolved_at: datetime = field(default_factory=_utcnow)

    @property
    def is_placeholder(self) -> bool:
        return self.source == "placeholder"

    @property
    def display_name(self) -> str:
        if self.symbol and self.symbol != "UNKNOWN":
            return self.symbol
        return short_address(self.address)


@dataclass
class PricePoint:
    """
    A USD price observation.

    stale=True means every source failed and this is the last known value.
    An unknown price is represented by None, never by a zero PricePoint.
    """
    mint: str
    price_usd: float
    observed_at: datetime
    source: str = ""
    stale: bool = False

    def age_seconds(self, now: datetime) -> float:
        return (now - self.observed_at).total_seconds()


# ─────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TransferEvent:
    """A token (or native SOL) transfer into or out of a watched wallet."""
    wallet: str
    mint: str
    ui_amount: float
    is_incoming: bool
    signature: str = ""
    block_time: Optional[datetime] = None


@dataclass(frozen=True)
class SwapEvent:
    """Exactly two of the wallet's holdings moved in opposite directions."""
    wallet: str
    sold_mint: str
    sold_amount: float
    bought_mint: str
    bought_amount: float
    signature: str = ""
    block_time: Optional[datetime] = None


Event = Union[TransferEvent, SwapEvent]


# ─────────────────────────────────────────────────────────────
# Accumulation
# ─────────────────────────────────────────────────────────────

BucketKey = tuple[date, str]


@dataclass
class AccumulatorBucket:
    """Per-day, per-mint accumulator of distinct buying wallets and volume."""
    day: date
    mint: str
    token: TokenIdentity
    distinct_wallets: set[str] = field(default_factory=set)
    wallet_order: list[str] = field(default_factory=list)
    total_amount: float = 0.0
    transfer_count: int = 0
    first_price_usd: Optional[float] = None
    last_price_usd: Optional[float] = None
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    @property
    def key(self) -> BucketKey:
        return (self.day, self.mint)

    @property
    def wallet_count(self) -> int:
        return len(self.distinct_wallets)

    @property
    def average_amount(self) -> float:
        if not self.distinct_wallets:
            return 0.0
        return self.total_amount / len(self.distinct_wallets)

    @property
    def price_drift_pct(self) -> Optional[float]:
        """Percentage change between first and last observed price."""
        if self.first_price_usd is None or self.last_price_usd is None:
            return None
        if self.first_price_usd <= 0:
            return None
        return (self.last_price_usd - self.first_price_usd) / self.first_price_usd * 100

    def add(
        self,
        wallet: str,
        amount: float,
        price_usd: Optional[float],
        seen_at: datetime,
    ) -> None:
        """Record one incoming transfer."""
        if wallet not in self.distinct_wallets:
            self.distinct_wallets.add(wallet)
            self.wallet_order.append(wallet)
        self.total_amount += amount
        self.transfer_count += 1
        if price_usd is not None:
            if self.first_price_usd is None:
                self.first_price_usd = price_usd
            self.last_price_usd = price_usd
        if self.first_seen is None:
            self.first_seen = seen_at
        self.last_seen = seen_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "mint": self.mint,
            "symbol": self.token.symbol,
            "wallet_count": self.wallet_count,
            "total_amount": self.total_amount,
            "transfer_count": self.transfer_count,
            "first_price_usd": self.first_price_usd,
            "last_price_usd": self.last_price_usd,
        }


# ─────────────────────────────────────────────────────────────
# Alerts
# ─────────────────────────────────────────────────────────────

class AlertKind(Enum):
    """Kind of outbound alert."""
    COORDINATED_BUY = "coordinated_buy"
    LARGE_SWAP = "large_swap"
    TEST = "test"


@dataclass
class Alert:
    """A significant event or accumulation ready to be delivered."""
    kind: AlertKind
    dedup_key: str
    mint: str
    title: str
    fields: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    signature: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "dedup_key": self.dedup_key,
            "mint": self.mint,
            "title": self.title,
            "fields": dict(self.fields),
            "warnings": list(self.warnings),
            "signature": self.signature,
            "created_at": self.created_at.isoformat(),
        }
