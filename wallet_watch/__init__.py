"""
Wallet Watch - Solana wallet activity classification and alerting.

Watches a set of addresses, classifies their recent transactions into
transfers and swaps, values them in USD through a fallback chain of price
sources, and alerts on:

- Large swaps (USD value above a threshold)
- Coordinated buying (several distinct wallets acquiring the same token
  on the same day)

Each significant event alerts exactly once.

Usage:
    from wallet_watch import PipelineState, PriceOracle, RequestThrottle, default_price_sources

    state = PipelineState()
    throttle = RequestThrottle(min_interval_seconds=1.0)
    oracle = PriceOracle(default_price_sources(), throttle, state=state)
    price = await oracle.get_price_usd(mint)

Run as a service:
    python app.py --help
"""

__version__ = "1.0.0"

from .classifier import EventClassifier
from .clock import ClockProtocol, MockClock, SystemClock
from .config import SignificanceConfig, ThrottleConfig, WatchConfig
from .dedup import Deduplicator
from .exceptions import (
    ConfigurationError,
    MalformedTransaction,
    UnknownPrice,
    UnresolvedMetadata,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
    WalletWatchError,
)
from .ledger import LedgerClient, SolanaLedgerClient
from .models import (
    AccumulatorBucket,
    Alert,
    AlertKind,
    Event,
    PricePoint,
    SwapEvent,
    TokenIdentity,
    TransferEvent,
    normalize_mint,
)
from .notifications import AlertFormatter, AlertSink, LoggingAlertSink, TelegramAlertSink
from .pipeline import ScanReport, WatchPipeline
from .price_oracle import PriceOracle
from .scheduler import PeriodicTask, WatchScheduler
from .significance import SignificanceEngine
from .sources import default_price_sources
from .state import PipelineState
from .throttle import RequestThrottle
from .token_registry import TokenRegistry


__all__ = [
    "__version__",
    # Core
    "RequestThrottle",
    "PriceOracle",
    "TokenRegistry",
    "EventClassifier",
    "SignificanceEngine",
    "Deduplicator",
    "PipelineState",
    # Runtime
    "WatchPipeline",
    "ScanReport",
    "PeriodicTask",
    "WatchScheduler",
    "LedgerClient",
    "SolanaLedgerClient",
    "AlertSink",
    "AlertFormatter",
    "LoggingAlertSink",
    "TelegramAlertSink",
    "default_price_sources",
    # Config
    "WatchConfig",
    "ThrottleConfig",
    "SignificanceConfig",
    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    # Models
    "TokenIdentity",
    "PricePoint",
    "TransferEvent",
    "SwapEvent",
    "Event",
    "AccumulatorBucket",
    "Alert",
    "AlertKind",
    "normalize_mint",
    # Exceptions
    "WalletWatchError",
    "UpstreamError",
    "UpstreamTimeout",
    "UpstreamUnavailable",
    "UnresolvedMetadata",
    "UnknownPrice",
    "MalformedTransaction",
    "ConfigurationError",
]
