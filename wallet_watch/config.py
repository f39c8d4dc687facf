"""
Wallet Watch Configuration - Thresholds, cadences and upstream settings.

All thresholds are configurable for tuning.
Secrets (RPC URL, Telegram token) are loaded from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .exceptions import ConfigurationError


DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ThrottleConfig:
    """Pacing of outbound calls to price/token sources."""
    min_interval_seconds: float = 1.0
    max_per_minute: Optional[int] = None
    timeout_seconds: float = 2.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_interval_seconds": self.min_interval_seconds,
            "max_per_minute": self.max_per_minute,
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass
class SignificanceConfig:
    """Thresholds for swap and coordinated-buy alerts."""
    swap_threshold_usd: float = 2_500.0
    min_wallets: int = 3
    min_transfer_amount: float = 0.0  # 0 disables the filter
    bucket_retention_days: int = 2  # today + yesterday
    liquidity_check: bool = True
    low_liquidity_multiple: float = 10.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "swap_threshold_usd": self.swap_threshold_usd,
            "min_wallets": self.min_wallets,
            "min_transfer_amount": self.min_transfer_amount,
            "bucket_retention_days": self.bucket_retention_days,
            "liquidity_check": self.liquidity_check,
            "low_liquidity_multiple": self.low_liquidity_multiple,
        }


@dataclass
class WatchConfig:
    """Main configuration for the wallet watch runtime."""

    # Ledger
    rpc_url: str = DEFAULT_RPC_URL
    rpc_requests_per_second: float = 5.0
    rpc_timeout_seconds: float = 10.0
    wallets: list[str] = field(default_factory=list)
    signature_limit: int = 5

    # Alert delivery
    telegram_bot_token: Optional[str] = None
    telegram_chat_ids: list[str] = field(default_factory=list)

    # Status endpoint
    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Cadences
    scan_interval_seconds: float = 60.0
    sweep_interval_seconds: float = 6 * 3600.0
    scan_concurrency: int = 4

    # Caches
    price_cache_ttl_seconds: float = 300.0
    token_flag_refresh_seconds: float = 24 * 3600.0
    scam_mints: list[str] = field(default_factory=list)
    coingecko_api_key: Optional[str] = None

    # Dedup policy for transactions that are not yet available
    retry_unfinalized: bool = False

    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    significance: SignificanceConfig = field(default_factory=SignificanceConfig)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WatchConfig":
        """
        Build configuration from environment variables.

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        def number(name: str, default: float, cast=float):
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {name}: {raw!r}",
                    details={"variable": name},
                )

        chat_ids = _env_list(env.get("TG_CHAT_ID") or env.get("TELEGRAM_CHAT_ID"))
        max_per_minute = number("THROTTLE_MAX_PER_MINUTE", 0, int)

        return cls(
            rpc_url=env.get("RPC_URL") or DEFAULT_RPC_URL,
            rpc_requests_per_second=number("RPC_REQUESTS_PER_SECOND", 5.0),
            rpc_timeout_seconds=number("RPC_TIMEOUT_SECONDS", 10.0),
            wallets=_env_list(env.get("WALLETS")),
            signature_limit=number("SIGNATURE_LIMIT", 5, int),
            telegram_bot_token=env.get("TG_TOKEN") or env.get("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_ids=chat_ids,
            api_port=number("PORT", 3000, int),
            scan_interval_seconds=number("SCAN_INTERVAL_SECONDS", 60.0),
            sweep_interval_seconds=number("SWEEP_INTERVAL_SECONDS", 6 * 3600.0),
            scan_concurrency=number("SCAN_CONCURRENCY", 4, int),
            price_cache_ttl_seconds=number("PRICE_CACHE_TTL_SECONDS", 300.0),
            token_flag_refresh_seconds=number("TOKEN_FLAG_REFRESH_SECONDS", 24 * 3600.0),
            scam_mints=_env_list(env.get("SCAM_MINTS")),
            coingecko_api_key=env.get("COINGECKO_API_KEY") or None,
            retry_unfinalized=_env_bool(env.get("RETRY_UNFINALIZED"), False),
            throttle=ThrottleConfig(
                min_interval_seconds=number("THROTTLE_MIN_INTERVAL_SECONDS", 1.0),
                max_per_minute=max_per_minute or None,
                timeout_seconds=number("UPSTREAM_TIMEOUT_SECONDS", 2.0),
            ),
            significance=SignificanceConfig(
                swap_threshold_usd=number("SWAP_THRESHOLD_USD", 2_500.0),
                min_wallets=number("MIN_WALLETS", 3, int),
                min_transfer_amount=number("MIN_TRANSFER_AMOUNT", 0.0),
                bucket_retention_days=number("BUCKET_RETENTION_DAYS", 2, int),
                liquidity_check=_env_bool(env.get("LIQUIDITY_CHECK"), True),
            ),
        )

    def validate(self) -> list[str]:
        """Return a list of configuration errors (empty when valid)."""
        errors = []

        if not self.rpc_url:
            errors.append("RPC_URL must be set")
        if not self.wallets:
            errors.append("WALLETS must list at least one address")
        if self.rpc_requests_per_second <= 0:
            errors.append("RPC_REQUESTS_PER_SECOND must be positive")
        if self.signature_limit < 1:
            errors.append("SIGNATURE_LIMIT must be at least 1")
        if self.significance.min_wallets < 2:
            errors.append("MIN_WALLETS must be at least 2")
        if self.significance.swap_threshold_usd <= 0:
            errors.append("SWAP_THRESHOLD_USD must be positive")
        if self.significance.bucket_retention_days < 1:
            errors.append("BUCKET_RETENTION_DAYS must be at least 1")
        if self.scan_concurrency < 1:
            errors.append("SCAN_CONCURRENCY must be at least 1")
        if self.scan_interval_seconds < 1:
            errors.append("SCAN_INTERVAL_SECONDS must be at least 1 second")
        if self.sweep_interval_seconds < 1:
            errors.append("SWEEP_INTERVAL_SECONDS must be at least 1 second")
        if self.price_cache_ttl_seconds <= 0:
            errors.append("PRICE_CACHE_TTL_SECONDS must be positive")
        if self.throttle.timeout_seconds <= 0:
            errors.append("UPSTREAM_TIMEOUT_SECONDS must be positive")
        if self.throttle.min_interval_seconds < 0:
            errors.append("THROTTLE_MIN_INTERVAL_SECONDS cannot be negative")

        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "rpc_url": self.rpc_url,
            "rpc_requests_per_second": self.rpc_requests_per_second,
            "rpc_timeout_seconds": self.rpc_timeout_seconds,
            "wallets": len(self.wallets),
            "signature_limit": self.signature_limit,
            "telegram_enabled": self.telegram_enabled,
            "api_enabled": self.api_enabled,
            "api_port": self.api_port,
            "scan_interval_seconds": self.scan_interval_seconds,
            "sweep_interval_seconds": self.sweep_interval_seconds,
            "scan_concurrency": self.scan_concurrency,
            "price_cache_ttl_seconds": self.price_cache_ttl_seconds,
            "token_flag_refresh_seconds": self.token_flag_refresh_seconds,
            "scam_mints": len(self.scam_mints),
            "retry_unfinalized": self.retry_unfinalized,
            "throttle": self.throttle.to_dict(),
            "significance": self.significance.to_dict(),
        }
