"""
Wallet Watch Exceptions - Error taxonomy for graceful degradation.

Upstream errors are recovered locally by fallback chains, cached values
or placeholders. None of them aborts a scan cycle.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class WalletWatchError(Exception):
    """Base exception for all wallet watch errors."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.source = source
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source": self.source,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        if self.source:
            return f"{self.message} [source={self.source}]"
        return self.message


class UpstreamError(WalletWatchError):
    """Base class for failures of an upstream HTTP/RPC source."""
    pass


class UpstreamTimeout(UpstreamError):
    """An upstream call exceeded its timeout."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source, details)
        self.timeout_seconds = timeout_seconds


class UpstreamUnavailable(UpstreamError):
    """Upstream answered with a non-2xx status, was rate limited or sent a malformed payload."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source, details)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class UnresolvedMetadata(WalletWatchError):
    """Every token registry source was exhausted for a mint."""

    def __init__(self, mint: str) -> None:
        super().__init__(f"Token metadata unresolved: {mint}")
        self.mint = mint


class UnknownPrice(WalletWatchError):
    """Every price source was exhausted and no cached price exists."""

    def __init__(self, mint: str) -> None:
        super().__init__(f"Price unknown: {mint}")
        self.mint = mint


class MalformedTransaction(WalletWatchError):
    """A parsed transaction record is missing expected fields."""

    def __init__(
        self,
        message: str,
        signature: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.signature = signature


class ConfigurationError(WalletWatchError):
    """Invalid configuration."""
    pass
