"""
Token Registry - Symbol, name, decimals and trust flags of a mint.

Resolution chain:
1. Built-in table of well-known assets (verified)
2. Known-scam set (is_scam=True, placeholder symbol)
3. Remote strict token list (verified)
4. On-chain mint metadata (unverified)
5. Placeholder UNKNOWN / 9 decimals (unverified)

The registry NEVER raises: unresolved metadata degrades to a placeholder.
Identity is cached forever; only unverified entries are re-checked after
the flag refresh period, keeping their decimals.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Iterable, Optional, Sequence

from .clock import ClockProtocol, SystemClock
from .exceptions import UnresolvedMetadata, UpstreamError
from .models import (
    USDC_MINT,
    USDT_MINT,
    WRAPPED_SOL_MINT,
    TokenIdentity,
    normalize_mint,
    short_address,
)
from .sources.base import TokenSource
from .state import PipelineState
from .throttle import RequestThrottle


logger = logging.getLogger(__name__)


def _known(address: str, symbol: str, name: str, decimals: int) -> TokenIdentity:
    return TokenIdentity(
        address=address,
        symbol=symbol,
        name=name,
        decimals=decimals,
        verified=True,
        source="builtin",
    )


# Well-known Solana assets
KNOWN_TOKENS: dict[str, TokenIdentity] = {
    token.address: token for token in (
        _known(WRAPPED_SOL_MINT, "SOL", "Solana", 9),
        _known(USDC_MINT, "USDC", "USD Coin", 6),
        _known(USDT_MINT, "USDT", "Tether USD", 6),
        _known("mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So", "mSOL", "Marinade staked SOL", 9),
        _known("7dHbWXmci3dT8UFYWYZweBLXgycu7Y3iL6trKn1Y7ARj", "stSOL", "Lido Staked SOL", 9),
        _known("J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn", "JitoSOL", "Jito Staked SOL", 9),
        _known("7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs", "WETH", "Wrapped Ether (Wormhole)", 8),
        _known("9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E", "WBTC", "Wrapped BTC (Sollet)", 6),
        _known("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", "BONK", "Bonk", 5),
        _known("JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", "JUP", "Jupiter", 6),
    )
}

PLACEHOLDER_SYMBOL = "UNKNOWN"
PLACEHOLDER_DECIMALS = 9
SCAM_SYMBOL = "SCAM"


class TokenRegistry:
    """
    Resolves token identities through an ordered source chain.

    Usage:
        registry = TokenRegistry(
            sources=[JupiterTokenListSource(session), OnChainMetadataSource(rpc_url, session)],
            throttle=throttle,
            state=state,
        )
        token = await registry.resolve(mint)
    """

    DEFAULT_FLAG_REFRESH = 24 * 3600  # seconds

    def __init__(
        self,
        sources: Sequence[TokenSource],
        throttle: RequestThrottle,
        state: Optional[PipelineState] = None,
        clock: Optional[ClockProtocol] = None,
        scam_mints: Optional[Iterable[str]] = None,
        flag_refresh_seconds: float = DEFAULT_FLAG_REFRESH,
    ) -> None:
        self._sources = list(sources)
        self._throttle = throttle
        self._state = state or PipelineState()
        self._clock = clock or SystemClock()
        self._scam_mints: set[str] = {normalize_mint(m) for m in (scam_mints or ())}
        self._flag_refresh = flag_refresh_seconds

        self._inflight: dict[str, asyncio.Future] = {}

        self._stats = {
            "requests": 0,
            "builtin": 0,
            "scam": 0,
            "cache_hits": 0,
            "refreshes": 0,
            "placeholders": 0,
            "source_failures": 0,
        }

    @property
    def _cache(self) -> dict[str, TokenIdentity]:
        return self._state.token_cache

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def resolve(self, mint: str) -> TokenIdentity:
        """Resolve a mint's identity. NEVER raises."""
        self._stats["requests"] += 1
        key = normalize_mint(mint)

        builtin = KNOWN_TOKENS.get(key)
        if builtin is not None:
            self._stats["builtin"] += 1
            return builtin

        if key in self._scam_mints:
            self._stats["scam"] += 1
            return self._scam_identity(key)

        cached = self._cache.get(key)
        if cached is not None and not self._needs_refresh(cached):
            self._stats["cache_hits"] += 1
            return cached

        inflight = self._inflight.get(key)
        if inflight is None:
            inflight = asyncio.ensure_future(self._refresh(key))
            self._inflight[key] = inflight
            inflight.add_done_callback(lambda _: self._inflight.pop(key, None))

        return await asyncio.shield(inflight)

    def is_scam(self, mint: str) -> bool:
        return normalize_mint(mint) in self._scam_mints

    def mark_scam(self, mint: str) -> None:
        """Add a mint to the scam set at runtime."""
        key = normalize_mint(mint)
        if key in KNOWN_TOKENS:
            logger.warning(f"Refusing to flag built-in token {key} as scam")
            return
        self._scam_mints.add(key)
        logger.info(f"Token {short_address(key)} flagged as scam")

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "cache_size": len(self._cache),
            "scam_mints": len(self._scam_mints),
        }

    # ─────────────────────────────────────────────────────────────
    # Internal methods
    # ─────────────────────────────────────────────────────────────

    def _needs_refresh(self, identity: TokenIdentity) -> bool:
        """Unverified identities are re-checked after the refresh period."""
        if identity.verified:
            return False
        age = (self._clock.now() - identity.resolved_at).total_seconds()
        return age > self._flag_refresh

    def _scam_identity(self, key: str) -> TokenIdentity:
        cached = self._cache.get(key)
        return TokenIdentity(
            address=key,
            symbol=SCAM_SYMBOL,
            name="Known scam token",
            decimals=cached.decimals if cached else PLACEHOLDER_DECIMALS,
            verified=False,
            is_scam=True,
            source="scam_list",
            resolved_at=self._clock.now(),
        )

    async def _refresh(self, key: str) -> TokenIdentity:
        self._stats["refreshes"] += 1
        previous = self._cache.get(key)
        now = self._clock.now()

        for source in self._sources:
            identity = await self._try_source(source, key)
            if identity is None:
                continue

            identity = replace(identity, address=key, resolved_at=now)
            if previous is not None and not previous.is_placeholder:
                # Identity fields are immutable once resolved; only flags move
                identity = replace(
                    previous,
                    verified=identity.verified,
                    resolved_at=now,
                )
            self._cache[key] = identity
            return identity

        if previous is not None:
            # Back off until the next refresh period
            identity = replace(previous, resolved_at=now)
            self._cache[key] = identity
            return identity

        self._stats["placeholders"] += 1
        logger.warning(str(UnresolvedMetadata(key)))
        identity = TokenIdentity(
            address=key,
            symbol=PLACEHOLDER_SYMBOL,
            name=PLACEHOLDER_SYMBOL,
            decimals=PLACEHOLDER_DECIMALS,
            verified=False,
            source="placeholder",
            resolved_at=now,
        )
        self._cache[key] = identity
        return identity

    async def _try_source(self, source: TokenSource, key: str) -> Optional[TokenIdentity]:
        try:
            return await self._throttle.execute(
                lambda: source.try_fetch(key),
                source=source.name,
            )
        except UpstreamError as e:
            self._stats["source_failures"] += 1
            logger.warning(f"[{source.name}] Token lookup failed for {short_address(key)}: {e}")
        except Exception as e:
            self._stats["source_failures"] += 1
            logger.warning(
                f"[{source.name}] Unexpected token lookup error for {short_address(key)}: {e}"
            )
        return None
