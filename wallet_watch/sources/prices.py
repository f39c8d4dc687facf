"""
Price Sources - Independent USD price feeds for Solana mints.

Default chain order (see PriceOracle):
1. Jupiter price API
2. DexScreener (most liquid pair where the mint is the base token)
3. CoinGecko (simple price / token price endpoints)

Each source is independent; none of them is trusted to be up.
"""

import logging
from typing import Any, Optional

import aiohttp
import httpx

from ..exceptions import UpstreamUnavailable
from ..models import WRAPPED_SOL_MINT
from .base import LiquiditySource, PriceSource, UpstreamSource, parse_positive_float


logger = logging.getLogger(__name__)


class JupiterPriceSource(PriceSource):
    """Jupiter aggregator price API."""

    BASE_URL = "https://api.jup.ag/price/v2"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = BASE_URL,
    ) -> None:
        super().__init__(session)
        self._base_url = base_url

    @property
    def name(self) -> str:
        return "jupiter"

    async def try_fetch(self, mint: str) -> Optional[float]:
        data = await self._get_json(self._base_url, params={"ids": mint})
        if not isinstance(data, dict):
            raise UpstreamUnavailable("Unexpected payload shape", source=self.name)

        entry = (data.get("data") or {}).get(mint)
        if not entry:
            return None
        return parse_positive_float(entry.get("price"))


# ─────────────────────────────────────────────────────────────
# DexScreener
# ─────────────────────────────────────────────────────────────

DEXSCREENER_TOKENS_URL = "https://api.dexscreener.com/latest/dex/tokens"


async def fetch_base_pairs(source: UpstreamSource, mint: str) -> list[dict[str, Any]]:
    """Fetch DexScreener pairs in which the mint is the base token."""
    data = await source._get_json(f"{DEXSCREENER_TOKENS_URL}/{mint}")
    if not isinstance(data, dict):
        raise UpstreamUnavailable("Unexpected payload shape", source=source.name)

    pairs = data.get("pairs") or []
    return [
        pair for pair in pairs
        if isinstance(pair, dict)
        and (pair.get("baseToken") or {}).get("address") == mint
    ]


def _pair_liquidity(pair: dict[str, Any]) -> float:
    return parse_positive_float((pair.get("liquidity") or {}).get("usd")) or 0.0


class DexScreenerPriceSource(PriceSource):
    """Price of the most liquid DexScreener pair."""

    @property
    def name(self) -> str:
        return "dexscreener"

    async def try_fetch(self, mint: str) -> Optional[float]:
        pairs = await fetch_base_pairs(self, mint)
        if not pairs:
            return None

        best = max(pairs, key=_pair_liquidity)
        return parse_positive_float(best.get("priceUsd"))


class DexScreenerLiquiditySource(LiquiditySource):
    """Total USD liquidity of the mint's DexScreener pools."""

    @property
    def name(self) -> str:
        return "dexscreener_liquidity"

    async def try_fetch(self, mint: str) -> Optional[float]:
        pairs = await fetch_base_pairs(self, mint)
        if not pairs:
            return None

        total = sum(_pair_liquidity(pair) for pair in pairs)
        return total if total > 0 else None


# ─────────────────────────────────────────────────────────────
# CoinGecko
# ─────────────────────────────────────────────────────────────

class CoinGeckoPriceSource(PriceSource):
    """
    CoinGecko public API.

    Native SOL uses the coin endpoint; SPL tokens use the Solana
    token-price endpoint keyed by contract address.
    """

    BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = BASE_URL,
        timeout_seconds: float = 10.0,
    ) -> None:
        super().__init__(session=None)
        self._api_key = api_key
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return "coingecko"

    async def try_fetch(self, mint: str) -> Optional[float]:
        if mint == WRAPPED_SOL_MINT:
            data = await self._fetch(
                "/simple/price",
                {"ids": "solana", "vs_currencies": "usd"},
            )
            return parse_positive_float((data.get("solana") or {}).get("usd"))

        data = await self._fetch(
            "/simple/token_price/solana",
            {"contract_addresses": mint, "vs_currencies": "usd"},
        )
        entry = data.get(mint) or data.get(mint.lower()) or {}
        return parse_positive_float(entry.get("usd"))

    async def _fetch(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        headers = {}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.get(
                    f"{self._base_url}{path}",
                    params=params,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"HTTP {e.response.status_code}",
                source=self.name,
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise UpstreamUnavailable(f"Request error: {e}", source=self.name)
        except ValueError as e:
            raise UpstreamUnavailable(f"Malformed JSON payload: {e}", source=self.name)

        if not isinstance(data, dict):
            raise UpstreamUnavailable("Unexpected payload shape", source=self.name)
        return data


def default_price_sources(
    session: Optional[aiohttp.ClientSession] = None,
    coingecko_api_key: Optional[str] = None,
) -> list[PriceSource]:
    """Standard source chain, in fallback order."""
    return [
        JupiterPriceSource(session),
        DexScreenerPriceSource(session),
        CoinGeckoPriceSource(api_key=coingecko_api_key),
    ]
