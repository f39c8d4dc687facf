"""
Upstream sources for price, token identity and liquidity lookups.
"""

from .base import (
    LiquiditySource,
    PriceSource,
    TokenSource,
    UpstreamSource,
    parse_positive_float,
)
from .prices import (
    CoinGeckoPriceSource,
    DexScreenerLiquiditySource,
    DexScreenerPriceSource,
    JupiterPriceSource,
    default_price_sources,
)
from .tokens import JupiterTokenListSource, OnChainMetadataSource


__all__ = [
    "UpstreamSource",
    "PriceSource",
    "TokenSource",
    "LiquiditySource",
    "parse_positive_float",
    "JupiterPriceSource",
    "DexScreenerPriceSource",
    "DexScreenerLiquiditySource",
    "CoinGeckoPriceSource",
    "default_price_sources",
    "JupiterTokenListSource",
    "OnChainMetadataSource",
]
