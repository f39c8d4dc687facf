"""
Token Sources - Remote and on-chain token identity lookups.

- JupiterTokenListSource: curated token list, identities are verified
- OnChainMetadataSource: mint account via JSON-RPC, identities are unverified
"""

import logging
from typing import Any, Optional

import aiohttp

from ..exceptions import UpstreamUnavailable
from ..models import TokenIdentity, short_address
from .base import TokenSource


logger = logging.getLogger(__name__)


class JupiterTokenListSource(TokenSource):
    """Jupiter token list lookup by mint."""

    BASE_URL = "https://tokens.jup.ag/token"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = BASE_URL,
    ) -> None:
        super().__init__(session)
        self._base_url = base_url

    @property
    def name(self) -> str:
        return "jupiter_token_list"

    async def try_fetch(self, mint: str) -> Optional[TokenIdentity]:
        try:
            data = await self._get_json(f"{self._base_url}/{mint}")
        except UpstreamUnavailable as e:
            if e.status_code == 404:
                return None
            raise

        if not isinstance(data, dict) or not data.get("symbol"):
            return None

        try:
            decimals = int(data["decimals"])
        except (KeyError, TypeError, ValueError):
            raise UpstreamUnavailable(
                "Token entry without decimals",
                source=self.name,
                details={"mint": mint},
            )

        return TokenIdentity(
            address=mint,
            symbol=str(data["symbol"]),
            name=str(data.get("name") or data["symbol"]),
            decimals=decimals,
            verified=True,
            source=self.name,
        )


class OnChainMetadataSource(TokenSource):
    """
    Reads the mint account with getAccountInfo (jsonParsed).

    Decimals always come from the mint account. Symbol and name come from
    the Token-2022 metadata extension when present, otherwise a shortened
    mint address is used.
    """

    def __init__(
        self,
        rpc_url: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(session)
        self._rpc_url = rpc_url
        self._request_id = 0

    @property
    def name(self) -> str:
        return "onchain_metadata"

    async def try_fetch(self, mint: str) -> Optional[TokenIdentity]:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "getAccountInfo",
            "params": [mint, {"encoding": "jsonParsed"}],
        }
        data = await self._post_json(self._rpc_url, payload)

        if not isinstance(data, dict):
            raise UpstreamUnavailable("Unexpected payload shape", source=self.name)
        if "error" in data:
            error = data["error"] or {}
            raise UpstreamUnavailable(
                f"RPC error: {error.get('message', 'Unknown')}",
                source=self.name,
                details=error,
            )

        value = (data.get("result") or {}).get("value")
        if not value:
            return None

        # Non-parseable accounts come back as [base64, encoding]
        raw = value.get("data")
        parsed = raw.get("parsed") if isinstance(raw, dict) else None
        if not parsed or parsed.get("type") != "mint":
            return None

        info = parsed.get("info") or {}
        try:
            decimals = int(info["decimals"])
        except (KeyError, TypeError, ValueError):
            return None

        symbol, name = self._metadata_from_extensions(info.get("extensions") or [])
        fallback = short_address(mint)

        return TokenIdentity(
            address=mint,
            symbol=symbol or fallback,
            name=name or symbol or fallback,
            decimals=decimals,
            verified=False,
            source=self.name,
        )

    @staticmethod
    def _metadata_from_extensions(extensions: list[Any]) -> tuple[Optional[str], Optional[str]]:
        for extension in extensions:
            if not isinstance(extension, dict):
                continue
            if extension.get("extension") != "tokenMetadata":
                continue
            state = extension.get("state") or {}
            symbol = (state.get("symbol") or "").strip() or None
            name = (state.get("name") or "").strip() or None
            return symbol, name
        return None, None
