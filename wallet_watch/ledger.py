"""
Ledger Client - Recent signatures and parsed transactions of an address.

SolanaLedgerClient talks JSON-RPC to any Solana endpoint. Calls go through
their own RequestThrottle: the RPC provider quota is independent of the
price/token sources quota.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from .exceptions import UpstreamUnavailable
from .sources.base import UpstreamSource
from .throttle import RequestThrottle


logger = logging.getLogger(__name__)


class LedgerClient(ABC):
    """Read access to the ledger for watched addresses."""

    @abstractmethod
    async def list_recent_signatures(self, address: str, limit: int) -> list[str]:
        """Most recent transaction signatures of an address, newest first."""
        pass

    @abstractmethod
    async def get_parsed_transaction(self, signature: str) -> Optional[dict[str, Any]]:
        """
        Parsed transaction for a signature.

        Returns:
            Transaction dict, or None when the ledger has no (finalized) record yet
        """
        pass

    async def close(self) -> None:
        pass

    def get_stats(self) -> dict[str, Any]:
        return {}


class SolanaLedgerClient(UpstreamSource, LedgerClient):
    """
    Solana JSON-RPC ledger client.

    RPC endpoints:
    - Mainnet: https://api.mainnet-beta.solana.com
    - Any Helius / QuickNode / private endpoint via RPC_URL
    """

    DEFAULT_TIMEOUT = 20
    DEFAULT_SIGNATURE_LIMIT = 5
    MAX_SIGNATURE_LIMIT = 1000

    def __init__(
        self,
        rpc_url: str,
        throttle: Optional[RequestThrottle] = None,
        session: Optional[aiohttp.ClientSession] = None,
        commitment: str = "confirmed",
    ) -> None:
        super().__init__(session)
        self.rpc_url = rpc_url
        self._throttle = throttle or RequestThrottle(
            min_interval_seconds=0.2,
            timeout_seconds=10.0,
            name="solana_rpc",
        )
        self._commitment = commitment
        self._request_id = 0

    @property
    def name(self) -> str:
        return "solana_rpc"

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make a throttled JSON-RPC call and return its result."""
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": method,
            "params": params,
        }

        data = await self._throttle.execute(
            lambda: self._post_json(self.rpc_url, payload),
            source=self.name,
        )

        if not isinstance(data, dict):
            raise UpstreamUnavailable("Unexpected RPC payload", source=self.name)

        if "error" in data:
            error = data["error"] or {}
            raise UpstreamUnavailable(
                f"RPC error: {error.get('message', 'Unknown')}",
                source=self.name,
                details=error,
            )

        return data.get("result")

    async def list_recent_signatures(
        self,
        address: str,
        limit: int = DEFAULT_SIGNATURE_LIMIT,
    ) -> list[str]:
        params = [
            address,
            {
                "limit": max(1, min(limit, self.MAX_SIGNATURE_LIMIT)),
                "commitment": self._commitment,
            },
        ]
        result = await self._rpc_call("getSignaturesForAddress", params)
        if not result:
            return []

        signatures = [
            entry["signature"] for entry in result
            if isinstance(entry, dict) and entry.get("signature")
        ]
        logger.debug(f"[{self.name}] {len(signatures)} signature(s) for {address[:8]}...")
        return signatures

    async def get_parsed_transaction(self, signature: str) -> Optional[dict[str, Any]]:
        params = [
            signature,
            {
                "encoding": "jsonParsed",
                "maxSupportedTransactionVersion": 0,
                "commitment": self._commitment,
            },
        ]
        result = await self._rpc_call("getTransaction", params)
        if not result:
            return None

        result.setdefault("signature", signature)
        return result

    def get_stats(self) -> dict[str, Any]:
        return self._throttle.get_stats()
