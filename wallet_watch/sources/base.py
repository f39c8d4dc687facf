"""
Base Upstream Source - Capability interfaces for fallback chains.

Every source answers one question for one key via try_fetch(key):
- a value when it has one
- None when it has no answer for the key
- an UpstreamError when the call itself failed

Chains (PriceOracle, TokenRegistry) iterate sources in order and treat
None and errors alike: log and move to the next source.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from ..exceptions import UpstreamUnavailable
from ..models import TokenIdentity


logger = logging.getLogger(__name__)


class UpstreamSource(ABC):
    """
    Base class for HTTP-backed sources.

    Sessions may be shared across sources; a source only closes a
    session it created itself.
    """

    DEFAULT_TIMEOUT = 10  # seconds, outer bound; the throttle applies the short one

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session
        self._owns_session = session is None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source."""
        pass

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.DEFAULT_TIMEOUT)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """GET a JSON document, mapping every failure to UpstreamUnavailable."""
        session = await self._get_session()
        try:
            async with session.get(url, params=params, headers=headers) as response:
                return await self._read_json(response, url)
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Network error: {e}", source=self.name)

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """POST a JSON body and decode the JSON answer."""
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, headers=headers) as response:
                return await self._read_json(response, url)
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Network error: {e}", source=self.name)

    async def _read_json(self, response: aiohttp.ClientResponse, url: str) -> Any:
        if response.status == 429:
            raise UpstreamUnavailable(
                "Rate limit exceeded",
                source=self.name,
                status_code=429,
            )
        if response.status != 200:
            raise UpstreamUnavailable(
                f"HTTP {response.status}",
                source=self.name,
                status_code=response.status,
                details={"url": url},
            )
        try:
            return await response.json(content_type=None)
        except ValueError as e:
            raise UpstreamUnavailable(
                f"Malformed JSON payload: {e}",
                source=self.name,
                status_code=response.status,
            )

    async def close(self) -> None:
        """Close the session if this source created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


class PriceSource(UpstreamSource):
    """Source of USD prices keyed by mint."""

    @abstractmethod
    async def try_fetch(self, mint: str) -> Optional[float]:
        """
        Fetch the USD price of a mint.

        Returns:
            Price in USD, or None if the source has no price for the mint

        Raises:
            UpstreamError: If the call fails
        """
        pass


class TokenSource(UpstreamSource):
    """Source of token identities keyed by mint."""

    @abstractmethod
    async def try_fetch(self, mint: str) -> Optional[TokenIdentity]:
        """
        Fetch the identity of a mint.

        Returns:
            TokenIdentity, or None if the source does not know the mint

        Raises:
            UpstreamError: If the call fails
        """
        pass


class LiquiditySource(UpstreamSource):
    """Source of available pool liquidity (USD) keyed by mint."""

    @abstractmethod
    async def try_fetch(self, mint: str) -> Optional[float]:
        pass


def parse_positive_float(value: Any) -> Optional[float]:
    """Coerce an upstream number (often a string) to a positive finite float."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    if number <= 0:
        return None
    return number
