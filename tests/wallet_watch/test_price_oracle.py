"""
Tests for PriceOracle.

============================================================
TEST PRINCIPLES:
- Fallback chain order and caching
- Stale price is better than no price
- Unknown is None, never zero
============================================================
"""

import asyncio

import pytest

from wallet_watch.exceptions import UpstreamTimeout, UpstreamUnavailable
from wallet_watch.models import (
    NATIVE_SOL_ADDRESS,
    USDC_MINT,
    USDT_MINT,
    WRAPPED_SOL_MINT,
    PricePoint,
)
from wallet_watch.price_oracle import PriceOracle

from fakes import MINT_A, MINT_B, FakePriceSource, fast_throttle


def make_oracle(sources, state, clock, ttl=300):
    return PriceOracle(sources, fast_throttle(), state=state, clock=clock, cache_ttl_seconds=ttl)


class TestPriceFallback:
    """Ordered source chain."""

    @pytest.mark.asyncio
    async def test_third_source_wins_and_is_cached(self, state, clock):
        """Sources 1 and 2 fail, source 3 answers; the next call hits the cache."""
        first = FakePriceSource("first", error=UpstreamUnavailable("down", source="first"))
        second = FakePriceSource("second", error=UpstreamTimeout("slow", source="second"))
        third = FakePriceSource("third", prices={MINT_A: 42.0})
        oracle = make_oracle([first, second, third], state, clock)

        point = await oracle.get_price_usd(MINT_A)

        assert point.price_usd == 42.0
        assert point.source == "third"
        assert point.stale is False
        assert state.price_cache[MINT_A].price_usd == 42.0

        clock.advance(seconds=60)
        again = await oracle.get_price_usd(MINT_A)

        assert again.price_usd == 42.0
        assert len(first.calls) == 1
        assert len(second.calls) == 1
        assert len(third.calls) == 1

    @pytest.mark.asyncio
    async def test_non_positive_and_garbage_prices_are_skipped(self, state, clock):
        """Zero, negative and unparsable answers fall through to the next source."""
        zero = FakePriceSource("zero", prices={MINT_A: 0})
        negative = FakePriceSource("negative", prices={MINT_A: "-3"})
        garbage = FakePriceSource("garbage", prices={MINT_A: "n/a"})
        good = FakePriceSource("good", prices={MINT_A: "0.0025"})
        oracle = make_oracle([zero, negative, garbage, good], state, clock)

        point = await oracle.get_price_usd(MINT_A)

        assert point.price_usd == pytest.approx(0.0025)
        assert point.source == "good"

    @pytest.mark.asyncio
    async def test_source_timeout_is_a_failed_source(self, state, clock):
        """A source slower than the throttle timeout is skipped."""
        slow = FakePriceSource("slow", prices={MINT_A: 1.0}, delay=0.5)
        fast = FakePriceSource("fast", prices={MINT_A: 2.0})
        oracle = PriceOracle(
            [slow, fast], fast_throttle(timeout_seconds=0.05), state=state, clock=clock
        )

        point = await oracle.get_price_usd(MINT_A)

        assert point.price_usd == 2.0
        assert oracle.get_stats()["source_failures"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_source_error_does_not_escape(self, state, clock):
        """Even a non-upstream exception is contained by the chain."""
        broken = FakePriceSource("broken", error=KeyError("data"))
        good = FakePriceSource("good", prices={MINT_A: 5.0})
        oracle = make_oracle([broken, good], state, clock)

        point = await oracle.get_price_usd(MINT_A)

        assert point.price_usd == 5.0


class TestPriceDegradation:
    """Stale and unknown prices."""

    @pytest.mark.asyncio
    async def test_stale_price_better_than_none(self, state, clock):
        """Cached 10.0 past TTL with all sources failing yields 10.0 marked stale."""
        state.price_cache[MINT_A] = PricePoint(
            mint=MINT_A, price_usd=10.0, observed_at=clock.now(), source="jupiter"
        )
        failing = FakePriceSource("failing", error=UpstreamUnavailable("down"))
        oracle = make_oracle([failing], state, clock)

        clock.advance(seconds=301)
        point = await oracle.get_price_usd(MINT_A)

        assert point.price_usd == 10.0
        assert point.stale is True
        assert len(failing.calls) == 1
        assert state.price_cache[MINT_A].stale is False

    @pytest.mark.asyncio
    async def test_expired_entry_refreshes(self, state, clock):
        """An entry older than the TTL is refreshed from the chain."""
        source = FakePriceSource("source", prices={MINT_A: 1.0})
        oracle = make_oracle([source], state, clock, ttl=300)

        await oracle.get_price_usd(MINT_A)
        source.prices[MINT_A] = 2.0
        clock.advance(seconds=301)
        point = await oracle.get_price_usd(MINT_A)

        assert point.price_usd == 2.0
        assert len(source.calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_price_is_none(self, state, clock):
        """No price ever observed gives None, not zero."""
        empty = FakePriceSource("empty")
        failing = FakePriceSource("failing", error=UpstreamUnavailable("down"))
        oracle = make_oracle([empty, failing], state, clock)

        assert await oracle.get_price_usd(MINT_B) is None
        assert oracle.get_stats()["unknown"] == 1
        assert MINT_B not in state.price_cache


class TestPriceKeys:
    """Pegged stablecoins and SOL normalization."""

    @pytest.mark.asyncio
    async def test_pegged_stablecoins_skip_network(self, state, clock):
        source = FakePriceSource("source", prices={USDC_MINT: 0.98})
        oracle = make_oracle([source], state, clock)

        usdc = await oracle.get_price_usd(USDC_MINT)
        usdt = await oracle.get_price_usd(USDT_MINT)

        assert usdc.price_usd == 1.0
        assert usdt.price_usd == 1.0
        assert usdc.source == "pegged"
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_native_and_wrapped_sol_share_cache_key(self, state, clock):
        source = FakePriceSource("source", prices={WRAPPED_SOL_MINT: 150.0})
        oracle = make_oracle([source], state, clock)

        native = await oracle.get_price_usd(NATIVE_SOL_ADDRESS)
        literal = await oracle.get_price_usd("SOL")
        wrapped = await oracle.get_price_usd(WRAPPED_SOL_MINT)

        assert native.price_usd == literal.price_usd == wrapped.price_usd == 150.0
        assert source.calls == [WRAPPED_SOL_MINT]
        assert oracle.peek("SOL").price_usd == 150.0


class TestPriceConcurrency:
    """One refresh in flight per mint."""

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_refresh(self, state, clock):
        source = FakePriceSource("source", prices={MINT_A: 3.0}, delay=0.05)
        oracle = make_oracle([source], state, clock)

        results = await asyncio.gather(*(oracle.get_price_usd(MINT_A) for _ in range(5)))

        assert [r.price_usd for r in results] == [3.0] * 5
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_different_mints_refresh_independently(self, state, clock):
        source = FakePriceSource("source", prices={MINT_A: 1.0, MINT_B: 2.0}, delay=0.01)
        oracle = make_oracle([source], state, clock)

        a, b = await asyncio.gather(oracle.get_price_usd(MINT_A), oracle.get_price_usd(MINT_B))

        assert a.price_usd == 1.0
        assert b.price_usd == 2.0
        assert sorted(source.calls) == sorted([MINT_A, MINT_B])
