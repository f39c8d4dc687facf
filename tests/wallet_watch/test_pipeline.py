"""
Tests for WatchPipeline.

============================================================
TEST PRINCIPLES:
- Real classifier, engine and dedup over in-memory ledger and sources
- A signature is processed at most once
- One wallet failing never aborts the cycle
============================================================
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wallet_watch.classifier import EventClassifier
from wallet_watch.config import WatchConfig
from wallet_watch.dedup import Deduplicator
from wallet_watch.exceptions import UpstreamUnavailable
from wallet_watch.models import USDC_MINT, AlertKind, TokenIdentity
from wallet_watch.pipeline import WatchPipeline
from wallet_watch.price_oracle import PriceOracle
from wallet_watch.significance import SignificanceEngine
from wallet_watch.token_registry import TokenRegistry

from fakes import (
    MINT_A,
    POOL,
    WALLET_A,
    WALLET_B,
    WALLET_C,
    FakeLedger,
    FakePriceSource,
    FakeTokenSource,
    RecordingSink,
    fast_throttle,
    incoming_token_transaction,
    make_transaction,
)


WALLETS = [WALLET_A, WALLET_B, WALLET_C]


def make_pipeline(ledger, state, clock, engine=None, sink=None, **config_overrides):
    config = WatchConfig(wallets=list(WALLETS), **config_overrides)
    if engine is None:
        oracle = PriceOracle(
            [FakePriceSource("prices", prices={MINT_A: 0.5})],
            fast_throttle(), state=state, clock=clock,
        )
        registry = TokenRegistry(
            [FakeTokenSource(
                "token_list",
                identities={MINT_A: TokenIdentity(MINT_A, "AAA", "Token A", 6, True, source="token_list")},
            )],
            fast_throttle(), state=state, clock=clock,
        )
        engine = SignificanceEngine(registry, oracle, state=state, clock=clock,
                                    config=config.significance)
    sink = sink or RecordingSink()
    pipeline = WatchPipeline(
        config, ledger, EventClassifier(), engine, Deduplicator(state), sink,
        state=state, clock=clock,
    )
    return pipeline, sink


def buying_ledger():
    """Each watched wallet receives MINT_A in its own transaction."""
    return FakeLedger(
        signatures={wallet: [f"sig-{i}"] for i, wallet in enumerate(WALLETS)},
        transactions={
            f"sig-{i}": incoming_token_transaction(f"sig-{i}", wallet, MINT_A, 100.0)
            for i, wallet in enumerate(WALLETS)
        },
    )


class TestScanCycle:
    """End-to-end cycles."""

    @pytest.mark.asyncio
    async def test_three_wallets_buying_emit_one_alert(self, state, clock):
        pipeline, sink = make_pipeline(buying_ledger(), state, clock)

        report = await pipeline.run_scan_cycle()
        await pipeline.drain()

        assert report.wallets_scanned == 3
        assert report.wallets_failed == 0
        assert [a.kind for a in report.alerts] == [AlertKind.COORDINATED_BUY]
        assert len(sink.messages) == 1
        assert "Coordinated buying: AAA" in sink.messages[0]

    @pytest.mark.asyncio
    async def test_second_cycle_is_silent(self, state, clock):
        ledger = buying_ledger()
        pipeline, sink = make_pipeline(ledger, state, clock)

        await pipeline.run_scan_cycle()
        report = await pipeline.run_scan_cycle()
        await pipeline.drain()

        assert report.alerts == []
        assert len(sink.messages) == 1
        assert sorted(ledger.fetched) == ["sig-0", "sig-1", "sig-2"]

    @pytest.mark.asyncio
    async def test_failing_wallet_is_counted_not_fatal(self, state, clock):
        ledger = buying_ledger()
        ledger.failing_wallets[WALLET_B] = UpstreamUnavailable("rpc down", source="solana_rpc")
        pipeline, _ = make_pipeline(ledger, state, clock)

        report = await pipeline.run_scan_cycle()

        assert report.wallets_scanned == 2
        assert report.wallets_failed == 1
        assert report.alerts == []

    @pytest.mark.asyncio
    async def test_unexpected_wallet_error_is_counted(self, state, clock):
        ledger = buying_ledger()
        ledger.failing_wallets[WALLET_C] = RuntimeError("bug")
        pipeline, _ = make_pipeline(ledger, state, clock)

        report = await pipeline.run_scan_cycle()

        assert report.wallets_failed == 1

    @pytest.mark.asyncio
    async def test_signatures_processed_oldest_first(self, state, clock):
        ledger = FakeLedger(signatures={WALLET_A: ["newest", "middle", "oldest"]})
        pipeline, _ = make_pipeline(ledger, state, clock)

        await pipeline.scan_wallet(WALLET_A)

        assert ledger.fetched == ["oldest", "middle", "newest"]

    @pytest.mark.asyncio
    async def test_malformed_transaction_does_not_stop_wallet(self, state, clock):
        broken = make_transaction(
            "broken",
            [WALLET_A, POOL],
            pre_balances=[None, 1_000_000_000],
            post_balances=[5_000_000_000, 1_000_000_000],
        )
        ledger = FakeLedger(
            signatures={WALLET_A: ["later", "broken"]},
            transactions={
                "broken": broken,
                "later": incoming_token_transaction("later", WALLET_A, MINT_A, 100.0),
            },
        )
        pipeline, _ = make_pipeline(ledger, state, clock)

        report = await pipeline.run_scan_cycle()

        assert ledger.fetched == ["broken", "later"]
        assert report.wallets_failed == 0
        assert report.wallets_scanned == 3
        stats = pipeline.status()["stats"]
        assert stats["classifier"]["malformed"] == 1
        assert stats["classifier"]["transfers"] == 1

    @pytest.mark.asyncio
    async def test_classifier_crash_is_counted_not_fatal(self, state, clock):
        ledger = FakeLedger(
            signatures={WALLET_A: ["later", "crashing"]},
            transactions={
                "crashing": incoming_token_transaction("crashing", WALLET_A, MINT_A, 1.0),
                "later": incoming_token_transaction("later", WALLET_A, MINT_A, 100.0),
            },
        )
        pipeline, _ = make_pipeline(ledger, state, clock)
        classify = pipeline._classifier.classify

        def crash_on_first(transaction, wallet):
            if transaction["signature"] == "crashing":
                raise RuntimeError("classifier bug")
            return classify(transaction, wallet)

        with patch.object(pipeline._classifier, "classify", side_effect=crash_on_first):
            report = await pipeline.run_scan_cycle()

        assert ledger.fetched == ["crashing", "later"]
        assert report.wallets_failed == 0
        stats = pipeline.status()["stats"]
        assert stats["classification_errors"] == 1
        assert stats["classifier"]["transfers"] == 1


class TestIdempotence:
    """Signature dedup and unavailable transactions."""

    @pytest.mark.asyncio
    async def test_same_signature_processed_once(self, state, clock):
        ledger = buying_ledger()
        pipeline, _ = make_pipeline(ledger, state, clock)

        first = await pipeline.process_signature(WALLET_A, "sig-0")
        second = await pipeline.process_signature(WALLET_A, "sig-0")

        assert first == []
        assert second == []
        assert ledger.fetched == ["sig-0"]
        assert pipeline.status()["stats"]["signatures_skipped"] == 1

    @pytest.mark.asyncio
    async def test_unavailable_transaction_stays_marked(self, state, clock):
        ledger = FakeLedger(signatures={WALLET_A: ["pending"]})
        pipeline, _ = make_pipeline(ledger, state, clock)

        await pipeline.run_scan_cycle()
        await pipeline.run_scan_cycle()

        assert ledger.fetched == ["pending"]

    @pytest.mark.asyncio
    async def test_unavailable_transaction_retried_when_enabled(self, state, clock):
        ledger = FakeLedger(signatures={WALLET_A: ["pending"]})
        pipeline, _ = make_pipeline(ledger, state, clock, retry_unfinalized=True)

        await pipeline.run_scan_cycle()
        await pipeline.run_scan_cycle()

        assert ledger.fetched == ["pending", "pending"]

    @pytest.mark.asyncio
    async def test_evaluation_error_does_not_unmark(self, state, clock):
        engine = MagicMock()
        engine.evaluate = AsyncMock(side_effect=RuntimeError("boom"))
        engine.get_stats = MagicMock(return_value={})
        ledger = buying_ledger()
        pipeline, _ = make_pipeline(ledger, state, clock, engine=engine)

        assert await pipeline.process_signature(WALLET_A, "sig-0") == []
        assert await pipeline.process_signature(WALLET_A, "sig-0") == []

        assert ledger.fetched == ["sig-0"]
        assert pipeline.status()["stats"]["evaluation_errors"] == 1


class TestDelivery:
    """Background delivery and the test alert."""

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_break_cycle(self, state, clock):
        sink = RecordingSink()
        sink.send = AsyncMock(side_effect=RuntimeError("sink down"))
        pipeline, _ = make_pipeline(buying_ledger(), state, clock, sink=sink)

        report = await pipeline.run_scan_cycle()
        await pipeline.drain()

        assert len(report.alerts) == 1
        assert pipeline.status()["stats"]["delivery_errors"] == 1

    @pytest.mark.asyncio
    async def test_send_test_alert_bypasses_dedup(self, state, clock):
        pipeline, sink = make_pipeline(FakeLedger(), state, clock)

        first = await pipeline.send_test_alert()
        await pipeline.send_test_alert()

        assert first.kind == AlertKind.TEST
        assert first.mint == USDC_MINT
        assert len(sink.messages) == 2
        assert f"https://solscan.io/token/{USDC_MINT}" in sink.messages[0]
        assert state.sent_alert_keys == set()

    @pytest.mark.asyncio
    async def test_status_shape(self, state, clock):
        pipeline, _ = make_pipeline(buying_ledger(), state, clock)

        before = pipeline.status()
        await pipeline.run_scan_cycle()
        after = pipeline.status()

        assert before["status"] == "running"
        assert before["tracked_wallets"] == 3
        assert before["last_scan"] is None
        assert after["last_scan"] == clock.now().isoformat()
        assert after["stats"]["cycles"] == 1
        assert after["stats"]["last_cycle"]["wallets_scanned"] == 3
        assert before["buckets"] == []
        assert before["recent_alerts"] == []
        assert before["config"]["wallets"] == 3
        assert before["config"]["significance"]["min_wallets"] == 3
        assert after["stats"]["ledger"] == {}
        assert [b["mint"] for b in after["buckets"]] == [MINT_A]
        assert after["buckets"][0]["wallet_count"] == 3
        assert [a["kind"] for a in after["recent_alerts"]] == [AlertKind.COORDINATED_BUY.value]
        assert after["recent_alerts"][0]["dedup_key"] == f"coordinated:{MINT_A}:0"
