"""
Watch Pipeline - One scan cycle over every watched wallet.

Flow per wallet:
    ledger signatures -> dedup -> parsed transaction -> classifier
    -> significance engine -> alert dedup -> sink (background)

Wallets are scanned concurrently up to `scan_concurrency`. Within a
wallet, signatures are processed one at a time, oldest first. A failing
wallet is logged and counted; it never aborts the cycle.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .classifier import EventClassifier
from .clock import ClockProtocol, SystemClock
from .config import WatchConfig
from .dedup import Deduplicator
from .exceptions import UpstreamError
from .ledger import LedgerClient
from .models import USDC_MINT, Alert, AlertKind, short_address
from .notifications import AlertFormatter, AlertSink
from .significance import SignificanceEngine
from .state import PipelineState


logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    """Outcome of one scan cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    wallets_scanned: int = 0
    wallets_failed: int = 0
    alerts: list[Alert] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "wallets_scanned": self.wallets_scanned,
            "wallets_failed": self.wallets_failed,
            "alerts": len(self.alerts),
        }


class WatchPipeline:
    """
    Orchestrates ledger reads, classification, significance and delivery.

    Usage:
        pipeline = WatchPipeline(config, ledger, classifier, engine, dedup, sink)
        report = await pipeline.run_scan_cycle()
        await pipeline.drain()
    """

    def __init__(
        self,
        config: WatchConfig,
        ledger: LedgerClient,
        classifier: EventClassifier,
        engine: SignificanceEngine,
        dedup: Deduplicator,
        sink: AlertSink,
        state: Optional[PipelineState] = None,
        clock: Optional[ClockProtocol] = None,
        formatter: Optional[AlertFormatter] = None,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._classifier = classifier
        self._engine = engine
        self._dedup = dedup
        self._sink = sink
        self._state = state or PipelineState()
        self._clock = clock or SystemClock()
        self._formatter = formatter or AlertFormatter()

        self._deliveries: set[asyncio.Future] = set()
        self._last_report: Optional[ScanReport] = None

        self._stats = {
            "cycles": 0,
            "signatures_processed": 0,
            "signatures_skipped": 0,
            "transactions_unavailable": 0,
            "ledger_errors": 0,
            "classification_errors": 0,
            "evaluation_errors": 0,
            "alerts_emitted": 0,
            "delivery_errors": 0,
        }

    @property
    def wallets(self) -> list[str]:
        return list(self._config.wallets)

    @property
    def last_report(self) -> Optional[ScanReport]:
        return self._last_report

    # ─────────────────────────────────────────────────────────────
    # Scanning
    # ─────────────────────────────────────────────────────────────

    async def run_scan_cycle(self) -> ScanReport:
        """Scan every watched wallet once."""
        report = ScanReport(started_at=self._clock.now())
        semaphore = asyncio.Semaphore(max(1, self._config.scan_concurrency))

        async def scan(wallet: str) -> None:
            async with semaphore:
                try:
                    alerts = await self.scan_wallet(wallet)
                except UpstreamError as e:
                    report.wallets_failed += 1
                    logger.warning(f"Scan of {short_address(wallet, 8)} failed: {e}")
                    return
                except Exception as e:
                    report.wallets_failed += 1
                    logger.error(
                        f"Unexpected error scanning {short_address(wallet, 8)}: {e}",
                        exc_info=True,
                    )
                    return
                report.wallets_scanned += 1
                report.alerts.extend(alerts)

        await asyncio.gather(*(scan(wallet) for wallet in self._config.wallets))

        report.finished_at = self._clock.now()
        self._last_report = report
        self._stats["cycles"] += 1

        logger.info(
            f"Scan cycle complete: {report.wallets_scanned}/{len(self._config.wallets)} wallets, "
            f"{report.wallets_failed} failed, {len(report.alerts)} alert(s) "
            f"in {report.duration_seconds:.1f}s"
        )
        return report

    async def scan_wallet(self, wallet: str) -> list[Alert]:
        """
        Process the most recent signatures of a wallet, oldest first.

        Raises:
            UpstreamError: If the signature list cannot be fetched
        """
        signatures = await self._ledger.list_recent_signatures(
            wallet, self._config.signature_limit
        )

        alerts: list[Alert] = []
        for signature in reversed(signatures):
            alerts.extend(await self.process_signature(wallet, signature))
        return alerts

    async def process_signature(self, wallet: str, signature: str) -> list[Alert]:
        """Process one signature to completion. Marked before any work starts."""
        if not self._dedup.should_process(signature):
            self._stats["signatures_skipped"] += 1
            return []
        self._stats["signatures_processed"] += 1

        try:
            transaction = await self._ledger.get_parsed_transaction(signature)
        except UpstreamError as e:
            self._stats["ledger_errors"] += 1
            logger.warning(f"Could not fetch transaction {signature[:16]}: {e}")
            return []

        if transaction is None:
            self._stats["transactions_unavailable"] += 1
            if self._config.retry_unfinalized:
                self._dedup.release(signature)
            logger.debug(f"Transaction {signature[:16]} not available yet")
            return []

        try:
            events = self._classifier.classify(transaction, wallet)
        except Exception as e:
            self._stats["classification_errors"] += 1
            logger.error(f"Failed to classify {signature[:16]}: {e}", exc_info=True)
            return []

        alerts: list[Alert] = []
        for event in events:
            try:
                produced = await self._engine.evaluate(event)
            except Exception as e:
                self._stats["evaluation_errors"] += 1
                logger.error(f"Failed to evaluate event from {signature[:16]}: {e}", exc_info=True)
                continue

            for alert in produced:
                if self._dedup.claim_alert(alert.dedup_key):
                    alerts.append(alert)
                    self._dispatch(alert)

        return alerts

    # ─────────────────────────────────────────────────────────────
    # Delivery
    # ─────────────────────────────────────────────────────────────

    def _dispatch(self, alert: Alert) -> None:
        self._stats["alerts_emitted"] += 1
        message = self._formatter.format_alert(alert)
        task = asyncio.ensure_future(self._deliver(message, alert))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, message: str, alert: Alert) -> None:
        try:
            await self._sink.send(message)
        except Exception as e:
            self._stats["delivery_errors"] += 1
            logger.error(f"[{self._sink.name}] Delivery of {alert.dedup_key} failed: {e}")

    async def drain(self) -> None:
        """Wait for outstanding alert deliveries."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    async def send_test_alert(self) -> Alert:
        """Deliver a synthetic coordinated-buy alert, bypassing dedup."""
        preview = [short_address(w) for w in self._config.wallets[:3]] or ["WALLET_1", "WALLET_2", "WALLET_3"]
        alert = Alert(
            kind=AlertKind.TEST,
            dedup_key=f"test:{self._clock.timestamp()}",
            mint=USDC_MINT,
            title="Test alert: coordinated buying",
            fields={
                "Token": "USDC",
                "Address": USDC_MINT,
                "Wallets": str(len(preview)),
                "Buyers": ", ".join(preview),
                "Total volume": "15.00 USDC",
            },
        )
        await self._sink.send(self._formatter.format_alert(alert))
        logger.info("Test alert sent")
        return alert

    # ─────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────

    def status(self) -> dict[str, Any]:
        report = self._last_report
        return {
            "status": "running",
            "tracked_wallets": len(self._config.wallets),
            "last_scan": report.finished_at.isoformat() if report and report.finished_at else None,
            "stats": {
                **self._stats,
                "pending_deliveries": len(self._deliveries),
                "last_cycle": report.to_dict() if report else None,
                "engine": self._engine.get_stats(),
                "dedup": self._dedup.get_stats(),
                "classifier": self._classifier.get_stats(),
                "ledger": self._ledger.get_stats(),
                "state": self._state.summary(),
            },
            "buckets": [bucket.to_dict() for bucket in self._state.buckets.values()],
            "recent_alerts": [alert.to_dict() for alert in report.alerts] if report else [],
            "config": self._config.to_dict(),
        }
