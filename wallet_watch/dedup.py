"""
Wallet Watch - Deduplicator.

============================================================
RESPONSIBILITY
============================================================
Idempotence guard for the scan pipeline.

- Signature level: a transaction signature is processed at most once
  per process lifetime. It is marked the moment processing begins.
- Alert level: an alert key is delivered at most once.

============================================================
DESIGN PRINCIPLES
============================================================
- Check-and-mark is a single synchronous step (no await between
  the membership test and the insert)
- Downstream failures never unmark a signature
- release() exists only for the opt-in unfinalized retry
- Wrapped and native SOL share one identity inside alert keys

============================================================
"""

import logging
from typing import Any

from .models import NATIVE_SOL_ALIASES, WRAPPED_SOL_MINT
from .state import PipelineState


logger = logging.getLogger(__name__)


def normalize_alert_key(key: str) -> str:
    """Replace any native/wrapped SOL alias segment of a colon key."""
    parts = key.split(":")
    return ":".join(WRAPPED_SOL_MINT if part in NATIVE_SOL_ALIASES else part for part in parts)


class Deduplicator:
    """Signature and alert dedup over PipelineState."""

    def __init__(self, state: PipelineState) -> None:
        self._state = state
        self._stats = {
            "accepted": 0,
            "duplicates": 0,
            "released": 0,
            "alerts_claimed": 0,
            "alerts_suppressed": 0,
        }

    # ============================================================
    # SIGNATURES
    # ============================================================

    def should_process(self, signature: str) -> bool:
        """
        Check and mark in one step.

        Returns:
            True the first time a signature is seen, False afterwards
        """
        if signature in self._state.seen_signatures:
            self._stats["duplicates"] += 1
            logger.debug(f"Signature {signature[:16]} already processed")
            return False

        self._state.seen_signatures.add(signature)
        self._stats["accepted"] += 1
        return True

    def mark_processed(self, signature: str) -> None:
        self._state.seen_signatures.add(signature)

    def is_processed(self, signature: str) -> bool:
        return signature in self._state.seen_signatures

    def release(self, signature: str) -> None:
        """Forget a signature so the next scan retries it."""
        if signature in self._state.seen_signatures:
            self._state.seen_signatures.discard(signature)
            self._stats["released"] += 1
            logger.debug(f"Signature {signature[:16]} released for retry")

    # ============================================================
    # ALERTS
    # ============================================================

    def claim_alert(self, key: str) -> bool:
        """
        Record an alert key the first time it is seen.

        Returns:
            True if the caller may deliver the alert
        """
        normalized = normalize_alert_key(key)
        if normalized in self._state.sent_alert_keys:
            self._stats["alerts_suppressed"] += 1
            logger.debug(f"Alert {normalized} already sent")
            return False

        self._state.sent_alert_keys.add(normalized)
        self._stats["alerts_claimed"] += 1
        return True

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "seen_signatures": len(self._state.seen_signatures),
            "sent_alerts": len(self._state.sent_alert_keys),
        }
