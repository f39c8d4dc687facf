"""
Tests for EventClassifier.

============================================================
TEST PRINCIPLES:
- Swaps only for exactly two opposite-sign balance changes
- Transfers from top-level and inner instructions
- Bad records give an empty list, never an exception
============================================================
"""

from datetime import datetime, timezone

import pytest

from wallet_watch.classifier import EventClassifier
from wallet_watch.models import WRAPPED_SOL_MINT, SwapEvent, TransferEvent

from fakes import (
    MINT_A,
    MINT_B,
    MINT_C,
    POOL,
    WALLET_A,
    incoming_token_transaction,
    make_transaction,
    token_balance,
    transfer_checked,
)


ATA_A = "AtaAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
ATA_B = "AtaBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
ATA_C = "AtaCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCC"
POOL_ATA = "PoolAtaPPPPPPPPPPPPPPPPPPPPPPPPPPPPPPPPPPPPP"


@pytest.fixture
def classifier():
    return EventClassifier()


def swaps(events):
    return [e for e in events if isinstance(e, SwapEvent)]


def transfers(events):
    return [e for e in events if isinstance(e, TransferEvent)]


# ============================================================
# SWAPS
# ============================================================

class TestSwapDetection:
    """Balance-delta swap detection."""

    def test_swap_direction(self, classifier):
        """pre {A:100, B:50}, post {A:80, B:70} -> sold A 20, bought B 20."""
        tx = make_transaction(
            "sig-swap",
            [WALLET_A, ATA_A, ATA_B],
            pre_token=[
                token_balance(1, MINT_A, WALLET_A, 100.0),
                token_balance(2, MINT_B, WALLET_A, 50.0),
            ],
            post_token=[
                token_balance(1, MINT_A, WALLET_A, 80.0),
                token_balance(2, MINT_B, WALLET_A, 70.0),
            ],
        )

        [swap] = swaps(classifier.classify(tx, WALLET_A))

        assert swap.sold_mint == MINT_A
        assert swap.sold_amount == pytest.approx(20.0)
        assert swap.bought_mint == MINT_B
        assert swap.bought_amount == pytest.approx(20.0)
        assert swap.wallet == WALLET_A
        assert swap.signature == "sig-swap"

    def test_three_changed_mints_is_not_a_swap(self, classifier):
        tx = make_transaction(
            "sig-multi",
            [WALLET_A, ATA_A, ATA_B, ATA_C],
            pre_token=[
                token_balance(1, MINT_A, WALLET_A, 100.0),
                token_balance(2, MINT_B, WALLET_A, 50.0),
                token_balance(3, MINT_C, WALLET_A, 10.0),
            ],
            post_token=[
                token_balance(1, MINT_A, WALLET_A, 80.0),
                token_balance(2, MINT_B, WALLET_A, 70.0),
                token_balance(3, MINT_C, WALLET_A, 5.0),
            ],
        )

        assert swaps(classifier.classify(tx, WALLET_A)) == []

    def test_same_direction_is_not_a_swap(self, classifier):
        tx = make_transaction(
            "sig-both-up",
            [WALLET_A, ATA_A, ATA_B],
            pre_token=[
                token_balance(1, MINT_A, WALLET_A, 1.0),
                token_balance(2, MINT_B, WALLET_A, 1.0),
            ],
            post_token=[
                token_balance(1, MINT_A, WALLET_A, 2.0),
                token_balance(2, MINT_B, WALLET_A, 2.0),
            ],
        )

        assert swaps(classifier.classify(tx, WALLET_A)) == []

    def test_other_owners_are_ignored(self, classifier):
        """Only token accounts owned by the wallet contribute to deltas."""
        tx = make_transaction(
            "sig-pool",
            [WALLET_A, ATA_A, ATA_B, POOL_ATA],
            pre_token=[
                token_balance(1, MINT_A, WALLET_A, 100.0),
                token_balance(2, MINT_B, WALLET_A, 0.0),
                token_balance(3, MINT_C, POOL, 500.0),
            ],
            post_token=[
                token_balance(1, MINT_A, WALLET_A, 90.0),
                token_balance(2, MINT_B, WALLET_A, 5.0),
                token_balance(3, MINT_C, POOL, 400.0),
            ],
        )

        [swap] = swaps(classifier.classify(tx, WALLET_A))

        assert swap.sold_mint == MINT_A
        assert swap.bought_mint == MINT_B

    def test_native_sol_leg_with_fee_added_back(self, classifier):
        """Native lamports spent are merged under the wrapped SOL key."""
        fee = 5000
        tx = make_transaction(
            "sig-sol-swap",
            [WALLET_A, ATA_B],
            pre_token=[],
            post_token=[token_balance(1, MINT_B, WALLET_A, 1000.0)],
            pre_balances=[10_000_000_000, 2_039_280],
            post_balances=[8_000_000_000 - fee, 2_039_280],
            fee=fee,
        )

        [swap] = swaps(classifier.classify(tx, WALLET_A))

        assert swap.sold_mint == WRAPPED_SOL_MINT
        assert swap.sold_amount == pytest.approx(2.0)
        assert swap.bought_mint == MINT_B
        assert swap.bought_amount == pytest.approx(1000.0)

    def test_native_dust_is_ignored(self, classifier):
        """Rent-sized native moves are not a swap leg."""
        tx = make_transaction(
            "sig-rent",
            [WALLET_A, ATA_B],
            pre_token=[],
            post_token=[token_balance(1, MINT_B, WALLET_A, 1000.0)],
            pre_balances=[1_000_000_000, 0],
            post_balances=[1_000_000_000 - 2_039_280 - 5000, 2_039_280],
        )

        assert swaps(classifier.classify(tx, WALLET_A)) == []

    def test_wrapped_and_native_sol_merge(self, classifier):
        """Wrapping SOL in the same transaction does not create a third leg."""
        tx = make_transaction(
            "sig-wrap",
            [WALLET_A, ATA_A, ATA_B],
            pre_token=[
                token_balance(1, WRAPPED_SOL_MINT, WALLET_A, 0.0, decimals=9),
                token_balance(2, MINT_B, WALLET_A, 0.0),
            ],
            post_token=[
                token_balance(1, WRAPPED_SOL_MINT, WALLET_A, 0.5, decimals=9),
                token_balance(2, MINT_B, WALLET_A, 300.0),
            ],
            pre_balances=[5_000_000_000, 0, 0],
            post_balances=[2_500_000_000 - 5000, 0, 0],
        )

        [swap] = swaps(classifier.classify(tx, WALLET_A))

        assert swap.sold_mint == WRAPPED_SOL_MINT
        assert swap.sold_amount == pytest.approx(2.0)
        assert swap.bought_mint == MINT_B


# ============================================================
# TRANSFERS
# ============================================================

class TestTransferDetection:
    """Transfer-like instructions."""

    def test_incoming_transfer_checked(self, classifier):
        tx = incoming_token_transaction("sig-in", WALLET_A, MINT_A, 250.0, block_time=1736942400)

        [transfer] = transfers(classifier.classify(tx, WALLET_A))

        assert transfer.is_incoming is True
        assert transfer.mint == MINT_A
        assert transfer.ui_amount == pytest.approx(250.0)
        assert transfer.block_time == datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def test_outgoing_plain_transfer_uses_balance_snapshot(self, classifier):
        """spl-token `transfer` carries no mint; owner, mint and decimals come from balances."""
        instruction = {
            "program": "spl-token",
            "parsed": {
                "type": "transfer",
                "info": {
                    "source": ATA_A,
                    "destination": POOL_ATA,
                    "authority": WALLET_A,
                    "amount": "1500000",
                },
            },
        }
        tx = make_transaction(
            "sig-out",
            [WALLET_A, ATA_A, POOL_ATA],
            pre_token=[token_balance(1, MINT_A, WALLET_A, 10.0)],
            post_token=[token_balance(1, MINT_A, WALLET_A, 8.5)],
            instructions=[instruction],
        )

        [transfer] = transfers(classifier.classify(tx, WALLET_A))

        assert transfer.is_incoming is False
        assert transfer.mint == MINT_A
        assert transfer.ui_amount == pytest.approx(1.5)

    def test_inner_instruction_transfers(self, classifier):
        tx = make_transaction(
            "sig-inner",
            [WALLET_A, ATA_A, POOL_ATA, POOL],
            pre_token=[token_balance(1, MINT_A, WALLET_A, 0.0)],
            post_token=[token_balance(1, MINT_A, WALLET_A, 7.0)],
            instructions=[{"programId": "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4", "data": "x"}],
            inner=[transfer_checked(POOL_ATA, ATA_A, MINT_A, 7.0, POOL)],
        )

        [transfer] = transfers(classifier.classify(tx, WALLET_A))

        assert transfer.is_incoming is True
        assert transfer.ui_amount == pytest.approx(7.0)

    def test_system_transfer_is_native_sol(self, classifier):
        instruction = {
            "program": "system",
            "parsed": {
                "type": "transfer",
                "info": {"source": POOL, "destination": WALLET_A, "lamports": 1_500_000_000},
            },
        }
        tx = make_transaction("sig-sol", [POOL, WALLET_A], instructions=[instruction])

        [transfer] = classifier.classify(tx, WALLET_A)

        assert transfer.mint == WRAPPED_SOL_MINT
        assert transfer.ui_amount == pytest.approx(1.5)
        assert transfer.is_incoming is True

    def test_unrelated_transfer_is_ignored(self, classifier):
        tx = incoming_token_transaction("sig-other", POOL, MINT_A, 5.0)

        assert transfers(classifier.classify(tx, WALLET_A)) == []

    def test_transfer_with_unknown_mint_is_skipped(self, classifier):
        instruction = {
            "program": "spl-token",
            "parsed": {
                "type": "transfer",
                "info": {"source": POOL_ATA, "destination": WALLET_A, "amount": "100"},
            },
        }
        tx = make_transaction("sig-nomint", [WALLET_A, POOL_ATA], instructions=[instruction])

        assert classifier.classify(tx, WALLET_A) == []


# ============================================================
# EDGE CASES
# ============================================================

class TestClassifierEdgeCases:
    """Failed, empty and malformed records."""

    def test_failed_transaction_yields_nothing(self, classifier):
        tx = incoming_token_transaction("sig-failed", WALLET_A, MINT_A, 5.0)
        tx["meta"]["err"] = {"InstructionError": [0, "Custom"]}

        assert classifier.classify(tx, WALLET_A) == []
        assert classifier.get_stats()["failed_transactions"] == 1

    def test_empty_transaction_yields_nothing(self, classifier):
        tx = make_transaction("sig-empty", [WALLET_A])

        assert classifier.classify(tx, WALLET_A) == []

    def test_missing_meta_is_malformed(self, classifier):
        tx = make_transaction("sig-bad", [WALLET_A])
        del tx["meta"]

        assert classifier.classify(tx, WALLET_A) == []
        assert classifier.get_stats()["malformed"] == 1

    def test_bad_account_index_is_malformed(self, classifier):
        tx = make_transaction(
            "sig-index",
            [WALLET_A],
            pre_token=[token_balance(7, MINT_A, WALLET_A, 1.0)],
        )

        assert classifier.classify(tx, WALLET_A) == []
        assert classifier.get_stats()["malformed"] == 1

    def test_non_dict_input_is_malformed(self, classifier):
        assert classifier.classify(None, WALLET_A) == []

    def test_null_lamport_balance_is_malformed(self, classifier):
        tx = make_transaction(
            "sig-null-lamports",
            [WALLET_A, POOL],
            pre_balances=[None, 1_000_000_000],
            post_balances=[5_000_000_000, 1_000_000_000],
        )

        assert classifier.classify(tx, WALLET_A) == []
        assert classifier.get_stats()["malformed"] == 1

    def test_non_numeric_transfer_decimals_is_malformed(self, classifier):
        tx = incoming_token_transaction("sig-decimals", WALLET_A, MINT_A, 5.0)
        info = tx["transaction"]["message"]["instructions"][0]["parsed"]["info"]
        info["tokenAmount"]["decimals"] = "six"

        assert classifier.classify(tx, WALLET_A) == []
        assert classifier.get_stats()["malformed"] == 1

    def test_non_numeric_balance_decimals_is_malformed(self, classifier):
        tx = make_transaction(
            "sig-balance-decimals",
            [WALLET_A, ATA_A],
            pre_token=[token_balance(1, MINT_A, WALLET_A, 0.0)],
            post_token=[token_balance(1, MINT_A, WALLET_A, 5.0)],
        )
        tx["meta"]["postTokenBalances"][0]["uiTokenAmount"]["decimals"] = "x"

        assert classifier.classify(tx, WALLET_A) == []
        assert classifier.get_stats()["malformed"] == 1

    def test_unexpected_shape_is_malformed(self, classifier):
        tx = make_transaction("sig-shape", [WALLET_A])
        tx["meta"]["preTokenBalances"] = 42

        assert classifier.classify(tx, WALLET_A) == []
        assert classifier.get_stats()["malformed"] == 1
