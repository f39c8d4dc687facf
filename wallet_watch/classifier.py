"""
Event Classifier - Turns one parsed Solana transaction into typed events.

Input is the `getTransaction` result with `jsonParsed` encoding.

Transfers come from transfer-like instructions (top-level and inner).
Swaps come from the wallet's balance deltas: exactly two holdings moving in
opposite directions. Anything more ambiguous is not a swap.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .exceptions import MalformedTransaction
from .models import (
    WRAPPED_SOL_MINT,
    Event,
    SwapEvent,
    TransferEvent,
    normalize_mint,
)


logger = logging.getLogger(__name__)


TOKEN_PROGRAMS = frozenset({"spl-token", "spl-token-2022"})
TOKEN_TRANSFER_TYPES = frozenset({"transfer", "transferChecked"})
SYSTEM_PROGRAM = "system"

LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9

# Native balance moves this small are fees and rent, not trades
NATIVE_DUST_SOL = 0.01

# Float noise floor for balance deltas
DELTA_EPSILON = 1e-9


class EventClassifier:
    """
    Classifies transactions relative to one watched wallet.

    Usage:
        classifier = EventClassifier()
        events = classifier.classify(transaction, wallet)
    """

    def __init__(self, dust_threshold_sol: float = NATIVE_DUST_SOL) -> None:
        self._dust_threshold = dust_threshold_sol
        self._stats = {
            "classified": 0,
            "failed_transactions": 0,
            "malformed": 0,
            "transfers": 0,
            "swaps": 0,
        }

    def classify(self, transaction: dict[str, Any], wallet: str) -> list[Event]:
        """
        Classify a transaction into zero or more events.

        NEVER raises on bad input: malformed records are logged and
        yield an empty list.
        """
        self._stats["classified"] += 1
        try:
            events = self._classify(transaction, wallet)
        except MalformedTransaction as e:
            self._stats["malformed"] += 1
            logger.warning(f"Skipping malformed transaction: {e}")
            return []
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            # Shape the parser did not anticipate
            self._stats["malformed"] += 1
            logger.warning(f"Skipping malformed transaction: {e!r}")
            return []

        for event in events:
            if isinstance(event, SwapEvent):
                self._stats["swaps"] += 1
            else:
                self._stats["transfers"] += 1
        return events

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    # ─────────────────────────────────────────────────────────────
    # Parsing
    # ─────────────────────────────────────────────────────────────

    def _classify(self, transaction: Any, wallet: str) -> list[Event]:
        if not isinstance(transaction, dict):
            raise MalformedTransaction("Transaction is not an object")

        signature = self._signature(transaction)
        meta = transaction.get("meta")
        body = transaction.get("transaction")
        if not isinstance(meta, dict) or not isinstance(body, dict):
            raise MalformedTransaction("Missing meta or transaction body", signature=signature)

        if meta.get("err"):
            self._stats["failed_transactions"] += 1
            logger.debug(f"Transaction {signature[:16]} failed on chain, no events")
            return []

        message = body.get("message")
        if not isinstance(message, dict):
            raise MalformedTransaction("Missing transaction message", signature=signature)

        account_keys = self._account_keys(message, signature)
        block_time = self._block_time(transaction.get("blockTime"), signature)
        token_accounts = self._token_accounts(meta, account_keys, signature)

        events: list[Event] = []
        for instruction in self._instructions(message, meta):
            event = self._transfer_from_instruction(
                instruction, wallet, token_accounts, signature, block_time
            )
            if event is not None:
                events.append(event)

        swap = self._swap_from_deltas(meta, account_keys, wallet, signature, block_time)
        if swap is not None:
            events.append(swap)

        return events

    @staticmethod
    def _signature(transaction: dict[str, Any]) -> str:
        signature = transaction.get("signature")
        if signature:
            return str(signature)
        signatures = (transaction.get("transaction") or {}).get("signatures") or []
        return str(signatures[0]) if signatures else ""

    @staticmethod
    def _block_time(raw: Any, signature: str) -> Optional[datetime]:
        if raw is None:
            return None
        try:
            return datetime.fromtimestamp(int(raw), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            raise MalformedTransaction(f"Invalid blockTime {raw!r}", signature=signature)

    @staticmethod
    def _account_keys(message: dict[str, Any], signature: str) -> list[str]:
        keys = []
        for key in message.get("accountKeys") or []:
            if isinstance(key, dict):
                pubkey = key.get("pubkey")
            else:
                pubkey = key
            if not pubkey:
                raise MalformedTransaction("Account key without pubkey", signature=signature)
            keys.append(str(pubkey))
        return keys

    @staticmethod
    def _instructions(message: dict[str, Any], meta: dict[str, Any]) -> list[dict[str, Any]]:
        """Top-level instructions followed by inner instructions."""
        instructions = [i for i in message.get("instructions") or [] if isinstance(i, dict)]
        for group in meta.get("innerInstructions") or []:
            if not isinstance(group, dict):
                continue
            instructions.extend(
                i for i in group.get("instructions") or [] if isinstance(i, dict)
            )
        return instructions

    def _token_accounts(
        self,
        meta: dict[str, Any],
        account_keys: list[str],
        signature: str,
    ) -> dict[str, dict[str, Any]]:
        """Map token account address -> {owner, mint, decimals} from balance snapshots."""
        accounts: dict[str, dict[str, Any]] = {}
        for balance in self._token_balances(meta, signature):
            index = balance.get("accountIndex")
            if not isinstance(index, int) or not 0 <= index < len(account_keys):
                raise MalformedTransaction(
                    f"Token balance with invalid accountIndex {index!r}",
                    signature=signature,
                )
            decimals = (balance.get("uiTokenAmount") or {}).get("decimals")
            accounts[account_keys[index]] = {
                "owner": balance.get("owner"),
                "mint": balance["mint"],
                "decimals": decimals,
            }
        return accounts

    @staticmethod
    def _token_balances(meta: dict[str, Any], signature: str) -> list[dict[str, Any]]:
        balances = list(meta.get("preTokenBalances") or []) + list(meta.get("postTokenBalances") or [])
        for balance in balances:
            if not isinstance(balance, dict) or not balance.get("mint"):
                raise MalformedTransaction("Token balance without mint", signature=signature)
        return balances

    # ─────────────────────────────────────────────────────────────
    # Transfers
    # ─────────────────────────────────────────────────────────────

    def _transfer_from_instruction(
        self,
        instruction: dict[str, Any],
        wallet: str,
        token_accounts: dict[str, dict[str, Any]],
        signature: str,
        block_time: Optional[datetime],
    ) -> Optional[TransferEvent]:
        parsed = instruction.get("parsed")
        if not isinstance(parsed, dict):
            return None
        if parsed.get("type") not in TOKEN_TRANSFER_TYPES:
            return None

        info = parsed.get("info") or {}
        program = instruction.get("program")

        if program == SYSTEM_PROGRAM and parsed.get("type") == "transfer":
            return self._native_transfer(info, wallet, signature, block_time)
        if program in TOKEN_PROGRAMS:
            return self._token_transfer(info, wallet, token_accounts, signature, block_time)
        return None

    @staticmethod
    def _native_transfer(
        info: dict[str, Any],
        wallet: str,
        signature: str,
        block_time: Optional[datetime],
    ) -> Optional[TransferEvent]:
        source = info.get("source")
        destination = info.get("destination")
        if wallet not in (source, destination) or source == destination:
            return None

        try:
            lamports = int(info["lamports"])
        except (KeyError, TypeError, ValueError):
            raise MalformedTransaction("System transfer without lamports", signature=signature)
        if lamports <= 0:
            return None

        return TransferEvent(
            wallet=wallet,
            mint=WRAPPED_SOL_MINT,
            ui_amount=lamports / LAMPORTS_PER_SOL,
            is_incoming=destination == wallet,
            signature=signature,
            block_time=block_time,
        )

    @staticmethod
    def _token_transfer(
        info: dict[str, Any],
        wallet: str,
        token_accounts: dict[str, dict[str, Any]],
        signature: str,
        block_time: Optional[datetime],
    ) -> Optional[TransferEvent]:
        source = info.get("source")
        destination = info.get("destination")
        source_account = token_accounts.get(source) or {}
        destination_account = token_accounts.get(destination) or {}

        incoming = wallet in (destination, destination_account.get("owner"))
        outgoing = wallet in (
            source,
            source_account.get("owner"),
            info.get("authority"),
            info.get("multisigAuthority"),
        )
        if incoming == outgoing:
            # Not ours, or a move between the wallet's own accounts
            return None

        mint = info.get("mint") or destination_account.get("mint") or source_account.get("mint")
        token_amount = info.get("tokenAmount") or {}
        decimals = token_amount.get("decimals")
        if decimals is None:
            decimals = destination_account.get("decimals")
        if decimals is None:
            decimals = source_account.get("decimals")

        if not mint or decimals is None:
            logger.debug(f"Transfer in {signature[:16]} skipped: mint or decimals unknown")
            return None

        ui_amount = _ui_amount(
            token_amount, info.get("amount"), _decimals(decimals, signature), signature
        )
        if ui_amount <= 0:
            return None

        return TransferEvent(
            wallet=wallet,
            mint=normalize_mint(mint),
            ui_amount=ui_amount,
            is_incoming=incoming,
            signature=signature,
            block_time=block_time,
        )

    # ─────────────────────────────────────────────────────────────
    # Swaps
    # ─────────────────────────────────────────────────────────────

    def _swap_from_deltas(
        self,
        meta: dict[str, Any],
        account_keys: list[str],
        wallet: str,
        signature: str,
        block_time: Optional[datetime],
    ) -> Optional[SwapEvent]:
        deltas = self._token_deltas(meta, wallet, signature)

        native = self._native_delta(meta, account_keys, wallet, signature)
        if abs(native) > self._dust_threshold:
            deltas[WRAPPED_SOL_MINT] = deltas.get(WRAPPED_SOL_MINT, 0.0) + native

        changed = {mint: delta for mint, delta in deltas.items() if abs(delta) > DELTA_EPSILON}
        if len(changed) != 2:
            return None

        (mint_a, delta_a), (mint_b, delta_b) = changed.items()
        if delta_a * delta_b >= 0:
            return None

        if delta_a < 0:
            sold_mint, sold, bought_mint, bought = mint_a, delta_a, mint_b, delta_b
        else:
            sold_mint, sold, bought_mint, bought = mint_b, delta_b, mint_a, delta_a

        return SwapEvent(
            wallet=wallet,
            sold_mint=sold_mint,
            sold_amount=abs(sold),
            bought_mint=bought_mint,
            bought_amount=abs(bought),
            signature=signature,
            block_time=block_time,
        )

    @staticmethod
    def _token_deltas(meta: dict[str, Any], wallet: str, signature: str) -> dict[str, float]:
        """Post minus pre balance per mint, over token accounts owned by the wallet."""
        deltas: dict[str, float] = {}
        for key, sign in (("preTokenBalances", -1.0), ("postTokenBalances", 1.0)):
            for balance in meta.get(key) or []:
                if balance.get("owner") != wallet:
                    continue
                mint = normalize_mint(balance["mint"])
                token_amount = balance.get("uiTokenAmount") or {}
                decimals = token_amount.get("decimals")
                amount = _ui_amount(
                    token_amount,
                    token_amount.get("amount"),
                    _decimals(decimals, signature) if decimals is not None else None,
                    signature,
                )
                deltas[mint] = deltas.get(mint, 0.0) + sign * amount
        return deltas

    @staticmethod
    def _native_delta(
        meta: dict[str, Any],
        account_keys: list[str],
        wallet: str,
        signature: str,
    ) -> float:
        """Wallet lamport change in SOL, with the fee added back for the fee payer."""
        try:
            index = account_keys.index(wallet)
        except ValueError:
            return 0.0

        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        if index >= len(pre) or index >= len(post):
            return 0.0

        try:
            delta = int(post[index]) - int(pre[index])
            if index == 0:
                delta += int(meta.get("fee") or 0)
        except (TypeError, ValueError):
            raise MalformedTransaction(
                f"Invalid lamport balance at index {index}", signature=signature
            )
        return delta / LAMPORTS_PER_SOL


def _decimals(raw: Any, signature: str) -> int:
    try:
        decimals = int(raw)
    except (TypeError, ValueError):
        raise MalformedTransaction(f"Invalid decimals {raw!r}", signature=signature)
    if decimals < 0:
        raise MalformedTransaction(f"Invalid decimals {raw!r}", signature=signature)
    return decimals


def _ui_amount(
    token_amount: dict[str, Any],
    raw_amount: Any,
    decimals: Optional[int],
    signature: str,
) -> float:
    """UI amount from a tokenAmount object, falling back to raw / 10**decimals."""
    for key in ("uiAmountString", "uiAmount"):
        value = token_amount.get(key)
        if value is not None:
            try:
                return float(value)
            except (TypeError, ValueError):
                raise MalformedTransaction(f"Invalid {key} {value!r}", signature=signature)

    if raw_amount is None or decimals is None:
        raise MalformedTransaction("Token amount without value or decimals", signature=signature)
    try:
        return int(raw_amount) / (10 ** decimals)
    except (TypeError, ValueError):
        raise MalformedTransaction(f"Invalid raw amount {raw_amount!r}", signature=signature)
