"""
Shroud v1 Payment Scanner

Incremental, resumable detection of stealth payments.

State per account (persisted through KeyStore):
- high-water mark: last block whose events were all processed
- payment cache: deduplicated StealthPayment list

Windows are fetched in chunks of ScannerConfig.chunk_size blocks. Each
window and each per-event ledger read is retried independently. Events
whose calldata or keys do not decode are skipped. The mark only moves
after every event in the window has been handled, so an interrupted scan
resumes cleanly.
"""

from __future__ import annotations
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from shroud.config import ScannerConfig
from shroud.constants import TOKEN_DECIMALS
from shroud.crypto.hashing import keccak256
from shroud.encoding import (
    address_to_bytes,
    addresses_equal,
    bytes_to_hex,
    hex_to_bytes,
    to_checksum_address,
)
from shroud.errors import ErrorCode, NetworkError, PaymentError, StorageError, ValidationError
from shroud.keys.manager import KeySession
from shroud.keys.store import KeyStore
from shroud.ledger.base import Ledger, OnChainPayment, PaymentLog
from shroud.scanner.calldata import extract_ephemeral_key
from shroud.stealth.address import check_stealth_payment
from shroud.validation import validate_amount

logger = logging.getLogger(__name__)


# ============================================================================
# RECORDS
# ============================================================================

class PaymentDirection(str, Enum):
    RECEIVED = "received"
    SENT = "sent"


@dataclass
class StealthPayment:
    """One detected payment, incoming or outgoing."""
    id: str
    direction: PaymentDirection
    stealth_address: str
    amount: int
    sender: str
    block_number: int
    timestamp: int
    tx_hash: str
    log_index: int
    ephemeral_key_hash: str
    ephemeral_public_key: Optional[str] = None  # hex, received only
    claimed: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "direction": self.direction.value,
            "stealth_address": self.stealth_address,
            "amount": str(self.amount),
            "sender": self.sender,
            "block_number": str(self.block_number),
            "timestamp": str(self.timestamp),
            "tx_hash": self.tx_hash,
            "log_index": str(self.log_index),
            "ephemeral_key_hash": self.ephemeral_key_hash,
            "ephemeral_public_key": self.ephemeral_public_key,
            "claimed": self.claimed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StealthPayment:
        return cls(
            id=data["id"],
            direction=PaymentDirection(data["direction"]),
            stealth_address=data["stealth_address"],
            amount=validate_amount(data["amount"]),
            sender=data["sender"],
            block_number=int(data["block_number"]),
            timestamp=int(data["timestamp"]),
            tx_hash=data["tx_hash"],
            log_index=int(data["log_index"]),
            ephemeral_key_hash=data["ephemeral_key_hash"],
            ephemeral_public_key=data.get("ephemeral_public_key"),
            claimed=bool(data.get("claimed", False)),
        )


def payments_to_json(payments: Iterable[StealthPayment]) -> str:
    return json.dumps([p.to_dict() for p in payments])


def payments_from_json(text: Optional[str]) -> List[StealthPayment]:
    if not text:
        return []
    try:
        return [StealthPayment.from_dict(item) for item in json.loads(text)]
    except (json.JSONDecodeError, KeyError, ValueError, TypeError, ValidationError) as e:
        raise StorageError(f"Payment cache corrupted: {e}", ErrorCode.STORAGE_READ_FAILED) from e


@dataclass
class ScanResult:
    """Outcome of one scan() call."""
    account: str
    from_block: int
    to_block: int
    new_payments: List[StealthPayment] = field(default_factory=list)
    payments: List[StealthPayment] = field(default_factory=list)
    events_seen: int = 0
    events_skipped: int = 0

    @property
    def up_to_date(self) -> bool:
        return self.from_block > self.to_block


# ============================================================================
# STATISTICS
# ============================================================================

@dataclass
class PaymentStats:
    total_received: int = 0
    total_sent: int = 0
    total_claimed: int = 0
    total_unclaimed: int = 0
    received_count: int = 0
    sent_count: int = 0
    unclaimed_count: int = 0

    def to_dict(self, decimals: int = TOKEN_DECIMALS) -> dict:
        return {
            "total_received": format_amount(self.total_received, decimals),
            "total_sent": format_amount(self.total_sent, decimals),
            "total_claimed": format_amount(self.total_claimed, decimals),
            "total_unclaimed": format_amount(self.total_unclaimed, decimals),
            "received_count": self.received_count,
            "sent_count": self.sent_count,
            "unclaimed_count": self.unclaimed_count,
        }


def format_amount(value: int, decimals: int = TOKEN_DECIMALS) -> str:
    """Integer base units -> decimal string, e.g. 1500000 -> '1.5'."""
    value = validate_amount(value)
    if decimals == 0:
        return str(value)
    whole, frac = divmod(value, 10 ** decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{frac_text}" if frac_text else str(whole)


def calculate_stats(payments: Iterable[StealthPayment]) -> PaymentStats:
    stats = PaymentStats()
    for p in payments:
        if p.direction is PaymentDirection.SENT:
            stats.total_sent += p.amount
            stats.sent_count += 1
            continue
        stats.total_received += p.amount
        stats.received_count += 1
        if p.claimed:
            stats.total_claimed += p.amount
        else:
            stats.total_unclaimed += p.amount
            stats.unclaimed_count += 1
    return stats


# ============================================================================
# SCANNER
# ============================================================================

class PaymentScanner:
    """
    Finds stealth payments for one unlocked KeySession at a time.

    The viewing private key is borrowed from the session for the duration
    of a scan() call; no copy is kept on the scanner.
    """

    def __init__(self, ledger: Ledger, key_store: KeyStore, config: Optional[ScannerConfig] = None):
        self.ledger = ledger
        self.key_store = key_store
        self.config = config or ScannerConfig()

        self._scanning: Set[str] = set()
        self._lock = threading.Lock()

    # =========================================================================
    # CACHE
    # =========================================================================

    def load_cached(self, account: str) -> List[StealthPayment]:
        _, payments_json = self.key_store.load_scan_state(account)
        return payments_from_json(payments_json)

    def last_scanned_block(self, account: str) -> Optional[int]:
        last_block, _ = self.key_store.load_scan_state(account)
        return last_block

    def mark_claimed(self, account: str, stealth_address: str) -> StealthPayment:
        """
        Flag a received payment as claimed in the local cache.

        Raises:
            PaymentError: no cached received payment for the address, it is
                already claimed, or it carries no value to claim
        """
        payments = self.load_cached(account)
        for p in payments:
            if p.direction is PaymentDirection.RECEIVED and addresses_equal(p.stealth_address, stealth_address):
                if p.claimed:
                    raise PaymentError(
                        f"Payment to {stealth_address} already claimed",
                        ErrorCode.PAYMENT_ALREADY_CLAIMED
                    )
                if p.amount == 0:
                    raise PaymentError(
                        f"Payment to {stealth_address} has nothing to claim",
                        ErrorCode.PAYMENT_INSUFFICIENT_BALANCE
                    )
                p.claimed = True
                self.key_store.save_payments(account, payments_to_json(payments))
                logger.info(f"Marked {p.stealth_address} claimed for {account}")
                return p
        raise PaymentError(f"No payment found for {stealth_address}", ErrorCode.PAYMENT_NOT_FOUND)

    def reset(self, account: str) -> None:
        """Drop the cache and high-water mark; the next scan starts over."""
        self.key_store.clear_scan_state(account)
        logger.info(f"Scan state reset for {account}")

    def stats(self, account: str) -> PaymentStats:
        return calculate_stats(self.load_cached(account))

    # =========================================================================
    # SCAN
    # =========================================================================

    def scan(self, session: KeySession, account: Optional[str] = None, to_block: Optional[int] = None) -> ScanResult:
        """
        Scan new blocks for payments belonging to the session's keys.

        Args:
            session: Unlocked key session
            account: Account whose cache to update (defaults to session.account)
            to_block: Last block to scan (defaults to the chain head)

        Raises:
            KeyLockedError: session is locked
            PaymentError: a scan for this account is already running
            NetworkError: a log window or an event's ledger read failed
                after max_retries; earlier windows stay committed
        """
        account = account or session.account
        keys = session.keys
        key = account.lower()

        with self._lock:
            if key in self._scanning:
                raise PaymentError(f"Scan already running for {account}", ErrorCode.SCAN_IN_PROGRESS)
            self._scanning.add(key)

        try:
            return self._scan(account, keys.viewing_private, bytes(keys.spending_public), to_block)
        finally:
            with self._lock:
                self._scanning.discard(key)

    def watch(
        self,
        session: KeySession,
        stop: threading.Event,
        on_result: Optional[Callable[[ScanResult], None]] = None,
    ) -> int:
        """
        Scan every poll_interval_sec until stop is set or the session locks.

        Runs in the caller's thread. A scan that fails with NetworkError is
        logged and retried on the next tick.

        Returns:
            Number of completed scans
        """
        completed = 0
        logger.info(f"Watching {session.account} every {self.config.poll_interval_sec}s")
        while not stop.is_set() and session.is_unlocked:
            try:
                result = self.scan(session)
            except NetworkError as e:
                logger.warning(f"Scan tick failed for {session.account}: {e}")
            else:
                completed += 1
                if on_result is not None:
                    on_result(result)
            stop.wait(self.config.poll_interval_sec)
        logger.info(f"Stopped watching {session.account} after {completed} scans")
        return completed

    def _scan(
        self,
        account: str,
        viewing_private: bytearray,
        spending_public: bytes,
        to_block: Optional[int],
    ) -> ScanResult:
        last_block, payments_json = self.key_store.load_scan_state(account)
        payments = payments_from_json(payments_json)
        known: Dict[str, StealthPayment] = {p.id: p for p in payments}

        start = self.config.deployment_block
        if last_block is not None:
            start = max(last_block + 1, start)
        head = to_block if to_block is not None else self._with_retry(self.ledger.get_block_number, "head")

        result = ScanResult(account=account, from_block=start, to_block=head)
        if start > head:
            result.payments = payments
            logger.debug(f"{account} already scanned through block {last_block}")
            return result

        logger.info(f"Scanning {account} blocks {start}-{head}")
        window_start = start
        while window_start <= head:
            window_end = min(window_start + self.config.chunk_size - 1, head)
            logs = self._with_retry(
                lambda: self.ledger.get_payment_logs(window_start, window_end),
                f"blocks {window_start}-{window_end}",
            )

            window_new = []
            for log in logs:
                result.events_seen += 1
                if log.event_id in known or f"{log.event_id}-sent" in known:
                    continue
                try:
                    payment = self._process_log(log, account, viewing_private, spending_public)
                except (PaymentError, ValidationError, ValueError) as e:
                    logger.debug(f"Skipping event {log.event_id}: {e}")
                    payment = None
                if payment is None:
                    result.events_skipped += 1
                    continue
                if payment.id in known:
                    continue
                known[payment.id] = payment
                payments.append(payment)
                window_new.append(payment)

            if window_new:
                self.key_store.save_payments(account, payments_to_json(payments))
                result.new_payments.extend(window_new)
            self.key_store.save_last_block(account, window_end)
            window_start = window_end + 1

        result.payments = payments
        logger.info(
            f"Scan of {account} complete: {len(result.new_payments)} new, "
            f"{result.events_seen} events, through block {head}"
        )
        return result

    def _with_retry(self, fn, what: str):
        attempts = max(1, self.config.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except NetworkError as e:
                if attempt == attempts:
                    logger.warning(f"Fetching {what} failed after {attempts} attempts: {e.message}")
                    raise NetworkError(
                        f"Fetching {what} failed after {attempts} attempts",
                        ErrorCode.NETWORK_REQUEST_FAILED,
                        e.to_dict(),
                    ) from e
                delay = self.config.retry_delay_sec * attempt
                logger.warning(f"Fetching {what} failed (attempt {attempt}/{attempts}), retrying in {delay}s")
                time.sleep(delay)

    def _process_log(
        self,
        log: PaymentLog,
        account: str,
        viewing_private: bytearray,
        spending_public: bytes,
    ) -> Optional[StealthPayment]:
        if addresses_equal(log.sender, account):
            return self._sent_payment(log)

        calldata = self._with_retry(
            lambda: self.ledger.get_transaction_input(log.tx_hash), f"tx {log.tx_hash}"
        )
        ephemeral = extract_ephemeral_key(calldata, self.ledger.payment_contract)
        if ephemeral is None:
            logger.debug(f"No ephemeral key in tx {log.tx_hash}")
            return None

        if any(log.ephemeral_key_hash) and keccak256(ephemeral) != bytes(log.ephemeral_key_hash):
            logger.debug(f"Ephemeral key hash mismatch in tx {log.tx_hash}")
            return None

        check = check_stealth_payment(
            ephemeral,
            viewing_private,
            spending_public,
            address_to_bytes(log.stealth_address),
        )
        if not check:
            return None

        on_chain = self._stealth_payment(log)
        timestamp = on_chain.timestamp or self._block_timestamp(log)
        logger.info(f"Detected payment to {to_checksum_address(log.stealth_address)} in block {log.block_number}")
        return StealthPayment(
            id=log.event_id,
            direction=PaymentDirection.RECEIVED,
            stealth_address=to_checksum_address(log.stealth_address),
            amount=on_chain.amount or log.amount,
            sender=to_checksum_address(log.sender),
            block_number=log.block_number,
            timestamp=timestamp,
            tx_hash=log.tx_hash,
            log_index=log.log_index,
            ephemeral_key_hash=bytes_to_hex(log.ephemeral_key_hash),
            ephemeral_public_key=bytes_to_hex(ephemeral),
            claimed=on_chain.claimed,
        )

    def _stealth_payment(self, log: PaymentLog) -> OnChainPayment:
        return self._with_retry(
            lambda: self.ledger.get_stealth_payment(log.stealth_address), f"payment {log.stealth_address}"
        )

    def _block_timestamp(self, log: PaymentLog) -> int:
        return self._with_retry(
            lambda: self.ledger.get_block_timestamp(log.block_number), f"block {log.block_number}"
        )

    def _sent_payment(self, log: PaymentLog) -> StealthPayment:
        on_chain = self._stealth_payment(log)
        return StealthPayment(
            id=f"{log.event_id}-sent",
            direction=PaymentDirection.SENT,
            stealth_address=to_checksum_address(log.stealth_address),
            amount=log.amount,
            sender=to_checksum_address(log.sender),
            block_number=log.block_number,
            timestamp=self._block_timestamp(log),
            tx_hash=log.tx_hash,
            log_index=log.log_index,
            ephemeral_key_hash=bytes_to_hex(log.ephemeral_key_hash),
            claimed=on_chain.claimed,
        )


def ephemeral_key_from_payment(payment: StealthPayment) -> bytes:
    """33-byte ephemeral key of a received payment, for spend-key recovery."""
    if payment.ephemeral_public_key is None:
        raise PaymentError(f"Payment {payment.id} has no ephemeral key", ErrorCode.PAYMENT_INVALID_KEY)
    return hex_to_bytes(payment.ephemeral_public_key)
