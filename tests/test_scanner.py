"""
Shroud v1 Payment Scanner Tests
"""

import json
import threading

import pytest

from shroud.config import ScannerConfig
from shroud.crypto.curve import generate_keypair
from shroud.errors import ErrorCode, KeyLockedError, NetworkError, PaymentError, StorageError, ValidationError
from shroud.keys.types import PublicKeys
from shroud.scanner import (
    PaymentDirection,
    PaymentScanner,
    PaymentStats,
    StealthPayment,
    calculate_stats,
    format_amount,
)
from shroud.scanner.scanner import ephemeral_key_from_payment, payments_from_json, payments_to_json
from shroud.stealth.account import StealthAccount

from conftest import wrap_execute, wrap_handle_ops, wrap_execute_batch


def _stranger() -> PublicKeys:
    _, viewing = generate_keypair()
    _, spending = generate_keypair()
    return PublicKeys(viewing=viewing, spending=spending)


@pytest.fixture
def scanner(ledger, key_store, scanner_config) -> PaymentScanner:
    return PaymentScanner(ledger, key_store, scanner_config)


class TestDetection:
    """Tests for classifying payment events."""

    def test_direct_payment(self, scanner, ledger, session):
        """Test a bare sendToStealth to our keys is detected."""
        data = ledger.announce(session.public_keys, 1_500_000, block=3)
        result = scanner.scan(session)
        assert len(result.new_payments) == 1
        payment = result.new_payments[0]
        assert payment.direction is PaymentDirection.RECEIVED
        assert payment.stealth_address == data.checksum_address
        assert payment.amount == 1_500_000
        assert payment.ephemeral_public_key == "0x" + data.ephemeral_public_key.hex()
        assert payment.timestamp == ledger.get_block_timestamp(3)
        assert not payment.claimed

    @pytest.mark.parametrize("wrap", [
        wrap_execute,
        wrap_execute_batch,
        lambda inner: wrap_handle_ops(wrap_execute(inner)),
    ])
    def test_wrapped_payment(self, scanner, ledger, session, wrap):
        """Test payments inside account-abstraction envelopes are detected."""
        data = ledger.announce(session.public_keys, 2_000_000, block=4, wrap=wrap)
        result = scanner.scan(session)
        assert [p.stealth_address for p in result.new_payments] == [data.checksum_address]

    def test_foreign_payment_ignored(self, scanner, ledger, session):
        """Test payments to someone else are not recorded."""
        ledger.announce(_stranger(), 5_000_000, block=2)
        result = scanner.scan(session)
        assert result.new_payments == []
        assert result.events_seen == 1
        assert result.events_skipped == 1

    def test_sent_payment(self, scanner, ledger, session, account):
        """Test our own outgoing payment is recorded as SENT."""
        log_data = ledger.announce(_stranger(), 750_000, block=6, sender=account)
        result = scanner.scan(session)
        assert len(result.new_payments) == 1
        sent = result.new_payments[0]
        assert sent.direction is PaymentDirection.SENT
        assert sent.id.endswith("-sent")
        assert sent.stealth_address == log_data.checksum_address
        assert sent.ephemeral_public_key is None

    def test_undecodable_calldata_skipped(self, scanner, ledger, session):
        """Test an event whose calldata carries no ephemeral key is skipped."""
        ledger.announce(session.public_keys, 1, block=1)
        tx_hash = ledger.logs[0].tx_hash
        ledger.inputs[tx_hash] = b"\xde\xad\xbe\xef" + b"\x00" * 64
        result = scanner.scan(session)
        assert result.new_payments == []
        assert result.events_skipped == 1
        assert scanner.last_scanned_block(session.account) == 1

    def test_missing_transaction_keeps_mark(self, scanner, ledger, session):
        """Test an unfetchable transaction raises and leaves the window unscanned."""
        ledger.announce(session.public_keys, 1, block=1)
        inputs = dict(ledger.inputs)
        ledger.inputs.clear()
        with pytest.raises(NetworkError) as exc:
            scanner.scan(session)
        assert exc.value.code == ErrorCode.NETWORK_REQUEST_FAILED
        assert scanner.last_scanned_block(session.account) is None

        ledger.inputs.update(inputs)
        assert len(scanner.scan(session).new_payments) == 1

    def test_transient_transaction_failure(self, scanner, ledger, session, monkeypatch):
        """Test a transaction fetch that fails once is retried within the scan."""
        data = ledger.announce(session.public_keys, 1, block=3)
        original = ledger.get_transaction_input
        failures = [NetworkError("connection reset")]

        def flaky(tx_hash):
            if failures:
                raise failures.pop()
            return original(tx_hash)

        monkeypatch.setattr(ledger, "get_transaction_input", flaky)
        result = scanner.scan(session)
        assert [p.stealth_address for p in result.new_payments] == [data.checksum_address]
        assert scanner.last_scanned_block(session.account) == 3

    def test_failure_later_in_window_keeps_mark(self, scanner, ledger, session, monkeypatch):
        """Test a failed timestamp read stops the scan before the mark moves."""
        ledger.announce(session.public_keys, 1, block=2)
        ledger.payments.clear()

        def down(block_number):
            raise NetworkError("timeout", ErrorCode.NETWORK_TIMEOUT)

        monkeypatch.setattr(ledger, "get_block_timestamp", down)
        with pytest.raises(NetworkError):
            scanner.scan(session)
        assert scanner.last_scanned_block(session.account) is None
        assert scanner.load_cached(session.account) == []

    def test_hash_mismatch_skipped(self, scanner, ledger, session):
        """Test a key that does not hash to the event's value is ignored."""
        ledger.announce(session.public_keys, 1, block=1)
        log = ledger.logs[0]
        ledger.logs[0] = type(log)(
            stealth_address=log.stealth_address,
            sender=log.sender,
            amount=log.amount,
            ephemeral_key_hash=b"\x01" * 32,
            block_number=log.block_number,
            tx_hash=log.tx_hash,
            log_index=log.log_index,
        )
        assert scanner.scan(session).new_payments == []


class TestIncremental:
    """Tests for high-water mark and cache behaviour."""

    def test_idempotent(self, scanner, ledger, session, key_store):
        """Test a second scan adds nothing and keeps the mark."""
        ledger.announce(session.public_keys, 100, block=2)
        ledger.announce(session.public_keys, 200, block=8)
        first = scanner.scan(session)
        state = key_store.load_scan_state(session.account)

        second = scanner.scan(session)
        assert len(first.new_payments) == 2
        assert second.new_payments == []
        assert second.up_to_date
        assert len(second.payments) == 2
        assert key_store.load_scan_state(session.account) == state

    def test_rescan_after_reset_has_no_duplicates(self, scanner, ledger, session, key_store):
        """Test re-scanning a range with a stale mark does not duplicate records."""
        ledger.announce(session.public_keys, 100, block=2)
        scanner.scan(session)
        key_store.save_last_block(session.account, 0)
        result = scanner.scan(session)
        assert result.new_payments == []
        assert len(scanner.load_cached(session.account)) == 1

    def test_resumes_from_mark(self, scanner, ledger, session):
        """Test only blocks after the mark are fetched."""
        ledger.announce(session.public_keys, 100, block=2)
        scanner.scan(session)
        ledger.announce(session.public_keys, 300, block=7)
        ledger.log_calls.clear()

        result = scanner.scan(session)
        assert result.from_block == 3
        assert ledger.log_calls == [(3, 7)]
        assert [p.amount for p in result.new_payments] == [300]
        assert len(result.payments) == 2

    def test_windows(self, ledger, key_store, session):
        """Test deployment block and chunk size shape the fetch windows."""
        ledger.head = 35
        scanner = PaymentScanner(ledger, key_store, ScannerConfig(deployment_block=5, chunk_size=10))
        scanner.scan(session)
        assert ledger.log_calls == [(5, 14), (15, 24), (25, 34), (35, 35)]
        assert scanner.last_scanned_block(session.account) == 35

    def test_to_block(self, scanner, ledger, session):
        """Test an explicit to_block stops early."""
        ledger.announce(session.public_keys, 100, block=2)
        ledger.announce(session.public_keys, 200, block=30)
        result = scanner.scan(session, to_block=10)
        assert [p.amount for p in result.new_payments] == [100]
        assert scanner.last_scanned_block(session.account) == 10

    def test_cache_survives_sqlite(self, ledger, sqlite_store, session):
        """Test cached payments reload from SQLite."""
        ledger.announce(session.public_keys, 100, block=2)
        PaymentScanner(ledger, sqlite_store).scan(session)
        cached = PaymentScanner(ledger, sqlite_store).load_cached(session.account)
        assert [p.amount for p in cached] == [100]


class TestRetry:
    """Tests for window retry and failure."""

    def test_transient_failure(self, scanner, ledger, session):
        """Test a window succeeds after transient failures."""
        ledger.announce(session.public_keys, 100, block=2)
        ledger.fail_log_fetches = 2
        result = scanner.scan(session)
        assert len(result.new_payments) == 1
        assert len(ledger.log_calls) == 3

    def test_exhausted_keeps_progress(self, scanner, ledger, session, monkeypatch):
        """Test a failing later window raises and keeps earlier windows."""
        ledger.announce(session.public_keys, 100, block=2)
        ledger.head = 25
        original = ledger.get_payment_logs

        def flaky(from_block, to_block):
            if from_block >= 10:
                raise NetworkError("timeout", ErrorCode.NETWORK_TIMEOUT)
            return original(from_block, to_block)

        monkeypatch.setattr(ledger, "get_payment_logs", flaky)
        with pytest.raises(NetworkError) as exc:
            scanner.scan(session)
        assert exc.value.code == ErrorCode.NETWORK_REQUEST_FAILED
        assert scanner.last_scanned_block(session.account) == 9
        assert len(scanner.load_cached(session.account)) == 1


class TestGuards:
    """Tests for session and re-entrancy checks."""

    def test_locked_session(self, scanner, session):
        """Test scanning with a locked session is refused."""
        session.lock()
        with pytest.raises(KeyLockedError):
            scanner.scan(session)

    def test_scan_in_progress(self, scanner, session):
        """Test a concurrent scan for the same account is refused."""
        scanner._scanning.add(session.account.lower())
        with pytest.raises(PaymentError) as exc:
            scanner.scan(session)
        assert exc.value.code == ErrorCode.SCAN_IN_PROGRESS

    def test_guard_released(self, scanner, ledger, session):
        """Test the guard is released after a failed scan."""
        ledger.head = 5
        ledger.fail_log_fetches = 10
        with pytest.raises(NetworkError):
            scanner.scan(session)
        ledger.fail_log_fetches = 0
        assert scanner.scan(session).to_block == 5


class TestCacheOperations:
    """Tests for claim marking, reset and statistics."""

    def test_mark_claimed(self, scanner, ledger, session):
        """Test a received payment can be marked claimed once."""
        data = ledger.announce(session.public_keys, 100, block=2)
        scanner.scan(session)
        claimed = scanner.mark_claimed(session.account, data.checksum_address.lower())
        assert claimed.claimed
        assert scanner.load_cached(session.account)[0].claimed
        with pytest.raises(PaymentError) as exc:
            scanner.mark_claimed(session.account, data.checksum_address)
        assert exc.value.code == ErrorCode.PAYMENT_ALREADY_CLAIMED

    def test_mark_claimed_zero_amount(self, scanner, ledger, session):
        """Test a zero-value payment cannot be marked claimed."""
        data = ledger.announce(session.public_keys, 0, block=2)
        scanner.scan(session)
        with pytest.raises(PaymentError) as exc:
            scanner.mark_claimed(session.account, data.checksum_address)
        assert exc.value.code == ErrorCode.PAYMENT_INSUFFICIENT_BALANCE
        assert not scanner.load_cached(session.account)[0].claimed

    def test_mark_claimed_unknown(self, scanner, session):
        """Test marking an unknown address raises PAYMENT_NOT_FOUND."""
        with pytest.raises(PaymentError) as exc:
            scanner.mark_claimed(session.account, "0x" + "44" * 20)
        assert exc.value.code == ErrorCode.PAYMENT_NOT_FOUND

    def test_reset(self, scanner, ledger, session):
        """Test reset clears cache and mark so the next scan starts over."""
        ledger.announce(session.public_keys, 100, block=2)
        scanner.scan(session)
        scanner.reset(session.account)
        assert scanner.load_cached(session.account) == []
        assert scanner.last_scanned_block(session.account) is None
        assert len(scanner.scan(session).new_payments) == 1

    def test_stats(self, scanner, ledger, session, account):
        """Test totals across received, claimed and sent payments."""
        a = ledger.announce(session.public_keys, 1_000_000, block=1)
        ledger.announce(session.public_keys, 2_500_000, block=2)
        ledger.announce(_stranger(), 400_000, block=3, sender=account)
        scanner.scan(session)
        scanner.mark_claimed(session.account, a.checksum_address)

        stats = scanner.stats(session.account)
        assert stats.total_received == 3_500_000
        assert stats.total_claimed == 1_000_000
        assert stats.total_unclaimed == 2_500_000
        assert stats.total_sent == 400_000
        assert stats.unclaimed_count == 1
        assert stats.to_dict()["total_received"] == "3.5"

    def test_recover_from_cached_payment(self, scanner, ledger, session):
        """Test a scanned payment yields a key that controls its address."""
        data = ledger.announce(session.public_keys, 100, block=2)
        payment = scanner.scan(session).new_payments[0]
        ephemeral = ephemeral_key_from_payment(payment)
        with StealthAccount.recover(session, ephemeral, data.stealth_address) as acct:
            assert acct.checksum_address == payment.stealth_address

    def test_sent_payment_has_no_key(self, scanner, ledger, session, account):
        """Test sent records cannot be used for recovery."""
        ledger.announce(_stranger(), 100, block=2, sender=account)
        payment = scanner.scan(session).new_payments[0]
        with pytest.raises(PaymentError) as exc:
            ephemeral_key_from_payment(payment)
        assert exc.value.code == ErrorCode.PAYMENT_INVALID_KEY


class TestRecords:
    """Tests for StealthPayment serialization and amount formatting."""

    def test_json_strings(self):
        """Test integers are stored as decimal strings and restored exactly."""
        payment = StealthPayment(
            id="0xabc-0",
            direction=PaymentDirection.RECEIVED,
            stealth_address="0x" + "55" * 20,
            amount=2 ** 200,
            sender="0x" + "66" * 20,
            block_number=12,
            timestamp=1_700_000_012,
            tx_hash="0xabc",
            log_index=0,
            ephemeral_key_hash="0x" + "77" * 32,
            ephemeral_public_key="0x02" + "88" * 32,
        )
        text = payments_to_json([payment])
        assert json.loads(text)[0]["amount"] == str(2 ** 200)
        assert payments_from_json(text) == [payment]

    def test_cache_bad_amount(self):
        """Test a cached negative amount is reported as a corrupted cache."""
        item = {
            "id": "0xabc-0",
            "direction": "received",
            "stealth_address": "0x" + "55" * 20,
            "amount": "-1",
            "sender": "0x" + "66" * 20,
            "block_number": "12",
            "timestamp": "1700000012",
            "tx_hash": "0xabc",
            "log_index": "0",
            "ephemeral_key_hash": "0x" + "77" * 32,
        }
        with pytest.raises(StorageError) as exc:
            payments_from_json(json.dumps([item]))
        assert exc.value.code == ErrorCode.STORAGE_READ_FAILED

    @pytest.mark.parametrize("value,expected", [
        (0, "0"),
        (1, "0.000001"),
        (1_500_000, "1.5"),
        (10_000_000, "10"),
        (10 ** 30 + 1, "1000000000000000000000000.000001"),
        (2 ** 255, "57896044618658097711785492504343953926634992332820282019728792003956564.819968"),
    ])
    def test_format_amount(self, value, expected):
        """Test base units render with six decimals trimmed."""
        assert format_amount(value) == expected

    @pytest.mark.parametrize("value", [-1, 2 ** 256, 1.5])
    def test_format_invalid_amount(self, value):
        """Test negative, oversized and fractional amounts raise INVALID_AMOUNT."""
        with pytest.raises(ValidationError) as exc:
            format_amount(value)
        assert exc.value.code == ErrorCode.INVALID_AMOUNT

    def test_large_stats_exact(self):
        """Test totals above 28 significant digits render without rounding."""
        stats = PaymentStats(total_received=10 ** 40 + 7)
        assert stats.to_dict()["total_received"] == "1" + "0" * 34 + ".000007"

    def test_empty_stats(self):
        """Test stats of no payments are zero."""
        stats = calculate_stats([])
        assert stats.total_received == 0
        assert stats.to_dict()["total_unclaimed"] == "0"


class TestWatch:
    """Tests for the polling loop."""

    def test_stops_on_event(self, scanner, ledger, session):
        """Test the loop ends once the callback sets the stop event."""
        ledger.announce(session.public_keys, 100, block=2)
        stop = threading.Event()
        results = []

        def on_result(result):
            results.append(result)
            stop.set()

        assert scanner.watch(session, stop, on_result) == 1
        assert len(results[0].new_payments) == 1

    def test_network_failure_retried_next_tick(self, scanner, ledger, session):
        """Test a failed tick is logged and the next tick succeeds."""
        scanner.config.poll_interval_sec = 0
        ledger.head = 5
        ledger.fail_log_fetches = scanner.config.max_retries
        stop = threading.Event()
        results = []

        def on_result(result):
            results.append(result)
            stop.set()

        assert scanner.watch(session, stop, on_result) == 1
        assert results[0].to_block == 5

    def test_locked_session(self, scanner, session):
        """Test a locked session ends the loop without scanning."""
        session.lock()
        assert scanner.watch(session, threading.Event()) == 0
