"""
Shroud v1 Test Fixtures
"""

import pytest
from typing import Dict, List, Optional

from shroud.config import KdfConfig, ScannerConfig
from shroud.constants import (
    EXECUTE_SIGNATURE,
    EXECUTE_BATCH_SIGNATURE,
    HANDLE_OPS_SIGNATURE,
    SEND_TO_STEALTH_SIGNATURE,
)
from shroud.crypto.hashing import keccak256
from shroud.errors import NetworkError
from shroud.keys.manager import KeyManager
from shroud.keys.store import KeyStore, MemoryKeyValueStore, SQLiteKeyValueStore
from shroud.keys.types import PublicKeys
from shroud.ledger.base import Ledger, OnChainPayment, PaymentLog
from shroud.scanner.abi import encode_call
from shroud.signer import LocalSigner
from shroud.stealth.address import StealthPaymentData, generate_stealth_payment

PASSWORD = "Sw1ftCorrectHorse!"
IDENTIFIER = "alice@example.com"
CONTRACT = "0x" + "11" * 20
OTHER_SENDER = "0x" + "22" * 20
ZERO_ADDRESS = "0x" + "00" * 20
BASE_TIMESTAMP = 1_700_000_000


class FixedSigner:
    """Returns the same 65-byte signature for every message."""

    def __init__(self, signature: bytes = b"\xAA" * 65):
        self.signature = signature
        self.messages: List[str] = []

    def sign_message(self, message: str) -> bytes:
        self.messages.append(message)
        return self.signature


def wrap_execute(inner: bytes, target: str = CONTRACT) -> bytes:
    return encode_call(EXECUTE_SIGNATURE, [target, 0, inner])


def wrap_execute_batch(inner: bytes, target: str = CONTRACT) -> bytes:
    return encode_call(EXECUTE_BATCH_SIGNATURE, [[(OTHER_SENDER, 0, b"\x01\x02"), (target, 0, inner)]])


def wrap_handle_ops(call_data: bytes, sender: str = OTHER_SENDER) -> bytes:
    op = (sender, 7, b"", call_data, 100000, 100000, 21000, 10**9, 10**9, b"", b"\x00" * 65)
    return encode_call(HANDLE_OPS_SIGNATURE, [[op], ZERO_ADDRESS])


class FakeLedger(Ledger):
    """In-memory chain holding StealthPaymentSent events and their calldata."""

    def __init__(self, payment_contract: str = CONTRACT):
        self.payment_contract = payment_contract
        self.head = 0
        self.logs: List[PaymentLog] = []
        self.inputs: Dict[str, bytes] = {}
        self.payments: Dict[str, OnChainPayment] = {}
        self.meta_keys: Dict[str, PublicKeys] = {}
        self.fail_log_fetches = 0
        self.log_calls: List[tuple] = []

    def get_block_number(self) -> int:
        return self.head

    def get_payment_logs(self, from_block: int, to_block: int) -> List[PaymentLog]:
        self.log_calls.append((from_block, to_block))
        if self.fail_log_fetches:
            self.fail_log_fetches -= 1
            raise NetworkError("connection reset")
        return [log for log in self.logs if from_block <= log.block_number <= to_block]

    def get_transaction_input(self, tx_hash: str) -> bytes:
        if tx_hash not in self.inputs:
            raise NetworkError(f"unknown tx {tx_hash}")
        return self.inputs[tx_hash]

    def get_block_timestamp(self, block_number: int) -> int:
        return BASE_TIMESTAMP + block_number

    def get_stealth_payment(self, stealth_address: str) -> OnChainPayment:
        return self.payments.get(stealth_address.lower(), OnChainPayment(0, False, ZERO_ADDRESS, 0))

    def get_meta_keys(self, account: str) -> Optional[PublicKeys]:
        return self.meta_keys.get(account.lower())

    def announce(
        self,
        recipient: PublicKeys,
        amount: int,
        block: int,
        sender: str = OTHER_SENDER,
        wrap=None,
    ) -> StealthPaymentData:
        """Record a sendToStealth payment, optionally wrapped, at a block."""
        data = generate_stealth_payment(recipient.viewing, recipient.spending)
        calldata = encode_call(
            SEND_TO_STEALTH_SIGNATURE,
            [data.checksum_address, amount, data.ephemeral_public_key],
        )
        if wrap is not None:
            calldata = wrap(calldata)

        index = len(self.logs)
        tx_hash = "0x" + keccak256(calldata, index.to_bytes(4, 'big')).hex()
        self.logs.append(PaymentLog(
            stealth_address=data.checksum_address,
            sender=sender,
            amount=amount,
            ephemeral_key_hash=data.ephemeral_key_hash,
            block_number=block,
            tx_hash=tx_hash,
            log_index=index % 3,
        ))
        self.inputs[tx_hash] = calldata
        self.payments[data.checksum_address.lower()] = OnChainPayment(
            amount=amount,
            claimed=False,
            sender=sender,
            timestamp=BASE_TIMESTAMP + block,
        )
        self.head = max(self.head, block)
        return data


@pytest.fixture
def fast_kdf() -> KdfConfig:
    """Argon2id parameters light enough for unit tests."""
    return KdfConfig(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def local_signer() -> LocalSigner:
    """Deterministic in-process signer."""
    return LocalSigner(bytes([0x01] * 32))


@pytest.fixture
def other_signer() -> LocalSigner:
    """A second, unrelated signer."""
    return LocalSigner(bytes([0x02] * 32))


@pytest.fixture
def fixed_signer() -> FixedSigner:
    """Signer returning 0xAA * 65."""
    return FixedSigner()


@pytest.fixture
def key_store() -> KeyStore:
    """Key store over process memory."""
    return KeyStore(MemoryKeyValueStore())


@pytest.fixture
def sqlite_store(tmp_path) -> KeyStore:
    """Key store over a temporary SQLite file."""
    store = KeyStore(SQLiteKeyValueStore(str(tmp_path / "shroud.db")))
    yield store
    store.close()


@pytest.fixture
def manager(key_store, fast_kdf) -> KeyManager:
    """Key manager with the default password-only unlock policy."""
    return KeyManager(key_store, fast_kdf)


@pytest.fixture
def account(local_signer) -> str:
    """Checksum address of the local signer."""
    return local_signer.address


@pytest.fixture
def session(manager, local_signer, account):
    """Initialized, unlocked session for the local signer's account."""
    s = manager.initialize(PASSWORD, local_signer, IDENTIFIER, account)
    yield s
    s.lock()


@pytest.fixture
def ledger() -> FakeLedger:
    """Empty in-memory ledger."""
    return FakeLedger()


@pytest.fixture
def scanner_config() -> ScannerConfig:
    """Small windows and no back-off sleeps."""
    return ScannerConfig(chunk_size=10, max_retries=3, retry_delay_sec=0.0)
