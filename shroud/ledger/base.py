"""
Shroud v1 Ledger Interface

Read surface of the payment contract and chain that the scanner consumes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from shroud.keys.types import PublicKeys


@dataclass(frozen=True, slots=True)
class PaymentLog:
    """One StealthPaymentSent event."""
    stealth_address: str
    sender: str
    amount: int
    ephemeral_key_hash: bytes
    block_number: int
    tx_hash: str
    log_index: int

    @property
    def event_id(self) -> str:
        return f"{self.tx_hash}-{self.log_index}"


@dataclass(frozen=True, slots=True)
class OnChainPayment:
    """getStealthPayment(stealthAddress) result."""
    amount: int
    claimed: bool
    sender: str
    timestamp: int


class Ledger(ABC):
    """Chain and payment-contract reads."""

    payment_contract: str

    @abstractmethod
    def get_block_number(self) -> int:
        ...

    @abstractmethod
    def get_payment_logs(self, from_block: int, to_block: int) -> List[PaymentLog]:
        """StealthPaymentSent events in [from_block, to_block], in chain order."""

    @abstractmethod
    def get_transaction_input(self, tx_hash: str) -> bytes:
        ...

    @abstractmethod
    def get_block_timestamp(self, block_number: int) -> int:
        ...

    @abstractmethod
    def get_stealth_payment(self, stealth_address: str) -> OnChainPayment:
        ...

    @abstractmethod
    def get_meta_keys(self, account: str) -> Optional[PublicKeys]:
        """Registered viewing/spending public keys, or None."""

    def is_registered(self, account: str) -> bool:
        return self.get_meta_keys(account) is not None
