"""
Shroud v1 Stealth Account

Holds the one-time private key that controls a detected stealth address.
Building and broadcasting transactions from it is left to the host.
"""

from __future__ import annotations
import logging
from typing import Optional

from shroud.crypto.curve import derive_public_key, public_key_to_address
from shroud.encoding import to_checksum_address, bytes_to_hex
from shroud.errors import KeyLockedError, PaymentError, ErrorCode
from shroud.keys.manager import KeySession
from shroud.keys.types import zero_buffer
from shroud.stealth.address import recover_stealth_private_key

logger = logging.getLogger(__name__)


class StealthAccount:
    """One-time spending authority for a single stealth address."""

    def __init__(self, private_key: bytearray):
        self._private_key: Optional[bytearray] = private_key
        self.public_key = derive_public_key(private_key)
        self.address = public_key_to_address(self.public_key)

    @classmethod
    def recover(
        cls,
        session: KeySession,
        ephemeral_public: bytes,
        expected_address: Optional[bytes] = None,
    ) -> StealthAccount:
        """
        Rebuild the account for a payment from the session's meta keys.

        Raises:
            PaymentError: the recovered key does not control expected_address
        """
        keys = session.keys
        private_key = recover_stealth_private_key(
            ephemeral_public, keys.viewing_private, keys.spending_private
        )
        account = cls(private_key)

        if expected_address is not None and account.address != bytes(expected_address):
            account.destroy()
            raise PaymentError(
                "Recovered key does not control the stealth address",
                ErrorCode.PAYMENT_NOT_FOUND
            )
        return account

    def __repr__(self) -> str:
        return f"StealthAccount(address={self.checksum_address})"

    def __enter__(self) -> StealthAccount:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    @property
    def checksum_address(self) -> str:
        return to_checksum_address(self.address)

    @property
    def private_key(self) -> bytes:
        if self._private_key is None:
            raise KeyLockedError()
        return bytes(self._private_key)

    def private_key_hex(self) -> str:
        return bytes_to_hex(self.private_key)

    def destroy(self) -> None:
        """Zero the private key."""
        if self._private_key is not None:
            zero_buffer(self._private_key)
            self._private_key = None
            logger.debug(f"Stealth key destroyed for {self.checksum_address}")
