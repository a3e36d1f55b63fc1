"""
Shroud v1 Signing Authority

The engine only needs `sign_message(text)` from the external signer.
LocalSigner is a deterministic in-process implementation using Ethereum
personal-message (EIP-191) hashing and RFC 6979 nonces, for tooling and
tests.
"""

from typing import Protocol, Union, runtime_checkable

from coincurve import PrivateKey

from shroud.crypto.hashing import keccak256
from shroud.encoding import to_checksum_address


@runtime_checkable
class Signer(Protocol):
    """Anything that can sign a text message deterministically."""

    def sign_message(self, message: str) -> Union[bytes, str]:
        ...


def personal_message_hash(message: str) -> bytes:
    """keccak256("\\x19Ethereum Signed Message:\\n" || len || message)."""
    data = message.encode('utf-8')
    prefix = f"\x19Ethereum Signed Message:\n{len(data)}".encode('utf-8')
    return keccak256(prefix, data)


class LocalSigner:
    """Signer backed by a secp256k1 private key held in process."""

    def __init__(self, private_key: bytes):
        self._key = PrivateKey(bytes(private_key))

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address})"

    @property
    def address(self) -> str:
        uncompressed = self._key.public_key.format(compressed=False)
        return to_checksum_address(keccak256(uncompressed[1:])[-20:])

    def sign_message(self, message: str) -> bytes:
        """Returns r || s || v with v in {27, 28}."""
        sig = self._key.sign_recoverable(personal_message_hash(message), hasher=None)
        return sig[:64] + bytes([sig[64] + 27])
