"""
Shroud v1 Key Types

The in-memory key hierarchy and the small enums that describe how it was
created and how it may be unlocked.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

from shroud.constants import (
    MASTER_KEY_SIZE,
    PRIVATE_KEY_SIZE,
    COMPRESSED_PUBLIC_KEY_SIZE,
)


class KeyState(IntEnum):
    """Key session lifecycle."""
    UNINITIALIZED = 0
    INITIALIZING = 1
    UNLOCKED = 2
    LOCKED = 3


class UnlockPolicy(str, Enum):
    """
    What is required to unlock a stored key set.

    PASSWORD_ONLY re-derives only the password-based unlock key.
    PASSWORD_AND_SIGNER additionally requires the external signer and
    checks the two-factor master key against the decrypted one.
    """
    PASSWORD_ONLY = "password_only"
    PASSWORD_AND_SIGNER = "password_and_signer"


class AuthMethod(str, Enum):
    """How the account owner authenticated with the signing provider."""
    EMAIL = "email"
    TWITTER = "twitter"
    DISCORD = "discord"
    PHONE = "phone"
    WALLET = "wallet"
    FARCASTER = "farcaster"
    TELEGRAM = "telegram"


@dataclass(frozen=True, slots=True)
class PublicKeys:
    """
    Public meta keys published for an account.

    SIZE: 33 + 33 bytes (compressed points)
    """
    viewing: bytes
    spending: bytes

    def __post_init__(self):
        for name, value in (("viewing", self.viewing), ("spending", self.spending)):
            if len(value) != COMPRESSED_PUBLIC_KEY_SIZE:
                raise ValueError(
                    f"{name} public key must be {COMPRESSED_PUBLIC_KEY_SIZE} bytes, got {len(value)}"
                )

    def __repr__(self) -> str:
        return f"PublicKeys(viewing={self.viewing.hex()[:16]}..., spending={self.spending.hex()[:16]}...)"

    def serialize(self) -> bytes:
        return self.viewing + self.spending

    @classmethod
    def deserialize(cls, data: bytes) -> PublicKeys:
        size = COMPRESSED_PUBLIC_KEY_SIZE
        if len(data) != 2 * size:
            raise ValueError(f"PublicKeys must be {2 * size} bytes, got {len(data)}")
        return cls(viewing=bytes(data[:size]), spending=bytes(data[size:]))


class KeyHierarchy:
    """
    Decrypted key set held while a session is unlocked.

    Private fields are bytearrays so zero() can overwrite them in place.
    NOTE: Never persisted in plaintext.
    """

    __slots__ = (
        "master_key",
        "storage_key",
        "viewing_private",
        "viewing_public",
        "spending_private",
        "spending_public",
    )

    def __init__(
        self,
        master_key: bytes,
        storage_key: bytes,
        viewing_private: bytes,
        viewing_public: bytes,
        spending_private: bytes,
        spending_public: bytes,
    ):
        self.master_key = bytearray(master_key)
        self.storage_key = bytearray(storage_key)
        self.viewing_private = bytearray(viewing_private)
        self.viewing_public = bytes(viewing_public)
        self.spending_private = bytearray(spending_private)
        self.spending_public = bytes(spending_public)

    def __repr__(self) -> str:
        return (
            f"KeyHierarchy(viewing_public={self.viewing_public.hex()[:16]}..., "
            f"spending_public={self.spending_public.hex()[:16]}..., secrets=[REDACTED])"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyHierarchy):
            return NotImplemented
        return all(getattr(self, name) == getattr(other, name) for name in self.__slots__)

    def has_valid_lengths(self) -> bool:
        return (
            len(self.master_key) == MASTER_KEY_SIZE
            and len(self.storage_key) == MASTER_KEY_SIZE
            and len(self.viewing_private) == PRIVATE_KEY_SIZE
            and len(self.viewing_public) == COMPRESSED_PUBLIC_KEY_SIZE
            and len(self.spending_private) == PRIVATE_KEY_SIZE
            and len(self.spending_public) == COMPRESSED_PUBLIC_KEY_SIZE
        )

    @property
    def is_zeroed(self) -> bool:
        return not any(
            any(buf) for buf in (
                self.master_key,
                self.storage_key,
                self.viewing_private,
                self.spending_private,
            )
        )

    def public_keys(self) -> PublicKeys:
        return PublicKeys(viewing=self.viewing_public, spending=self.spending_public)

    def copy(self) -> KeyHierarchy:
        return KeyHierarchy(
            master_key=bytes(self.master_key),
            storage_key=bytes(self.storage_key),
            viewing_private=bytes(self.viewing_private),
            viewing_public=self.viewing_public,
            spending_private=bytes(self.spending_private),
            spending_public=self.spending_public,
        )

    def zero(self) -> None:
        """Overwrite every private byte in place."""
        for buf in (
            self.master_key,
            self.storage_key,
            self.viewing_private,
            self.spending_private,
        ):
            zero_buffer(buf)


def zero_buffer(buf: Optional[bytearray]) -> None:
    if buf is None:
        return
    for i in range(len(buf)):
        buf[i] = 0
