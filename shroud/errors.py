"""
Shroud v1 Error Handling

All error codes and exception classes.
"""

from enum import IntEnum
from typing import Optional, Any


class ErrorCode(IntEnum):
    """Engine error codes."""

    # 1xxx - Authentication errors
    AUTH_INVALID_PASSWORD = 1001
    AUTH_SIGNER_REQUIRED = 1002
    AUTH_SIGNATURE_INVALID = 1003

    # 2xxx - Key state errors
    KEY_NOT_INITIALIZED = 2001
    KEY_LOCKED = 2002
    KEY_INVALID = 2003
    KEY_DERIVATION_FAILED = 2004
    KEY_ALREADY_EXISTS = 2005

    # 3xxx - Cryptographic errors
    CRYPTO_ENCRYPTION_FAILED = 3001
    CRYPTO_DECRYPTION_FAILED = 3002
    CRYPTO_INVALID_KEY = 3003
    CRYPTO_INVALID_FORMAT = 3004

    # 4xxx - Storage errors
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_NOT_FOUND = 4003

    # 5xxx - Payment errors
    PAYMENT_NOT_FOUND = 5001
    PAYMENT_ALREADY_CLAIMED = 5002
    PAYMENT_INSUFFICIENT_BALANCE = 5003
    PAYMENT_INVALID_KEY = 5004
    SCAN_IN_PROGRESS = 5005

    # 6xxx - Validation errors
    VALIDATION_FAILED = 6001
    INVALID_ADDRESS = 6002
    INVALID_HEX = 6003
    INVALID_LENGTH = 6004
    INVALID_AMOUNT = 6005

    # 7xxx - Network errors
    NETWORK_REQUEST_FAILED = 7001
    NETWORK_TIMEOUT = 7002
    RPC_ERROR = 7003


class ShroudError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for host applications."""
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


class AuthError(ShroudError):
    """Wrong password or missing signer."""

    def __init__(
        self,
        message: str = "Incorrect password",
        code: ErrorCode = ErrorCode.AUTH_INVALID_PASSWORD,
        details: Any = None
    ):
        super().__init__(code, message, details)


class KeyStateError(ShroudError):
    """Keys uninitialized, locked, malformed or already present."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.KEY_INVALID, details: Any = None):
        super().__init__(code, message, details)


class CryptoError(ShroudError):
    """Encryption, decryption or key material failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CRYPTO_INVALID_KEY,
        details: Any = None
    ):
        super().__init__(code, message, details)


class StorageError(ShroudError):
    """Durable storage read/write failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        details: Any = None
    ):
        super().__init__(code, message, details)


class PaymentError(ShroudError):
    """Stealth payment protocol failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.PAYMENT_INVALID_KEY,
        details: Any = None
    ):
        super().__init__(code, message, details)


class ValidationError(ShroudError):
    """Malformed address, hex, amount or byte length."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Any = None
    ):
        super().__init__(code, message, details)


class NetworkError(ShroudError):
    """Ledger RPC failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NETWORK_REQUEST_FAILED,
        details: Any = None
    ):
        super().__init__(code, message, details)


# ==============================================================================
# Specific errors
# ==============================================================================

class InvalidLengthError(ValidationError):
    def __init__(self, field: str, expected: int, got: int):
        super().__init__(
            f"{field} must be {expected} bytes, got {got}",
            ErrorCode.INVALID_LENGTH,
            {"field": field, "expected": expected, "got": got}
        )


class InvalidAddressError(ValidationError):
    def __init__(self, value: str):
        super().__init__(
            f"Invalid address: {value!r}",
            ErrorCode.INVALID_ADDRESS,
            {"address": value}
        )


class DecryptionError(CryptoError):
    """Single generic failure for wrong key, wrong AAD or tampered data."""

    def __init__(self):
        super().__init__("Decryption failed", ErrorCode.CRYPTO_DECRYPTION_FAILED)


class KeyLockedError(KeyStateError):
    def __init__(self):
        super().__init__("Keys are locked", ErrorCode.KEY_LOCKED)


class AbiDecodeError(ValidationError):
    def __init__(self, message: str):
        super().__init__(f"ABI decode failed: {message}", ErrorCode.VALIDATION_FAILED)
