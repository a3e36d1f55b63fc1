"""
Shroud v1 Key Manager

State machine that creates, unlocks and locks the key hierarchy:

    UNINITIALIZED -> INITIALIZING -> UNLOCKED <-> LOCKED

The decrypted hierarchy is owned by an explicit KeySession returned to the
caller. Nothing else keeps a long-lived copy of private key bytes; lock()
zeroes them in place.
"""

from __future__ import annotations
import hmac
import logging
import threading
from typing import Optional

from shroud.config import KdfConfig, PasswordConfig
from shroud.crypto import kdf
from shroud.crypto.curve import derive_public_key, is_valid_private_key
from shroud.errors import (
    AuthError,
    ErrorCode,
    KeyLockedError,
    KeyStateError,
    ShroudError,
    StorageError,
)
from shroud.keys.store import KeyStore, EncryptedKeyRecord, encrypt_record, decrypt_record
from shroud.keys.types import (
    AuthMethod,
    KeyHierarchy,
    KeyState,
    PublicKeys,
    UnlockPolicy,
    zero_buffer,
)
from shroud.signer import Signer
from shroud.validation import require_strong_password

logger = logging.getLogger(__name__)


def _ct_equal(a: bytes, b: bytes) -> bool:
    """XOR-accumulate comparison; never returns early on content."""
    if len(a) != len(b):
        return False
    diff = 0
    for x, y in zip(a, b):
        diff |= x ^ y
    return diff == 0


def validate_keys(keys: KeyHierarchy) -> bool:
    """
    Check the whole key set.

    All four private values must be valid secp256k1 scalars and both public
    keys must match their private counterparts. Both comparisons always
    run; any mismatch invalidates the whole set.
    """
    if not keys.has_valid_lengths():
        return False
    private_values = (keys.master_key, keys.storage_key, keys.viewing_private, keys.spending_private)
    if not all(is_valid_private_key(value) for value in private_values):
        return False

    viewing_ok = _ct_equal(derive_public_key(keys.viewing_private), keys.viewing_public)
    spending_ok = _ct_equal(derive_public_key(keys.spending_private), keys.spending_public)
    return viewing_ok & spending_ok


# ============================================================================
# SESSION
# ============================================================================

class KeySession:
    """
    One unlocked key hierarchy for one account.

    Use as a context manager to guarantee the keys are zeroed:

        with manager.unlock(password, account) as session:
            ...
    """

    def __init__(self, account: str, keys: KeyHierarchy):
        self.account = account
        self._keys: Optional[KeyHierarchy] = keys
        self._public = keys.public_keys()
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"KeySession(account={self.account}, state={self.state.name})"

    def __enter__(self) -> KeySession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.lock()

    def __del__(self):
        keys = getattr(self, "_keys", None)
        if keys is not None:
            keys.zero()

    @property
    def state(self) -> KeyState:
        return KeyState.UNLOCKED if self._keys is not None else KeyState.LOCKED

    @property
    def is_unlocked(self) -> bool:
        return self._keys is not None

    @property
    def public_keys(self) -> PublicKeys:
        """Public keys survive lock()."""
        return self._public

    @property
    def keys(self) -> KeyHierarchy:
        """
        Borrow the live hierarchy.

        Raises:
            KeyLockedError: If the session has been locked
        """
        with self._lock:
            if self._keys is None:
                raise KeyLockedError()
            return self._keys

    def lock(self) -> None:
        """Zero every private byte and drop the hierarchy."""
        with self._lock:
            if self._keys is not None:
                self._keys.zero()
                self._keys = None
                logger.info(f"Keys locked for {self.account}")


# ============================================================================
# MANAGER
# ============================================================================

class KeyManager:
    """
    Creates and opens key sessions against a KeyStore.

    Features:
    - Two-factor initialization (password + external signer)
    - Password-only or two-factor unlock (UnlockPolicy)
    - Password change and key removal
    """

    def __init__(
        self,
        store: KeyStore,
        kdf_config: Optional[KdfConfig] = None,
        unlock_policy: UnlockPolicy = UnlockPolicy.PASSWORD_ONLY,
        password_policy: Optional[PasswordConfig] = None,
    ):
        self.store = store
        self.kdf_config = kdf_config or KdfConfig()
        self.password_policy = password_policy or PasswordConfig()
        self.unlock_policy = UnlockPolicy(unlock_policy)
        self.state = KeyState.UNINITIALIZED

        # Threading
        self._lock = threading.RLock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def has_keys(self, account: str) -> bool:
        return self.store.has_record(account)

    def initialize(
        self,
        password: str,
        signer: Signer,
        identifier: str,
        account: str,
        auth_method: AuthMethod = AuthMethod.WALLET,
    ) -> KeySession:
        """
        First-time setup: derive, validate, encrypt and persist.

        Args:
            password: User password (checked against the PasswordConfig policy)
            signer: External signing authority
            identifier: User identifier bound into the signed message
            account: Owning account address (AAD for the stored blob)
            auth_method: How the user authenticated

        Returns:
            An unlocked KeySession

        Raises:
            KeyStateError: keys already exist or derivation failed
            ValidationError: password fails the policy, empty identifier
            AuthError: signer missing or returned a malformed signature
        """
        with self._lock:
            if self.store.has_record(account):
                raise KeyStateError(
                    f"Keys already exist for {account}",
                    ErrorCode.KEY_ALREADY_EXISTS
                )

            require_strong_password(password, self.password_policy, [identifier])

            self.state = KeyState.INITIALIZING
            logger.info(f"Initializing keys for {account}")

            keys = None
            unlock_key = None
            try:
                salt = kdf.generate_salt(self.kdf_config.salt_size)
                unlock_salt = kdf.generate_salt(self.kdf_config.salt_size)

                keys = kdf.derive_keys(password, signer, identifier, salt, self.kdf_config)
                if not validate_keys(keys):
                    raise KeyStateError("Derived keys failed validation", ErrorCode.KEY_DERIVATION_FAILED)

                unlock_key = kdf.derive_unlock_key(password, unlock_salt, self.kdf_config)
                record = encrypt_record(
                    keys, unlock_key, account, identifier, auth_method, salt, unlock_salt
                )
                self.store.save_record(record)
            except ShroudError:
                self._abort(keys)
                raise
            except (ValueError, TypeError) as e:
                self._abort(keys)
                raise KeyStateError(
                    f"Failed to derive keys: {e}",
                    ErrorCode.KEY_DERIVATION_FAILED
                ) from e
            finally:
                zero_buffer(unlock_key)

            self.state = KeyState.UNLOCKED
            logger.info(f"Keys initialized for {account}")
            return KeySession(account, keys)

    def _abort(self, keys: Optional[KeyHierarchy]) -> None:
        if keys is not None:
            keys.zero()
        self.state = KeyState.UNINITIALIZED
        logger.warning("Key initialization aborted")

    def unlock(self, password: str, account: str, signer: Optional[Signer] = None) -> KeySession:
        """
        Open the stored hierarchy.

        Under PASSWORD_ONLY only the password is needed. Under
        PASSWORD_AND_SIGNER the signer must also reproduce the master key.

        Raises:
            StorageError: no record for this account
            AuthError: incorrect password (no distinction from corrupted data)
        """
        with self._lock:
            record = self.store.load_record(account)
            if record is None:
                raise StorageError(f"No keys stored for {account}", ErrorCode.STORAGE_NOT_FOUND)

            if self.unlock_policy is UnlockPolicy.PASSWORD_AND_SIGNER and signer is None:
                raise AuthError("Signer is required to unlock", ErrorCode.AUTH_SIGNER_REQUIRED)

            keys = self._open_record(record, password)

            if self.unlock_policy is UnlockPolicy.PASSWORD_AND_SIGNER:
                self._check_second_factor(keys, record, password, signer)

            self.state = KeyState.UNLOCKED
            logger.info(f"Keys unlocked for {account}")
            return KeySession(record.account, keys)

    def _open_record(self, record: EncryptedKeyRecord, password: str) -> KeyHierarchy:
        unlock_key = None
        try:
            unlock_key = kdf.derive_unlock_key(password, record.unlock_salt_bytes, self.kdf_config)
            keys = decrypt_record(record, unlock_key)
        except ShroudError as e:
            logger.warning(f"Unlock failed for {record.account}")
            logger.debug(f"Unlock failure detail: {e.code.name}")
            raise AuthError() from None
        finally:
            zero_buffer(unlock_key)

        if not validate_keys(keys):
            keys.zero()
            logger.warning(f"Stored keys failed validation for {record.account}")
            raise AuthError()
        return keys

    def _check_second_factor(
        self,
        keys: KeyHierarchy,
        record: EncryptedKeyRecord,
        password: str,
        signer: Signer,
    ) -> None:
        password_hash = kdf.hash_password(password, record.salt_bytes, self.kdf_config)
        try:
            signature = kdf.request_signature(signer, record.user_identifier)
        except ShroudError:
            zero_buffer(password_hash)
            keys.zero()
            raise

        master = kdf.derive_master_key(password_hash, signature)
        zero_buffer(password_hash)
        zero_buffer(signature)
        try:
            if not hmac.compare_digest(bytes(master), bytes(keys.master_key)):
                keys.zero()
                raise AuthError("Signer does not match stored keys", ErrorCode.AUTH_SIGNATURE_INVALID)
        finally:
            zero_buffer(master)

    def lock(self, session: KeySession) -> None:
        """Zero the session's private keys."""
        with self._lock:
            session.lock()
            self.state = KeyState.LOCKED

    def change_password(self, session: KeySession, old_password: str, new_password: str) -> None:
        """
        Re-encrypt the stored hierarchy under a new password.

        The old password is verified against the stored record first. A fresh
        unlock salt is drawn; the two-factor salt is unchanged. The new password must pass
        the PasswordConfig policy.
        """
        with self._lock:
            keys = session.keys
            record = self.store.load_record(session.account)
            if record is None:
                raise StorageError(f"No keys stored for {session.account}", ErrorCode.STORAGE_NOT_FOUND)

            stored = self._open_record(record, old_password)
            same = _ct_equal(bytes(stored.master_key), bytes(keys.master_key))
            stored.zero()
            if not same:
                raise AuthError("Session does not match stored keys", ErrorCode.AUTH_INVALID_PASSWORD)

            require_strong_password(new_password, self.password_policy, [record.user_identifier])

            unlock_salt = kdf.generate_salt(self.kdf_config.salt_size)
            unlock_key = kdf.derive_unlock_key(new_password, unlock_salt, self.kdf_config)
            try:
                updated = encrypt_record(
                    keys,
                    unlock_key,
                    record.account,
                    record.user_identifier,
                    record.auth_method,
                    record.salt_bytes,
                    unlock_salt,
                    created_at=record.created_at,
                )
            finally:
                zero_buffer(unlock_key)

            self.store.save_record(updated)
            logger.info(f"Password changed for {session.account}")

    def remove(self, account: str, session: Optional[KeySession] = None) -> None:
        """Delete stored keys and scanner state for an account."""
        with self._lock:
            if not self.store.has_record(account):
                raise KeyStateError(f"No keys initialized for {account}", ErrorCode.KEY_NOT_INITIALIZED)
            if session is not None:
                session.lock()
            self.store.delete_record(account)
            self.store.clear_scan_state(account)
            self.state = KeyState.UNINITIALIZED
            logger.info(f"Keys removed for {account}")

    def rederive(self, password: str, signer: Signer, account: str) -> KeyHierarchy:
        """
        Recompute the hierarchy from both factors and the stored salt.

        Used for recovery when the unlock salt or blob is lost but the
        record's two-factor salt survives.
        """
        record = self.store.load_record(account)
        if record is None:
            raise StorageError(f"No keys stored for {account}", ErrorCode.STORAGE_NOT_FOUND)
        keys = kdf.derive_keys(password, signer, record.user_identifier, record.salt_bytes, self.kdf_config)
        if not validate_keys(keys):
            keys.zero()
            raise KeyStateError("Re-derived keys failed validation", ErrorCode.KEY_INVALID)
        return keys
