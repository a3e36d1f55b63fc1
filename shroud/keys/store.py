"""
Shroud v1 Encrypted Key Store

Encrypted key records and the durable key-value storage they live in.

The serialized hierarchy is sealed with AES-256-GCM under the unlock key,
with the owning account's address string as AAD so a blob copied into
another account's slot fails authentication.
"""

from __future__ import annotations
import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from shroud.config import StorageConfig
from shroud.constants import (
    KEY_RECORD_VERSION,
    STORE_PREFIX_KEYS,
    STORE_PREFIX_SCAN,
)
from shroud.crypto import aead
from shroud.encoding import bytes_to_base64, base64_to_bytes
from shroud.errors import (
    CryptoError,
    DecryptionError,
    ErrorCode,
    StorageError,
    ValidationError,
)
from shroud.keys.serialization import serialize_keys, deserialize_keys
from shroud.keys.types import AuthMethod, KeyHierarchy, zero_buffer

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


# ============================================================================
# RECORD
# ============================================================================

@dataclass
class EncryptedKeyRecord:
    """Durable, encrypted form of an account's key hierarchy."""
    account: str
    user_identifier: str
    auth_method: AuthMethod
    salt: str            # base64, two-factor derivation salt
    unlock_salt: str     # base64, password-only unlock salt
    encrypted_keys: str  # base64 envelope
    created_at: int
    updated_at: int
    version: str = KEY_RECORD_VERSION

    @property
    def salt_bytes(self) -> bytes:
        return base64_to_bytes(self.salt)

    @property
    def unlock_salt_bytes(self) -> bytes:
        return base64_to_bytes(self.unlock_salt)

    @property
    def aad(self) -> bytes:
        return self.account.encode('utf-8')

    def to_json(self) -> str:
        data = asdict(self)
        data["auth_method"] = self.auth_method.value
        return json.dumps(data, sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> EncryptedKeyRecord:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"Key record corrupted: {e}", ErrorCode.STORAGE_READ_FAILED) from e

        if not isinstance(data, dict):
            raise StorageError(
                f"Key record must be a JSON object, got {type(data).__name__}",
                ErrorCode.STORAGE_READ_FAILED
            )

        version = data.get("version")
        if version != KEY_RECORD_VERSION:
            raise StorageError(
                f"Unsupported key record version: {version}",
                ErrorCode.STORAGE_READ_FAILED
            )

        try:
            return cls(
                account=data["account"],
                user_identifier=data["user_identifier"],
                auth_method=AuthMethod(data["auth_method"]),
                salt=data["salt"],
                unlock_salt=data["unlock_salt"],
                encrypted_keys=data["encrypted_keys"],
                created_at=int(data["created_at"]),
                updated_at=int(data["updated_at"]),
                version=version,
            )
        except (KeyError, ValueError, TypeError) as e:
            raise StorageError(f"Key record malformed: {e}", ErrorCode.STORAGE_READ_FAILED) from e


def encrypt_record(
    keys: KeyHierarchy,
    unlock_key: bytes,
    account: str,
    user_identifier: str,
    auth_method: AuthMethod,
    salt: bytes,
    unlock_salt: bytes,
    created_at: Optional[int] = None,
) -> EncryptedKeyRecord:
    """Seal a hierarchy into a new record."""
    if not account:
        raise ValidationError("Account address cannot be empty", ErrorCode.INVALID_ADDRESS)

    plaintext = serialize_keys(keys)
    try:
        envelope = aead.encrypt_bytes(bytes(plaintext), bytes(unlock_key), account.encode('utf-8'))
    except CryptoError as e:
        raise CryptoError(f"Failed to encrypt keys: {e.message}", ErrorCode.CRYPTO_ENCRYPTION_FAILED) from e
    finally:
        zero_buffer(plaintext)

    now = _now_ms()
    return EncryptedKeyRecord(
        account=account,
        user_identifier=user_identifier,
        auth_method=AuthMethod(auth_method),
        salt=bytes_to_base64(salt),
        unlock_salt=bytes_to_base64(unlock_salt),
        encrypted_keys=envelope,
        created_at=created_at if created_at is not None else now,
        updated_at=now,
    )


def decrypt_record(record: EncryptedKeyRecord, unlock_key: bytes) -> KeyHierarchy:
    """
    Open a record.

    Raises:
        DecryptionError: wrong key, wrong account or tampered blob
    """
    plaintext = bytearray(aead.decrypt_bytes(record.encrypted_keys, bytes(unlock_key), record.aad))
    try:
        return deserialize_keys(bytes(plaintext))
    except CryptoError:
        raise DecryptionError() from None
    finally:
        zero_buffer(plaintext)


# ============================================================================
# KEY-VALUE BACKENDS
# ============================================================================

class KeyValueStore(ABC):
    """String key -> string value durable storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        ...

    def close(self) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Key-value entries
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);
"""


class SQLiteKeyValueStore(KeyValueStore):
    """
    SQLite-backed store.

    One connection guarded by a lock; WAL journal for crash safety.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {db_path}: {e}", ErrorCode.STORAGE_READ_FAILED) from e

        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        with self.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT name FROM sqlite_master
                WHERE type='table' AND name='schema_version'
            """)

            if cursor.fetchone() is None:
                cursor.executescript(SCHEMA)
                cursor.execute("INSERT INTO schema_version VALUES (?)", (SCHEMA_VERSION,))
                logger.info(f"Database initialized with schema version {SCHEMA_VERSION}")

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageError(f"Transaction failed: {e}", ErrorCode.STORAGE_WRITE_FAILED) from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            try:
                row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Read failed for {key}: {e}", ErrorCode.STORAGE_READ_FAILED) from e
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, _now_ms())
            )

    def delete(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            try:
                rows = self._conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix)
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Key listing failed: {e}", ErrorCode.STORAGE_READ_FAILED) from e
        return [row[0] for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def open_store(config: Optional[StorageConfig] = None) -> KeyValueStore:
    """Build the backend named in the storage config."""
    config = config or StorageConfig()
    if config.backend == "memory":
        return MemoryKeyValueStore()
    if config.backend == "sqlite":
        return SQLiteKeyValueStore(str(Path(config.data_dir) / config.db_name))
    raise ValidationError(f"Unknown storage backend: {config.backend}")


# ============================================================================
# KEY STORE
# ============================================================================

class KeyStore:
    """
    Account-keyed view over a KeyValueStore.

    keys:{account}              -> EncryptedKeyRecord JSON
    scan:{account}:block        -> last fully scanned block
    scan:{account}:payments     -> cached payment list JSON
    """

    def __init__(self, backend: Optional[KeyValueStore] = None):
        self.backend = backend or MemoryKeyValueStore()

    @staticmethod
    def _normalize(account: str) -> str:
        if not account:
            raise ValidationError("Account address cannot be empty", ErrorCode.INVALID_ADDRESS)
        return account.lower()

    def _record_key(self, account: str) -> str:
        return f"{STORE_PREFIX_KEYS}:{self._normalize(account)}"

    def _scan_key(self, account: str, name: str) -> str:
        return f"{STORE_PREFIX_SCAN}:{self._normalize(account)}:{name}"

    # Records

    def save_record(self, record: EncryptedKeyRecord) -> None:
        self.backend.put(self._record_key(record.account), record.to_json())
        logger.info(f"Key record saved for {record.account}")

    def load_record(self, account: str) -> Optional[EncryptedKeyRecord]:
        raw = self.backend.get(self._record_key(account))
        if raw is None:
            return None
        return EncryptedKeyRecord.from_json(raw)

    def delete_record(self, account: str) -> None:
        self.backend.delete(self._record_key(account))
        logger.info(f"Key record deleted for {account}")

    def has_record(self, account: str) -> bool:
        return self.backend.get(self._record_key(account)) is not None

    def accounts(self) -> List[str]:
        prefix = f"{STORE_PREFIX_KEYS}:"
        return [k[len(prefix):] for k in self.backend.keys(prefix)]

    # Scanner state

    def load_scan_state(self, account: str) -> Tuple[Optional[int], Optional[str]]:
        """Returns (last_scanned_block, payments_json)."""
        block = self.backend.get(self._scan_key(account, "block"))
        payments = self.backend.get(self._scan_key(account, "payments"))
        try:
            last_block = int(block) if block is not None else None
        except ValueError as e:
            raise StorageError(f"Scan marker corrupted: {block!r}", ErrorCode.STORAGE_READ_FAILED) from e
        return last_block, payments

    def save_payments(self, account: str, payments_json: str) -> None:
        self.backend.put(self._scan_key(account, "payments"), payments_json)

    def save_last_block(self, account: str, block: int) -> None:
        self.backend.put(self._scan_key(account, "block"), str(block))

    def clear_scan_state(self, account: str) -> None:
        self.backend.delete(self._scan_key(account, "block"))
        self.backend.delete(self._scan_key(account, "payments"))

    def close(self) -> None:
        self.backend.close()
