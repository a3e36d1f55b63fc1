"""
Shroud v1 Constants

All engine constants defined here for single source of truth.
"""

from typing import Final

PROTOCOL_VERSION: Final[int] = 1

# ==============================================================================
# CURVE (secp256k1)
# ==============================================================================

SECP256K1_N: Final[int] = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

PRIVATE_KEY_SIZE: Final[int] = 32
COMPRESSED_PUBLIC_KEY_SIZE: Final[int] = 33
UNCOMPRESSED_PUBLIC_KEY_SIZE: Final[int] = 65
SHARED_SECRET_SIZE: Final[int] = 32
ADDRESS_SIZE: Final[int] = 20
SIGNATURE_SIZE: Final[int] = 65
HASH_SIZE: Final[int] = 32

# Keccak-256 rate in bytes, used as the HMAC block size
KECCAK256_BLOCK_SIZE: Final[int] = 136

# ==============================================================================
# KEY DERIVATION
# ==============================================================================

# Argon2id parameters (OWASP recommended for password hashing)
ARGON2_TIME_COST: Final[int] = 3
ARGON2_MEMORY_COST: Final[int] = 65536      # 64 MiB
ARGON2_PARALLELISM: Final[int] = 4
ARGON2_HASH_LEN: Final[int] = 32

SALT_SIZE: Final[int] = 16
MIN_PASSWORD_LENGTH: Final[int] = 8

# New-password policy (initialize, change_password)
PASSWORD_POLICY_MIN_LENGTH: Final[int] = 12
PASSWORD_MIN_STRENGTH: Final[int] = 3       # zxcvbn score, 0-4
ZXCVBN_MAX_LENGTH: Final[int] = 72

MASTER_KEY_SIZE: Final[int] = 32

SIGNATURE_MESSAGE_TEMPLATE: Final[str] = "shroud-v1-key-derivation:"

# HKDF domain separation
HKDF_MASTER_SALT: Final[bytes] = b"shroud/master"
HKDF_MASTER_INFO: Final[bytes] = b"master"
LABEL_STORAGE: Final[bytes] = b"storage"
LABEL_VIEWING: Final[bytes] = b"viewing"
LABEL_SPENDING: Final[bytes] = b"spending"

# Scalar sub-keys are re-expanded with a counter until they land in [1, n)
MAX_SCALAR_ATTEMPTS: Final[int] = 256

# ==============================================================================
# ENCRYPTED KEY STORE
# ==============================================================================

KEY_RECORD_VERSION: Final[str] = "v1"

ENCRYPTION_VERSION: Final[int] = 1
AES_KEY_SIZE: Final[int] = 32
NONCE_SIZE: Final[int] = 12
TAG_SIZE: Final[int] = 16
MAX_PLAINTEXT_SIZE: Final[int] = 64 * 1024 * 1024

# version(1) || nonce(12) || tag(16) || ciphertext(>=0)
ENVELOPE_HEADER_SIZE: Final[int] = 1 + NONCE_SIZE + TAG_SIZE

# master | storage | viewPriv | viewPub | spendPriv | spendPub
SERIALIZED_KEYS_SIZE: Final[int] = 32 + 32 + 32 + 33 + 32 + 33

STORE_PREFIX_KEYS: Final[str] = "keys"
STORE_PREFIX_SCAN: Final[str] = "scan"

# ==============================================================================
# PAYMENT SCANNER
# ==============================================================================

DEFAULT_CHUNK_SIZE: Final[int] = 10000
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_DELAY_SEC: Final[float] = 1.0
DEFAULT_POLL_INTERVAL_SEC: Final[int] = 10
MAX_UNWRAP_DEPTH: Final[int] = 4
TOKEN_DECIMALS: Final[int] = 6
MAX_AMOUNT: Final[int] = 2 ** 256 - 1

PAYMENT_EVENT_SIGNATURE: Final[str] = "StealthPaymentSent(address,address,uint256,bytes32)"
SEND_TO_STEALTH_SIGNATURE: Final[str] = "sendToStealth(address,uint256,bytes)"
GET_STEALTH_PAYMENT_SIGNATURE: Final[str] = "getStealthPayment(address)"
GET_META_KEYS_SIGNATURE: Final[str] = "getMetaKeys(address)"

HANDLE_OPS_SIGNATURE: Final[str] = (
    "handleOps((address,uint256,bytes,bytes,uint256,uint256,uint256,"
    "uint256,uint256,bytes,bytes)[],address)"
)
EXECUTE_SIGNATURE: Final[str] = "execute(address,uint256,bytes)"
EXECUTE_BATCH_SIGNATURE: Final[str] = "executeBatch((address,uint256,bytes)[])"

# Known 4-byte selectors for the wrappers above
HANDLE_OPS_SELECTOR: Final[bytes] = bytes.fromhex("1fad948c")
EXECUTE_SELECTOR: Final[bytes] = bytes.fromhex("b61d27f6")
EXECUTE_BATCH_SELECTOR: Final[bytes] = bytes.fromhex("34fcd5be")

# ==============================================================================
# RPC
# ==============================================================================

DEFAULT_RPC_TIMEOUT_SEC: Final[float] = 30.0
JSONRPC_VERSION: Final[str] = "2.0"
