"""
Shroud v1 Engine Configuration
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from shroud.constants import (
    ARGON2_TIME_COST,
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_HASH_LEN,
    SALT_SIZE,
    MIN_PASSWORD_LENGTH,
    PASSWORD_POLICY_MIN_LENGTH,
    PASSWORD_MIN_STRENGTH,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SEC,
    DEFAULT_POLL_INTERVAL_SEC,
    DEFAULT_RPC_TIMEOUT_SEC,
)
from shroud.encoding import is_address
from shroud.keys.types import UnlockPolicy

logger = logging.getLogger(__name__)


@dataclass
class KdfConfig:
    """Argon2id password hashing parameters."""
    time_cost: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST  # KiB
    parallelism: int = ARGON2_PARALLELISM
    hash_len: int = ARGON2_HASH_LEN
    salt_size: int = SALT_SIZE
    min_password_length: int = MIN_PASSWORD_LENGTH


@dataclass
class PasswordConfig:
    """Rules for new passwords; unlock does not apply them."""
    min_length: int = PASSWORD_POLICY_MIN_LENGTH
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = True
    min_strength: int = PASSWORD_MIN_STRENGTH


@dataclass
class ScannerConfig:
    """Payment scanner configuration."""
    deployment_block: int = 0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC
    poll_interval_sec: int = DEFAULT_POLL_INTERVAL_SEC


@dataclass
class LedgerConfig:
    """Ledger RPC configuration."""
    rpc_url: str = "http://127.0.0.1:8545"
    payment_contract: str = ""
    timeout_sec: float = DEFAULT_RPC_TIMEOUT_SEC


@dataclass
class StorageConfig:
    """Local storage configuration."""
    backend: str = "sqlite"  # "sqlite" or "memory"
    data_dir: str = "./data"
    db_name: str = "shroud.db"


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class EngineConfig:
    """
    Complete engine configuration.

    All settings for running the key engine and scanner.
    """
    unlock_policy: UnlockPolicy = UnlockPolicy.PASSWORD_ONLY

    # Sub-configurations
    kdf: KdfConfig = field(default_factory=KdfConfig)
    password: PasswordConfig = field(default_factory=PasswordConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def data_path(self) -> Path:
        """Get data directory path."""
        return Path(self.storage.data_dir)

    @property
    def db_path(self) -> Path:
        """Get database file path."""
        return self.data_path / self.storage.db_name

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        # KDF validation
        if self.kdf.time_cost < 1:
            errors.append("kdf.time_cost must be at least 1")

        if self.kdf.parallelism < 1:
            errors.append("kdf.parallelism must be at least 1")

        if self.kdf.memory_cost < 8 * self.kdf.parallelism:
            errors.append(
                f"kdf.memory_cost must be at least {8 * self.kdf.parallelism} KiB"
            )

        if self.kdf.hash_len != 32:
            errors.append(f"kdf.hash_len must be 32, got {self.kdf.hash_len}")

        if self.kdf.salt_size < 8:
            errors.append("kdf.salt_size must be at least 8")

        # Password policy validation
        if self.password.min_length < self.kdf.min_password_length:
            errors.append(
                f"password.min_length must be at least kdf.min_password_length ({self.kdf.min_password_length})"
            )

        if not 0 <= self.password.min_strength <= 4:
            errors.append("password.min_strength must be between 0 and 4")

        # Scanner validation
        if self.scanner.chunk_size < 1:
            errors.append("scanner.chunk_size must be at least 1")

        if self.scanner.max_retries < 1:
            errors.append("scanner.max_retries must be at least 1")

        if self.scanner.deployment_block < 0:
            errors.append("scanner.deployment_block cannot be negative")

        if self.scanner.poll_interval_sec < 1:
            errors.append("scanner.poll_interval_sec must be at least 1")

        # Ledger validation
        if self.ledger.payment_contract and not is_address(self.ledger.payment_contract):
            errors.append(f"Invalid payment contract address: {self.ledger.payment_contract}")

        if self.ledger.timeout_sec <= 0:
            errors.append("ledger.timeout_sec must be positive")

        # Storage validation
        if self.storage.backend not in ("sqlite", "memory"):
            errors.append(f"Unknown storage backend: {self.storage.backend}")

        if self.storage.backend == "sqlite" and not self.storage.data_dir:
            errors.append("data_dir cannot be empty")

        return errors

    def to_dict(self) -> dict:
        """Export configuration as dictionary."""
        return {
            "unlock_policy": self.unlock_policy.value,
            "kdf": asdict(self.kdf),
            "password": asdict(self.password),
            "scanner": asdict(self.scanner),
            "ledger": asdict(self.ledger),
            "storage": asdict(self.storage),
            "log": asdict(self.log),
        }

    def save(self, path: str) -> None:
        """Save configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: str) -> "EngineConfig":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)

        config = cls(
            unlock_policy=UnlockPolicy(data.get("unlock_policy", UnlockPolicy.PASSWORD_ONLY.value)),
        )

        if "kdf" in data:
            config.kdf = KdfConfig(**data["kdf"])

        if "password" in data:
            config.password = PasswordConfig(**data["password"])

        if "scanner" in data:
            config.scanner = ScannerConfig(**data["scanner"])

        if "ledger" in data:
            config.ledger = LedgerConfig(**data["ledger"])

        if "storage" in data:
            config.storage = StorageConfig(**data["storage"])

        if "log" in data:
            config.log = LogConfig(**data["log"])

        logger.info(f"Configuration loaded from {path}")
        return config

    @classmethod
    def for_testing(cls) -> "EngineConfig":
        """Light Argon2 parameters and in-memory storage."""
        return cls(
            kdf=KdfConfig(time_cost=1, memory_cost=1024, parallelism=1),
            scanner=ScannerConfig(retry_delay_sec=0.0),
            storage=StorageConfig(backend="memory"),
            log=LogConfig(level="DEBUG"),
        )


def setup_logging(config: LogConfig) -> None:
    """Configure logging based on config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if config.file:
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
    )
