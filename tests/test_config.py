"""
Shroud v1 Configuration Tests
"""

import logging

from shroud.config import EngineConfig, KdfConfig, LogConfig, PasswordConfig, setup_logging
from shroud.keys.types import UnlockPolicy


class TestEngineConfig:
    """Tests for configuration defaults, validation and persistence."""

    def test_defaults_valid(self):
        """Test the default configuration validates."""
        config = EngineConfig()
        assert config.validate() == []
        assert config.unlock_policy is UnlockPolicy.PASSWORD_ONLY
        assert config.kdf.memory_cost == 65536
        assert config.scanner.chunk_size == 10000

    def test_testing_profile(self):
        """Test the testing profile is light and in-memory."""
        config = EngineConfig.for_testing()
        assert config.validate() == []
        assert config.kdf.time_cost == 1
        assert config.storage.backend == "memory"

    def test_invalid_values(self):
        """Test invalid settings are reported, not raised."""
        config = EngineConfig()
        config.kdf = KdfConfig(time_cost=0, memory_cost=4, parallelism=1)
        config.scanner.chunk_size = 0
        config.storage.backend = "redis"
        config.ledger.payment_contract = "0x1234"
        errors = config.validate()
        assert any("time_cost" in e for e in errors)
        assert any("memory_cost" in e for e in errors)
        assert any("chunk_size" in e for e in errors)
        assert any("redis" in e for e in errors)
        assert any("payment contract" in e for e in errors)

    def test_password_policy(self, tmp_path):
        """Test the password section validates and survives save/load."""
        config = EngineConfig()
        assert config.password.min_length == 12
        assert config.password.min_strength == 3

        config.password = PasswordConfig(min_length=4, min_strength=5)
        errors = config.validate()
        assert any("password.min_length" in e for e in errors)
        assert any("password.min_strength" in e for e in errors)

        config.password = PasswordConfig(min_length=16, require_special=False)
        path = str(tmp_path / "config.json")
        config.save(path)
        loaded = EngineConfig.load(path)
        assert loaded.password == config.password

    def test_save_load(self, tmp_path):
        """Test save then load preserves every section."""
        config = EngineConfig(unlock_policy=UnlockPolicy.PASSWORD_AND_SIGNER)
        config.scanner.deployment_block = 1234
        config.ledger.payment_contract = "0x" + "11" * 20
        config.storage.data_dir = str(tmp_path / "data")
        path = str(tmp_path / "config.json")

        config.save(path)
        loaded = EngineConfig.load(path)
        assert loaded.unlock_policy is UnlockPolicy.PASSWORD_AND_SIGNER
        assert loaded.to_dict() == config.to_dict()

    def test_db_path(self, tmp_path):
        """Test db_path joins data_dir and db_name."""
        config = EngineConfig()
        config.storage.data_dir = str(tmp_path)
        assert config.db_path == tmp_path / "shroud.db"


class TestLogging:
    """Tests for logging setup."""

    def test_file_handler(self, tmp_path):
        """Test a log file receives engine messages."""
        root = logging.getLogger()
        saved = root.handlers[:]
        saved_level = root.level
        root.handlers = []
        try:
            log_file = tmp_path / "shroud.log"
            setup_logging(LogConfig(level="DEBUG", file=str(log_file)))
            logging.getLogger("shroud.test").info("engine started")
            for handler in root.handlers:
                handler.flush()
            assert "engine started" in log_file.read_text()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = saved
            root.setLevel(saved_level)
