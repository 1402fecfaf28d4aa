"""
Test suite for configuration models.
"""

import os

import pydantic
import pytest

from genevault.config import (
    AccessConfig,
    EncryptionConfig,
    Environment,
    RetrieveOptions,
    StorageConfig,
    StoreBackend,
    StoreOptions,
)
from genevault.errors import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every GENEVAULT_* variable for the duration of a test."""
    for name in list(os.environ):
        if name.startswith("GENEVAULT_"):
            monkeypatch.delenv(name)
    return monkeypatch


@pytest.mark.unit
class TestStorageConfig:
    """Test orchestrator configuration."""

    def test_defaults(self):
        """Defaults describe a development IPFS deployment."""
        config = StorageConfig()

        assert config.environment == Environment.DEVELOPMENT
        assert config.store_backend == StoreBackend.IPFS
        assert config.access_levels == [1, 2, 3]
        assert config.compression_algorithm == "zstd"
        assert config.max_concurrent_uploads == 5
        assert config.encryption.key_derivation_iterations == 100_000

    def test_unknown_key_rejected(self):
        """Misspelled options fail loudly."""
        with pytest.raises(pydantic.ValidationError):
            StorageConfig(cache_sise=10)

    def test_access_levels_validated(self):
        """Levels outside 1-3 and duplicates are rejected; valid ones are sorted."""
        with pytest.raises(pydantic.ValidationError):
            StorageConfig(access_levels=[1, 4])
        with pytest.raises(pydantic.ValidationError):
            StorageConfig(access_levels=[1, 1])
        with pytest.raises(pydantic.ValidationError):
            StorageConfig(access_levels=[])

        assert StorageConfig(access_levels=[3, 1]).access_levels == [1, 3]

    def test_fake_store_refused_in_production(self):
        """The in-memory store cannot be configured for production."""
        with pytest.raises(pydantic.ValidationError):
            StorageConfig(environment="production", store_backend="fake")

    def test_compression_algorithm_validated(self):
        """Only known compression algorithms are accepted."""
        with pytest.raises(pydantic.ValidationError):
            StorageConfig(compression_algorithm="rar")

    def test_retry_policy(self):
        """The retry policy mirrors the flat retry settings."""
        config = StorageConfig(retry_attempts=4, retry_base_delay=0.5, retry_backoff="exponential")
        policy = config.retry_policy

        assert policy.attempts == 4
        assert policy.schedule() == [0.5, 1.0, 2.0]

    def test_retry_attempts_bounded(self, clean_env):
        """Attempt counts the retry policy cannot hold are rejected up front."""
        with pytest.raises(pydantic.ValidationError):
            StorageConfig(retry_attempts=25)

        assert StorageConfig(retry_attempts=20).retry_policy.attempts == 20

        clean_env.setenv("GENEVAULT_RETRY_ATTEMPTS", "25")
        with pytest.raises(ConfigurationError):
            StorageConfig.from_env()

    def test_from_env(self, clean_env):
        """Environment variables configure the orchestrator."""
        clean_env.setenv("GENEVAULT_ENV", "TESTING")
        clean_env.setenv("GENEVAULT_STORE_BACKEND", "fake")
        clean_env.setenv("GENEVAULT_COMPRESSION", "false")
        clean_env.setenv("GENEVAULT_CACHE_SIZE", "7")
        clean_env.setenv("GENEVAULT_IPFS_API", "/dns/ipfs/tcp/5001")
        clean_env.setenv("GENEVAULT_IPFS_TIMEOUT", "2.5")
        clean_env.setenv("GENEVAULT_KDF_ITERATIONS", "5000")

        config = StorageConfig.from_env(batch_size=3)

        assert config.environment == Environment.TESTING
        assert config.store_backend == StoreBackend.FAKE
        assert config.compression_enabled is False
        assert config.cache_size == 7
        assert config.batch_size == 3
        assert config.ipfs.api_addr == "/dns/ipfs/tcp/5001"
        assert config.ipfs.timeout == 2.5
        assert config.encryption.key_derivation_iterations == 5000

    def test_from_env_invalid_values(self, clean_env):
        """Bad environment values raise ConfigurationError."""
        clean_env.setenv("GENEVAULT_CACHE_SIZE", "lots")
        with pytest.raises(ConfigurationError):
            StorageConfig.from_env()

        clean_env.setenv("GENEVAULT_CACHE_SIZE", "0")
        with pytest.raises(ConfigurationError):
            StorageConfig.from_env()

    def test_from_env_production_fake(self, clean_env):
        """from_env applies the same production guard."""
        clean_env.setenv("GENEVAULT_ENV", "production")
        clean_env.setenv("GENEVAULT_STORE_BACKEND", "fake")
        with pytest.raises(ConfigurationError):
            StorageConfig.from_env()


@pytest.mark.unit
class TestOperationConfigs:
    """Test per-call option models."""

    def test_encryption_config_bounds(self):
        """Cipher settings are range checked."""
        with pytest.raises(pydantic.ValidationError):
            EncryptionConfig(algorithm="des")
        with pytest.raises(pydantic.ValidationError):
            EncryptionConfig(tag_length=8)
        with pytest.raises(pydantic.ValidationError):
            EncryptionConfig(salt_length=4)

    def test_access_config_custom_levels(self):
        """Levels above 3 need a custom tier payload."""
        config = AccessConfig(access_levels=[4, 1], custom_tiers={4: {"a": 1}})
        assert config.access_levels == [1, 4]

        with pytest.raises(pydantic.ValidationError):
            AccessConfig(access_levels=[1, 5], custom_tiers={4: {"a": 1}})
        with pytest.raises(pydantic.ValidationError):
            AccessConfig(access_levels=[4])

    def test_store_and_retrieve_options(self):
        """Per-call options have safe defaults and reject unknown keys."""
        assert StoreOptions().owner_address == "anonymous"
        assert RetrieveOptions().strict_integrity is True

        with pytest.raises(pydantic.ValidationError):
            StoreOptions(owner="alice")
        with pytest.raises(pydantic.ValidationError):
            RetrieveOptions(strict=False)
