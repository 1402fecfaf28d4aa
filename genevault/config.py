"""
GeneVault configuration.

Closed, validated configuration models. Every model rejects unknown keys so
a misspelled option fails loudly at construction time instead of being
silently ignored.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ConfigurationError


VALID_ACCESS_LEVELS = (1, 2, 3)


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Content store adapter selection."""
    IPFS = "ipfs"
    FAKE = "fake"    # In-memory store for tests and local development only


def _validate_access_levels(levels: List[int], allow_custom: bool = False) -> List[int]:
    if not levels:
        raise ValueError("access_levels must not be empty")
    if len(set(levels)) != len(levels):
        raise ValueError(f"access_levels contains duplicates: {levels}")
    if not allow_custom:
        invalid = [level for level in levels if level not in VALID_ACCESS_LEVELS]
        if invalid:
            raise ValueError(
                f"access_levels must be a subset of {list(VALID_ACCESS_LEVELS)}, got {invalid}"
            )
    elif any(level < 1 for level in levels):
        raise ValueError(f"access_levels must be positive integers, got {levels}")
    return sorted(levels)


class RetryPolicy(BaseModel):
    """Bounded retry schedule for transient content store failures."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    attempts: int = Field(default=3, ge=1, le=20, description="Total attempts including the first")
    base_delay: float = Field(default=1.0, ge=0.0, description="Delay before the first retry (seconds)")
    max_delay: float = Field(default=30.0, ge=0.0, description="Upper bound for a single delay (seconds)")
    backoff: Literal["linear", "exponential"] = Field(
        default="linear",
        description="linear: base * attempt, exponential: base * 2^(attempt-1)"
    )

    def delay_for(self, attempt: int) -> float:
        """
        Delay to wait after the given failed attempt (1-based).

        Args:
            attempt: Number of the attempt that just failed

        Returns:
            Seconds to sleep before the next attempt
        """
        if self.backoff == "exponential":
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay * attempt
        return min(delay, self.max_delay)

    def schedule(self) -> List[float]:
        """All delays the policy will ever wait, in order."""
        return [self.delay_for(attempt) for attempt in range(1, self.attempts)]


class EncryptionConfig(BaseModel):
    """Cipher engine configuration."""

    model_config = ConfigDict(extra="forbid")

    algorithm: str = Field(default="aes-256-gcm", description="Cipher for metadata and key records")
    key_derivation_iterations: int = Field(
        default=100_000,
        ge=1,
        description="PBKDF2-HMAC-SHA512 iterations for the master key"
    )
    salt_length: int = Field(default=32, ge=16, le=64)
    iv_length: int = Field(default=12, ge=12, le=16)
    tag_length: int = Field(default=16, description="AEAD tag length (AES-GCM uses 16)")
    large_dataset_threshold: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Serialized size above which tiers are built in chunks"
    )
    chunk_size: int = Field(default=10_000, ge=1, description="Records per chunk when chunking")
    full_tier_reference_threshold: Optional[int] = Field(
        default=None,
        ge=1,
        description="Serialized size above which tier 3 holds a reference instead of the data "
                    "(None = tier 3 always carries the full dataset)"
    )
    token_validity_seconds: int = Field(default=24 * 60 * 60, ge=1)

    @field_validator("algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        if value not in ("aes-128-gcm", "aes-192-gcm", "aes-256-gcm"):
            raise ValueError(f"Unsupported algorithm: {value}")
        return value

    @field_validator("tag_length")
    @classmethod
    def _check_tag_length(cls, value: int) -> int:
        if value != 16:
            raise ValueError("AES-GCM tag length must be 16 bytes")
        return value


class IPFSConfig(BaseModel):
    """IPFS daemon connection settings."""

    model_config = ConfigDict(extra="forbid")

    api_addr: str = Field(default="/ip4/127.0.0.1/tcp/5001", description="IPFS API multiaddr")
    timeout: float = Field(default=30.0, gt=0, description="Retrieval timeout (seconds)")
    gateway: str = Field(default="https://ipfs.io", description="Public gateway for share links")


class AccessConfig(BaseModel):
    """Per-call tier selection for the cipher engine."""

    model_config = ConfigDict(extra="forbid")

    access_levels: List[int] = Field(default_factory=lambda: [1, 2, 3])
    custom_tiers: Optional[Dict[int, Dict[str, Any]]] = None

    @model_validator(mode="after")
    def _check_levels(self) -> "AccessConfig":
        self.access_levels = _validate_access_levels(
            self.access_levels,
            allow_custom=bool(self.custom_tiers),
        )
        if self.custom_tiers:
            missing = [level for level in self.access_levels
                       if level not in self.custom_tiers and level not in VALID_ACCESS_LEVELS]
            if missing:
                raise ValueError(f"No custom tier payload for levels {missing}")
        return self


class StoreOptions(BaseModel):
    """Options for StorageManager.store_genetic_data."""

    model_config = ConfigDict(extra="forbid")

    owner_address: str = Field(default="anonymous", min_length=1)
    dataset_id: Optional[str] = Field(default=None, min_length=1)
    access_levels: Optional[List[int]] = None
    custom_tiers: Optional[Dict[int, Dict[str, Any]]] = None
    filename: Optional[str] = Field(default=None, min_length=1)


class RetrieveOptions(BaseModel):
    """Options for StorageManager.retrieve_genetic_data."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    strict_integrity: bool = True
    use_cache: bool = True
    cancel_token: Optional[Any] = None


class StorageConfig(BaseModel):
    """Top-level orchestrator configuration."""

    model_config = ConfigDict(extra="forbid")

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    store_backend: StoreBackend = Field(default=StoreBackend.IPFS)

    access_levels: List[int] = Field(default_factory=lambda: [1, 2, 3])
    custom_tiers: Optional[Dict[int, Dict[str, Any]]] = None
    compression_enabled: bool = Field(default=True)
    compression_algorithm: str = Field(default="zstd", description="none, zlib, zstd, lz4, brotli")
    cache_enabled: bool = Field(default=True)
    cache_size: int = Field(default=100, ge=1, description="Entries per cache")
    batch_size: int = Field(default=10, ge=1)
    batch_pause: float = Field(default=0.1, ge=0.0, description="Pause between batch groups (seconds)")
    max_concurrent_uploads: int = Field(default=5, ge=1)
    retry_attempts: int = Field(default=3, ge=1, le=20, description="Total attempts including the first")
    retry_backoff: Literal["linear", "exponential"] = Field(default="linear")
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    auto_pin: bool = Field(default=True)

    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    ipfs: IPFSConfig = Field(default_factory=IPFSConfig)

    @field_validator("compression_algorithm")
    @classmethod
    def _check_compression(cls, value: str) -> str:
        if value not in ("none", "zlib", "zstd", "lz4", "brotli"):
            raise ValueError(f"Unsupported compression algorithm: {value}")
        return value

    @model_validator(mode="after")
    def _check_levels(self) -> "StorageConfig":
        self.access_levels = _validate_access_levels(
            self.access_levels,
            allow_custom=bool(self.custom_tiers),
        )
        if self.environment == Environment.PRODUCTION and self.store_backend == StoreBackend.FAKE:
            raise ValueError("The fake store cannot be used in a production environment")
        return self

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry schedule derived from the flat retry settings."""
        return RetryPolicy(
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            backoff=self.retry_backoff,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> "StorageConfig":
        """
        Build configuration from GENEVAULT_* environment variables.

        Args:
            **overrides: Explicit values that win over the environment

        Returns:
            Validated StorageConfig

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        values: Dict[str, Any] = {}
        env = os.environ

        if "GENEVAULT_ENV" in env:
            values["environment"] = env["GENEVAULT_ENV"].lower()
        if "GENEVAULT_STORE_BACKEND" in env:
            values["store_backend"] = env["GENEVAULT_STORE_BACKEND"].lower()
        if "GENEVAULT_COMPRESSION" in env:
            values["compression_enabled"] = env["GENEVAULT_COMPRESSION"].lower() == "true"
        if "GENEVAULT_COMPRESSION_ALGORITHM" in env:
            values["compression_algorithm"] = env["GENEVAULT_COMPRESSION_ALGORITHM"].lower()

        int_vars = {
            "GENEVAULT_CACHE_SIZE": "cache_size",
            "GENEVAULT_BATCH_SIZE": "batch_size",
            "GENEVAULT_MAX_CONCURRENT_UPLOADS": "max_concurrent_uploads",
            "GENEVAULT_RETRY_ATTEMPTS": "retry_attempts",
        }
        for var, key in int_vars.items():
            if var in env:
                try:
                    values[key] = int(env[var])
                except ValueError:
                    raise ConfigurationError(f"{var} must be an integer, got {env[var]!r}")

        ipfs: Dict[str, Any] = {}
        if "GENEVAULT_IPFS_API" in env:
            ipfs["api_addr"] = env["GENEVAULT_IPFS_API"]
        if "GENEVAULT_IPFS_TIMEOUT" in env:
            try:
                ipfs["timeout"] = float(env["GENEVAULT_IPFS_TIMEOUT"])
            except ValueError:
                raise ConfigurationError(
                    f"GENEVAULT_IPFS_TIMEOUT must be a number, got {env['GENEVAULT_IPFS_TIMEOUT']!r}"
                )
        if ipfs:
            values["ipfs"] = ipfs

        if "GENEVAULT_KDF_ITERATIONS" in env:
            try:
                values["encryption"] = {
                    "key_derivation_iterations": int(env["GENEVAULT_KDF_ITERATIONS"])
                }
            except ValueError:
                raise ConfigurationError(
                    f"GENEVAULT_KDF_ITERATIONS must be an integer, got {env['GENEVAULT_KDF_ITERATIONS']!r}"
                )

        values.update(overrides)

        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
