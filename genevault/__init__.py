"""
GeneVault - Tiered Encrypted Genetic Data Storage

One genetic dataset, one password, three independently decryptable access
tiers, stored on a content-addressed network.

Quick Start:
    >>> from genevault import StorageManager, StorageConfig
    >>>
    >>> # Initialize storage (IPFS daemon at /ip4/127.0.0.1/tcp/5001)
    >>> manager = StorageManager(StorageConfig())
    >>>
    >>> # Store data (validation + tiered encryption + compression + upload)
    >>> result = await manager.store_genetic_data(dataset, "correct-horse-battery-staple")
    >>>
    >>> # Retrieve the aggregate tier only
    >>> tier1 = await manager.retrieve_genetic_data(result.storage_locator, password, access_level=1)
    >>> print(tier1.data["totalVariants"], tier1.integrity_verified)

Features:
    - Tier 1 (statistics), tier 2 (redacted records), tier 3 (full data)
    - PBKDF2-SHA512 master key, HKDF tier keys, AES-GCM per tier
    - Time-boxed single-tier access tokens
    - Concurrency-limited uploads with retry and backoff
    - Result and data caches, batch operations, integrity reports
"""

from genevault.config import (
    AccessConfig,
    EncryptionConfig,
    Environment,
    IPFSConfig,
    RetrieveOptions,
    RetryPolicy,
    StorageConfig,
    StoreBackend,
    StoreOptions,
)
from genevault.core.encryption import AccessToken, DecryptedTier, EncryptedPackage, EncryptionManager
from genevault.core.storage_manager import (
    IntegrityReport,
    RetrievalResult,
    StorageManager,
    StorageResult,
)
from genevault.core.cache import CacheStore
from genevault.core.concurrency import CancellationToken, ConcurrencyLimiter
from genevault.backends import FakeStoreAdapter, IPFSClient, StoreAdapter

__version__ = "1.0.0"

__all__ = [
    "StorageManager",
    "StorageResult",
    "RetrievalResult",
    "IntegrityReport",
    "EncryptionManager",
    "EncryptedPackage",
    "DecryptedTier",
    "AccessToken",
    "CacheStore",
    "ConcurrencyLimiter",
    "CancellationToken",
    "StoreAdapter",
    "IPFSClient",
    "FakeStoreAdapter",
    "StorageConfig",
    "EncryptionConfig",
    "IPFSConfig",
    "AccessConfig",
    "StoreOptions",
    "RetrieveOptions",
    "RetryPolicy",
    "Environment",
    "StoreBackend",
]
