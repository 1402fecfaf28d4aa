"""
GeneVault Core Module

Core functionality for tiered encrypted storage:
- Content addressing (canonical JSON, SHA-256, locators)
- Compression algorithms (ZSTD, LZ4, Brotli, zlib)
- Tier partitioning and encryption
- Caches and concurrency primitives

The orchestrator lives in genevault.core.storage_manager.
"""

from genevault.core.cache import CacheStore, CacheStats
from genevault.core.compression import CompressionEngine, CompressionAlgorithm, CompressionResult
from genevault.core.content_addressing import ContentAddressingEngine, ContentID
from genevault.core.tiers import AccessTier, TierBuilder

__all__ = [
    "CacheStore",
    "CacheStats",
    "CompressionEngine",
    "CompressionAlgorithm",
    "CompressionResult",
    "ContentAddressingEngine",
    "ContentID",
    "AccessTier",
    "TierBuilder",
]
