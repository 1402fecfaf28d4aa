"""
Content store adapters for GeneVault.

Supports IPFS, plus an in-memory fake for tests and local development.
"""

import asyncio
from typing import Optional

from .base import StoreAdapter, UploadResult
from .fake import FakeStoreAdapter
from .ipfs_backend import IPFSClient
from ..config import StorageConfig, StoreBackend
from ..core.concurrency import ConcurrencyLimiter


def create_store_adapter(
    config: StorageConfig,
    limiter: Optional[ConcurrencyLimiter] = None,
    sleep=asyncio.sleep,
) -> StoreAdapter:
    """
    Build the adapter selected by config.store_backend.

    The fake store is only ever returned when explicitly configured.
    """
    if config.store_backend == StoreBackend.FAKE:
        return FakeStoreAdapter(
            environment=config.environment,
            limiter=limiter,
            retry_policy=config.retry_policy,
            timeout=config.ipfs.timeout,
            sleep=sleep,
        )
    return IPFSClient(
        config=config.ipfs,
        limiter=limiter,
        retry_policy=config.retry_policy,
        sleep=sleep,
    )


__all__ = [
    "StoreAdapter",
    "UploadResult",
    "IPFSClient",
    "FakeStoreAdapter",
    "create_store_adapter",
]
