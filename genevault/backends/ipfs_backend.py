"""
IPFS content store adapter.

Stores encrypted packages on IPFS as small directories (data file plus a
JSON sidecar) so locators can carry a human-readable filename.
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging

from .base import StoreAdapter
from ..config import IPFSConfig, RetryPolicy
from ..core.concurrency import ConcurrencyLimiter

logger = logging.getLogger(__name__)


class IPFSClient(StoreAdapter):
    """
    IPFS store adapter.

    Uses the ipfshttpclient API client against a local or remote daemon.
    The client is blocking, so every call runs in a worker thread via
    asyncio.to_thread.

    Features:
    - Content-addressable storage (directory CID + file CID per upload)
    - Permanent storage via pinning, tracked in a local pinned set
    - Bounded concurrent uploads, retries with backoff, retrieval timeout
    """

    name = "ipfs"

    def __init__(
        self,
        config: Optional[IPFSConfig] = None,
        limiter: Optional[ConcurrencyLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep=asyncio.sleep,
    ):
        """
        Initialize IPFS adapter.

        Args:
            config: Daemon address, timeout and gateway
            limiter: Shared upload limiter
            retry_policy: Retry schedule for transient IPFS errors
            sleep: Backoff sleep, injectable for tests
        """
        self.config = config or IPFSConfig()
        super().__init__(
            limiter=limiter,
            retry_policy=retry_policy,
            timeout=self.config.timeout,
            sleep=sleep,
        )
        self.client = None

        logger.info(f"Initialized IPFS adapter for {self.config.api_addr}")

    async def _get_client(self):
        """Connect lazily on first use."""
        if self.client is None:
            self.client = await asyncio.to_thread(self._connect)
        return self.client

    def _connect(self):
        # Deferred: only needed when talking to a daemon
        import ipfshttpclient

        try:
            client = ipfshttpclient.connect(self.config.api_addr, timeout=self.config.timeout)
        except Exception as e:
            logger.error(f"Failed to connect to IPFS daemon at {self.config.api_addr}: {e}")
            logger.error(
                "Make sure IPFS daemon is running: ipfs daemon\n"
                "Install IPFS: https://docs.ipfs.tech/install/"
            )
            raise ConnectionError(f"IPFS connection failed: {e}") from e

        logger.info(f"Connected to IPFS at {self.config.api_addr}")
        return client

    async def _add_directory(self, files: Dict[str, bytes]) -> Tuple[str, Dict[str, str]]:
        client = await self._get_client()
        return await asyncio.to_thread(self._add_directory_sync, client, files)

    @staticmethod
    def _add_directory_sync(client, files: Dict[str, bytes]) -> Tuple[str, Dict[str, str]]:
        # The HTTP API names files after their paths, so stage them on disk
        with tempfile.TemporaryDirectory(prefix="genevault-") as staging:
            paths = []
            for name, content in files.items():
                path = Path(staging) / name
                path.write_bytes(content)
                paths.append(str(path))

            entries = client.add(*paths, wrap_with_directory=True, pin=False)

        if isinstance(entries, dict):
            entries = [entries]

        addresses: Dict[str, str] = {}
        directory = None
        for entry in entries:
            if entry.get("Name", "") == "":
                directory = entry["Hash"]
            else:
                addresses[Path(entry["Name"]).name] = entry["Hash"]

        if directory is None:
            raise RuntimeError("IPFS add returned no wrapping directory")
        return directory, addresses

    async def _cat(self, address: str, filename: Optional[str]) -> bytes:
        client = await self._get_client()
        path = f"{address}/{filename}" if filename else address
        return await asyncio.to_thread(client.cat, path)

    async def _list_directory(self, address: str) -> List[str]:
        client = await self._get_client()
        listing = await asyncio.to_thread(client.ls, address)
        names: List[str] = []
        for obj in listing.get("Objects", []):
            names.extend(link["Name"] for link in obj.get("Links", []))
        return names

    async def _pin_once(self, address: str):
        client = await self._get_client()
        await asyncio.to_thread(client.pin.add, address)
        logger.debug(f"Pinned {address[:16]}...")

    async def _unpin_once(self, address: str):
        client = await self._get_client()
        try:
            await asyncio.to_thread(client.pin.rm, address)
        except Exception as e:
            if "not pinned" in str(e):
                logger.debug(f"{address[:16]}... was not pinned")
                return
            raise
        logger.debug(f"Unpinned {address[:16]}...")

    async def _ping(self) -> bool:
        client = await self._get_client()
        version = await asyncio.to_thread(client.version)
        logger.info(f"IPFS daemon version {version.get('Version', 'unknown')}")
        return True

    async def close(self):
        """Close the HTTP session."""
        if self.client is not None:
            await asyncio.to_thread(self.client.close)
            self.client = None
            logger.info("Closed IPFS connection")

    def get_metrics(self) -> Dict[str, Any]:
        metrics = super().get_metrics()
        metrics["api_addr"] = self.config.api_addr
        metrics["connected"] = self.client is not None
        return metrics
