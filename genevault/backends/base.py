"""
Content store adapter contract.

StoreAdapter implements everything the orchestrator relies on (bounded
concurrent uploads, retries with backoff, retrieval timeouts, idempotent
pinning with a local pinned set, sidecar metadata, truncated locator
resolution) on top of a handful of primitive operations that concrete
adapters provide.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple
import logging

from ..config import RetryPolicy
from ..core.concurrency import ConcurrencyLimiter, retry_async
from ..core.content_addressing import (
    TRUNCATION_MARKER,
    build_locator,
    canonical_json,
    is_truncated,
    parse_locator,
)
from ..errors import PinError, RetrievalError, RetrievalTimeoutError, UploadError

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta.json"
DEFAULT_FILENAME = "data.bin"


@dataclass
class UploadResult:
    """Outcome of one upload."""
    content_address: str        # Directory address (what the locator points at)
    data_address: str           # Address of the data file itself
    locator: str                # ipfs://<content_address>/<filename>, <= 256 chars
    size: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contentAddress": self.content_address,
            "dataAddress": self.data_address,
            "locator": self.locator,
            "size": self.size,
            "metadata": self.metadata,
        }


class StoreAdapter(ABC):
    """
    Abstract content-addressed store.

    Subclasses implement the primitives (_add_directory, _cat,
    _list_directory, _pin_once, _unpin_once, _ping). Every primitive call
    goes through the same limiter and retry path, so fake and real adapters
    behave alike under load and failure.
    """

    name = "store"

    def __init__(
        self,
        limiter: Optional[ConcurrencyLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize adapter.

        Args:
            limiter: Shared upload limiter (a private one is created if omitted)
            retry_policy: Retry schedule for transient failures
            timeout: Upper bound for one retrieval, retries included (seconds)
            sleep: Backoff sleep, injectable for tests
        """
        self.limiter = limiter or ConcurrencyLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep
        self.pinned: Set[str] = set()

        self.metrics: Dict[str, Any] = {
            "uploads": 0,
            "upload_failures": 0,
            "bytes_uploaded": 0,
            "retrievals": 0,
            "retrieval_failures": 0,
            "retrieval_timeouts": 0,
            "bytes_retrieved": 0,
            "pins": 0,
            "unpins": 0,
        }

    # ----- primitives -----

    @abstractmethod
    async def _add_directory(self, files: Dict[str, bytes]) -> Tuple[str, Dict[str, str]]:
        """Store files in one directory. Returns (directory address, name -> file address)."""

    @abstractmethod
    async def _cat(self, address: str, filename: Optional[str]) -> bytes:
        """Read a file (or a bare object when filename is None)."""

    @abstractmethod
    async def _list_directory(self, address: str) -> List[str]:
        """Names of the files inside a directory."""

    @abstractmethod
    async def _pin_once(self, address: str):
        """Pin content on the store."""

    @abstractmethod
    async def _unpin_once(self, address: str):
        """Unpin content. Must succeed if the content is not pinned."""

    @abstractmethod
    async def _ping(self) -> bool:
        """Cheap liveness probe."""

    async def close(self):
        """Release connections."""

    # ----- contract -----

    async def upload(
        self,
        data: bytes,
        metadata: Optional[Dict[str, Any]] = None,
        pin: bool = True,
        filename: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload bytes (and a sidecar metadata file) as one directory.

        Args:
            data: Opaque payload
            metadata: JSON-serializable metadata, stored next to the data
            pin: Pin the directory after upload
            filename: Name of the data file inside the directory

        Returns:
            UploadResult

        Raises:
            UploadError: If every attempt failed
        """
        filename = filename or DEFAULT_FILENAME
        metadata = dict(metadata or {})
        files = {filename: bytes(data)}
        if metadata:
            files[f"{filename}{METADATA_SUFFIX}"] = canonical_json(metadata)

        async with self.limiter:
            try:
                directory, addresses = await retry_async(
                    lambda: self._add_directory(files),
                    self.retry_policy,
                    description=f"{self.name} upload of {filename[:32]}",
                    sleep=self._sleep,
                )
            except Exception as e:
                self.metrics["upload_failures"] += 1
                raise UploadError(
                    f"Upload of {filename[:32]} failed: {e}",
                    attempts=self.retry_policy.attempts,
                ) from e

        self.metrics["uploads"] += 1
        self.metrics["bytes_uploaded"] += len(data)

        if pin:
            await self.pin(directory)

        result = UploadResult(
            content_address=directory,
            data_address=addresses.get(filename, directory),
            locator=build_locator(directory, filename),
            size=len(data),
            metadata=metadata,
        )

        logger.debug(
            f"Uploaded {len(data)} bytes to {self.name} as {directory[:16]}... "
            f"(pinned={pin})"
        )
        return result

    async def batch_upload(
        self,
        items: Sequence[Tuple[bytes, Optional[Dict[str, Any]], Optional[str]]],
        pin: bool = True,
    ) -> List[UploadResult]:
        """
        Upload many payloads concurrently (the limiter bounds the fan-out).

        Args:
            items: (data, metadata, filename) tuples

        Returns:
            Upload results in input order
        """
        return list(await asyncio.gather(*(
            self.upload(data, metadata, pin=pin, filename=filename)
            for data, metadata, filename in items
        )))

    async def retrieve(self, locator_or_address: str, filename: Optional[str] = None) -> bytes:
        """
        Fetch bytes by locator, gateway URL or bare address.

        Raises:
            RetrievalTimeoutError: If the retrieval exceeded the timeout
            RetrievalError: If every attempt failed
        """
        address, locator_filename = parse_locator(locator_or_address)
        filename = filename or locator_filename

        async def fetch() -> bytes:
            name = await self._resolve_filename(address, filename)
            return await self._cat(address, name)

        data = await self._bounded_retrieval(fetch, f"{address[:16]}...")
        self.metrics["retrievals"] += 1
        self.metrics["bytes_retrieved"] += len(data)
        return data

    async def retrieve_metadata(self, locator: str) -> Optional[Dict[str, Any]]:
        """
        Read the sidecar metadata written at upload time.

        Returns:
            Metadata dict, or None when the locator has no filename or no sidecar
        """
        address, filename = parse_locator(locator)
        if not filename:
            return None

        async def fetch() -> Optional[bytes]:
            name = await self._resolve_filename(address, filename)
            sidecar = f"{name}{METADATA_SUFFIX}"
            if sidecar not in await self._list_directory(address):
                return None
            return await self._cat(address, sidecar)

        raw = await self._bounded_retrieval(fetch, f"metadata of {address[:16]}...")
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise RetrievalError(f"Sidecar metadata of {address[:16]}... is not JSON: {e}") from e

    async def _bounded_retrieval(self, fetch, description: str):
        try:
            return await asyncio.wait_for(
                retry_async(fetch, self.retry_policy, description=f"{self.name} retrieval of {description}",
                            sleep=self._sleep),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            self.metrics["retrieval_timeouts"] += 1
            raise RetrievalTimeoutError(
                f"Retrieval of {description} timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            self.metrics["retrieval_failures"] += 1
            raise RetrievalError(
                f"Retrieval of {description} failed: {e}",
                attempts=self.retry_policy.attempts,
            ) from e

    async def _resolve_filename(self, address: str, filename: Optional[str]) -> Optional[str]:
        """Expand a truncated locator filename by listing the directory."""
        if not is_truncated(filename):
            return filename

        prefix = filename[:-len(TRUNCATION_MARKER)]
        candidates = [
            name for name in await self._list_directory(address)
            if name.startswith(prefix) and not name.endswith(METADATA_SUFFIX)
        ]
        if len(candidates) != 1:
            raise RetrievalError(
                f"Cannot resolve truncated filename {filename[:16]}... in {address[:16]}... "
                f"({len(candidates)} candidates)"
            )
        return candidates[0]

    async def pin(self, address: str):
        """
        Pin content. Idempotent.

        Raises:
            PinError: If every attempt failed
        """
        if address in self.pinned:
            return
        try:
            await retry_async(
                lambda: self._pin_once(address),
                self.retry_policy,
                description=f"{self.name} pin of {address[:16]}...",
                sleep=self._sleep,
            )
        except Exception as e:
            raise PinError(f"Pin of {address[:16]}... failed: {e}", attempts=self.retry_policy.attempts) from e
        self.pinned.add(address)
        self.metrics["pins"] += 1

    async def unpin(self, address: str):
        """
        Unpin content. Idempotent.

        Raises:
            PinError: If every attempt failed
        """
        try:
            await retry_async(
                lambda: self._unpin_once(address),
                self.retry_policy,
                description=f"{self.name} unpin of {address[:16]}...",
                sleep=self._sleep,
            )
        except Exception as e:
            raise PinError(f"Unpin of {address[:16]}... failed: {e}", attempts=self.retry_policy.attempts) from e
        if address in self.pinned:
            self.pinned.discard(address)
            self.metrics["unpins"] += 1

    async def cleanup_pinned(self, exclude: Iterable[str] = ()) -> int:
        """
        Unpin everything this adapter pinned, except the given addresses.

        Returns:
            Number of addresses unpinned
        """
        keep = set(exclude)
        doomed = [address for address in self.pinned if address not in keep]
        for address in doomed:
            await self.unpin(address)
        if doomed:
            logger.info(f"Unpinned {len(doomed)} unused {self.name} objects")
        return len(doomed)

    async def test_connection(self) -> bool:
        """True if the store answers a liveness probe."""
        try:
            return await asyncio.wait_for(self._ping(), timeout=self.timeout)
        except Exception as e:
            logger.warning(f"{self.name} connection test failed: {e}")
            return False

    def get_metrics(self) -> Dict[str, Any]:
        """Adapter counters plus limiter state."""
        return {
            "adapter": self.name,
            **self.metrics,
            "pinned": len(self.pinned),
            "limiter": self.limiter.get_metrics(),
            "timestamp": int(time.time() * 1000),
        }
