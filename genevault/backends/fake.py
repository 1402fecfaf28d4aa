"""
In-memory content store for tests and local development.

Addresses are deterministic (``fake-<sha256>``) so repeated runs produce the
same locators. The adapter refuses to exist in a production environment.
"""

import asyncio
import hashlib
from typing import Dict, List, Optional, Tuple
import logging

from .base import StoreAdapter
from ..config import Environment, RetryPolicy
from ..core.concurrency import ConcurrencyLimiter
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

FAKE_PREFIX = "fake-"


def fake_address(content: bytes) -> str:
    """Deterministic placeholder address for content."""
    return FAKE_PREFIX + hashlib.sha256(content).hexdigest()


class FakeStoreAdapter(StoreAdapter):
    """
    Dictionary-backed store with fault injection.

    Attributes:
        fail_next_uploads: Upload attempts that will raise before succeeding
        fail_next_retrievals: Retrieval attempts that will raise before succeeding
        latency: Seconds every primitive call waits (exposes concurrency in tests)
        add_calls: Successful directory adds (one per stored upload)
        peak_concurrent_adds: Highest number of adds observed running at once
    """

    name = "fake"

    def __init__(
        self,
        environment: Environment = Environment.DEVELOPMENT,
        limiter: Optional[ConcurrencyLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        sleep=asyncio.sleep,
        latency: float = 0.0,
    ):
        if Environment(environment) == Environment.PRODUCTION:
            raise ConfigurationError("FakeStoreAdapter cannot be used in a production environment")

        super().__init__(limiter=limiter, retry_policy=retry_policy, timeout=timeout, sleep=sleep)

        self.objects: Dict[str, bytes] = {}
        self.directories: Dict[str, Dict[str, str]] = {}
        self.pin_calls: List[str] = []

        self.latency = latency
        self.fail_next_uploads = 0
        self.fail_next_retrievals = 0
        self.add_calls = 0
        self.peak_concurrent_adds = 0
        self._concurrent_adds = 0
        self.online = True

        logger.warning(f"Using in-memory fake store ({Environment(environment).value} environment)")

    async def _delay(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    def _check_online(self):
        if not self.online:
            raise ConnectionError("Fake store is offline")

    async def _add_directory(self, files: Dict[str, bytes]) -> Tuple[str, Dict[str, str]]:
        self._concurrent_adds += 1
        self.peak_concurrent_adds = max(self.peak_concurrent_adds, self._concurrent_adds)
        try:
            await self._delay()
            self._check_online()
            if self.fail_next_uploads > 0:
                self.fail_next_uploads -= 1
                raise ConnectionError("Injected upload failure")

            links: Dict[str, str] = {}
            for name, content in files.items():
                address = fake_address(content)
                self.objects[address] = content
                links[name] = address

            listing = "\n".join(f"{name}:{links[name]}" for name in sorted(links))
            directory = fake_address(listing.encode("utf-8"))
            self.directories[directory] = links
            self.add_calls += 1
            return directory, dict(links)
        finally:
            self._concurrent_adds -= 1

    async def _cat(self, address: str, filename: Optional[str]) -> bytes:
        await self._delay()
        self._check_online()
        if self.fail_next_retrievals > 0:
            self.fail_next_retrievals -= 1
            raise ConnectionError("Injected retrieval failure")

        if filename:
            links = self.directories.get(address)
            if links is None or filename not in links:
                raise FileNotFoundError(f"No such file: {address[:16]}.../{filename}")
            address = links[filename]

        if address not in self.objects:
            raise FileNotFoundError(f"No such object: {address[:16]}...")
        return self.objects[address]

    async def _list_directory(self, address: str) -> List[str]:
        await self._delay()
        self._check_online()
        links = self.directories.get(address)
        if links is None:
            raise FileNotFoundError(f"No such directory: {address[:16]}...")
        return sorted(links)

    async def _pin_once(self, address: str):
        self._check_online()
        self.pin_calls.append(address)

    async def _unpin_once(self, address: str):
        self._check_online()

    async def _ping(self) -> bool:
        return self.online

    def replace_file(self, address: str, filename: str, content: bytes):
        """Overwrite a stored file in place, keeping its address (tamper simulation)."""
        target = self.directories[address][filename]
        self.objects[target] = content
