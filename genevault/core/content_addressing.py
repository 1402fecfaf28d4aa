"""
Content addressing for genetic datasets.

Checksums and dataset identifiers are computed over a canonical JSON
serialization so that the same record always hashes the same way, no matter
how its keys were ordered when it was built. Storage locators follow the
``ipfs://<address>/<filename>`` format and are bounded to 256 characters.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

LOCATOR_SCHEME = "ipfs://"
MAX_LOCATOR_LENGTH = 256          # Registry contract limit for storage URLs
TRUNCATION_MARKER = "..."


def canonical_json(data: Any) -> bytes:
    """
    Serialize a record to canonical JSON bytes.

    Keys are sorted and separators are compact, so two equal records always
    produce identical bytes.

    Raises:
        TypeError: If the record holds values JSON cannot represent
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


@dataclass(frozen=True)
class ContentID:
    """Content identifier (hash of canonical data)."""
    hash_algorithm: str  # e.g., "sha256"
    hash_value: bytes    # Binary hash

    @property
    def hex(self) -> str:
        """Get hex representation of hash."""
        return self.hash_value.hex()

    def __str__(self) -> str:
        return self.hex

    def __repr__(self) -> str:
        return f"ContentID({self.hash_algorithm}:{self.hex[:16]}...)"


class ContentAddressingEngine:
    """
    Hash-based identity for datasets and tier payloads.

    Provides:
    - Checksums of the original plaintext (integrity after decryption)
    - Deterministic dataset ids bound to the owner identity
    - Verification of decrypted payloads against recorded checksums
    """

    def __init__(self, hash_algorithm: str = "sha256"):
        """
        Initialize content addressing engine.

        Args:
            hash_algorithm: Hash algorithm to use (sha256, sha3_256, blake2b, sha512)
        """
        self.hash_algorithm = hash_algorithm

        self.hash_functions = {
            "sha256": hashlib.sha256,
            "sha3_256": hashlib.sha3_256,
            "blake2b": hashlib.blake2b,
            "sha512": hashlib.sha512,
        }

        if hash_algorithm not in self.hash_functions:
            raise ValueError(f"Unsupported hash algorithm: {hash_algorithm}")

    def compute_content_id(self, data: bytes) -> ContentID:
        """
        Compute content ID for raw bytes.

        Args:
            data: Raw data bytes

        Returns:
            ContentID with cryptographic hash
        """
        hash_func = self.hash_functions[self.hash_algorithm]
        return ContentID(
            hash_algorithm=self.hash_algorithm,
            hash_value=hash_func(data).digest(),
        )

    def compute_checksum(self, record: Any) -> str:
        """
        Checksum of a structured record (hex digest of its canonical JSON).

        Args:
            record: Any JSON-serializable value

        Returns:
            Hex digest
        """
        return self.compute_content_id(canonical_json(record)).hex

    def verify_checksum(self, record: Any, expected_checksum: str) -> bool:
        """
        Verify a record matches a previously computed checksum.

        Args:
            record: Decrypted record
            expected_checksum: Checksum recorded before encryption

        Returns:
            True if the record is intact
        """
        return self.compute_checksum(record) == expected_checksum

    def generate_dataset_id(self, dataset: Any, owner: str) -> str:
        """
        Deterministic dataset identifier.

        Same content + same owner gives the same id; byte-identical content
        stored by different owners gives different ids because the owner is
        part of the hash input.

        Args:
            dataset: Genetic dataset record
            owner: Owner identity (wallet address or "anonymous")

        Returns:
            Hex dataset id
        """
        payload = owner.encode("utf-8") + b":" + canonical_json(dataset)
        return self.compute_content_id(payload).hex


# ===== Locators =====

def build_locator(address: str, filename: Optional[str] = None) -> str:
    """
    Build a storage locator bounded to MAX_LOCATOR_LENGTH characters.

    When the natural locator is too long, the filename is cut and suffixed
    with TRUNCATION_MARKER so the result is deterministic and visibly
    truncated.

    Args:
        address: Content address (directory CID)
        filename: Optional file inside the directory

    Returns:
        Locator string

    Raises:
        ValueError: If the address alone cannot fit in a locator
    """
    prefix = f"{LOCATOR_SCHEME}{address}"
    if not filename:
        if len(prefix) > MAX_LOCATOR_LENGTH:
            raise ValueError(f"Content address too long for a locator ({len(address)} chars)")
        return prefix

    locator = f"{prefix}/{filename}"
    if len(locator) <= MAX_LOCATOR_LENGTH:
        return locator

    budget = MAX_LOCATOR_LENGTH - len(prefix) - 1 - len(TRUNCATION_MARKER)
    if budget < 1:
        raise ValueError(f"Content address too long for a locator ({len(address)} chars)")

    truncated = f"{prefix}/{filename[:budget]}{TRUNCATION_MARKER}"
    logger.debug(f"Truncated locator filename {filename[:16]}... to {budget} chars")
    return truncated


def parse_locator(locator: str) -> Tuple[str, Optional[str]]:
    """
    Split a locator, gateway URL or bare address into (address, filename).

    Accepted forms:
        ipfs://<address>/<filename>
        https://<gateway>/ipfs/<address>/<filename>
        <address>/<filename>
        <address>

    Returns:
        Tuple of content address and filename (None when absent)
    """
    if not locator:
        raise ValueError("Empty locator")

    if locator.startswith(LOCATOR_SCHEME):
        path = locator[len(LOCATOR_SCHEME):]
    elif "/ipfs/" in locator:
        path = locator.split("/ipfs/", 1)[1]
    else:
        path = locator

    address, _, filename = path.partition("/")
    if not address:
        raise ValueError(f"No content address in locator: {locator}")
    return address, (filename or None)


def is_truncated(filename: Optional[str]) -> bool:
    """True if a locator filename was shortened by build_locator."""
    return bool(filename) and filename.endswith(TRUNCATION_MARKER)


def create_gateway_url(
    address: str,
    filename: Optional[str] = None,
    gateway: str = "https://ipfs.io"
) -> str:
    """
    Shareable HTTP gateway URL for content.

    Args:
        address: Content address or locator
        filename: Optional file inside the directory
        gateway: Gateway base URL

    Returns:
        Gateway URL
    """
    clean_address, locator_filename = parse_locator(address)
    name = filename or locator_filename
    base = f"{gateway.rstrip('/')}/ipfs/{clean_address}"
    return f"{base}/{name}" if name else base
