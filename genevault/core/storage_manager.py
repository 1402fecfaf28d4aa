"""
Main GeneVault storage orchestrator.

Coordinates validation, tiered encryption, compression, content-addressed
upload, caching and integrity verification. This is the primary API for
storing and retrieving genetic datasets.
"""

import asyncio
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

from pydantic import ValidationError as PydanticValidationError

from .cache import CacheStore
from .compression import CompressionAlgorithm, CompressionEngine
from .concurrency import CancellationToken, ConcurrencyLimiter, gather_in_groups
from .content_addressing import ContentAddressingEngine, canonical_json, parse_locator
from .encryption import AccessToken, DecryptedTier, EncryptedPackage, EncryptionManager
from .validation import validate_genetic_data
from ..backends import StoreAdapter, create_store_adapter
from ..config import RetrieveOptions, StorageConfig, StoreOptions
from ..errors import (
    CorruptPackageError,
    DatasetNotFoundError,
    GeneVaultError,
    IntegrityError,
    OperationCancelledError,
    RetrievalError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PACKAGE_EXTENSION = ".gvpkg"


@dataclass
class DatasetRecord:
    """Local bookkeeping for one stored dataset."""
    dataset_id: str
    content_address: str
    storage_locator: str
    access_locators: Dict[int, str]
    metadata: Dict[str, Any]
    stored_at: int                      # Unix epoch milliseconds
    access_levels: List[int]
    master_salt: Optional[str] = None   # Hex; stripped on export

    @property
    def owner_address(self) -> str:
        return self.metadata.get("owner", "anonymous")

    def to_dict(self, include_secrets: bool = True) -> Dict[str, Any]:
        encryption_info: Dict[str, Any] = {"accessLevels": list(self.access_levels)}
        if include_secrets and self.master_salt is not None:
            encryption_info["masterSalt"] = self.master_salt
        return {
            "datasetId": self.dataset_id,
            "contentAddress": self.content_address,
            "storageLocator": self.storage_locator,
            "accessLocators": {str(level): loc for level, loc in self.access_locators.items()},
            "metadata": dict(self.metadata),
            "storedAt": self.stored_at,
            "encryptionInfo": encryption_info,
        }


@dataclass
class StorageResult:
    """Outcome of storing one dataset."""
    dataset_id: str
    storage_locator: str
    content_address: str
    access_locators: Dict[int, str]
    size: int
    access_levels: List[int]
    metadata: Dict[str, Any]
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "datasetId": self.dataset_id,
            "storageLocator": self.storage_locator,
            "contentAddress": self.content_address,
            "accessLocators": {str(level): loc for level, loc in self.access_locators.items()},
            "size": self.size,
            "accessLevels": list(self.access_levels),
            "metadata": dict(self.metadata),
            "cached": self.cached,
        }


@dataclass
class RetrievalResult:
    """Decrypted tier plus provenance."""
    data: Dict[str, Any]
    access_level: int
    metadata: Dict[str, Any]
    source_locator: str
    retrieved_at: int                   # Unix epoch milliseconds
    integrity_verified: bool
    checksum: str
    tier3_reference: bool = False
    from_cache: bool = False


@dataclass
class TierReport:
    """Integrity outcome for one tier."""
    access_level: int
    accessible: bool
    integrity_verified: bool
    error: Optional[str] = None


@dataclass
class IntegrityReport:
    """Per-tier integrity outcome for a dataset."""
    dataset_id: str
    tiers: Dict[int, TierReport]
    checked_at: int

    @property
    def all_verified(self) -> bool:
        return bool(self.tiers) and all(
            report.accessible and report.integrity_verified for report in self.tiers.values()
        )


@dataclass
class BatchItemResult:
    """Outcome of one item in a batch operation."""
    index: int
    success: bool
    result: Any = None
    error: Optional[BaseException] = None


class StorageManager:
    """
    Main GeneVault storage orchestrator.

    This orchestrates all storage operations:
    - Validation and deterministic dataset ids
    - Tiered encryption (EncryptionManager)
    - Serialization and compression
    - Content-addressed upload, pinning and retrieval (StoreAdapter)
    - Result and data caches
    - Batch processing with backpressure
    - Integrity verification, export/import and access tokens

    Caches, limiter and store are plain injected objects; one orchestrator
    per event loop owns its record table and caches.
    """

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        store: Optional[StoreAdapter] = None,
        encryption_manager: Optional[EncryptionManager] = None,
        result_cache: Optional[CacheStore] = None,
        data_cache: Optional[CacheStore] = None,
        limiter: Optional[ConcurrencyLimiter] = None,
        compressor: Optional[CompressionEngine] = None,
        sleep=asyncio.sleep,
    ):
        """
        Initialize storage orchestrator.

        Args:
            config: Orchestrator configuration (defaults to StorageConfig())
            store: Content store adapter (built from config.store_backend if omitted)
            encryption_manager: Cipher engine
            result_cache: Cache of store results keyed by dataset id
            data_cache: Cache of retrieval results keyed by "address/filename|level|credential"
            limiter: Upload limiter shared with the store adapter
            compressor: Package compressor
            sleep: Pause between batch groups, injectable for tests
        """
        self.config = config or StorageConfig()

        if limiter is None:
            limiter = store.limiter if store is not None else ConcurrencyLimiter(self.config.max_concurrent_uploads)
        self.limiter = limiter
        self.store = store if store is not None else create_store_adapter(self.config, limiter, sleep=sleep)
        self.encryption = encryption_manager or EncryptionManager(self.config.encryption)
        self.compressor = compressor or CompressionEngine.from_name(
            self.config.compression_algorithm,
            enabled=self.config.compression_enabled,
        )

        # Explicit None checks: an empty CacheStore is falsy
        self.result_cache = result_cache if result_cache is not None else CacheStore(self.config.cache_size, name="results")
        self.data_cache = data_cache if data_cache is not None else CacheStore(self.config.cache_size, name="data")
        self.content_addressing = ContentAddressingEngine()
        self._sleep = sleep
        # Per-process key for credential digests in data cache keys
        self._cache_secret = secrets.token_bytes(32)

        self.records: Dict[str, DatasetRecord] = {}

        self.stats: Dict[str, int] = {
            "stores": 0,
            "store_cache_hits": 0,
            "retrievals": 0,
            "retrieval_cache_hits": 0,
            "integrity_failures": 0,
            "cancellations": 0,
            "deletions": 0,
        }

        logger.info(
            f"Initialized GeneVault storage manager "
            f"(store={self.store.name}, env={self.config.environment.value}, "
            f"compression={self.compressor.default_algorithm.value}, "
            f"cache={self.config.cache_size if self.config.cache_enabled else 'off'}, "
            f"max_uploads={self.limiter.max_concurrent})"
        )

    # ===== Store =====

    async def store_genetic_data(
        self,
        dataset: Mapping[str, Any],
        password: str,
        options: Union[StoreOptions, Mapping[str, Any], None] = None,
    ) -> StorageResult:
        """
        Encrypt and store a genetic dataset.

        Process:
        1. Validate the dataset
        2. Compute (or accept) the dataset id
        3. Short-circuit on a cached result
        4. Encrypt into access tiers
        5. Serialize and compress
        6. Upload (pinned by default)
        7. Record the dataset
        8. Cache and return the result

        Args:
            dataset: Genetic dataset
            password: Password protecting every tier
            options: owner_address, dataset_id, access_levels, custom_tiers, filename

        Returns:
            StorageResult

        Raises:
            ValidationError: If the dataset or options are invalid
            EncryptionError: If encryption fails
            UploadError: If the upload fails after retries
        """
        opts = self._parse_options(StoreOptions, options)

        # Step 1: Validate
        validate_genetic_data(dataset)
        if not isinstance(password, str) or not password:
            raise ValidationError(["password must be a non-empty string"], "Invalid password")

        # Step 2: Dataset id
        serialized = canonical_json(dataset)
        dataset_id = opts.dataset_id or self.content_addressing.generate_dataset_id(
            dataset, opts.owner_address
        )

        logger.info(f"Storing dataset {dataset_id[:16]}... ({len(serialized)} bytes)")

        access_levels = opts.access_levels if opts.access_levels is not None else self.config.access_levels

        # Step 3: Cache short-circuit (only when the same tiers were stored)
        if self.config.cache_enabled:
            cached = self.result_cache.get(dataset_id)
            if cached is not None:
                if sorted(set(access_levels)) == cached.access_levels:
                    self.stats["store_cache_hits"] += 1
                    logger.info(f"Dataset {dataset_id[:16]}... already stored (cache hit)")
                    return replace(cached, cached=True)
                logger.warning(
                    f"Dataset {dataset_id[:16]}... was stored with tiers {cached.access_levels}, "
                    f"re-storing with tiers {sorted(set(access_levels))}"
                )

        # Step 4: Encrypt
        custom_tiers = opts.custom_tiers if opts.custom_tiers is not None else self.config.custom_tiers
        package = await self.encryption.encrypt(
            dataset,
            password,
            {"access_levels": access_levels, "custom_tiers": custom_tiers},
        )

        # Step 5: Serialize and compress
        package_bytes = package.to_bytes()
        compression = self.compressor.compress(package_bytes)

        logger.info(
            f"Compressed package with {compression.algorithm.value}: "
            f"{compression.original_size} -> {compression.compressed_size} bytes "
            f"({compression.compression_ratio:.2f}x)"
        )

        # Step 6: Upload
        stored_levels = package.access_levels
        upload_metadata = {
            "datasetId": dataset_id,
            "owner": opts.owner_address,
            "accessLevels": stored_levels,
            "dataTypes": sorted(dataset.keys()),
            "checksum": package.checksum,
            "tierChecksums": {str(level): c for level, c in package.tier_checksums.items()},
            "compression": compression.algorithm.value,
            "originalSize": compression.original_size,
            "compressedSize": compression.compressed_size,
            "dataSize": len(serialized),
            "formatVersion": package.format_version,
            "tier3Reference": package.tier3_reference,
            "encryptedAt": int(time.time() * 1000),
        }
        upload = await self.store.upload(
            compression.compressed_data,
            upload_metadata,
            pin=self.config.auto_pin,
            filename=opts.filename or f"{dataset_id}{PACKAGE_EXTENSION}",
        )

        # Step 7: Record (all tiers share the package locator)
        access_locators = {level: upload.locator for level in stored_levels}
        record = DatasetRecord(
            dataset_id=dataset_id,
            content_address=upload.content_address,
            storage_locator=upload.locator,
            access_locators=access_locators,
            metadata=upload_metadata,
            stored_at=int(time.time() * 1000),
            access_levels=stored_levels,
            master_salt=package.master_salt.hex(),
        )
        self.records[dataset_id] = record

        # Step 8: Cache and return
        result = StorageResult(
            dataset_id=dataset_id,
            storage_locator=upload.locator,
            content_address=upload.content_address,
            access_locators=access_locators,
            size=upload.size,
            access_levels=stored_levels,
            metadata=upload_metadata,
        )
        if self.config.cache_enabled:
            self.result_cache.put(dataset_id, result)

        self.stats["stores"] += 1
        logger.info(
            f"Stored dataset {dataset_id[:16]}... at {upload.content_address[:16]}... "
            f"(tiers {stored_levels}, {upload.size} bytes)"
        )
        return result

    # ===== Retrieve =====

    async def retrieve_genetic_data(
        self,
        locator: str,
        password: str,
        access_level: int = 1,
        options: Union[RetrieveOptions, Mapping[str, Any], None] = None,
    ) -> RetrievalResult:
        """
        Retrieve and decrypt one tier of a stored dataset.

        Process:
        1. Check the data cache
        2. Fetch and decompress the package
        3. Decrypt the requested tier
        4. Verify integrity against upload-time checksums
        5. Cache and return the result

        Args:
            locator: Storage locator, gateway URL or bare address
            password: Dataset password
            access_level: Tier to decrypt
            options: strict_integrity, use_cache, cancel_token

        Returns:
            RetrievalResult

        Raises:
            DecryptionError: Wrong password, unavailable tier or corrupted package
            IntegrityError: If verification fails in strict mode
            TransportError: If the store could not deliver the package
            OperationCancelledError: If the cancel token fired
        """
        opts = self._parse_options(RetrieveOptions, options)
        token: Optional[CancellationToken] = opts.cancel_token
        self._check_access_level(access_level)
        use_cache = self.config.cache_enabled and opts.use_cache
        cache_key = self._data_cache_key(locator, access_level, password)

        if token is not None and token.cancelled:
            self.stats["cancellations"] += 1
            token.raise_if_cancelled()

        # Step 1: Cache
        if use_cache:
            cached = self.data_cache.get(cache_key)
            if cached is not None:
                self.stats["retrieval_cache_hits"] += 1
                logger.debug(f"Data cache hit for tier {access_level} of {locator[:40]}")
                return replace(cached, from_cache=True)

        try:
            # Step 2: Fetch
            package, upload_metadata = await self._fetch_package(locator, token)

            # Step 3: Decrypt
            decrypted = await self._guarded(token, self.encryption.decrypt(package, password, access_level))

            # Step 4: Verify
            verified, expected, actual = self._verify_tier(decrypted, upload_metadata)
            if not verified:
                self.stats["integrity_failures"] += 1
                if opts.strict_integrity:
                    raise IntegrityError(
                        f"Integrity check failed for tier {access_level} of {locator[:40]}",
                        expected=expected,
                        actual=actual,
                    )
                logger.warning(
                    f"Integrity check failed for tier {access_level} of {locator[:40]} "
                    f"(strict mode off, returning unverified data)"
                )

            if token is not None:
                token.raise_if_cancelled()
        except OperationCancelledError:
            self.stats["cancellations"] += 1
            logger.info(f"Retrieval of {locator[:40]} cancelled")
            raise

        # Step 5: Cache and return
        result = RetrievalResult(
            data=decrypted.data,
            access_level=access_level,
            metadata=decrypted.metadata,
            source_locator=locator,
            retrieved_at=int(time.time() * 1000),
            integrity_verified=verified,
            checksum=decrypted.checksum,
            tier3_reference=bool(decrypted.metadata.get("tier3Reference", package.tier3_reference)),
        )
        if use_cache:
            self.data_cache.put(cache_key, result)

        self.stats["retrievals"] += 1
        logger.info(
            f"Retrieved tier {access_level} from {locator[:40]} "
            f"(integrity_verified={verified})"
        )
        return result

    async def retrieve_with_access_token(
        self,
        locator: str,
        token: Union[AccessToken, Mapping[str, Any]],
        access_level: int,
        recipient_key_material: Optional[Union[str, bytes]] = None,
        password: Optional[str] = None,
    ) -> RetrievalResult:
        """
        Retrieve the single tier an access token grants.

        Results are never cached: they are tied to the token's validity window.
        """
        self._check_access_level(access_level)
        package, upload_metadata = await self._fetch_package(locator)
        decrypted = await self.encryption.decrypt_with_access_token(
            package, token, access_level, recipient_key_material, password
        )
        verified, expected, actual = self._verify_tier(decrypted, upload_metadata)
        if not verified:
            self.stats["integrity_failures"] += 1
            raise IntegrityError(
                f"Integrity check failed for tier {access_level} of {locator[:40]}",
                expected=expected,
                actual=actual,
            )
        return RetrievalResult(
            data=decrypted.data,
            access_level=access_level,
            metadata={},
            source_locator=locator,
            retrieved_at=int(time.time() * 1000),
            integrity_verified=verified,
            checksum=decrypted.checksum,
            tier3_reference=package.tier3_reference,
        )

    async def _fetch_package(
        self,
        locator: str,
        token: Optional[CancellationToken] = None,
    ) -> Tuple[EncryptedPackage, Optional[Dict[str, Any]]]:
        """Fetch, decompress and parse a package plus its upload metadata."""
        raw = await self._guarded(token, self.store.retrieve(locator))
        upload_metadata = await self._upload_metadata(locator, token)

        algorithm = CompressionAlgorithm.NONE
        if upload_metadata and upload_metadata.get("compression"):
            try:
                algorithm = CompressionAlgorithm(upload_metadata["compression"])
            except ValueError as e:
                raise CorruptPackageError(
                    f"Unknown compression algorithm {upload_metadata['compression']!r}"
                ) from e

        try:
            payload = self.compressor.decompress(raw, algorithm)
        except Exception as e:
            raise CorruptPackageError(f"Package could not be decompressed ({algorithm.value}): {e}") from e

        return EncryptedPackage.from_bytes(payload), upload_metadata

    async def _upload_metadata(
        self,
        locator: str,
        token: Optional[CancellationToken] = None,
    ) -> Optional[Dict[str, Any]]:
        """Upload metadata from the local record, else from the store sidecar."""
        for record in self.records.values():
            if record.storage_locator == locator:
                return record.metadata

        try:
            return await self._guarded(token, self.store.retrieve_metadata(locator))
        except RetrievalError as e:
            logger.warning(f"No upload metadata for {locator[:40]}: {e}")
            return None

    def _verify_tier(
        self,
        decrypted: DecryptedTier,
        upload_metadata: Optional[Dict[str, Any]],
    ) -> Tuple[bool, Optional[str], Optional[str]]:
        """
        Compare a decrypted tier with the checksums recorded at upload.

        Returns:
            (verified, expected, actual) for the first mismatch, or the tier
            checksums when everything matches
        """
        level = decrypted.access_level
        metadata = upload_metadata or {}

        # The package must be the one the metadata describes
        recorded_checksum = metadata.get("checksum")
        if recorded_checksum and recorded_checksum != decrypted.checksum:
            return False, recorded_checksum, decrypted.checksum

        expected = (metadata.get("tierChecksums") or {}).get(str(level)) or decrypted.tier_checksum
        actual = self.content_addressing.compute_checksum(decrypted.data)
        if expected is None or expected != actual:
            return False, expected, actual

        # A full tier 3 carries the original dataset: check it against the dataset checksum
        if "dataset" in decrypted.data and not decrypted.data.get("dataReference"):
            dataset_checksum = self.content_addressing.compute_checksum(decrypted.data["dataset"])
            if dataset_checksum != decrypted.checksum:
                return False, decrypted.checksum, dataset_checksum

        return True, expected, actual

    def _data_cache_key(self, locator: str, access_level: int, password: Any) -> str:
        """
        Cache key bound to the content, the tier and the credential.

        Locators, gateway URLs and bare addresses of the same content share a
        key prefix ("<address>/"), so a delete drops every form. The password
        only enters the key as an HMAC under a per-process secret, so a hit
        requires the same password that produced the entry.
        """
        try:
            address, filename = parse_locator(locator)
        except ValueError as e:
            raise ValidationError([str(e)], "Invalid locator") from e

        credential = password if isinstance(password, str) else repr(password)
        digest = hmac.new(self._cache_secret, credential.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{address}/{filename or ''}|{access_level}|{digest}"

    async def _guarded(self, token: Optional[CancellationToken], awaitable):
        if token is None:
            return await awaitable
        return await token.run(awaitable)

    # ===== Batch =====

    async def batch_store(
        self,
        items: Sequence[Mapping[str, Any]],
        password: Optional[str] = None,
    ) -> List[BatchItemResult]:
        """
        Store many datasets in groups of config.batch_size.

        Args:
            items: Mappings with "dataset" and optional "password" and "options"
            password: Password for items that do not carry their own

        Returns:
            Per-item outcomes in input order
        """
        indexed = list(enumerate(items))

        async def worker(entry):
            index, item = entry
            return await self.store_genetic_data(
                item["dataset"],
                item.get("password") or password,
                item.get("options"),
            )

        logger.info(f"Batch store of {len(indexed)} datasets (groups of {self.config.batch_size})")
        outcomes = await gather_in_groups(
            indexed,
            worker,
            group_size=self.config.batch_size,
            pause=self.config.batch_pause,
            return_exceptions=True,
            sleep=self._sleep,
        )
        return self._batch_results(outcomes, "store")

    async def batch_retrieve(
        self,
        requests: Sequence[Mapping[str, Any]],
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[BatchItemResult]:
        """
        Retrieve many tiers in groups of config.batch_size.

        Args:
            requests: Mappings with "locator", "password", optional "access_level"
                (default 1) and "options"
            cancel_token: Shared token; once fired, remaining items report cancellation

        Returns:
            Per-item outcomes in input order
        """
        indexed = list(enumerate(requests))

        async def worker(entry):
            index, request = entry
            options = dict(request.get("options") or {})
            if cancel_token is not None:
                options.setdefault("cancel_token", cancel_token)
            return await self.retrieve_genetic_data(
                request["locator"],
                request["password"],
                request.get("access_level", 1),
                options,
            )

        logger.info(f"Batch retrieve of {len(indexed)} tiers (groups of {self.config.batch_size})")
        outcomes = await gather_in_groups(
            indexed,
            worker,
            group_size=self.config.batch_size,
            pause=self.config.batch_pause,
            return_exceptions=True,
            sleep=self._sleep,
        )
        return self._batch_results(outcomes, "retrieve")

    def _batch_results(self, outcomes: List[Any], operation: str) -> List[BatchItemResult]:
        results: List[BatchItemResult] = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    # CancelledError and friends are not item failures
                    raise outcome
                logger.warning(f"Batch {operation} item {index} failed: {outcome}")
                results.append(BatchItemResult(index=index, success=False, error=outcome))
            else:
                results.append(BatchItemResult(index=index, success=True, result=outcome))

        failed = sum(1 for r in results if not r.success)
        logger.info(f"Batch {operation} finished: {len(results) - failed} ok, {failed} failed")
        return results

    # ===== Integrity =====

    async def verify_dataset_integrity(self, dataset_id: str, password: str) -> IntegrityReport:
        """
        Check every stored tier of a dataset independently.

        A failing tier is recorded in the report and does not stop the
        remaining tiers from being checked.

        Raises:
            DatasetNotFoundError: If the dataset is not recorded locally
        """
        record = self._get_record(dataset_id)
        reports: Dict[int, TierReport] = {}

        for level in record.access_levels:
            try:
                result = await self.retrieve_genetic_data(
                    record.access_locators.get(level, record.storage_locator),
                    password,
                    level,
                    RetrieveOptions(strict_integrity=False, use_cache=False),
                )
                reports[level] = TierReport(
                    access_level=level,
                    accessible=True,
                    integrity_verified=result.integrity_verified,
                )
            except GeneVaultError as e:
                logger.warning(f"Tier {level} of {dataset_id[:16]}... failed verification: {e}")
                reports[level] = TierReport(
                    access_level=level,
                    accessible=False,
                    integrity_verified=False,
                    error=f"{type(e).__name__}: {e}",
                )

        report = IntegrityReport(dataset_id=dataset_id, tiers=reports, checked_at=int(time.time() * 1000))
        logger.info(
            f"Integrity check of {dataset_id[:16]}...: "
            f"{'all tiers verified' if report.all_verified else 'problems found'}"
        )
        return report

    # ===== Lifecycle =====

    async def delete_dataset(self, dataset_id: str, unpin: bool = True) -> bool:
        """
        Forget a dataset, optionally unpinning it from the store.

        Raises:
            DatasetNotFoundError: If the dataset is not recorded locally
            PinError: If unpinning fails (the record is kept)
        """
        record = self._get_record(dataset_id)

        if unpin:
            await self.store.unpin(record.content_address)

        del self.records[dataset_id]
        self.result_cache.invalidate(dataset_id)
        self.data_cache.invalidate_where(lambda key: key.startswith(f"{record.content_address}/"))
        self.stats["deletions"] += 1

        logger.info(f"Deleted dataset {dataset_id[:16]}... (unpinned={unpin})")
        return True

    def export_dataset_info(self, dataset_id: str) -> Dict[str, Any]:
        """
        Sanitized copy of a dataset record (master salt stripped).

        Raises:
            DatasetNotFoundError: If the dataset is not recorded locally
        """
        record = self._get_record(dataset_id)
        info = record.to_dict(include_secrets=False)
        info["exportedAt"] = int(time.time() * 1000)
        return info

    def import_dataset_info(self, info: Mapping[str, Any]) -> str:
        """
        Recreate a local record from an exported one.

        Returns:
            The imported dataset id

        Raises:
            ValidationError: If required fields are missing
        """
        violations = [
            f"missing '{key}'"
            for key in ("datasetId", "contentAddress", "storageLocator")
            if not info.get(key)
        ]
        encryption_info = info.get("encryptionInfo") or {}
        levels = encryption_info.get("accessLevels") or (info.get("metadata") or {}).get("accessLevels")
        if not levels:
            violations.append("missing 'encryptionInfo.accessLevels'")
        if violations:
            raise ValidationError(violations, "Invalid dataset info")

        if "masterSalt" in encryption_info:
            logger.warning("Ignoring master salt in imported dataset info")

        levels = sorted(int(level) for level in levels)
        locators = {
            int(level): loc for level, loc in (info.get("accessLocators") or {}).items()
        } or {level: info["storageLocator"] for level in levels}

        record = DatasetRecord(
            dataset_id=info["datasetId"],
            content_address=info["contentAddress"],
            storage_locator=info["storageLocator"],
            access_locators=locators,
            metadata=dict(info.get("metadata") or {}),
            stored_at=int(info.get("storedAt") or time.time() * 1000),
            access_levels=levels,
        )
        self.records[record.dataset_id] = record

        logger.info(f"Imported dataset {record.dataset_id[:16]}...")
        return record.dataset_id

    async def generate_access_token(
        self,
        dataset_id: str,
        password: str,
        access_level: int,
        recipient_key_material: Optional[Union[str, bytes]] = None,
    ) -> AccessToken:
        """
        Issue a time-boxed token for one tier of a stored dataset.

        Raises:
            DatasetNotFoundError: If the dataset is not recorded locally
            AccessLevelUnavailableError: If the tier was not stored
        """
        record = self._get_record(dataset_id)
        package, _ = await self._fetch_package(record.storage_locator)
        token = await self.encryption.generate_access_key(
            package, password, access_level, recipient_key_material
        )
        logger.info(f"Issued tier {access_level} access token for {dataset_id[:16]}...")
        return token

    def list_stored_datasets(
        self,
        owner_address: Optional[str] = None,
        access_level: Optional[int] = None,
        data_types: Optional[Sequence[str]] = None,
        created_after: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Sanitized records matching every given filter.

        Args:
            owner_address: Only datasets stored by this owner
            access_level: Only datasets carrying this tier
            data_types: Only datasets containing all these top-level fields
            created_after: Only datasets stored after this epoch-ms timestamp

        Returns:
            Records, newest first
        """
        matches = []
        for record in self.records.values():
            if owner_address is not None and record.owner_address != owner_address:
                continue
            if access_level is not None and access_level not in record.access_levels:
                continue
            if data_types and not set(data_types) <= set(record.metadata.get("dataTypes", [])):
                continue
            if created_after is not None and record.stored_at <= created_after:
                continue
            matches.append(record)

        matches.sort(key=lambda r: r.stored_at, reverse=True)
        return [record.to_dict(include_secrets=False) for record in matches]

    # ===== Operations =====

    def get_storage_stats(self) -> Dict[str, Any]:
        """Totals across recorded datasets plus engine counters."""
        by_level: Dict[int, int] = {}
        for record in self.records.values():
            for level in record.access_levels:
                by_level[level] = by_level.get(level, 0) + 1

        return {
            "total_datasets": len(self.records),
            "total_stored_bytes": sum(r.metadata.get("compressedSize", 0) for r in self.records.values()),
            "total_package_bytes": sum(r.metadata.get("originalSize", 0) for r in self.records.values()),
            "datasets_by_access_level": by_level,
            "operations": dict(self.stats),
            "cache": self.get_cache_stats(),
            "compression": self.compressor.get_stats(),
            "store": self.store.get_metrics(),
        }

    async def test_connectivity(self) -> Dict[str, Any]:
        """Probe the content store."""
        connected = await self.store.test_connection()
        if not connected:
            logger.warning(f"Content store {self.store.name} is unreachable")
        return {
            "store": self.store.name,
            "connected": connected,
            "timestamp": int(time.time() * 1000),
        }

    async def cleanup(self, unpin_unused: bool = False, clear_local_records: bool = False) -> Dict[str, int]:
        """
        Clear caches and optionally release store and local state.

        Args:
            unpin_unused: Unpin content no local record refers to
            clear_local_records: Forget every dataset record

        Returns:
            Counts of what was released
        """
        unpinned = 0
        if unpin_unused:
            in_use = {record.content_address for record in self.records.values()}
            unpinned = await self.store.cleanup_pinned(exclude=in_use)

        cleared_entries = len(self.result_cache) + len(self.data_cache)
        self.clear_cache()

        cleared_records = 0
        if clear_local_records:
            cleared_records = len(self.records)
            self.records.clear()

        logger.info(
            f"Cleanup: {unpinned} unpinned, {cleared_entries} cache entries, "
            f"{cleared_records} records cleared"
        )
        return {
            "unpinned": unpinned,
            "cache_entries_cleared": cleared_entries,
            "records_cleared": cleared_records,
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.config.cache_enabled,
            "result_cache": self.result_cache.get_stats(),
            "data_cache": self.data_cache.get_stats(),
        }

    def clear_cache(self):
        """Drop every cached store and retrieval result."""
        self.result_cache.clear(reset_stats=False)
        self.data_cache.clear(reset_stats=False)

    async def close(self):
        """Close the store adapter."""
        await self.store.close()
        logger.info("Storage manager closed")

    # ===== Internal =====

    def _get_record(self, dataset_id: str) -> DatasetRecord:
        record = self.records.get(dataset_id)
        if record is None:
            raise DatasetNotFoundError(dataset_id)
        return record

    @staticmethod
    def _check_access_level(access_level: Any):
        if isinstance(access_level, bool) or not isinstance(access_level, int) or access_level < 1:
            raise ValidationError(
                [f"access_level must be a positive integer, got {access_level!r}"],
                "Invalid access level",
            )

    @staticmethod
    def _parse_options(model, options):
        if isinstance(options, model):
            return options
        try:
            return model(**dict(options or {}))
        except PydanticValidationError as e:
            violations = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ValidationError(violations, f"Invalid {model.__name__}") from e
