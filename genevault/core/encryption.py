"""
Tiered encryption engine.

One dataset and one password become a package of independently decryptable
access tiers:

    password --PBKDF2-HMAC-SHA512--> master key
    master key + tier salt --HKDF-SHA512--> tier key (AES-128/192/256-GCM by tier)
    master key + master salt --HKDF-SHA512--> metadata key

Each tier key is also stored encrypted under the master key (the access key
record), so the password holder can open every tier while an access token
holder only ever learns a single tier key. Tier keys are one-way derived, so
a tier key never reveals the master key or a sibling tier.

All key derivation parameters travel with the package in the clear ``kdf``
block, so a package stays decryptable after the configured defaults change.
"""

import asyncio
import json
import math
import os
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union
import logging

import msgpack
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError as PydanticValidationError

from .content_addressing import ContentAddressingEngine, canonical_json
from .tiers import TierBuilder
from .validation import validate_genetic_data
from ..config import AccessConfig, EncryptionConfig
from ..errors import (
    AccessLevelUnavailableError,
    AccessTokenExpiredError,
    CorruptPackageError,
    EncryptionError,
    ValidationError,
    WrongPasswordError,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"
TAG_LENGTH = 16
MASTER_KEY_LENGTH = 32

ALGORITHM_KEY_SIZES = {
    "aes-128-gcm": 16,
    "aes-192-gcm": 24,
    "aes-256-gcm": 32,
}

# Security/performance gradient: lower tiers use faster, shorter keys
TIER_ALGORITHMS = {
    1: "aes-128-gcm",
    2: "aes-192-gcm",
    3: "aes-256-gcm",
}

PASSWORD_SYMBOLS = "!@#$%^&*()-_=+[]{}:,.?"


def tier_algorithm(level: int) -> str:
    """Cipher used for a tier (custom levels above 3 get the strongest)."""
    return TIER_ALGORITHMS.get(level, "aes-256-gcm")


# ===== Primitives =====

def derive_master_key(password: str, salt: bytes, iterations: int, length: int = MASTER_KEY_LENGTH) -> bytes:
    """PBKDF2-HMAC-SHA512 master key. CPU-bound, run it in a worker thread."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def derive_subkey(key: bytes, salt: bytes, info: str, length: int) -> bytes:
    """HKDF-SHA512 subkey bound to a purpose label."""
    hkdf = HKDF(
        algorithm=hashes.SHA512(),
        length=length,
        salt=salt,
        info=info.encode("utf-8"),
    )
    return hkdf.derive(key)


def seal(key: bytes, plaintext: bytes, iv_length: int, associated_data: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    AES-GCM encrypt with a fresh random IV.

    Returns:
        Tuple of (iv, auth tag, ciphertext)
    """
    iv = os.urandom(iv_length)
    sealed = AESGCM(key).encrypt(iv, plaintext, associated_data)
    return iv, sealed[-TAG_LENGTH:], sealed[:-TAG_LENGTH]


def open_sealed(key: bytes, iv: bytes, tag: bytes, ciphertext: bytes, associated_data: bytes) -> bytes:
    """
    AES-GCM decrypt.

    Raises:
        InvalidTag: If the key is wrong or any byte was altered
    """
    return AESGCM(key).decrypt(iv, ciphertext + tag, associated_data)


# ===== Data structures =====

@dataclass
class EncryptedPackage:
    """
    Unit persisted to the content store.

    Attributes:
        tiers: Level -> envelope {ciphertext, iv, authTag, algorithm, salt}
        metadata: Encrypted metadata envelope
        master_salt: Salt of the master key (not a secret)
        checksum: SHA-256 of the canonical original dataset
        access_keys: Level -> {encryptedKey, salt}, encryptedKey = iv || tag || ct
        kdf: Clear key derivation parameters
        tier_checksums: Level -> SHA-256 of the tier's canonical plaintext
        format_version: Package layout version
        tier3_reference: Tier 3 holds a reference descriptor instead of the dataset
    """
    tiers: Dict[int, Dict[str, Any]]
    metadata: Dict[str, Any]
    master_salt: bytes
    checksum: str
    access_keys: Dict[int, Dict[str, Any]]
    kdf: Dict[str, Any]
    tier_checksums: Dict[int, str] = field(default_factory=dict)
    format_version: str = FORMAT_VERSION
    tier3_reference: bool = False

    @property
    def access_levels(self):
        """Levels carried by the package (from the clear tier table)."""
        return sorted(self.tiers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formatVersion": self.format_version,
            "tiers": self.tiers,
            "metadata": self.metadata,
            "masterSalt": self.master_salt,
            "checksum": self.checksum,
            "accessKeys": self.access_keys,
            "kdf": self.kdf,
            "tierChecksums": self.tier_checksums,
            "tier3Reference": self.tier3_reference,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EncryptedPackage":
        """
        Rebuild a package from its dict form.

        Raises:
            CorruptPackageError: If required fields are missing or mistyped
        """
        try:
            package = cls(
                tiers={int(level): dict(env) for level, env in data["tiers"].items()},
                metadata=dict(data["metadata"]),
                master_salt=bytes(data["masterSalt"]),
                checksum=str(data["checksum"]),
                access_keys={int(level): dict(rec) for level, rec in data["accessKeys"].items()},
                kdf=dict(data["kdf"]),
                tier_checksums={int(level): str(c) for level, c in (data.get("tierChecksums") or {}).items()},
                format_version=str(data.get("formatVersion", FORMAT_VERSION)),
                tier3_reference=bool(data.get("tier3Reference", False)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptPackageError(f"Malformed encrypted package: {e}") from e

        for name in ("iterations", "keyLength"):
            if not isinstance(package.kdf.get(name), int):
                raise CorruptPackageError(f"Malformed encrypted package: kdf.{name} missing")
        return package

    def to_bytes(self) -> bytes:
        """msgpack wire format (binary fields stay binary)."""
        return msgpack.packb(self.to_dict(), use_bin_type=True)

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedPackage":
        """
        Parse the msgpack wire format.

        Raises:
            CorruptPackageError: If the bytes are not a package
        """
        try:
            raw = msgpack.unpackb(data, raw=False, strict_map_key=False)
        except (ValueError, TypeError, msgpack.UnpackException) as e:
            raise CorruptPackageError(f"Encrypted package could not be parsed: {e}") from e
        if not isinstance(raw, dict):
            raise CorruptPackageError("Encrypted package could not be parsed: not a map")
        return cls.from_dict(raw)


@dataclass
class DecryptedTier:
    """Plaintext of one tier plus what is known about its origin."""
    data: Dict[str, Any]
    access_level: int
    metadata: Dict[str, Any]
    checksum: str                    # Original dataset checksum
    tier_checksum: Optional[str]     # Checksum of this tier's plaintext at encryption time

    @property
    def data_reference(self) -> bool:
        """True when tier 3 holds a reference descriptor instead of the dataset."""
        return bool(self.data.get("dataReference"))


@dataclass
class AccessToken:
    """
    Time-boxed grant to decrypt exactly one tier.

    The envelope wraps {accessLevel, tierSalt, algorithm, validUntil, nonce,
    tierKey}; it is opened with the recipient's key material or, for
    self-encrypted tokens, with the package password.
    """
    access_level: int
    valid_until: int                 # Unix epoch milliseconds
    recipient_bound: bool
    envelope: Dict[str, Any]

    @property
    def expired(self) -> bool:
        return int(time.time() * 1000) >= self.valid_until

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe form (binary fields hex encoded)."""
        return {
            "accessLevel": self.access_level,
            "validUntil": self.valid_until,
            "recipientBound": self.recipient_bound,
            "envelope": {
                key: value.hex() if isinstance(value, bytes) else value
                for key, value in self.envelope.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AccessToken":
        """
        Rebuild a token from its JSON-safe form.

        Raises:
            ValidationError: If required fields are missing or mistyped
        """
        try:
            envelope = dict(data["envelope"])
            for key in ("ciphertext", "iv", "authTag", "salt"):
                if isinstance(envelope.get(key), str):
                    envelope[key] = bytes.fromhex(envelope[key])
            return cls(
                access_level=int(data["accessLevel"]),
                valid_until=int(data["validUntil"]),
                recipient_bound=bool(data["recipientBound"]),
                envelope=envelope,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ValidationError([f"{type(e).__name__}: {e}"], "Malformed access token") from e


PackageLike = Union[EncryptedPackage, Mapping[str, Any], bytes]


# ===== Engine =====

class EncryptionManager:
    """
    Multi-tier encryption engine.

    Provides:
    - encrypt: dataset + password -> EncryptedPackage
    - decrypt: one tier with the password
    - generate_access_key / decrypt_with_access_token: single-tier grants
    - verify_integrity and password helpers

    Key derivation and AES work run in worker threads so concurrent
    operations on the event loop are not blocked.
    """

    def __init__(self, config: Optional[EncryptionConfig] = None):
        """
        Initialize encryption engine.

        Args:
            config: Cipher configuration (defaults to EncryptionConfig())
        """
        self.config = config or EncryptionConfig()
        self.content_addressing = ContentAddressingEngine()
        self.tier_builder = TierBuilder(
            large_dataset_threshold=self.config.large_dataset_threshold,
            chunk_size=self.config.chunk_size,
            full_tier_reference_threshold=self.config.full_tier_reference_threshold,
        )

        logger.info(
            f"Initialized encryption engine "
            f"(kdf=pbkdf2-sha512, iterations={self.config.key_derivation_iterations})"
        )

    # ----- encrypt -----

    async def encrypt(
        self,
        dataset: Mapping[str, Any],
        password: str,
        access_config: Union[AccessConfig, Mapping[str, Any], None] = None,
    ) -> EncryptedPackage:
        """
        Encrypt a dataset into access tiers.

        Process:
        1. Partition the dataset into tier payloads
        2. Derive the master key from a fresh master salt
        3. Encrypt every requested tier in parallel
        4. Encrypt the metadata envelope
        5. Checksum the original dataset

        Args:
            dataset: Genetic dataset
            password: Non-empty password
            access_config: Levels to build and optional custom tier payloads

        Returns:
            EncryptedPackage holding every requested tier

        Raises:
            ValidationError: If the access configuration is invalid
            EncryptionError: If the dataset is malformed or encryption fails
        """
        access = self.resolve_access_config(access_config)
        if not isinstance(password, str) or not password:
            raise ValidationError(["password must be a non-empty string"], "Invalid password")

        try:
            return await self._encrypt(dataset, password, access)
        except ValidationError as e:
            raise EncryptionError(f"Dataset failed validation: {e}") from e
        except EncryptionError:
            raise
        except Exception as e:
            logger.error(f"Encryption failed: {e}")
            raise EncryptionError(f"Encryption failed: {e}") from e

    async def _encrypt(self, dataset, password: str, access: AccessConfig) -> EncryptedPackage:
        cfg = self.config
        start = time.perf_counter()

        # Step 1: Partition
        validate_genetic_data(dataset)
        serialized = canonical_json(dataset)
        data_size = len(serialized)
        tier_payloads = await self.tier_builder.build(
            dataset,
            data_size,
            access.access_levels,
            access.custom_tiers,
        )

        # Step 2: Master key
        master_salt = os.urandom(cfg.salt_length)
        master_key = await asyncio.to_thread(
            derive_master_key, password, master_salt, cfg.key_derivation_iterations
        )

        # Step 3: Tiers in parallel (joined before packaging)
        sealed = await asyncio.gather(*(
            asyncio.to_thread(self._seal_tier, level, payload, master_key)
            for level, payload in tier_payloads.items()
        ))

        tiers: Dict[int, Dict[str, Any]] = {}
        access_keys: Dict[int, Dict[str, Any]] = {}
        tier_checksums: Dict[int, str] = {}
        for level, envelope, key_record, tier_checksum in sealed:
            tiers[level] = envelope
            access_keys[level] = key_record
            tier_checksums[level] = tier_checksum

        # Step 4: Metadata
        tier3_reference = 3 in tier_payloads and bool(tier_payloads[3].get("dataReference"))
        metadata_plain = {
            "version": FORMAT_VERSION,
            "timestamp": int(time.time() * 1000),
            "accessLevels": sorted(tiers),
            "algorithm": cfg.algorithm,
            "tierAlgorithms": {str(level): env["algorithm"] for level, env in tiers.items()},
            "keyDerivation": "pbkdf2-hmac-sha512",
            "iterations": cfg.key_derivation_iterations,
            "dataSize": data_size,
            "tier3Reference": tier3_reference,
        }
        metadata_envelope = self._seal_metadata(metadata_plain, master_key, master_salt)

        # Step 5: Checksum of the original dataset
        checksum = self.content_addressing.compute_content_id(serialized).hex

        package = EncryptedPackage(
            tiers=tiers,
            metadata=metadata_envelope,
            master_salt=master_salt,
            checksum=checksum,
            access_keys=access_keys,
            kdf=self._kdf_params(),
            tier_checksums=tier_checksums,
            tier3_reference=tier3_reference,
        )

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Encrypted dataset {checksum[:16]}... into tiers {sorted(tiers)} "
            f"({data_size} bytes, {elapsed_ms:.0f}ms)"
        )
        return package

    def _seal_tier(self, level: int, payload: Dict[str, Any], master_key: bytes):
        """Encrypt one tier and its key record. Runs in a worker thread."""
        cfg = self.config
        algorithm = tier_algorithm(level)
        plaintext = canonical_json(payload)

        tier_salt = os.urandom(cfg.salt_length)
        tier_key = derive_subkey(
            master_key, tier_salt, f"genevault-tier-{level}", ALGORITHM_KEY_SIZES[algorithm]
        )

        iv, tag, ciphertext = seal(tier_key, plaintext, cfg.iv_length, f"tier:{level}".encode())
        envelope = {
            "ciphertext": ciphertext,
            "iv": iv,
            "authTag": tag,
            "algorithm": algorithm,
            "salt": tier_salt,
        }

        key_iv, key_tag, key_ct = seal(master_key, tier_key, cfg.iv_length, f"access-key:{level}".encode())
        key_record = {
            "encryptedKey": key_iv + key_tag + key_ct,
            "salt": tier_salt,
        }

        tier_checksum = self.content_addressing.compute_content_id(plaintext).hex
        return level, envelope, key_record, tier_checksum

    def _seal_metadata(self, metadata: Dict[str, Any], master_key: bytes, master_salt: bytes) -> Dict[str, Any]:
        metadata_key = derive_subkey(master_key, master_salt, "genevault-metadata", MASTER_KEY_LENGTH)
        iv, tag, ciphertext = seal(metadata_key, canonical_json(metadata), self.config.iv_length, b"metadata")
        return {
            "ciphertext": ciphertext,
            "iv": iv,
            "authTag": tag,
            "algorithm": "aes-256-gcm",
            "salt": master_salt,
        }

    def _kdf_params(self) -> Dict[str, Any]:
        cfg = self.config
        return {
            "algorithm": "pbkdf2",
            "hash": "sha512",
            "iterations": cfg.key_derivation_iterations,
            "keyLength": MASTER_KEY_LENGTH,
            "saltLength": cfg.salt_length,
            "ivLength": cfg.iv_length,
            "tagLength": TAG_LENGTH,
            "subkeyDerivation": "hkdf-sha512",
        }

    # ----- decrypt -----

    async def decrypt(self, package: PackageLike, password: str, access_level: int) -> DecryptedTier:
        """
        Decrypt one tier with the package password.

        Args:
            package: EncryptedPackage, its dict form or its msgpack bytes
            password: Password used at encryption time
            access_level: Tier to open

        Returns:
            DecryptedTier

        Raises:
            WrongPasswordError: If the password does not open the metadata
            AccessLevelUnavailableError: If the tier is not in the package
            CorruptPackageError: If the package is malformed or a tier was tampered with
        """
        if not isinstance(password, str) or not password:
            raise ValidationError(["password must be a non-empty string"], "Invalid password")

        pkg = self.coerce_package(package)
        master_key = await self._derive_package_key(pkg, password)
        metadata = self._open_metadata(pkg, master_key)

        available = metadata.get("accessLevels", [])
        if access_level not in available or access_level not in pkg.tiers:
            raise AccessLevelUnavailableError(access_level, available)

        tier_key = self._recover_tier_key(pkg, access_level, master_key)
        data = await asyncio.to_thread(self._open_tier, pkg, access_level, tier_key)

        logger.debug(f"Decrypted tier {access_level} of {pkg.checksum[:16]}...")
        return DecryptedTier(
            data=data,
            access_level=access_level,
            metadata=metadata,
            checksum=pkg.checksum,
            tier_checksum=pkg.tier_checksums.get(access_level),
        )

    def coerce_package(self, package: PackageLike) -> EncryptedPackage:
        """Accept a package object, its dict form or its wire bytes."""
        if isinstance(package, EncryptedPackage):
            return package
        if isinstance(package, (bytes, bytearray, memoryview)):
            return EncryptedPackage.from_bytes(bytes(package))
        if isinstance(package, Mapping):
            return EncryptedPackage.from_dict(package)
        raise CorruptPackageError(f"Unsupported package type: {type(package).__name__}")

    async def _derive_package_key(self, pkg: EncryptedPackage, password: str) -> bytes:
        # The package's own parameters, never the current configuration
        return await asyncio.to_thread(
            derive_master_key,
            password,
            pkg.master_salt,
            pkg.kdf["iterations"],
            pkg.kdf["keyLength"],
        )

    def _open_metadata(self, pkg: EncryptedPackage, master_key: bytes) -> Dict[str, Any]:
        envelope = pkg.metadata
        try:
            metadata_key = derive_subkey(master_key, pkg.master_salt, "genevault-metadata", MASTER_KEY_LENGTH)
            plaintext = open_sealed(
                metadata_key, envelope["iv"], envelope["authTag"], envelope["ciphertext"], b"metadata"
            )
        except InvalidTag:
            raise WrongPasswordError("Wrong password: package metadata failed authentication")
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptPackageError(f"Malformed metadata envelope: {e}") from e

        try:
            return json.loads(plaintext)
        except ValueError as e:
            raise CorruptPackageError(f"Metadata is not valid JSON: {e}") from e

    def _recover_tier_key(self, pkg: EncryptedPackage, level: int, master_key: bytes) -> bytes:
        record = pkg.access_keys.get(level)
        if record is None:
            raise CorruptPackageError(f"No access key record for tier {level}")

        iv_length = pkg.kdf.get("ivLength", self.config.iv_length)
        tag_length = pkg.kdf.get("tagLength", TAG_LENGTH)
        blob = record.get("encryptedKey", b"")
        iv = blob[:iv_length]
        tag = blob[iv_length:iv_length + tag_length]
        ciphertext = blob[iv_length + tag_length:]

        try:
            return open_sealed(master_key, iv, tag, ciphertext, f"access-key:{level}".encode())
        except (InvalidTag, ValueError) as e:
            raise CorruptPackageError(f"Access key record for tier {level} failed authentication") from e

    def _open_tier(self, pkg: EncryptedPackage, level: int, tier_key: bytes) -> Dict[str, Any]:
        envelope = pkg.tiers[level]
        algorithm = envelope.get("algorithm")
        if ALGORITHM_KEY_SIZES.get(algorithm) != len(tier_key):
            raise CorruptPackageError(
                f"Tier {level} key size does not match algorithm {algorithm}"
            )

        try:
            plaintext = open_sealed(
                tier_key, envelope["iv"], envelope["authTag"], envelope["ciphertext"], f"tier:{level}".encode()
            )
        except InvalidTag as e:
            raise CorruptPackageError(f"Tier {level} failed authentication (tampered or wrong key)") from e
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptPackageError(f"Malformed tier {level} envelope: {e}") from e

        try:
            return json.loads(plaintext)
        except ValueError as e:
            raise CorruptPackageError(f"Tier {level} plaintext is not valid JSON: {e}") from e

    def decrypt_tier_with_key(self, package: PackageLike, access_level: int, tier_key: bytes) -> Dict[str, Any]:
        """
        Open one tier directly with its tier key.

        Raises:
            AccessLevelUnavailableError: If the tier is not in the package
            CorruptPackageError: If the key does not open the tier
        """
        pkg = self.coerce_package(package)
        if access_level not in pkg.tiers:
            raise AccessLevelUnavailableError(access_level, pkg.access_levels)
        return self._open_tier(pkg, access_level, tier_key)

    # ----- access tokens -----

    async def generate_access_key(
        self,
        package: PackageLike,
        password: str,
        access_level: int,
        recipient_key_material: Optional[Union[str, bytes]] = None,
    ) -> AccessToken:
        """
        Create a time-boxed token that opens exactly one tier.

        Args:
            package: Encrypted package
            password: Package password (proves the caller may grant access)
            access_level: Tier to grant
            recipient_key_material: Binds the token to a recipient when given;
                otherwise the token is self-encrypted under the password

        Returns:
            AccessToken

        Raises:
            WrongPasswordError: If the password does not open the package
            AccessLevelUnavailableError: If the tier is not in the package
        """
        if not isinstance(password, str) or not password:
            raise ValidationError(["password must be a non-empty string"], "Invalid password")

        pkg = self.coerce_package(package)
        master_key = await self._derive_package_key(pkg, password)
        metadata = self._open_metadata(pkg, master_key)

        available = metadata.get("accessLevels", [])
        if access_level not in available or access_level not in pkg.tiers:
            raise AccessLevelUnavailableError(access_level, available)

        tier_key = self._recover_tier_key(pkg, access_level, master_key)
        envelope = pkg.tiers[access_level]
        valid_until = int((time.time() + self.config.token_validity_seconds) * 1000)

        token_payload = {
            "accessLevel": access_level,
            "tierSalt": envelope["salt"].hex(),
            "algorithm": envelope["algorithm"],
            "validUntil": valid_until,
            "nonce": secrets.token_hex(16),
            "tierKey": tier_key.hex(),
        }

        token_salt = os.urandom(self.config.salt_length)
        wrap_key = await self._token_key(
            pkg, access_level, token_salt, recipient_key_material, master_key=master_key
        )
        iv, tag, ciphertext = seal(
            wrap_key, canonical_json(token_payload), self.config.iv_length,
            f"access-token:{access_level}".encode()
        )

        logger.info(
            f"Generated access token for tier {access_level} of {pkg.checksum[:16]}... "
            f"(recipient_bound={recipient_key_material is not None})"
        )

        return AccessToken(
            access_level=access_level,
            valid_until=valid_until,
            recipient_bound=recipient_key_material is not None,
            envelope={
                "ciphertext": ciphertext,
                "iv": iv,
                "authTag": tag,
                "algorithm": "aes-256-gcm",
                "salt": token_salt,
            },
        )

    async def _token_key(
        self,
        pkg: EncryptedPackage,
        access_level: int,
        token_salt: bytes,
        recipient_key_material: Optional[Union[str, bytes]] = None,
        master_key: Optional[bytes] = None,
        password: Optional[str] = None,
    ) -> bytes:
        if recipient_key_material is not None:
            material = (
                recipient_key_material.hex()
                if isinstance(recipient_key_material, bytes)
                else recipient_key_material
            )
            return await asyncio.to_thread(
                derive_master_key, material, token_salt, pkg.kdf["iterations"]
            )

        if master_key is None:
            if not password:
                raise ValidationError(
                    ["a self-encrypted token needs the package password"], "Cannot open access token"
                )
            master_key = await self._derive_package_key(pkg, password)

        return derive_subkey(master_key, token_salt, f"genevault-access-token-{access_level}", MASTER_KEY_LENGTH)

    async def open_access_token(
        self,
        package: PackageLike,
        token: Union[AccessToken, Mapping[str, Any]],
        recipient_key_material: Optional[Union[str, bytes]] = None,
        password: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Decrypt a token's payload and check its validity window.

        Raises:
            WrongPasswordError: If the key material does not open the token
            AccessTokenExpiredError: If the token is past its validity window
        """
        pkg = self.coerce_package(package)
        if not isinstance(token, AccessToken):
            token = AccessToken.from_dict(token)

        if token.recipient_bound and recipient_key_material is None:
            raise ValidationError(
                ["token is bound to a recipient; recipient key material is required"],
                "Cannot open access token",
            )

        envelope = token.envelope
        wrap_key = await self._token_key(
            pkg,
            token.access_level,
            envelope["salt"],
            recipient_key_material if token.recipient_bound else None,
            password=password,
        )
        try:
            plaintext = open_sealed(
                wrap_key, envelope["iv"], envelope["authTag"], envelope["ciphertext"],
                f"access-token:{token.access_level}".encode()
            )
        except InvalidTag:
            raise WrongPasswordError("Access token cannot be opened with the supplied key material")

        payload = json.loads(plaintext)
        if int(time.time() * 1000) >= payload["validUntil"]:
            raise AccessTokenExpiredError(
                f"Access token for tier {payload['accessLevel']} expired"
            )
        return payload

    async def decrypt_with_access_token(
        self,
        package: PackageLike,
        token: Union[AccessToken, Mapping[str, Any]],
        access_level: int,
        recipient_key_material: Optional[Union[str, bytes]] = None,
        password: Optional[str] = None,
    ) -> DecryptedTier:
        """
        Decrypt the single tier an access token grants.

        Args:
            package: Encrypted package
            token: AccessToken or its dict form
            access_level: Tier to open (must equal the token's level)
            recipient_key_material: Key material for recipient-bound tokens
            password: Package password for self-encrypted tokens

        Returns:
            DecryptedTier (metadata stays sealed, it needs the master key)

        Raises:
            AccessTokenExpiredError: If the token expired
            AccessLevelUnavailableError: If the token grants a different tier
            CorruptPackageError: If the token does not belong to this package
        """
        pkg = self.coerce_package(package)
        payload = await self.open_access_token(pkg, token, recipient_key_material, password)

        granted = payload["accessLevel"]
        if granted != access_level:
            raise AccessLevelUnavailableError(access_level, [granted])
        if access_level not in pkg.tiers:
            raise AccessLevelUnavailableError(access_level, pkg.access_levels)
        if pkg.tiers[access_level]["salt"].hex() != payload["tierSalt"]:
            raise CorruptPackageError("Access token was not issued for this package")

        tier_key = bytes.fromhex(payload["tierKey"])
        data = await asyncio.to_thread(self._open_tier, pkg, access_level, tier_key)

        return DecryptedTier(
            data=data,
            access_level=access_level,
            metadata={},
            checksum=pkg.checksum,
            tier_checksum=pkg.tier_checksums.get(access_level),
        )

    # ----- helpers -----

    def resolve_access_config(
        self,
        access_config: Union[AccessConfig, Mapping[str, Any], None],
    ) -> AccessConfig:
        """
        Normalize an access configuration.

        Raises:
            ValidationError: If levels or custom tiers are invalid
        """
        if isinstance(access_config, AccessConfig):
            return access_config
        try:
            return AccessConfig(**dict(access_config or {}))
        except PydanticValidationError as e:
            violations = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ValidationError(violations, "Invalid access configuration") from e

    def verify_integrity(self, data: Any, expected_checksum: str) -> bool:
        """
        Compare data against a checksum.

        Args:
            data: Raw bytes or a JSON-serializable record
            expected_checksum: Hex SHA-256

        Returns:
            True if they match
        """
        if isinstance(data, (bytes, bytearray)):
            actual = self.content_addressing.compute_content_id(bytes(data)).hex
        else:
            actual = self.content_addressing.compute_checksum(data)
        return secrets.compare_digest(actual, expected_checksum)

    @staticmethod
    def generate_secure_password(length: int = 32) -> str:
        """
        Random password containing every character class.

        Args:
            length: Password length (minimum 8)
        """
        if length < 8:
            raise ValueError(f"Password length must be at least 8, got {length}")

        classes = [string.ascii_lowercase, string.ascii_uppercase, string.digits, PASSWORD_SYMBOLS]
        alphabet = "".join(classes)
        chars = [secrets.choice(c) for c in classes]
        chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]

        # Shuffle so the guaranteed characters are not always first
        for i in range(len(chars) - 1, 0, -1):
            j = secrets.randbelow(i + 1)
            chars[i], chars[j] = chars[j], chars[i]
        return "".join(chars)

    @staticmethod
    def analyze_password_strength(password: str) -> Dict[str, Any]:
        """
        Estimate password strength from length and character classes.

        Returns:
            Dict with length, character class flags, entropy_bits and strength
            (very_weak, weak, medium, strong, very_strong)
        """
        has_lower = any(c.islower() for c in password)
        has_upper = any(c.isupper() for c in password)
        has_digits = any(c.isdigit() for c in password)
        has_symbols = any(not c.isalnum() for c in password)

        charset = 0
        if has_lower:
            charset += 26
        if has_upper:
            charset += 26
        if has_digits:
            charset += 10
        if has_symbols:
            charset += 32

        entropy = len(password) * math.log2(charset) if charset else 0.0

        if entropy < 28:
            strength = "very_weak"
        elif entropy < 36:
            strength = "weak"
        elif entropy < 60:
            strength = "medium"
        elif entropy < 128:
            strength = "strong"
        else:
            strength = "very_strong"

        return {
            "length": len(password),
            "has_lowercase": has_lower,
            "has_uppercase": has_upper,
            "has_digits": has_digits,
            "has_symbols": has_symbols,
            "entropy_bits": round(entropy, 2),
            "strength": strength,
        }
