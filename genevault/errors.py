"""
GeneVault exception hierarchy.

Every error raised by the storage pipeline derives from GeneVaultError so
callers can catch the whole family at once, while the sub-kinds let a UI
tell "wrong password" apart from "no access to this tier" or "corrupted data".
"""

from typing import List, Optional


class GeneVaultError(Exception):
    """Base class for all GeneVault errors."""
    pass


class ConfigurationError(GeneVaultError):
    """GeneVault was not configured correctly."""
    pass


class ValidationError(GeneVaultError):
    """
    Malformed input dataset, options or access level request.

    Attributes:
        violations: Every rule the input broke (not just the first one)
    """

    def __init__(self, violations: List[str], message: Optional[str] = None):
        self.violations = list(violations)
        super().__init__(message or "Validation failed")

    def __str__(self):
        base = self.args[0] if self.args else "Validation failed"
        if not self.violations:
            return base
        return f"{base}: {'; '.join(self.violations)}"


# ===== Crypto errors =====

class CryptoError(GeneVaultError):
    """Base class for key derivation, encryption and decryption failures."""
    pass


class EncryptionError(CryptoError):
    """Encryption of a dataset failed. No partial package is produced."""
    pass


class DecryptionError(CryptoError):
    """Base class for decryption failures."""
    pass


class WrongPasswordError(DecryptionError):
    """The password does not open this package (authentication tag mismatch)."""
    pass


class AccessLevelUnavailableError(DecryptionError):
    """
    The requested access level is not part of the package.

    Attributes:
        access_level: The level that was requested
        available: Levels the package actually carries (when known)
    """

    def __init__(self, access_level: int, available: Optional[List[int]] = None):
        self.access_level = access_level
        self.available = list(available) if available is not None else None
        message = f"Access level {access_level} not available"
        if self.available is not None:
            message += f" (available: {self.available})"
        super().__init__(message)


class CorruptPackageError(DecryptionError):
    """The package is malformed or its ciphertext was tampered with."""
    pass


class AccessTokenExpiredError(DecryptionError):
    """An access token was used after its validity window."""
    pass


# ===== Transport errors =====

class TransportError(GeneVaultError):
    """
    Content store communication failure.

    Attributes:
        attempts: How many attempts were made before giving up
    """

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class UploadError(TransportError):
    """Upload to the content store failed after exhausting retries."""
    pass


class RetrievalError(TransportError):
    """Retrieval from the content store failed after exhausting retries."""
    pass


class RetrievalTimeoutError(RetrievalError):
    """Retrieval did not finish within the configured timeout."""
    pass


class PinError(TransportError):
    """Pinning or unpinning content failed."""
    pass


# ===== Orchestration errors =====

class IntegrityError(GeneVaultError):
    """
    Decrypted data does not match the checksum recorded at upload time.

    Attributes:
        expected: Checksum recorded at upload time
        actual: Checksum recomputed after decryption
    """

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class CapacityError(GeneVaultError):
    """
    Queue or cache capacity was exceeded.

    Recovered locally by queuing or evicting; kept in the hierarchy so the
    condition can be recorded, never raised to callers of the orchestrator.
    """
    pass


class DatasetNotFoundError(GeneVaultError):
    """No local record exists for the dataset id."""

    def __init__(self, dataset_id: str):
        self.dataset_id = dataset_id
        super().__init__(f"Dataset not found: {dataset_id}")


class OperationCancelledError(GeneVaultError):
    """An operation was stopped through its cancellation token."""
    pass
