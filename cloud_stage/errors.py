"""
Exception classes for cloud stage operations.

All errors raised by this package derive from CloudStageError so callers can
catch the whole family in one place. SDK exceptions (botocore, azure-core)
are not wrapped unless noted on the raising function.
"""

from __future__ import annotations

from typing import Optional


class CloudStageError(Exception):
    """Base exception for all cloud stage operations."""

    pass


class CryptoError(CloudStageError):
    """Cryptographic operation failed (key wrap, encryption, decryption)."""

    pass


class SerializationError(CloudStageError):
    """Encryption metadata could not be serialized or parsed."""

    pass


class ConfigError(CloudStageError):
    """Configuration error."""

    pass


class CredentialError(ConfigError):
    """A credential required by an external stage is missing."""

    pass


class UnsupportedProviderError(CloudStageError):
    """Stage type is neither S3 nor Azure."""

    pass


class IncompleteMetadataError(CloudStageError):
    """Wrapped key or IV missing from the object metadata."""

    pass


class FileNameParseError(CloudStageError):
    """A listed object key does not start with the stage prefix."""

    pass


class StorageError(CloudStageError):
    """Storage backend error."""

    pass


class DownloadRetryExhaustedError(CloudStageError):
    """Every download attempt failed.

    The last observed failure is kept on ``last_exception`` and is also the
    ``__cause__`` of this error.
    """

    def __init__(
        self,
        message: str,
        last_exception: Optional[BaseException] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class UnknownDownloadFailureError(CloudStageError):
    """Retry loop ended without a result and without a recorded error."""

    pass
