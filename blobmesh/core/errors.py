"""
Error Hierarchy for blobmesh

Two failure tiers:
- Operational: any backend failure during read/write/delete/rename/stat is
  returned as Err(StorageError) tagged with an ErrorKind.
- Fatal/configuration: a missing bucket with auto-create disabled (or a
  failed create) is raised as a ConfigurationError subclass and is not
  retryable.

Each error carries:
- An ErrorKind for programmatic handling
- A human-readable message for logging
- An optional cause for root cause analysis
- A timestamp and unique id for log correlation

Usage:
    result = adapter.read("reports/2024.csv")
    if result.is_err():
        if result.error.kind is ErrorKind.NOT_FOUND:
            ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from botocore.exceptions import (
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    ParamValidationError,
)

from blobmesh.core.types import Timestamp


# =============================================================================
# ERROR KIND ENUMERATION
# =============================================================================
class ErrorKind(Enum):
    """
    Coarse classification of an operational failure.

    The success signal stays `Result.is_ok()`; the kind only tells callers
    why an operation failed.
    """

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT_IO = "transient_io"
    INVALID_ARGUMENT = "invalid_argument"
    OTHER = "other"


# S3 error codes grouped by kind
_NOT_FOUND_CODES = frozenset({
    "NoSuchKey", "NotFound", "NoSuchBucket", "NoSuchUpload", "404",
})
_PERMISSION_CODES = frozenset({
    "AccessDenied", "AllAccessDisabled", "InvalidAccessKeyId",
    "SignatureDoesNotMatch", "AccountProblem", "403",
})
_TRANSIENT_CODES = frozenset({
    "InternalError", "ServiceUnavailable", "SlowDown", "RequestTimeout",
    "RequestTimeTooSkewed", "Throttling", "500", "502", "503", "504",
})
_INVALID_CODES = frozenset({
    "InvalidArgument", "InvalidRequest", "InvalidPart", "InvalidPartOrder",
    "EntityTooLarge", "EntityTooSmall", "MalformedXML", "InvalidBucketName",
    "KeyTooLongError", "InvalidDigest", "BadDigest",
})


def _kind_from_client_error(exc: ClientError) -> ErrorKind:
    """Map an S3 error code (falling back to HTTP status) to an ErrorKind."""
    error = exc.response.get("Error", {})
    code = str(error.get("Code", ""))
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if code in _NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND
    if code in _PERMISSION_CODES:
        return ErrorKind.PERMISSION_DENIED
    if code in _TRANSIENT_CODES:
        return ErrorKind.TRANSIENT_IO
    if code in _INVALID_CODES:
        return ErrorKind.INVALID_ARGUMENT

    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 403:
        return ErrorKind.PERMISSION_DENIED
    if isinstance(status, int) and status >= 500:
        return ErrorKind.TRANSIENT_IO
    if status == 400:
        return ErrorKind.INVALID_ARGUMENT
    return ErrorKind.OTHER


def classify_exception(exc: BaseException) -> ErrorKind:
    """
    Classify any backend exception into an ErrorKind.

    Order matters: builtin OSError subclasses are checked before the
    generic OSError branch.
    """
    if isinstance(exc, StorageError):
        return exc.kind
    if isinstance(exc, ClientError):
        return _kind_from_client_error(exc)
    if isinstance(exc, (BotoConnectionError, HTTPClientError)):
        return ErrorKind.TRANSIENT_IO
    if isinstance(exc, NoCredentialsError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, ParamValidationError):
        return ErrorKind.INVALID_ARGUMENT
    if isinstance(exc, (FileNotFoundError, KeyError)):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, (TimeoutError, ConnectionError, OSError)):
        return ErrorKind.TRANSIENT_IO
    if isinstance(exc, (ValueError, TypeError)):
        return ErrorKind.INVALID_ARGUMENT
    return ErrorKind.OTHER


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass(eq=False)
class BlobMeshError(Exception):
    """
    Base class for all blobmesh errors.

    Provides:
    - Unique error ID for log correlation
    - Error kind for programmatic handling
    - Timestamp
    - Cause chain for root cause analysis
    """

    kind: ErrorKind
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Initialize Exception base class with message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error to dictionary for structured logs.

        The cause is reduced to its type name.
        """
        return {
            "error_id": self.error_id,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "cause": type(self.cause).__name__ if self.cause else None,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.kind.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"kind={self.kind.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# OPERATIONAL ERRORS
# =============================================================================
@dataclass(eq=False)
class StorageError(BlobMeshError):
    """
    Failure of a single adapter operation.

    Returned inside Err by read/write/rename/delete/size/mtime/mime_type;
    raised only by listing operations, which return plain sequences.
    """

    @property
    def key(self) -> Optional[str]:
        return self.context.get("key")

    @property
    def operation(self) -> Optional[str]:
        return self.context.get("operation")

    @classmethod
    def not_found(cls, operation: str, key: str) -> StorageError:
        return cls(
            kind=ErrorKind.NOT_FOUND,
            message=f"Object '{key}' not found during {operation}",
            context={"operation": operation, "key": key},
        )

    @classmethod
    def invalid_argument(
        cls,
        operation: str,
        key: str,
        reason: str,
    ) -> StorageError:
        return cls(
            kind=ErrorKind.INVALID_ARGUMENT,
            message=f"Invalid {operation} of '{key}': {reason}",
            context={"operation": operation, "key": key},
        )

    @classmethod
    def from_exception(
        cls,
        operation: str,
        key: str,
        exc: BaseException,
    ) -> StorageError:
        """
        Wrap a backend exception, preserving its classification.

        Args:
            operation: Adapter operation name (e.g. "read", "upload_part").
            key: Logical key the operation targeted.
            exc: The exception raised by the client or the stream.
        """
        if isinstance(exc, StorageError):
            return exc
        kind = classify_exception(exc)
        return cls(
            kind=kind,
            message=f"{operation} of '{key}' failed: {exc}",
            cause=exc,
            context={"operation": operation, "key": key},
        )


# =============================================================================
# CONFIGURATION ERRORS (FATAL)
# =============================================================================
@dataclass(eq=False)
class ConfigurationError(BlobMeshError):
    """
    Fatal misconfiguration. Raised, never returned, and not retryable.
    """

    @property
    def bucket(self) -> Optional[str]:
        return self.context.get("bucket")


@dataclass(eq=False)
class BucketNotFoundError(ConfigurationError):
    """The configured bucket does not exist and auto-create is disabled."""

    @classmethod
    def for_bucket(cls, bucket: str) -> BucketNotFoundError:
        return cls(
            kind=ErrorKind.NOT_FOUND,
            message=f'The configured bucket "{bucket}" does not exist.',
            context={"bucket": bucket},
        )


@dataclass(eq=False)
class BucketCreationError(ConfigurationError):
    """The bucket was missing and the create-bucket call failed."""

    @classmethod
    def for_bucket(cls, bucket: str, cause: BaseException) -> BucketCreationError:
        return cls(
            kind=classify_exception(cause),
            message=f'Failed to create bucket "{bucket}": {cause}',
            cause=cause,
            context={"bucket": bucket},
        )


@dataclass(eq=False)
class UnsupportedCapability(BlobMeshError):
    """The adapter does not implement an optional capability."""

    @classmethod
    def for_adapter(cls, adapter: Any, capability: str) -> UnsupportedCapability:
        adapter_name = type(adapter).__name__
        return cls(
            kind=ErrorKind.INVALID_ARGUMENT,
            message=f"{adapter_name} does not support {capability}",
            context={"adapter": adapter_name, "capability": capability},
        )


__all__ = [
    "ErrorKind",
    "classify_exception",
    "BlobMeshError",
    "StorageError",
    "ConfigurationError",
    "BucketNotFoundError",
    "BucketCreationError",
    "UnsupportedCapability",
]
