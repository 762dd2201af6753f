"""
Adapter Protocol Definitions: Uniform Storage Contract
======================================================

Structural subtyping protocols (PEP 544) for pluggable storage backends:
- Adapter: the core operation set every backend implements
- MetadataSupporter, SizeCalculator, MtimeCalculator, MimeTypeProvider,
  ListKeysAware, DirectoryAware: optional capabilities
- ObjectStoreClient: the remote blob-store endpoint an object store
  adapter drives

Design Principles:
    - One minimal core protocol plus independent capability protocols;
      a backend implements only what it genuinely supports
    - Callers detect support with isinstance() against the
      runtime_checkable protocol, never by catching "not implemented"
    - Operational failures are Result values

Example:
    if isinstance(adapter, SizeCalculator):
        size = adapter.size("reports/2024.csv")
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import (
    Any,
    BinaryIO,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from blobmesh.core.errors import StorageError
from blobmesh.core.types import Result

# Write payload: a materialized buffer or a binary stream
Content = Union[bytes, bytearray, str, BinaryIO]


def content_to_bytes(content: Content) -> bytes:
    """Materialize a write payload; str is UTF-8 encoded, streams are drained."""
    if isinstance(content, str):
        return content.encode("utf-8")
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    data = content.read()
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


# =============================================================================
# CORE ADAPTER PROTOCOL
# =============================================================================
@runtime_checkable
class Adapter(Protocol):
    """
    Core operation set shared by every storage backend.

    Keys are opaque strings; "/" is the conventional separator used for
    prefix search and directory emulation.
    """

    @abstractmethod
    def read(self, key: str) -> Result[bytes, StorageError]:
        """
        Fetch the full content of an object.

        Returns:
            Ok(content): Object bytes
            Err(StorageError): Missing object or backend failure
        """
        ...

    @abstractmethod
    def write(self, key: str, content: Content) -> Result[int, StorageError]:
        """
        Store content under key, replacing any existing object.

        Returns:
            Ok(size): Number of bytes written
            Err(StorageError): Write failed
        """
        ...

    @abstractmethod
    def rename(self, source_key: str, target_key: str) -> Result[None, StorageError]:
        """Move an object to a new key."""
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether an object exists."""
        ...

    @abstractmethod
    def delete(self, key: str) -> Result[None, StorageError]:
        """Remove an object."""
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        """All keys in the namespace, in backend order."""
        ...


# =============================================================================
# OPTIONAL CAPABILITIES
# =============================================================================
@runtime_checkable
class MetadataSupporter(Protocol):
    """
    Backend that attaches metadata (content type, cache headers, user tags)
    to objects.
    """

    @abstractmethod
    def set_metadata(self, key: str, metadata: Mapping[str, Any]) -> None:
        """Replace the pending metadata for key (last writer wins)."""
        ...

    @abstractmethod
    def get_metadata(self, key: str) -> Dict[str, Any]:
        """Metadata currently associated with key; empty if none."""
        ...


@runtime_checkable
class SizeCalculator(Protocol):
    """Backend that reports object sizes without reading content."""

    @abstractmethod
    def size(self, key: str) -> Result[int, StorageError]:
        ...


@runtime_checkable
class MtimeCalculator(Protocol):
    """Backend that reports last-modification times."""

    @abstractmethod
    def mtime(self, key: str) -> Result[datetime, StorageError]:
        ...


@runtime_checkable
class MimeTypeProvider(Protocol):
    """Backend that reports the stored content type of an object."""

    @abstractmethod
    def mime_type(self, key: str) -> Result[str, StorageError]:
        ...


@runtime_checkable
class ListKeysAware(Protocol):
    """Backend with native prefix listing."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        """
        Keys starting with prefix, in backend listing order
        (not guaranteed lexicographic).

        Raises:
            StorageError: If the listing itself fails.
        """
        ...


@runtime_checkable
class DirectoryAware(Protocol):
    """Backend that can tell whether a key names a (possibly emulated) directory."""

    @abstractmethod
    def is_directory(self, key: str) -> bool:
        ...


# =============================================================================
# OBJECT STORE CLIENT
# =============================================================================
@runtime_checkable
class ObjectStoreClient(Protocol):
    """
    Remote blob-store endpoint used by object store adapters.

    Request methods take boto3-style keyword parameters (Bucket=, Key=,
    Body=, ...) and return boto3-style response dicts. Failures are raised
    (botocore ClientError or transport errors) and classified by the adapter.
    """

    @property
    @abstractmethod
    def region(self) -> Optional[str]:
        """Region of the endpoint; location constraint for new buckets."""
        ...

    @abstractmethod
    def bucket_exists(self, bucket: str) -> bool:
        ...

    @abstractmethod
    def create_bucket(self, bucket: str, region: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def put_object(self, **params: Any) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_object(self, **params: Any) -> Dict[str, Any]:
        """Response carries Body (bytes or a readable stream) and ContentType."""
        ...

    @abstractmethod
    def head_object(self, **params: Any) -> Dict[str, Any]:
        """Response carries ContentLength, ContentType and LastModified."""
        ...

    @abstractmethod
    def delete_object(self, **params: Any) -> Dict[str, Any]:
        ...

    @abstractmethod
    def copy_object(self, **params: Any) -> Dict[str, Any]:
        """Server-side copy; CopySource is "bucket/key"."""
        ...

    @abstractmethod
    def list_objects(self, **params: Any) -> Dict[str, Any]:
        """
        One listing page: Contents (Key, Size, LastModified) and
        NextContinuationToken when more pages remain.
        """
        ...

    @abstractmethod
    def iter_objects(self, bucket: str, prefix: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """Every listing entry under prefix, following continuation tokens."""
        ...

    @abstractmethod
    def create_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        """Response carries UploadId."""
        ...

    @abstractmethod
    def upload_part(self, **params: Any) -> Dict[str, Any]:
        """Response carries the part ETag."""
        ...

    @abstractmethod
    def complete_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        ...

    @abstractmethod
    def abort_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        ...


__all__ = [
    "Content",
    "content_to_bytes",
    "Adapter",
    "MetadataSupporter",
    "SizeCalculator",
    "MtimeCalculator",
    "MimeTypeProvider",
    "ListKeysAware",
    "DirectoryAware",
    "ObjectStoreClient",
]
