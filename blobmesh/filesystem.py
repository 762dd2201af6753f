"""
Filesystem Facade
=================

Key-level convenience layer over any Adapter:

- Guards against clobbering on write and rename
- Probes optional capabilities with isinstance() against the capability
  protocols; a missing capability raises UnsupportedCapability, except
  where a portable fallback exists (list_keys, size, checksum)

Example:
    >>> fs = Filesystem(InMemoryAdapter())
    >>> fs.write("notes/a.txt", "hello").unwrap()
    5
    >>> fs.write("notes/a.txt", "again").is_err()
    True
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Dict, List, Mapping

from blobmesh.core.errors import ErrorKind, StorageError, UnsupportedCapability
from blobmesh.core.types import Err, Result
from blobmesh.storage.protocols import (
    Adapter,
    Content,
    DirectoryAware,
    ListKeysAware,
    MetadataSupporter,
    MimeTypeProvider,
    MtimeCalculator,
    SizeCalculator,
)


def _already_exists(operation: str, key: str) -> StorageError:
    return StorageError(
        kind=ErrorKind.INVALID_ARGUMENT,
        message=f"Object '{key}' already exists",
        context={"operation": operation, "key": key},
    )


class Filesystem:
    """Facade over one adapter."""

    __slots__ = ("_adapter",)

    def __init__(self, adapter: Adapter) -> None:
        self._adapter = adapter

    @property
    def adapter(self) -> Adapter:
        return self._adapter

    def _require(self, capability: type, name: str) -> Any:
        if not isinstance(self._adapter, capability):
            raise UnsupportedCapability.for_adapter(self._adapter, name)
        return self._adapter

    # -------------------------------------------------------------------------
    # CORE
    # -------------------------------------------------------------------------

    def has(self, key: str) -> bool:
        return self._adapter.exists(key)

    def read(self, key: str) -> Result[bytes, StorageError]:
        return self._adapter.read(key)

    def write(self, key: str, content: Content, overwrite: bool = False) -> Result[int, StorageError]:
        """Write content; refuses to replace an existing key unless overwrite."""
        if not overwrite and self._adapter.exists(key):
            return Err(_already_exists("write", key))
        return self._adapter.write(key, content)

    def rename(self, source_key: str, target_key: str) -> Result[None, StorageError]:
        """Move source to target; the target must not exist."""
        if not self._adapter.exists(source_key):
            return Err(StorageError.not_found("rename", source_key))
        if self._adapter.exists(target_key):
            return Err(_already_exists("rename", target_key))
        return self._adapter.rename(source_key, target_key)

    def delete(self, key: str) -> Result[None, StorageError]:
        """Delete an existing key."""
        if not self._adapter.exists(key):
            return Err(StorageError.not_found("delete", key))
        return self._adapter.delete(key)

    def keys(self) -> List[str]:
        return self._adapter.keys()

    def list_keys(self, prefix: str = "") -> List[str]:
        """Native prefix listing, or a filter over keys() when unsupported."""
        if isinstance(self._adapter, ListKeysAware):
            return self._adapter.list_keys(prefix)
        return [key for key in self._adapter.keys() if key.startswith(prefix)]

    # -------------------------------------------------------------------------
    # STAT
    # -------------------------------------------------------------------------

    def size(self, key: str) -> Result[int, StorageError]:
        if isinstance(self._adapter, SizeCalculator):
            return self._adapter.size(key)
        return self._adapter.read(key).map(len)

    def checksum(self, key: str) -> Result[str, StorageError]:
        """Hex MD5 of the object content."""
        return self._adapter.read(key).map(lambda data: hashlib.md5(data).hexdigest())

    def mtime(self, key: str) -> Result[datetime, StorageError]:
        return self._require(MtimeCalculator, "mtime").mtime(key)

    def mime_type(self, key: str) -> Result[str, StorageError]:
        return self._require(MimeTypeProvider, "mime_type").mime_type(key)

    def is_directory(self, key: str) -> bool:
        return self._require(DirectoryAware, "is_directory").is_directory(key)

    # -------------------------------------------------------------------------
    # METADATA
    # -------------------------------------------------------------------------

    def set_metadata(self, key: str, metadata: Mapping[str, Any]) -> None:
        self._require(MetadataSupporter, "metadata").set_metadata(key, metadata)

    def get_metadata(self, key: str) -> Dict[str, Any]:
        return self._require(MetadataSupporter, "metadata").get_metadata(key)
