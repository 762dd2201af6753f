"""
Local Filesystem Adapters
=========================

Objects stored at: {root}/{key}

- LocalAdapter maps "/" in keys to real subdirectories, so is_directory
  reflects actual directories on disk.
- SafeLocalAdapter stores every key as a single URL-safe base64 file name,
  so arbitrary keys never create nested directories or escape the root.

Writes land in a temporary file beside the target and replace it only once
the content has been fully copied, so a failed write keeps the old object.

The root directory is checked lazily on first use, mirroring the bucket
guard of object store adapters: with create=False a missing root raises
ConfigurationError.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, List, Union

from blobmesh.core.constants import PATH_SEPARATOR
from blobmesh.core.errors import ConfigurationError, ErrorKind, StorageError
from blobmesh.core.types import Err, Ok, Result
from blobmesh.storage.content_type import ContentTypeSniffer
from blobmesh.storage.protocols import (
    Adapter,
    Content,
    DirectoryAware,
    ListKeysAware,
    MimeTypeProvider,
    MtimeCalculator,
    SizeCalculator,
)

logger = logging.getLogger(__name__)

_COPY_CHUNK = 1024 * 1024

# Prefix of in-progress writes; such files are never listed as keys
_TEMP_PREFIX = ".blobmesh-tmp-"


class LocalAdapter(
    Adapter,
    ListKeysAware,
    SizeCalculator,
    MtimeCalculator,
    MimeTypeProvider,
    DirectoryAware,
):
    """
    Adapter over a directory on local disk.

    Args:
        directory: Root directory holding the objects.
        create: Create the root when it is missing instead of failing.
    """

    def __init__(self, directory: Union[str, Path], create: bool = False) -> None:
        self._root = Path(directory).expanduser().absolute()
        self._create = create
        self._checked = False
        self._lock = threading.Lock()
        self._sniffer = ContentTypeSniffer()

    @property
    def root(self) -> Path:
        return self._root

    # -------------------------------------------------------------------------
    # PATHS
    # -------------------------------------------------------------------------

    def _ensure_root(self) -> None:
        if self._checked:
            return
        with self._lock:
            if self._checked:
                return
            if not self._root.is_dir():
                if not self._create:
                    raise ConfigurationError(
                        kind=ErrorKind.NOT_FOUND,
                        message=f'The directory "{self._root}" does not exist.',
                        context={"directory": str(self._root)},
                    )
                self._root.mkdir(parents=True, exist_ok=True)
                logger.info("Created storage directory %s", self._root)
            self._checked = True

    def _encode(self, key: str) -> str:
        """Relative on-disk name of a key."""
        return key

    def _decode(self, name: str) -> str:
        """Key of a relative on-disk name."""
        return name

    def _path(self, key: str, operation: str) -> Path:
        """
        Resolve a key below the root.

        Raises:
            StorageError: If the key is empty or resolves outside the root.
        """
        self._ensure_root()
        if not key:
            raise StorageError.invalid_argument(operation, key, "key must not be empty")
        path = Path(os.path.normpath(self._root / self._encode(key)))
        if path != self._root and self._root not in path.parents:
            raise StorageError.invalid_argument(operation, key, "key resolves outside the root directory")
        return path

    def _iter_files(self) -> Iterator[str]:
        for dirpath, _, filenames in os.walk(self._root):
            base = Path(dirpath)
            for name in filenames:
                if name.startswith(_TEMP_PREFIX):
                    continue
                relative = (base / name).relative_to(self._root).as_posix()
                yield self._decode(relative)

    # -------------------------------------------------------------------------
    # ADAPTER
    # -------------------------------------------------------------------------

    def read(self, key: str) -> Result[bytes, StorageError]:
        try:
            return Ok(self._path(key, "read").read_bytes())
        except StorageError as e:
            return Err(e)
        except OSError as e:
            return Err(StorageError.from_exception("read", key, e))

    def write(self, key: str, content: Content) -> Result[int, StorageError]:
        try:
            path = self._path(key, "write")
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, str):
                content = content.encode("utf-8")
            fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=_TEMP_PREFIX)
            try:
                with os.fdopen(fd, "wb") as fh:
                    written = self._copy(content, fh)
                os.replace(temp_name, path)
            finally:
                Path(temp_name).unlink(missing_ok=True)
            return Ok(written)
        except StorageError as e:
            return Err(e)
        except (OSError, ValueError) as e:
            return Err(StorageError.from_exception("write", key, e))

    @staticmethod
    def _copy(content: Content, fh: BinaryIO) -> int:
        if isinstance(content, (bytes, bytearray, memoryview)):
            return fh.write(content)
        written = 0
        while True:
            chunk = content.read(_COPY_CHUNK)
            if not chunk:
                break
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            written += fh.write(chunk)
        return written

    def rename(self, source_key: str, target_key: str) -> Result[None, StorageError]:
        try:
            source = self._path(source_key, "rename")
            target = self._path(target_key, "rename")
            if not source.is_file():
                return Err(StorageError.not_found("rename", source_key))
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
            return Ok(None)
        except StorageError as e:
            return Err(e)
        except OSError as e:
            return Err(StorageError.from_exception("rename", source_key, e))

    def exists(self, key: str) -> bool:
        try:
            return self._path(key, "exists").is_file()
        except StorageError:
            return False

    def delete(self, key: str) -> Result[None, StorageError]:
        try:
            path = self._path(key, "delete")
            if path.is_dir():
                # Objects below the key are left alone; only an empty directory goes
                if not any(path.iterdir()):
                    path.rmdir()
            else:
                path.unlink(missing_ok=True)
            return Ok(None)
        except StorageError as e:
            return Err(e)
        except OSError as e:
            return Err(StorageError.from_exception("delete", key, e))

    def keys(self) -> List[str]:
        return self.list_keys()

    # -------------------------------------------------------------------------
    # CAPABILITIES
    # -------------------------------------------------------------------------

    def list_keys(self, prefix: str = "") -> List[str]:
        self._ensure_root()
        try:
            return sorted(k for k in self._iter_files() if k.startswith(prefix))
        except OSError as e:
            raise StorageError.from_exception("list_keys", prefix, e) from e

    def size(self, key: str) -> Result[int, StorageError]:
        try:
            return Ok(self._path(key, "size").stat().st_size)
        except StorageError as e:
            return Err(e)
        except OSError as e:
            return Err(StorageError.from_exception("size", key, e))

    def mtime(self, key: str) -> Result[datetime, StorageError]:
        try:
            stat = self._path(key, "mtime").stat()
            return Ok(datetime.fromtimestamp(stat.st_mtime, timezone.utc))
        except StorageError as e:
            return Err(e)
        except OSError as e:
            return Err(StorageError.from_exception("mtime", key, e))

    def mime_type(self, key: str) -> Result[str, StorageError]:
        try:
            with self._path(key, "mime_type").open("rb") as fh:
                return Ok(self._sniffer.sniff(fh))
        except StorageError as e:
            return Err(e)
        except OSError as e:
            return Err(StorageError.from_exception("mime_type", key, e))

    def is_directory(self, key: str) -> bool:
        try:
            return self._path(key.rstrip(PATH_SEPARATOR), "is_directory").is_dir()
        except StorageError:
            return False


class SafeLocalAdapter(LocalAdapter):
    """
    LocalAdapter storing each key as one URL-safe base64 file name.

    Keys keep any characters ("/", "..", spaces) without affecting the
    directory layout; there are no directories, so is_directory is False.
    """

    def _encode(self, key: str) -> str:
        return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii")

    def _decode(self, name: str) -> str:
        try:
            return base64.urlsafe_b64decode(name.encode("ascii")).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError):
            logger.warning("Skipping file with undecodable name %s", name)
            return ""

    def _iter_files(self) -> Iterator[str]:
        for key in super()._iter_files():
            if key:
                yield key

    def is_directory(self, key: str) -> bool:
        return False
