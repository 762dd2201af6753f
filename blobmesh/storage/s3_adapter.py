"""
AWS S3 Adapter
==============

Adapter over any ObjectStoreClient (AWS S3, MinIO, R2, or the in-memory
client), composing:

- BucketLifecycleGuard: lazy bucket check/creation gating read, write,
  rename and listing
- KeyPathMapper: logical keys under an optional directory prefix
- MetadataStore: per-key request metadata merged into every request
- MultipartUploadCoordinator: chunked upload of large streams
- ContentTypeSniffer: content type detection when none was set

Write Routing:
--------------
| Content              | Size                    | Path                 |
|----------------------|-------------------------|----------------------|
| stream               | >= size_limit           | multipart upload     |
| stream               | < size_limit            | single put           |
| bytes / str          | <= size_limit           | single put           |
| bytes / str          | > size_limit            | Err(INVALID_ARGUMENT)|

Seekable streams are sized by seeking to the end and rewound to offset 0.
Non-seekable streams are read one part ahead: a short first part that is
below the size limit is a complete object and goes through a single put;
a full first part always switches to multipart.

Rename:
-------
Server-side copy followed by a delete of the source. The copy is the
canonical step: when the delete fails the rename still reports Ok, both
keys hold the data and a warning is logged.
"""

from __future__ import annotations

import functools
import io
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, BinaryIO, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from blobmesh.core.constants import DEFAULT_CONTENT_TYPE
from blobmesh.core.errors import ConfigurationError, ErrorKind, StorageError, classify_exception
from blobmesh.core.types import Err, Ok, Result
from blobmesh.observability.metrics import StorageMetrics
from blobmesh.storage.bucket import BucketLifecycleGuard, BucketState
from blobmesh.storage.config import AdapterOptions
from blobmesh.storage.content_type import ContentTypeSniffer
from blobmesh.storage.keys import KeyPathMapper
from blobmesh.storage.metadata import MetadataStore
from blobmesh.storage.multipart import MultipartUploadCoordinator
from blobmesh.storage.protocols import (
    Adapter,
    Content,
    DirectoryAware,
    ListKeysAware,
    MetadataSupporter,
    MimeTypeProvider,
    MtimeCalculator,
    ObjectStoreClient,
    SizeCalculator,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _instrumented(operation: str) -> Callable[[F], F]:
    """Record outcome and latency of an adapter method when metrics are on."""

    def decorator(method: F) -> F:
        @functools.wraps(method)
        def wrapper(self: AwsS3Adapter, *args: Any, **kwargs: Any) -> Any:
            if self._metrics is None:
                return method(self, *args, **kwargs)
            start = time.perf_counter()
            ok = False
            try:
                result = method(self, *args, **kwargs)
                ok = not isinstance(result, Err)
                return result
            finally:
                self._metrics.record(operation, ok, time.perf_counter() - start)

        return wrapper  # type: ignore[return-value]

    return decorator


class _PeekedStream(io.RawIOBase):
    """Replays an already-read head before continuing with the source stream."""

    def __init__(self, head: bytes, source: BinaryIO) -> None:
        super().__init__()
        self._head = memoryview(head)
        self._offset = 0
        self._source = source

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        remaining = len(self._head) - self._offset
        if remaining > 0:
            count = remaining if size is None or size < 0 else min(size, remaining)
            chunk = bytes(self._head[self._offset:self._offset + count])
            self._offset += count
            return chunk
        return self._source.read(size)


class AwsS3Adapter(
    Adapter,
    MetadataSupporter,
    SizeCalculator,
    MtimeCalculator,
    MimeTypeProvider,
    ListKeysAware,
    DirectoryAware,
):
    """
    Object store adapter for S3-compatible backends.

    Example:
        >>> client = Boto3ObjectStoreClient.from_config(S3Config(bucket_name="media"))
        >>> adapter = AwsS3Adapter(client, "media", {"directory": "uploads", "create": True})
        >>> adapter.set_metadata("a.json", {"ContentType": "application/json"})
        >>> adapter.write("a.json", b"{}").unwrap()
        2

    Args:
        client: Endpoint the adapter drives.
        bucket: Bucket holding every key of this adapter.
        options: AdapterOptions, or a loose mapping of option names
            (out-of-bounds size_limit/part_size are ignored there).
        detect_content_type: Overrides options.detect_content_type.
        metadata_store: Shared store; a private one is created by default.
        metrics: Operation metrics; None disables recording.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        options: Optional[Union[AdapterOptions, Mapping[str, Any]]] = None,
        detect_content_type: Optional[bool] = None,
        metadata_store: Optional[MetadataStore] = None,
        metrics: Optional[StorageMetrics] = None,
    ) -> None:
        if isinstance(options, AdapterOptions):
            opts = options
        else:
            opts = AdapterOptions.from_mapping(options)
        if detect_content_type is not None:
            opts = replace(opts, detect_content_type=detect_content_type)

        self._client = client
        self._bucket = bucket
        self._options = opts
        self._mapper = KeyPathMapper(opts.directory)
        self._metadata = metadata_store if metadata_store is not None else MetadataStore()
        self._guard = BucketLifecycleGuard(client, bucket, create=opts.create)
        self._sniffer = ContentTypeSniffer()
        self._metrics = metrics
        self._multipart = MultipartUploadCoordinator(
            client,
            part_size=opts.part_size,
            verify_part_checksums=opts.verify_part_checksums,
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # PROPERTIES
    # -------------------------------------------------------------------------

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def options(self) -> AdapterOptions:
        return self._options

    @property
    def bucket_state(self) -> BucketState:
        return self._guard.state

    @property
    def key_mapper(self) -> KeyPathMapper:
        return self._mapper

    @property
    def metadata_store(self) -> MetadataStore:
        return self._metadata

    # -------------------------------------------------------------------------
    # REQUEST PARAMETERS
    # -------------------------------------------------------------------------

    def _check_bucket(self, operation: str, key: str) -> Result[None, StorageError]:
        """
        Run the bucket guard for a gated operation.

        A missing bucket stays fatal. Any other failure of the check is an
        operational error and leaves the guard UNCHECKED for the next call.
        """
        try:
            self._guard.ensure()
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning("Bucket check of %s failed: %s", self._bucket, e)
            return Err(StorageError.from_exception(operation, key, e))
        return Ok(None)

    def _request_params(self, key: str, **extra: Any) -> Dict[str, Any]:
        """ACL, bucket and physical key, then operation extras, then key metadata."""
        params: Dict[str, Any] = {
            "ACL": self._options.acl,
            "Bucket": self._bucket,
            "Key": self._mapper.to_path(key),
        }
        params.update(extra)
        params.update(self._metadata.get(key))
        return params

    # -------------------------------------------------------------------------
    # METADATA
    # -------------------------------------------------------------------------

    def set_metadata(self, key: str, metadata: Mapping[str, Any]) -> None:
        self._metadata.set(key, metadata)

    def get_metadata(self, key: str) -> Dict[str, Any]:
        return self._metadata.get(key)

    # -------------------------------------------------------------------------
    # READ
    # -------------------------------------------------------------------------

    @_instrumented("read")
    def read(self, key: str) -> Result[bytes, StorageError]:
        """Fetch an object; the returned ContentType is recorded as key metadata."""
        checked = self._check_bucket("read", key)
        if checked.is_err():
            return checked
        try:
            response = self._client.get_object(**self._request_params(key))
            body = response["Body"]
            data = body.read() if hasattr(body, "read") else bytes(body)
        except Exception as e:
            logger.debug("Read of %s failed: %s", key, e)
            return Err(StorageError.from_exception("read", key, e))

        content_type = response.get("ContentType")
        if content_type:
            self._metadata.record(key, "ContentType", content_type)
        return Ok(data)

    # -------------------------------------------------------------------------
    # WRITE
    # -------------------------------------------------------------------------

    @_instrumented("write")
    def write(self, key: str, content: Content) -> Result[int, StorageError]:
        """
        Store content under key.

        Buffers and seekable streams below size_limit go through a single
        put. A non-seekable stream has no known size: its first part is read
        ahead, and when that part fills part_size the upload is multipart
        even if the whole stream would have fit under size_limit.

        Returns:
            Ok(size): Bytes written (bytes drained for non-seekable streams)
            Err(StorageError): INVALID_ARGUMENT for an oversized buffer,
                otherwise the classified backend failure
        """
        checked = self._check_bucket("write", key)
        if checked.is_err():
            return checked
        params = self._request_params(key)

        if isinstance(content, str):
            content = content.encode("utf-8")

        if isinstance(content, (bytes, bytearray, memoryview)):
            data = bytes(content)
            if len(data) > self._options.size_limit:
                return Err(StorageError.invalid_argument(
                    "write",
                    key,
                    f"{len(data)} byte buffer exceeds the {self._options.size_limit} byte "
                    "size limit; pass a stream to use multipart upload",
                ))
            self._fill_content_type(params, lambda: self._sniffer.sniff(data))
            return self._put(key, params, data)

        return self._write_stream(key, params, content)

    def _write_stream(
        self,
        key: str,
        params: Dict[str, Any],
        stream: BinaryIO,
    ) -> Result[int, StorageError]:
        try:
            size = self._stream_size(stream)
        except OSError as e:
            return Err(StorageError.from_exception("write", key, e))

        if size is not None:
            self._fill_content_type(params, lambda: self._sniffer.sniff(stream))
            if size >= self._options.size_limit:
                return self._upload_multipart(key, params, stream)
            try:
                data = stream.read()
            except Exception as e:
                return Err(StorageError.from_exception("write", key, e))
            return self._put(key, params, data if isinstance(data, bytes) else bytes(data))

        # Non-seekable: read one part ahead to decide
        try:
            head = self._read_head(stream)
        except Exception as e:
            return Err(StorageError.from_exception("write", key, e))
        self._fill_content_type(params, lambda: self._sniffer.sniff(head))
        if len(head) < self._options.part_size and len(head) < self._options.size_limit:
            return self._put(key, params, head)
        return self._upload_multipart(key, params, _PeekedStream(head, stream))

    @staticmethod
    def _stream_size(stream: BinaryIO) -> Optional[int]:
        """Total size of a seekable stream, rewound to offset 0; None if not seekable."""
        seekable = getattr(stream, "seekable", None)
        if seekable is None or not seekable():
            return None
        stream.seek(0, io.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return size

    def _read_head(self, stream: BinaryIO) -> bytes:
        buffer = bytearray()
        part_size = self._options.part_size
        while len(buffer) < part_size:
            chunk = stream.read(part_size - len(buffer))
            if not chunk:
                break
            buffer.extend(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
        return bytes(buffer)

    def _fill_content_type(self, params: Dict[str, Any], sniff: Callable[[], str]) -> None:
        if "ContentType" in params or not self._options.detect_content_type:
            return
        params["ContentType"] = sniff()

    def _put(self, key: str, params: Dict[str, Any], data: bytes) -> Result[int, StorageError]:
        try:
            self._client.put_object(**params, Body=data)
        except Exception as e:
            logger.debug("Put of %s failed: %s", key, e)
            return Err(StorageError.from_exception("write", key, e))
        if self._metrics:
            self._metrics.bytes_written.inc(len(data))
        return Ok(len(data))

    def _upload_multipart(
        self,
        key: str,
        params: Dict[str, Any],
        stream: BinaryIO,
    ) -> Result[int, StorageError]:
        result = self._multipart.upload(params, stream, key)
        if result.is_err():
            return result
        written = result.value.bytes_uploaded
        if self._metrics:
            self._metrics.bytes_written.inc(written)
        return Ok(written)

    # -------------------------------------------------------------------------
    # RENAME / DELETE / EXISTS
    # -------------------------------------------------------------------------

    @_instrumented("rename")
    def rename(
        self,
        source_key: str,
        target_key: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Result[None, StorageError]:
        """
        Copy source to target server-side, then delete the source.

        Args:
            metadata: Set as the target key's metadata before copying.
        """
        checked = self._check_bucket("rename", source_key)
        if checked.is_err():
            return checked
        if metadata is not None:
            self.set_metadata(target_key, metadata)

        copy_source = f"{self._bucket}/{self._mapper.to_path(source_key)}"
        params = self._request_params(target_key, CopySource=copy_source)
        if self._metadata.get(target_key):
            params["MetadataDirective"] = "REPLACE"

        try:
            self._client.copy_object(**params)
        except Exception as e:
            logger.debug("Copy of %s to %s failed: %s", source_key, target_key, e)
            return Err(StorageError.from_exception("rename", source_key, e))

        deleted = self.delete(source_key)
        if deleted.is_err():
            logger.warning(
                "Renamed %s to %s but could not delete the source; both keys now exist: %s",
                source_key, target_key, deleted.error,
            )
        return Ok(None)

    @_instrumented("delete")
    def delete(self, key: str) -> Result[None, StorageError]:
        """Remove an object. Deleting a missing key succeeds."""
        try:
            self._client.delete_object(**self._request_params(key))
        except Exception as e:
            return Err(StorageError.from_exception("delete", key, e))
        return Ok(None)

    @_instrumented("exists")
    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=self._mapper.to_path(key))
        except Exception as e:
            if classify_exception(e) is not ErrorKind.NOT_FOUND:
                logger.warning("Existence check of %s failed: %s", key, e)
            return False
        return True

    # -------------------------------------------------------------------------
    # LISTING
    # -------------------------------------------------------------------------

    def keys(self) -> List[str]:
        return self.list_keys()

    @_instrumented("list_keys")
    def list_keys(self, prefix: str = "") -> List[str]:
        checked = self._check_bucket("list_keys", prefix)
        if checked.is_err():
            raise checked.error
        try:
            return [
                self._mapper.to_key(entry["Key"])
                for entry in self._client.iter_objects(self._bucket, self._mapper.list_prefix(prefix))
            ]
        except Exception as e:
            raise StorageError.from_exception("list_keys", prefix, e) from e

    @_instrumented("is_directory")
    def is_directory(self, key: str) -> bool:
        """True iff at least one object lives under key + "/"."""
        try:
            response = self._client.list_objects(
                Bucket=self._bucket,
                Prefix=self._mapper.directory_prefix(key),
                MaxKeys=1,
            )
        except Exception as e:
            logger.warning("Directory check of %s failed: %s", key, e)
            return False
        return bool(response.get("Contents"))

    # -------------------------------------------------------------------------
    # STAT
    # -------------------------------------------------------------------------

    def _head(self, operation: str, key: str) -> Result[Dict[str, Any], StorageError]:
        try:
            return Ok(self._client.head_object(**self._request_params(key)))
        except Exception as e:
            return Err(StorageError.from_exception(operation, key, e))

    @_instrumented("size")
    def size(self, key: str) -> Result[int, StorageError]:
        return self._head("size", key).map(lambda head: int(head.get("ContentLength", 0)))

    @_instrumented("mtime")
    def mtime(self, key: str) -> Result[datetime, StorageError]:
        def last_modified(head: Dict[str, Any]) -> datetime:
            value = head.get("LastModified")
            if value is None:
                return datetime.fromtimestamp(0, timezone.utc)
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value

        return self._head("mtime", key).map(last_modified)

    @_instrumented("mime_type")
    def mime_type(self, key: str) -> Result[str, StorageError]:
        return self._head("mime_type", key).map(
            lambda head: head.get("ContentType") or DEFAULT_CONTENT_TYPE
        )
