"""
In-Memory Storage
=================

Two in-process backends for development and testing:

- InMemoryObjectStoreClient: S3 semantics (buckets, ETags, paginated
  listings, server-side copy, multipart staging) behind the
  ObjectStoreClient protocol, so AwsS3Adapter runs unchanged without a
  network. Errors are raised as botocore ClientError with real S3 codes.
- InMemoryAdapter: a plain dict-backed Adapter with per-key mtime.

Thread Safety:
--------------
Both guard their state with a lock; all operations are atomic.
"""

from __future__ import annotations

import hashlib
import io
import threading
from collections import Counter as CallCounter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from botocore.exceptions import ClientError

from blobmesh.core.constants import (
    DEFAULT_CONTENT_TYPE,
    LIST_PAGE_SIZE,
    MAX_PART_NUMBER,
    MIN_PART_SIZE,
)
from blobmesh.core.errors import StorageError
from blobmesh.core.types import Err, Ok, Result
from blobmesh.storage.content_type import ContentTypeSniffer
from blobmesh.storage.protocols import (
    Adapter,
    Content,
    DirectoryAware,
    ListKeysAware,
    MimeTypeProvider,
    MtimeCalculator,
    ObjectStoreClient,
    SizeCalculator,
    content_to_bytes,
)

# Request parameters stored with an object and echoed by get/head
_STORED_HEADERS = (
    "CacheControl",
    "ContentDisposition",
    "ContentEncoding",
    "ContentLanguage",
    "Expires",
    "StorageClass",
)


def _client_error(code: str, message: str, operation: str, status: int) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def _quoted_md5(data: bytes) -> str:
    return f'"{hashlib.md5(data).hexdigest()}"'


@dataclass(slots=True)
class _StoredObject:
    body: bytes
    etag: str
    content_type: str
    last_modified: datetime
    acl: str = "private"
    metadata: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class _PendingUpload:
    bucket: str
    key: str
    params: Dict[str, Any]
    parts: Dict[int, Tuple[bytes, str]] = field(default_factory=dict)


# =============================================================================
# IN-MEMORY OBJECT STORE CLIENT
# =============================================================================

class InMemoryObjectStoreClient(ObjectStoreClient):
    """
    S3-compatible object store held in process memory.

    Example:
        >>> client = InMemoryObjectStoreClient(region="eu-west-1")
        >>> client.create_bucket("media")
        >>> client.put_object(Bucket="media", Key="a.txt", Body=b"hello")
        >>> client.get_object(Bucket="media", Key="a.txt")["Body"].read()
        b'hello'
    """

    def __init__(self, region: Optional[str] = "us-east-1", buckets: Tuple[str, ...] = ()) -> None:
        self._region = region
        self._buckets: Dict[str, Dict[str, _StoredObject]] = {name: {} for name in buckets}
        self._bucket_regions: Dict[str, Optional[str]] = {name: region for name in buckets}
        self._uploads: Dict[str, _PendingUpload] = {}
        self._calls: CallCounter = CallCounter()
        self._lock = threading.RLock()

    @property
    def region(self) -> Optional[str]:
        return self._region

    # -------------------------------------------------------------------------
    # INTROSPECTION
    # -------------------------------------------------------------------------

    def call_count(self, operation: str) -> int:
        """How many times an operation (e.g. "create_bucket") was invoked."""
        with self._lock:
            return self._calls[operation]

    @property
    def pending_uploads(self) -> List[str]:
        """Upload ids neither completed nor aborted."""
        with self._lock:
            return list(self._uploads)

    def bucket_region(self, bucket: str) -> Optional[str]:
        with self._lock:
            return self._bucket_regions.get(bucket)

    def _bucket(self, bucket: str, operation: str) -> Dict[str, _StoredObject]:
        objects = self._buckets.get(bucket)
        if objects is None:
            raise _client_error(
                "NoSuchBucket", "The specified bucket does not exist", operation, 404,
            )
        return objects

    def _object(self, bucket: str, key: str, operation: str, code: str = "NoSuchKey") -> _StoredObject:
        obj = self._bucket(bucket, operation).get(key)
        if obj is None:
            raise _client_error(code, "The specified key does not exist.", operation, 404)
        return obj

    # -------------------------------------------------------------------------
    # BUCKETS
    # -------------------------------------------------------------------------

    def bucket_exists(self, bucket: str) -> bool:
        with self._lock:
            self._calls["bucket_exists"] += 1
            return bucket in self._buckets

    def create_bucket(self, bucket: str, region: Optional[str] = None) -> None:
        with self._lock:
            self._calls["create_bucket"] += 1
            if bucket in self._buckets:
                raise _client_error(
                    "BucketAlreadyOwnedByYou",
                    "Your previous request to create the named bucket succeeded",
                    "CreateBucket",
                    409,
                )
            self._buckets[bucket] = {}
            self._bucket_regions[bucket] = region

    # -------------------------------------------------------------------------
    # OBJECTS
    # -------------------------------------------------------------------------

    def put_object(self, **params: Any) -> Dict[str, Any]:
        body = params.get("Body", b"")
        data = body if isinstance(body, bytes) else content_to_bytes(body)
        with self._lock:
            self._calls["put_object"] += 1
            objects = self._bucket(params["Bucket"], "PutObject")
            obj = self._new_object(data, params)
            objects[params["Key"]] = obj
            return {"ETag": obj.etag}

    def get_object(self, **params: Any) -> Dict[str, Any]:
        with self._lock:
            self._calls["get_object"] += 1
            obj = self._object(params["Bucket"], params["Key"], "GetObject")
            return {**self._describe(obj), "Body": io.BytesIO(obj.body)}

    def head_object(self, **params: Any) -> Dict[str, Any]:
        with self._lock:
            self._calls["head_object"] += 1
            # HEAD responses carry no error body, only the status
            obj = self._object(params["Bucket"], params["Key"], "HeadObject", code="404")
            return self._describe(obj)

    def delete_object(self, **params: Any) -> Dict[str, Any]:
        with self._lock:
            self._calls["delete_object"] += 1
            self._bucket(params["Bucket"], "DeleteObject").pop(params["Key"], None)
            return {}

    def copy_object(self, **params: Any) -> Dict[str, Any]:
        source = params["CopySource"]
        if isinstance(source, Mapping):
            source_bucket, source_key = source["Bucket"], source["Key"]
        else:
            source_bucket, _, source_key = source.lstrip("/").partition("/")

        with self._lock:
            self._calls["copy_object"] += 1
            src = self._object(source_bucket, source_key, "CopyObject")
            objects = self._bucket(params["Bucket"], "CopyObject")

            if params.get("MetadataDirective") == "REPLACE":
                obj = self._new_object(src.body, params)
            else:
                obj = _StoredObject(
                    body=src.body,
                    etag=src.etag,
                    content_type=src.content_type,
                    last_modified=datetime.now(timezone.utc),
                    acl=params.get("ACL", src.acl),
                    metadata=dict(src.metadata),
                    headers=dict(src.headers),
                )
            objects[params["Key"]] = obj
            return {"CopyObjectResult": {"ETag": obj.etag, "LastModified": obj.last_modified}}

    def list_objects(self, **params: Any) -> Dict[str, Any]:
        prefix = params.get("Prefix") or ""
        max_keys = int(params.get("MaxKeys", LIST_PAGE_SIZE))
        start_after = params.get("ContinuationToken") or params.get("StartAfter") or ""

        with self._lock:
            self._calls["list_objects"] += 1
            objects = self._bucket(params["Bucket"], "ListObjectsV2")
            keys = sorted(k for k in objects if k.startswith(prefix) and k > start_after)
            page = keys[:max_keys]
            contents = [
                {
                    "Key": k,
                    "Size": len(objects[k].body),
                    "LastModified": objects[k].last_modified,
                    "ETag": objects[k].etag,
                }
                for k in page
            ]

        response: Dict[str, Any] = {
            "Name": params["Bucket"],
            "Prefix": prefix,
            "MaxKeys": max_keys,
            "KeyCount": len(contents),
            "IsTruncated": len(keys) > len(page),
        }
        if contents:
            response["Contents"] = contents
        if response["IsTruncated"]:
            response["NextContinuationToken"] = page[-1]
        return response

    def iter_objects(self, bucket: str, prefix: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        params: Dict[str, Any] = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix
        while True:
            page = self.list_objects(**params)
            yield from page.get("Contents", [])
            token = page.get("NextContinuationToken")
            if not token:
                return
            params["ContinuationToken"] = token

    # -------------------------------------------------------------------------
    # MULTIPART
    # -------------------------------------------------------------------------

    def create_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        with self._lock:
            self._calls["create_multipart_upload"] += 1
            self._bucket(params["Bucket"], "CreateMultipartUpload")
            upload_id = uuid4().hex
            self._uploads[upload_id] = _PendingUpload(
                bucket=params["Bucket"], key=params["Key"], params=dict(params),
            )
            return {"Bucket": params["Bucket"], "Key": params["Key"], "UploadId": upload_id}

    def _upload(self, params: Mapping[str, Any], operation: str) -> _PendingUpload:
        upload = self._uploads.get(params["UploadId"])
        if upload is None or upload.bucket != params["Bucket"] or upload.key != params["Key"]:
            raise _client_error(
                "NoSuchUpload", "The specified upload does not exist.", operation, 404,
            )
        return upload

    def upload_part(self, **params: Any) -> Dict[str, Any]:
        body = params.get("Body", b"")
        data = body if isinstance(body, bytes) else content_to_bytes(body)
        part_number = int(params["PartNumber"])
        with self._lock:
            self._calls["upload_part"] += 1
            upload = self._upload(params, "UploadPart")
            if not 1 <= part_number <= MAX_PART_NUMBER:
                raise _client_error(
                    "InvalidArgument",
                    f"Part number must be an integer between 1 and {MAX_PART_NUMBER}",
                    "UploadPart",
                    400,
                )
            etag = _quoted_md5(data)
            upload.parts[part_number] = (data, etag)
            return {"ETag": etag}

    def complete_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        requested = params.get("MultipartUpload", {}).get("Parts", [])
        with self._lock:
            self._calls["complete_multipart_upload"] += 1
            upload = self._upload(params, "CompleteMultipartUpload")
            if not requested:
                raise _client_error(
                    "MalformedXML", "You must specify at least one part", "CompleteMultipartUpload", 400,
                )

            numbers = [int(p["PartNumber"]) for p in requested]
            if numbers != sorted(set(numbers)):
                raise _client_error(
                    "InvalidPartOrder", "The list of parts was not in ascending order.",
                    "CompleteMultipartUpload", 400,
                )

            chunks: List[bytes] = []
            digests = b""
            for index, part in enumerate(requested):
                stored = upload.parts.get(int(part["PartNumber"]))
                if stored is None or stored[1] != part["ETag"]:
                    raise _client_error(
                        "InvalidPart", "One or more of the specified parts could not be found.",
                        "CompleteMultipartUpload", 400,
                    )
                data = stored[0]
                if index < len(requested) - 1 and len(data) < MIN_PART_SIZE:
                    raise _client_error(
                        "EntityTooSmall", "Your proposed upload is smaller than the minimum allowed size.",
                        "CompleteMultipartUpload", 400,
                    )
                chunks.append(data)
                digests += hashlib.md5(data).digest()

            objects = self._bucket(upload.bucket, "CompleteMultipartUpload")
            obj = self._new_object(b"".join(chunks), upload.params)
            obj.etag = f'"{hashlib.md5(digests).hexdigest()}-{len(requested)}"'
            objects[upload.key] = obj
            del self._uploads[params["UploadId"]]
            return {"Bucket": upload.bucket, "Key": upload.key, "ETag": obj.etag}

    def abort_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        with self._lock:
            self._calls["abort_multipart_upload"] += 1
            self._upload(params, "AbortMultipartUpload")
            del self._uploads[params["UploadId"]]
            return {}

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _new_object(data: bytes, params: Mapping[str, Any]) -> _StoredObject:
        return _StoredObject(
            body=data,
            etag=_quoted_md5(data),
            content_type=params.get("ContentType") or DEFAULT_CONTENT_TYPE,
            last_modified=datetime.now(timezone.utc),
            acl=params.get("ACL", "private"),
            metadata=dict(params.get("Metadata") or {}),
            headers={h: params[h] for h in _STORED_HEADERS if h in params},
        )

    @staticmethod
    def _describe(obj: _StoredObject) -> Dict[str, Any]:
        return {
            "ContentLength": len(obj.body),
            "ContentType": obj.content_type,
            "LastModified": obj.last_modified,
            "ETag": obj.etag,
            "Metadata": dict(obj.metadata),
            **obj.headers,
        }


# =============================================================================
# IN-MEMORY ADAPTER
# =============================================================================

FileSeed = Union[bytes, str, Tuple[Union[bytes, str], Optional[datetime]], Mapping[str, Any]]


class InMemoryAdapter(
    Adapter,
    ListKeysAware,
    SizeCalculator,
    MtimeCalculator,
    MimeTypeProvider,
    DirectoryAware,
):
    """
    Dict-backed adapter, mainly for tests.

    Every key maps to (content, mtime). There are no directories: keys are
    flat and is_directory is always False.

    Example:
        >>> adapter = InMemoryAdapter({"a.txt": b"hello"})
        >>> adapter.read("a.txt").unwrap()
        b'hello'
    """

    def __init__(self, files: Optional[Mapping[str, FileSeed]] = None) -> None:
        self._files: Dict[str, Tuple[bytes, datetime]] = {}
        self._lock = threading.Lock()
        self._sniffer = ContentTypeSniffer()
        if files:
            self.set_files(files)

    # -------------------------------------------------------------------------
    # SEEDING
    # -------------------------------------------------------------------------

    def set_files(self, files: Mapping[str, FileSeed]) -> None:
        """
        Replace all files.

        Each value is the content, a (content, mtime) tuple, or a mapping
        with "content" and "mtime" entries.
        """
        with self._lock:
            self._files.clear()
        for key, seed in files.items():
            if isinstance(seed, Mapping):
                self.set_file(key, seed.get("content"), seed.get("mtime"))
            elif isinstance(seed, tuple):
                self.set_file(key, *seed)
            else:
                self.set_file(key, seed)

    def set_file(
        self,
        key: str,
        content: Optional[Union[bytes, str]] = None,
        mtime: Optional[datetime] = None,
    ) -> None:
        """Define one file; missing content is empty, missing mtime is now."""
        data = content_to_bytes(content) if content is not None else b""
        with self._lock:
            self._files[key] = (data, mtime or datetime.now(timezone.utc))

    # -------------------------------------------------------------------------
    # ADAPTER
    # -------------------------------------------------------------------------

    def read(self, key: str) -> Result[bytes, StorageError]:
        with self._lock:
            entry = self._files.get(key)
        if entry is None:
            return Err(StorageError.not_found("read", key))
        return Ok(entry[0])

    def write(self, key: str, content: Content) -> Result[int, StorageError]:
        try:
            data = content_to_bytes(content)
        except Exception as e:
            return Err(StorageError.from_exception("write", key, e))
        with self._lock:
            self._files[key] = (data, datetime.now(timezone.utc))
        return Ok(len(data))

    def rename(self, source_key: str, target_key: str) -> Result[None, StorageError]:
        with self._lock:
            entry = self._files.pop(source_key, None)
            if entry is None:
                return Err(StorageError.not_found("rename", source_key))
            self._files[target_key] = entry
        return Ok(None)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._files

    def delete(self, key: str) -> Result[None, StorageError]:
        with self._lock:
            self._files.pop(key, None)
        return Ok(None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._files)

    # -------------------------------------------------------------------------
    # CAPABILITIES
    # -------------------------------------------------------------------------

    def list_keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._files if k.startswith(prefix)]

    def size(self, key: str) -> Result[int, StorageError]:
        return self.read(key).map(len)

    def mtime(self, key: str) -> Result[datetime, StorageError]:
        with self._lock:
            entry = self._files.get(key)
        if entry is None:
            return Err(StorageError.not_found("mtime", key))
        return Ok(entry[1])

    def mime_type(self, key: str) -> Result[str, StorageError]:
        return self.read(key).map(self._sniffer.sniff)

    def is_directory(self, key: str) -> bool:
        return False
