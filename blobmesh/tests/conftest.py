"""
Shared fixtures: in-memory object store, adapters and stream helpers.
"""

from __future__ import annotations

import io
from typing import Any, Callable, Dict, Optional

import pytest
from botocore.exceptions import ClientError

from blobmesh.core.constants import MIN_PART_SIZE
from blobmesh.observability.metrics import MetricsCollector, StorageMetrics
from blobmesh.storage.config import AdapterOptions
from blobmesh.storage.memory import InMemoryObjectStoreClient
from blobmesh.storage.s3_adapter import AwsS3Adapter

BUCKET = "test-bucket"


def client_error(code: str, status: int = 400, operation: str = "Test") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class NonSeekableStream(io.RawIOBase):
    """Readable, non-seekable stream (pipe/socket stand-in) with optional short reads."""

    def __init__(self, data: bytes, max_read: Optional[int] = None) -> None:
        super().__init__()
        self._buffer = io.BytesIO(data)
        self._max_read = max_read
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def read(self, size: int = -1) -> bytes:
        if self._max_read is not None and (size is None or size < 0 or size > self._max_read):
            size = self._max_read
        chunk = self._buffer.read(size)
        self.bytes_read += len(chunk)
        return chunk


class FailingStream(io.BytesIO):
    """BytesIO whose n-th read raises OSError."""

    def __init__(self, data: bytes, fail_on_read: int) -> None:
        super().__init__(data)
        self._reads = 0
        self._fail_on_read = fail_on_read

    def read(self, size: int = -1) -> bytes:
        self._reads += 1
        if self._reads == self._fail_on_read:
            raise OSError("disk read failed")
        return super().read(size)


class FlakyClient(InMemoryObjectStoreClient):
    """In-memory client failing selected calls with S3 error codes."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.fail_part: Optional[int] = None
        self.fail_complete = False
        self.fail_abort = False
        self.fail_initiate = False
        self.etag_override: Optional[str] = None

    def create_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        if self.fail_initiate:
            raise client_error("AccessDenied", 403, "CreateMultipartUpload")
        return super().create_multipart_upload(**params)

    def upload_part(self, **params: Any) -> Dict[str, Any]:
        if params["PartNumber"] == self.fail_part:
            raise client_error("InternalError", 500, "UploadPart")
        response = super().upload_part(**params)
        if self.etag_override is not None:
            return {"ETag": self.etag_override}
        return response

    def complete_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        if self.fail_complete:
            raise client_error("InternalError", 500, "CompleteMultipartUpload")
        return super().complete_multipart_upload(**params)

    def abort_multipart_upload(self, **params: Any) -> Dict[str, Any]:
        if self.fail_abort:
            super().abort_multipart_upload(**params)
            raise client_error("ServiceUnavailable", 503, "AbortMultipartUpload")
        return super().abort_multipart_upload(**params)


@pytest.fixture
def memory_client() -> InMemoryObjectStoreClient:
    return InMemoryObjectStoreClient(region="eu-west-1", buckets=(BUCKET,))


@pytest.fixture
def flaky_client() -> FlakyClient:
    return FlakyClient(region="eu-west-1", buckets=(BUCKET,))


@pytest.fixture
def metrics() -> StorageMetrics:
    return StorageMetrics(MetricsCollector())


@pytest.fixture
def small_options() -> AdapterOptions:
    """Multipart at 5 MiB with 5 MiB parts."""
    return AdapterOptions(size_limit=MIN_PART_SIZE, part_size=MIN_PART_SIZE)


@pytest.fixture
def adapter(memory_client, small_options, metrics) -> AwsS3Adapter:
    return AwsS3Adapter(memory_client, BUCKET, small_options, metrics=metrics)


@pytest.fixture
def make_adapter(memory_client) -> Callable[..., AwsS3Adapter]:
    def factory(client=None, bucket: str = BUCKET, options=None, **kwargs: Any) -> AwsS3Adapter:
        return AwsS3Adapter(client or memory_client, bucket, options, **kwargs)

    return factory
