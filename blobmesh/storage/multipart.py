"""
Multipart Upload Coordinator
============================

Chunked upload state machine for S3-class object stores:

    INITIATED --first part--> UPLOADING --complete--> COMPLETED
        |                         |
        +-------- abort ----------+-------> ABORTED

Protocol:
---------
1. Initiate with the resolved request parameters (bucket, key, ACL,
   metadata). A failed initiate returns Err; there is nothing to abort.
2. Read the stream one part at a time. Parts are numbered 1, 2, 3... in
   submission order and uploaded sequentially; the returned ETags are kept
   in that order. An empty read ends the stream, so a zero-length part is
   never submitted.
3. Any part failure (backend error, stream read error, checksum mismatch)
   aborts the upload before Err is returned.
4. Once the stream is exhausted the ordered part list is completed. A failed
   completion is aborted too.

Abort failures are logged and never replace the failure that triggered the
abort.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Mapping, Optional

from blobmesh.core.constants import MAX_PART_NUMBER, MIN_PART_SIZE
from blobmesh.core.errors import ErrorKind, StorageError
from blobmesh.core.types import Err, Ok, Result
from blobmesh.observability.logging import StructuredLogger
from blobmesh.observability.metrics import StorageMetrics
from blobmesh.storage.protocols import ObjectStoreClient

_log = StructuredLogger(__name__)


# =============================================================================
# UPLOAD STATE
# =============================================================================

class UploadState(Enum):
    """Lifecycle state of one multipart upload."""
    INITIATED = "initiated"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.COMPLETED, UploadState.ABORTED)


_TRANSITIONS: Dict[UploadState, frozenset] = {
    UploadState.INITIATED: frozenset({UploadState.UPLOADING, UploadState.ABORTED}),
    UploadState.UPLOADING: frozenset({UploadState.COMPLETED, UploadState.ABORTED}),
    UploadState.COMPLETED: frozenset(),
    UploadState.ABORTED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """
    One acknowledged part.

    Attributes:
        part_number: 1-based position in the object.
        etag: Entity tag returned by the backend (quotes preserved).
        size: Part length in bytes.
        md5: Hex MD5 digest of the part as sent.
    """
    part_number: int
    etag: str
    size: int
    md5: str

    def to_request(self) -> Dict[str, Any]:
        return {"PartNumber": self.part_number, "ETag": self.etag}


@dataclass(slots=True)
class UploadSession:
    """
    Mutable record of one in-flight multipart upload.

    Attributes:
        upload_id: Backend-issued upload id.
        key: Logical key being written.
        path: Physical object path in the bucket.
        bucket: Target bucket.
        part_size: Bytes per part (the last part may be shorter).
        parts: Acknowledged parts in submission order.
        state: Current lifecycle state.
        next_part_number: Number the next part will be uploaded under.
        bytes_uploaded: Sum of acknowledged part sizes.
    """
    upload_id: str
    key: str
    path: str
    bucket: str
    part_size: int
    parts: List[CompletedPart] = field(default_factory=list)
    state: UploadState = UploadState.INITIATED
    next_part_number: int = 1
    bytes_uploaded: int = 0

    def transition(self, target: UploadState) -> None:
        """
        Move to target state.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if target is self.state and target is UploadState.UPLOADING:
            return
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal upload transition {self.state.value} -> {target.value} "
                f"(upload {self.upload_id})"
            )
        self.state = target

    def record_part(self, part: CompletedPart) -> None:
        if part.part_number != self.next_part_number:
            raise RuntimeError(
                f"Part {part.part_number} recorded out of order, "
                f"expected {self.next_part_number}"
            )
        self.transition(UploadState.UPLOADING)
        self.parts.append(part)
        self.next_part_number += 1
        self.bytes_uploaded += part.size

    def parts_payload(self) -> List[Dict[str, Any]]:
        """Ordered part list for the completion request."""
        return [part.to_request() for part in self.parts]

    def request_ids(self) -> Dict[str, Any]:
        return {"Bucket": self.bucket, "Key": self.path, "UploadId": self.upload_id}


# =============================================================================
# COORDINATOR
# =============================================================================

class MultipartUploadCoordinator:
    """
    Drives one stream through the multipart protocol.

    Example:
        coordinator = MultipartUploadCoordinator(client, part_size=8 * MB)
        result = coordinator.upload(
            {"Bucket": "media", "Key": "videos/a.mp4", "ACL": "private"},
            open("a.mp4", "rb"),
            key="videos/a.mp4",
        )
        if result.is_ok():
            print(len(result.value.parts))
    """

    __slots__ = ("_client", "_part_size", "_verify", "_metrics")

    def __init__(
        self,
        client: ObjectStoreClient,
        part_size: int,
        verify_part_checksums: bool = False,
        metrics: Optional[StorageMetrics] = None,
    ) -> None:
        if part_size < MIN_PART_SIZE:
            raise ValueError(f"part_size must be >= {MIN_PART_SIZE}, got {part_size}")
        self._client = client
        self._part_size = part_size
        self._verify = verify_part_checksums
        self._metrics = metrics

    @property
    def part_size(self) -> int:
        return self._part_size

    def upload(
        self,
        params: Mapping[str, Any],
        stream: BinaryIO,
        key: str,
    ) -> Result[UploadSession, StorageError]:
        """
        Upload the remainder of stream as one object.

        Args:
            params: Resolved request parameters; Bucket and Key are required.
            stream: Readable binary stream, consumed from its current position.
            key: Logical key, used for errors and logs.

        Returns:
            Ok(session) in COMPLETED state, or Err after the upload was aborted.
        """
        try:
            response = self._client.create_multipart_upload(**params)
        except Exception as e:
            _log.error("Failed to initiate multipart upload", key=key, error=str(e))
            if self._metrics:
                self._metrics.multipart_uploads.inc(outcome="initiate_failed")
            return Err(StorageError.from_exception("create_multipart_upload", key, e))

        session = UploadSession(
            upload_id=response["UploadId"],
            key=key,
            path=params["Key"],
            bucket=params["Bucket"],
            part_size=self._part_size,
        )
        log = _log.with_extra(upload_id=session.upload_id, key=key, bucket=session.bucket)
        log.debug("Multipart upload initiated", part_size=self._part_size)
        if self._metrics:
            self._metrics.multipart_in_progress.inc()

        try:
            return self._run(session, stream, log)
        finally:
            if self._metrics:
                self._metrics.multipart_in_progress.dec()

    def _run(
        self,
        session: UploadSession,
        stream: BinaryIO,
        log: StructuredLogger,
    ) -> Result[UploadSession, StorageError]:
        while True:
            try:
                chunk = self._read_part(stream)
            except Exception as e:
                return self._abort(session, StorageError.from_exception("read", session.key, e), log)
            if not chunk:
                break

            if session.next_part_number > MAX_PART_NUMBER:
                error = StorageError.invalid_argument(
                    "upload_part",
                    session.key,
                    f"stream needs more than {MAX_PART_NUMBER} parts of {self._part_size} bytes",
                )
                return self._abort(session, error, log)

            part = self._upload_part(session, chunk)
            if part.is_err():
                return self._abort(session, part.error, log)
            session.record_part(part.value)
            if self._metrics:
                self._metrics.multipart_parts.inc()
            log.debug(
                "Part uploaded",
                part_number=part.value.part_number,
                part_bytes=part.value.size,
            )

        if not session.parts:
            error = StorageError.invalid_argument(
                "complete_multipart_upload", session.key, "stream is empty",
            )
            return self._abort(session, error, log)

        try:
            self._client.complete_multipart_upload(
                **session.request_ids(),
                MultipartUpload={"Parts": session.parts_payload()},
            )
        except Exception as e:
            error = StorageError.from_exception("complete_multipart_upload", session.key, e)
            return self._abort(session, error, log)

        session.transition(UploadState.COMPLETED)
        if self._metrics:
            self._metrics.multipart_uploads.inc(outcome="completed")
        log.info(
            "Multipart upload completed",
            parts=len(session.parts),
            bytes_uploaded=session.bytes_uploaded,
        )
        return Ok(session)

    def _read_part(self, stream: BinaryIO) -> bytes:
        """Read up to part_size bytes, tolerating short reads before EOF."""
        buffer = bytearray()
        while len(buffer) < self._part_size:
            chunk = stream.read(self._part_size - len(buffer))
            if not chunk:
                break
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            buffer.extend(chunk)
        return bytes(buffer)

    def _upload_part(self, session: UploadSession, chunk: bytes) -> Result[CompletedPart, StorageError]:
        part_number = session.next_part_number
        digest = hashlib.md5(chunk).hexdigest()
        try:
            response = self._client.upload_part(
                **session.request_ids(),
                PartNumber=part_number,
                Body=chunk,
            )
        except Exception as e:
            return Err(StorageError.from_exception("upload_part", session.key, e))

        etag = response.get("ETag", "")
        if self._verify and etag.strip('"') != digest:
            return Err(StorageError(
                kind=ErrorKind.TRANSIENT_IO,
                message=(
                    f"Part {part_number} of '{session.key}' failed checksum: "
                    f"ETag {etag} != MD5 {digest}"
                ),
                context={"operation": "upload_part", "key": session.key, "part_number": part_number},
            ))

        return Ok(CompletedPart(part_number=part_number, etag=etag, size=len(chunk), md5=digest))

    def _abort(
        self,
        session: UploadSession,
        error: StorageError,
        log: StructuredLogger,
    ) -> Err[StorageError]:
        log.warning(
            "Aborting multipart upload",
            parts_uploaded=len(session.parts),
            error=error.message,
        )
        try:
            self._client.abort_multipart_upload(**session.request_ids())
        except Exception as e:
            log.error("Abort of multipart upload failed", error=str(e))
        session.transition(UploadState.ABORTED)
        if self._metrics:
            self._metrics.multipart_uploads.inc(outcome="aborted")
        return Err(error)
