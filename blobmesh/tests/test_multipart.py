"""
Unit Tests: MultipartUploadCoordinator

Tests:
    - Part numbering, sizes and ETag order
    - Abort on part, stream and completion failures
    - Abort failures never mask the original error
    - Optional part checksum verification
"""

import io

import pytest
from botocore.exceptions import ClientError

from blobmesh.core.constants import MB, MIN_PART_SIZE
from blobmesh.core.errors import ErrorKind
from blobmesh.storage.multipart import (
    CompletedPart,
    MultipartUploadCoordinator,
    UploadSession,
    UploadState,
)
from blobmesh.tests.conftest import BUCKET, FailingStream, NonSeekableStream

PARAMS = {"Bucket": BUCKET, "Key": "big.bin", "ACL": "private"}


def payload(size: int) -> bytes:
    return (bytes(range(251)) * (size // 251 + 1))[:size]


class TestMultipartUpload:
    """Tests for the happy path."""

    def test_twelve_mib_in_three_parts(self, memory_client, metrics):
        data = payload(12 * MB)
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE, metrics=metrics)

        result = coordinator.upload(PARAMS, io.BytesIO(data), key="big.bin")

        assert result.is_ok()
        session = result.unwrap()
        assert session.state is UploadState.COMPLETED
        assert [p.part_number for p in session.parts] == [1, 2, 3]
        assert [p.size for p in session.parts] == [5 * MB, 5 * MB, 2 * MB]
        assert session.bytes_uploaded == 12 * MB
        assert memory_client.call_count("complete_multipart_upload") == 1
        assert memory_client.call_count("abort_multipart_upload") == 0
        assert memory_client.pending_uploads == []

        stored = memory_client.get_object(Bucket=BUCKET, Key="big.bin")["Body"].read()
        assert stored == data
        assert metrics.multipart_parts.get() == 3
        assert metrics.multipart_uploads.get(outcome="completed") == 1
        assert metrics.multipart_in_progress.get() == 0

    def test_etags_kept_in_submission_order(self, memory_client):
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE)
        session = coordinator.upload(PARAMS, io.BytesIO(payload(11 * MB)), key="big.bin").unwrap()

        for part in session.parts:
            assert part.etag == f'"{part.md5}"'
        assert session.parts_payload() == [
            {"PartNumber": p.part_number, "ETag": p.etag} for p in session.parts
        ]

    def test_single_part_still_completes(self, memory_client):
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE)

        session = coordinator.upload(PARAMS, io.BytesIO(b"tiny"), key="big.bin").unwrap()

        assert len(session.parts) == 1
        assert memory_client.call_count("create_multipart_upload") == 1
        assert memory_client.call_count("complete_multipart_upload") == 1

    def test_exact_multiple_has_no_empty_part(self, memory_client):
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE)

        session = coordinator.upload(PARAMS, io.BytesIO(payload(10 * MB)), key="big.bin").unwrap()

        assert [p.size for p in session.parts] == [5 * MB, 5 * MB]
        assert memory_client.call_count("upload_part") == 2

    def test_short_reads_fill_parts(self, memory_client):
        """A stream returning 1 MiB per read still produces full parts."""
        data = payload(7 * MB)
        stream = NonSeekableStream(data, max_read=MB)
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE)

        session = coordinator.upload(PARAMS, stream, key="big.bin").unwrap()

        assert [p.size for p in session.parts] == [5 * MB, 2 * MB]
        assert memory_client.get_object(Bucket=BUCKET, Key="big.bin")["Body"].read() == data

    def test_request_parameters_reach_the_object(self, memory_client):
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE)
        params = {**PARAMS, "ContentType": "video/mp4", "Metadata": {"owner": "ops"}}

        coordinator.upload(params, io.BytesIO(payload(MB)), key="big.bin").unwrap()

        head = memory_client.head_object(Bucket=BUCKET, Key="big.bin")
        assert head["ContentType"] == "video/mp4"
        assert head["Metadata"] == {"owner": "ops"}

    def test_part_size_below_minimum_rejected(self, memory_client):
        with pytest.raises(ValueError):
            MultipartUploadCoordinator(memory_client, MB)


class TestMultipartFailures:
    """Tests for abort-on-error behavior."""

    def test_part_failure_aborts(self, flaky_client, metrics):
        flaky_client.fail_part = 2
        coordinator = MultipartUploadCoordinator(flaky_client, MIN_PART_SIZE, metrics=metrics)

        result = coordinator.upload(PARAMS, io.BytesIO(payload(12 * MB)), key="big.bin")

        assert result.is_err()
        assert result.error.kind is ErrorKind.TRANSIENT_IO
        assert result.error.operation == "upload_part"
        # Part 2 failed before reaching the store
        assert flaky_client.call_count("upload_part") == 1
        assert flaky_client.call_count("abort_multipart_upload") == 1
        assert flaky_client.call_count("complete_multipart_upload") == 0
        assert flaky_client.pending_uploads == []
        assert metrics.multipart_uploads.get(outcome="aborted") == 1

        with pytest.raises(ClientError):
            flaky_client.head_object(Bucket=BUCKET, Key="big.bin")

    def test_stream_failure_aborts(self, memory_client):
        stream = FailingStream(payload(12 * MB), fail_on_read=2)
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE)

        result = coordinator.upload(PARAMS, stream, key="big.bin")

        assert result.is_err()
        assert result.error.kind is ErrorKind.TRANSIENT_IO
        assert "disk read failed" in result.error.message
        assert memory_client.call_count("abort_multipart_upload") == 1
        assert memory_client.pending_uploads == []

    def test_completion_failure_aborts(self, flaky_client):
        flaky_client.fail_complete = True
        coordinator = MultipartUploadCoordinator(flaky_client, MIN_PART_SIZE)

        result = coordinator.upload(PARAMS, io.BytesIO(payload(6 * MB)), key="big.bin")

        assert result.is_err()
        assert result.error.operation == "complete_multipart_upload"
        assert flaky_client.call_count("abort_multipart_upload") == 1

    def test_abort_failure_keeps_original_error(self, flaky_client):
        flaky_client.fail_part = 1
        flaky_client.fail_abort = True
        coordinator = MultipartUploadCoordinator(flaky_client, MIN_PART_SIZE)

        result = coordinator.upload(PARAMS, io.BytesIO(payload(MB)), key="big.bin")

        assert result.is_err()
        assert result.error.operation == "upload_part"
        assert result.error.kind is ErrorKind.TRANSIENT_IO

    def test_initiate_failure_has_nothing_to_abort(self, flaky_client):
        flaky_client.fail_initiate = True
        coordinator = MultipartUploadCoordinator(flaky_client, MIN_PART_SIZE)

        result = coordinator.upload(PARAMS, io.BytesIO(b"data"), key="big.bin")

        assert result.is_err()
        assert result.error.kind is ErrorKind.PERMISSION_DENIED
        assert flaky_client.call_count("abort_multipart_upload") == 0
        assert flaky_client.call_count("upload_part") == 0

    def test_empty_stream_is_aborted(self, memory_client):
        coordinator = MultipartUploadCoordinator(memory_client, MIN_PART_SIZE)

        result = coordinator.upload(PARAMS, io.BytesIO(b""), key="big.bin")

        assert result.is_err()
        assert result.error.kind is ErrorKind.INVALID_ARGUMENT
        assert memory_client.call_count("upload_part") == 0
        assert memory_client.call_count("abort_multipart_upload") == 1

    def test_checksum_mismatch_is_part_failure(self, flaky_client):
        flaky_client.etag_override = '"0000"'
        coordinator = MultipartUploadCoordinator(
            flaky_client, MIN_PART_SIZE, verify_part_checksums=True,
        )

        result = coordinator.upload(PARAMS, io.BytesIO(payload(MB)), key="big.bin")

        assert result.is_err()
        assert "checksum" in result.error.message
        assert flaky_client.call_count("abort_multipart_upload") == 1

    def test_checksums_verified_when_matching(self, memory_client):
        coordinator = MultipartUploadCoordinator(
            memory_client, MIN_PART_SIZE, verify_part_checksums=True,
        )
        assert coordinator.upload(PARAMS, io.BytesIO(payload(6 * MB)), key="big.bin").is_ok()


class TestUploadSession:
    """Tests for the session state machine."""

    def session(self) -> UploadSession:
        return UploadSession(
            upload_id="u1", key="k", path="dir/k", bucket=BUCKET, part_size=MIN_PART_SIZE,
        )

    def test_record_part_advances(self):
        session = self.session()
        session.record_part(CompletedPart(1, '"a"', 10, "a"))
        session.record_part(CompletedPart(2, '"b"', 4, "b"))

        assert session.state is UploadState.UPLOADING
        assert session.next_part_number == 3
        assert session.bytes_uploaded == 14
        assert session.request_ids() == {"Bucket": BUCKET, "Key": "dir/k", "UploadId": "u1"}

    def test_out_of_order_part_rejected(self):
        session = self.session()
        with pytest.raises(RuntimeError, match="out of order"):
            session.record_part(CompletedPart(2, '"b"', 4, "b"))

    def test_terminal_states_are_final(self):
        session = self.session()
        session.transition(UploadState.ABORTED)
        assert session.state.is_terminal
        with pytest.raises(RuntimeError, match="Illegal upload transition"):
            session.transition(UploadState.UPLOADING)

    def test_cannot_complete_without_parts(self):
        with pytest.raises(RuntimeError):
            self.session().transition(UploadState.COMPLETED)
