"""
Unit Tests: In-Memory Backends

Tests:
    - InMemoryObjectStoreClient S3 semantics (errors, copy, paging, multipart)
    - InMemoryAdapter operations and seeding
"""

from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from blobmesh.core.constants import MIN_PART_SIZE
from blobmesh.core.errors import ErrorKind
from blobmesh.core.types import Ok
from blobmesh.storage.memory import InMemoryAdapter, InMemoryObjectStoreClient
from blobmesh.storage.protocols import DirectoryAware, ListKeysAware, MetadataSupporter, SizeCalculator


def error_code(info) -> str:
    return info.value.response["Error"]["Code"]


@pytest.fixture
def client() -> InMemoryObjectStoreClient:
    return InMemoryObjectStoreClient(buckets=("media",))


class TestObjectStoreClient:
    """Tests for the in-memory S3 client."""

    def test_put_get_head(self, client):
        client.put_object(Bucket="media", Key="a.txt", Body=b"hello", ContentType="text/plain",
                          CacheControl="max-age=60", Metadata={"owner": "ops"})

        response = client.get_object(Bucket="media", Key="a.txt")
        assert response["Body"].read() == b"hello"
        assert response["ContentType"] == "text/plain"
        assert response["CacheControl"] == "max-age=60"
        assert response["Metadata"] == {"owner": "ops"}

        head = client.head_object(Bucket="media", Key="a.txt")
        assert head["ContentLength"] == 5
        assert head["ETag"] == '"5d41402abc4b2a76b9719d911017c592"'

    def test_default_content_type(self, client):
        client.put_object(Bucket="media", Key="a", Body=b"x")
        assert client.head_object(Bucket="media", Key="a")["ContentType"] == "application/octet-stream"

    def test_missing_key_codes(self, client):
        with pytest.raises(ClientError) as info:
            client.get_object(Bucket="media", Key="missing")
        assert error_code(info) == "NoSuchKey"

        with pytest.raises(ClientError) as info:
            client.head_object(Bucket="media", Key="missing")
        assert error_code(info) == "404"

    def test_missing_bucket(self, client):
        with pytest.raises(ClientError) as info:
            client.put_object(Bucket="absent", Key="a", Body=b"x")
        assert error_code(info) == "NoSuchBucket"

    def test_create_bucket(self, client):
        client.create_bucket("fresh", "eu-west-1")
        assert client.bucket_exists("fresh")
        assert client.bucket_region("fresh") == "eu-west-1"

        with pytest.raises(ClientError) as info:
            client.create_bucket("fresh")
        assert error_code(info) == "BucketAlreadyOwnedByYou"

    def test_delete_is_idempotent(self, client):
        client.put_object(Bucket="media", Key="a", Body=b"x")
        client.delete_object(Bucket="media", Key="a")
        client.delete_object(Bucket="media", Key="a")
        assert client.call_count("delete_object") == 2

    def test_copy_preserves_or_replaces(self, client):
        client.put_object(Bucket="media", Key="a", Body=b"x", ContentType="text/plain")

        client.copy_object(Bucket="media", Key="b", CopySource="media/a")
        client.copy_object(Bucket="media", Key="c", CopySource={"Bucket": "media", "Key": "a"},
                           MetadataDirective="REPLACE", ContentType="text/markdown")

        assert client.head_object(Bucket="media", Key="b")["ContentType"] == "text/plain"
        assert client.head_object(Bucket="media", Key="c")["ContentType"] == "text/markdown"
        assert client.get_object(Bucket="media", Key="c")["Body"].read() == b"x"

    def test_list_pages(self, client):
        for n in range(5):
            client.put_object(Bucket="media", Key=f"k{n}", Body=b"x")

        first = client.list_objects(Bucket="media", MaxKeys=2)
        assert [c["Key"] for c in first["Contents"]] == ["k0", "k1"]
        assert first["IsTruncated"] is True

        second = client.list_objects(Bucket="media", MaxKeys=2,
                                     ContinuationToken=first["NextContinuationToken"])
        assert [c["Key"] for c in second["Contents"]] == ["k2", "k3"]

        assert [c["Key"] for c in client.iter_objects("media")] == [f"k{n}" for n in range(5)]

    def test_list_empty_prefix_has_no_contents(self, client):
        response = client.list_objects(Bucket="media", Prefix="nothing/")
        assert "Contents" not in response
        assert response["KeyCount"] == 0

    def test_multipart_round_trip(self, client):
        upload_id = client.create_multipart_upload(Bucket="media", Key="big",
                                                   ContentType="video/mp4")["UploadId"]
        first = b"a" * MIN_PART_SIZE
        e1 = client.upload_part(Bucket="media", Key="big", UploadId=upload_id, PartNumber=1, Body=first)["ETag"]
        e2 = client.upload_part(Bucket="media", Key="big", UploadId=upload_id, PartNumber=2, Body=b"tail")["ETag"]

        response = client.complete_multipart_upload(
            Bucket="media", Key="big", UploadId=upload_id,
            MultipartUpload={"Parts": [{"PartNumber": 1, "ETag": e1}, {"PartNumber": 2, "ETag": e2}]},
        )

        assert response["ETag"].endswith('-2"')
        assert client.get_object(Bucket="media", Key="big")["Body"].read() == first + b"tail"
        assert client.head_object(Bucket="media", Key="big")["ContentType"] == "video/mp4"
        assert client.pending_uploads == []

    def test_multipart_rejects_small_middle_part(self, client):
        upload_id = client.create_multipart_upload(Bucket="media", Key="big")["UploadId"]
        e1 = client.upload_part(Bucket="media", Key="big", UploadId=upload_id, PartNumber=1, Body=b"x")["ETag"]
        e2 = client.upload_part(Bucket="media", Key="big", UploadId=upload_id, PartNumber=2, Body=b"y")["ETag"]

        with pytest.raises(ClientError) as info:
            client.complete_multipart_upload(
                Bucket="media", Key="big", UploadId=upload_id,
                MultipartUpload={"Parts": [{"PartNumber": 1, "ETag": e1}, {"PartNumber": 2, "ETag": e2}]},
            )
        assert error_code(info) == "EntityTooSmall"

    def test_multipart_rejects_bad_order_and_etag(self, client):
        upload_id = client.create_multipart_upload(Bucket="media", Key="big")["UploadId"]
        e1 = client.upload_part(Bucket="media", Key="big", UploadId=upload_id, PartNumber=1, Body=b"x")["ETag"]

        with pytest.raises(ClientError) as info:
            client.complete_multipart_upload(
                Bucket="media", Key="big", UploadId=upload_id,
                MultipartUpload={"Parts": [{"PartNumber": 2, "ETag": e1}, {"PartNumber": 1, "ETag": e1}]},
            )
        assert error_code(info) == "InvalidPartOrder"

        with pytest.raises(ClientError) as info:
            client.complete_multipart_upload(
                Bucket="media", Key="big", UploadId=upload_id,
                MultipartUpload={"Parts": [{"PartNumber": 1, "ETag": '"bogus"'}]},
            )
        assert error_code(info) == "InvalidPart"

    def test_abort_discards_upload(self, client):
        upload_id = client.create_multipart_upload(Bucket="media", Key="big")["UploadId"]
        client.abort_multipart_upload(Bucket="media", Key="big", UploadId=upload_id)

        assert client.pending_uploads == []
        with pytest.raises(ClientError) as info:
            client.upload_part(Bucket="media", Key="big", UploadId=upload_id, PartNumber=1, Body=b"x")
        assert error_code(info) == "NoSuchUpload"


class TestInMemoryAdapter:
    """Tests for the dict-backed adapter."""

    def test_read_write(self):
        adapter = InMemoryAdapter()
        assert adapter.write("a", "héllo") == Ok(6)
        assert adapter.read("a") == Ok("héllo".encode("utf-8"))

    def test_read_missing(self):
        result = InMemoryAdapter().read("missing")
        assert result.is_err()
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_seeding_forms(self):
        mtime = datetime(2024, 1, 2, tzinfo=timezone.utc)
        adapter = InMemoryAdapter({
            "plain": b"x",
            "tuple": (b"yy", mtime),
            "mapping": {"content": "zzz", "mtime": mtime},
        })

        assert adapter.size("plain") == Ok(1)
        assert adapter.mtime("tuple") == Ok(mtime)
        assert adapter.read("mapping") == Ok(b"zzz")

        adapter.set_files({"only": b"1"})
        assert adapter.keys() == ["only"]

    def test_rename(self):
        adapter = InMemoryAdapter({"a": b"1"})
        assert adapter.rename("a", "b") == Ok(None)
        assert adapter.keys() == ["b"]

        result = adapter.rename("a", "c")
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_delete_and_exists(self):
        adapter = InMemoryAdapter({"a": b"1"})
        assert adapter.exists("a")
        assert adapter.delete("a") == Ok(None)
        assert not adapter.exists("a")
        assert adapter.delete("a") == Ok(None)

    def test_list_keys_and_mime(self):
        adapter = InMemoryAdapter({"img/a.png": b"\x89PNG\r\n\x1a\n", "img/b.txt": b"text", "c": b""})
        assert sorted(adapter.list_keys("img/")) == ["img/a.png", "img/b.txt"]
        assert adapter.mime_type("img/a.png") == Ok("image/png")
        assert adapter.mime_type("img/b.txt") == Ok("text/plain")

    def test_capabilities(self):
        adapter = InMemoryAdapter()
        assert isinstance(adapter, ListKeysAware)
        assert isinstance(adapter, SizeCalculator)
        assert isinstance(adapter, DirectoryAware)
        assert not isinstance(adapter, MetadataSupporter)
        assert adapter.is_directory("img") is False
