"""
Unit Tests: Local Filesystem Adapters

Tests:
    - Root directory checks and creation
    - Read/write/rename/delete on disk
    - Key containment below the root
    - SafeLocalAdapter flat, encoded file names
"""

import io

import pytest

from blobmesh.core.errors import ConfigurationError, ErrorKind
from blobmesh.core.types import Ok
from blobmesh.storage.local import LocalAdapter, SafeLocalAdapter
from blobmesh.tests.conftest import FailingStream, NonSeekableStream


@pytest.fixture
def local(tmp_path) -> LocalAdapter:
    return LocalAdapter(tmp_path)


class TestRoot:
    """Tests for the lazily checked root directory."""

    def test_missing_root_is_fatal(self, tmp_path):
        adapter = LocalAdapter(tmp_path / "absent")
        with pytest.raises(ConfigurationError) as info:
            adapter.read("a")
        assert "does not exist" in info.value.message

    def test_missing_root_created(self, tmp_path):
        root = tmp_path / "nested" / "store"
        adapter = LocalAdapter(root, create=True)

        assert adapter.write("a.txt", b"x") == Ok(1)
        assert root.is_dir()


class TestOperations:
    """Tests for adapter operations on disk."""

    def test_round_trip(self, local, tmp_path):
        assert local.write("docs/a.txt", "héllo") == Ok(6)
        assert (tmp_path / "docs" / "a.txt").read_bytes() == "héllo".encode("utf-8")
        assert local.read("docs/a.txt") == Ok("héllo".encode("utf-8"))

    def test_stream_write(self, local):
        assert local.write("s.bin", NonSeekableStream(b"x" * 3000, max_read=100)) == Ok(3000)
        assert local.size("s.bin") == Ok(3000)

    def test_read_missing(self, local):
        result = local.read("missing")
        assert result.error.kind is ErrorKind.NOT_FOUND

    def test_rename(self, local):
        local.write("a.txt", b"1").unwrap()

        assert local.rename("a.txt", "moved/b.txt") == Ok(None)
        assert not local.exists("a.txt")
        assert local.read("moved/b.txt") == Ok(b"1")

    def test_rename_missing(self, local):
        assert local.rename("ghost", "b").error.kind is ErrorKind.NOT_FOUND

    def test_delete(self, local):
        local.write("a.txt", b"1").unwrap()
        assert local.delete("a.txt") == Ok(None)
        assert not local.exists("a.txt")
        assert local.delete("a.txt") == Ok(None)

    def test_delete_directory_keeps_children(self, local):
        """Deleting a directory key leaves the objects below it, as on S3."""
        local.write("photos/a.jpg", b"1").unwrap()
        local.write("photos/b.jpg", b"2").unwrap()

        assert local.delete("photos") == Ok(None)

        assert local.exists("photos/a.jpg")
        assert local.keys() == ["photos/a.jpg", "photos/b.jpg"]

    def test_delete_empty_directory(self, local, tmp_path):
        (tmp_path / "empty").mkdir()

        assert local.delete("empty") == Ok(None)
        assert not (tmp_path / "empty").exists()

    def test_failed_stream_write_keeps_old_object(self, local, tmp_path):
        local.write("k", b"old content").unwrap()

        result = local.write("k", FailingStream(b"x" * 200000, fail_on_read=2))

        assert result.is_err()
        assert local.read("k") == Ok(b"old content")
        assert [p.name for p in tmp_path.iterdir()] == ["k"]

    def test_list_keys(self, local):
        for key in ("b.txt", "a/2.txt", "a/1.txt"):
            local.write(key, b"x").unwrap()

        assert local.keys() == ["a/1.txt", "a/2.txt", "b.txt"]
        assert local.list_keys("a/") == ["a/1.txt", "a/2.txt"]

    def test_stat(self, local):
        local.write("img.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 8).unwrap()

        assert local.size("img.png") == Ok(16)
        assert local.mtime("img.png").unwrap().tzinfo is not None
        assert local.mime_type("img.png") == Ok("image/png")

    def test_is_directory(self, local):
        local.write("photos/a.jpg", b"x").unwrap()

        assert local.is_directory("photos")
        assert local.is_directory("photos/")
        assert not local.is_directory("photos/a.jpg")
        assert not local.is_directory("videos")


class TestContainment:
    """Tests for keys resolving outside the root."""

    def test_escape_rejected(self, local, tmp_path):
        result = local.write("../outside.txt", b"x")

        assert result.error.kind is ErrorKind.INVALID_ARGUMENT
        assert not (tmp_path.parent / "outside.txt").exists()

    def test_empty_key_rejected(self, local):
        assert local.read("").error.kind is ErrorKind.INVALID_ARGUMENT
        assert local.exists("") is False

    def test_dot_segments_inside_root(self, local):
        assert local.write("a/../b.txt", b"x") == Ok(1)
        assert local.keys() == ["b.txt"]


class TestSafeLocalAdapter:
    """Tests for base64 encoded file names."""

    def test_keys_stored_flat(self, tmp_path):
        adapter = SafeLocalAdapter(tmp_path)

        adapter.write("../../etc/passwd", b"x").unwrap()
        adapter.write("a/b c.txt", io.BytesIO(b"y")).unwrap()

        assert all(p.is_file() for p in tmp_path.iterdir())
        assert len(list(tmp_path.iterdir())) == 2
        assert adapter.keys() == sorted(["../../etc/passwd", "a/b c.txt"])
        assert adapter.read("a/b c.txt") == Ok(b"y")
        assert adapter.is_directory("a") is False

    def test_undecodable_names_skipped(self, tmp_path):
        (tmp_path / "abc").write_bytes(b"stray")
        adapter = SafeLocalAdapter(tmp_path)
        adapter.write("k", b"v").unwrap()

        assert adapter.keys() == ["k"]
