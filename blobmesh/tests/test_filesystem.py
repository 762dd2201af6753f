"""
Unit Tests: Filesystem Facade

Tests:
    - Clobber guards on write, rename and delete
    - Fallbacks for adapters without listing or size support
    - UnsupportedCapability for missing capabilities
"""

import hashlib
from typing import Dict, List

import pytest

from blobmesh.core.errors import ErrorKind, StorageError, UnsupportedCapability
from blobmesh.core.types import Err, Ok, Result
from blobmesh.filesystem import Filesystem
from blobmesh.storage.memory import InMemoryAdapter
from blobmesh.storage.protocols import Adapter, Content, content_to_bytes
from blobmesh.tests.conftest import BUCKET


class MinimalAdapter(Adapter):
    """Core operations only."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}

    def read(self, key: str) -> Result[bytes, StorageError]:
        if key not in self.files:
            return Err(StorageError.not_found("read", key))
        return Ok(self.files[key])

    def write(self, key: str, content: Content) -> Result[int, StorageError]:
        self.files[key] = content_to_bytes(content)
        return Ok(len(self.files[key]))

    def rename(self, source_key: str, target_key: str) -> Result[None, StorageError]:
        self.files[target_key] = self.files.pop(source_key)
        return Ok(None)

    def exists(self, key: str) -> bool:
        return key in self.files

    def delete(self, key: str) -> Result[None, StorageError]:
        self.files.pop(key, None)
        return Ok(None)

    def keys(self) -> List[str]:
        return list(self.files)


@pytest.fixture
def fs() -> Filesystem:
    return Filesystem(InMemoryAdapter({"a.txt": b"hello"}))


class TestGuards:
    """Tests for existence checks around mutations."""

    def test_write_refuses_existing(self, fs):
        result = fs.write("a.txt", b"again")

        assert result.error.kind is ErrorKind.INVALID_ARGUMENT
        assert "already exists" in result.error.message
        assert fs.read("a.txt") == Ok(b"hello")

    def test_write_overwrite(self, fs):
        assert fs.write("a.txt", b"again", overwrite=True) == Ok(5)
        assert fs.read("a.txt") == Ok(b"again")

    def test_rename_guards(self, fs):
        fs.write("b.txt", b"b").unwrap()

        assert fs.rename("missing", "c.txt").error.kind is ErrorKind.NOT_FOUND
        assert "already exists" in fs.rename("a.txt", "b.txt").error.message
        assert fs.rename("a.txt", "c.txt") == Ok(None)
        assert fs.has("c.txt") and not fs.has("a.txt")

    def test_delete_missing(self, fs):
        assert fs.delete("missing").error.kind is ErrorKind.NOT_FOUND
        assert fs.delete("a.txt") == Ok(None)


class TestFallbacks:
    """Tests for portable fallbacks over a core-only adapter."""

    def test_list_keys_filters_keys(self):
        adapter = MinimalAdapter()
        fs = Filesystem(adapter)
        for key in ("img/a", "img/b", "doc/c"):
            fs.write(key, b"x").unwrap()

        assert fs.list_keys("img/") == ["img/a", "img/b"]
        assert fs.keys() == ["img/a", "img/b", "doc/c"]

    def test_size_reads_content(self):
        fs = Filesystem(MinimalAdapter())
        fs.write("k", "héllo").unwrap()
        assert fs.size("k") == Ok(6)

    def test_checksum(self, fs):
        assert fs.checksum("a.txt") == Ok(hashlib.md5(b"hello").hexdigest())
        assert fs.checksum("missing").is_err()

    def test_missing_capabilities_raise(self):
        fs = Filesystem(MinimalAdapter())

        with pytest.raises(UnsupportedCapability):
            fs.mtime("k")
        with pytest.raises(UnsupportedCapability):
            fs.mime_type("k")
        with pytest.raises(UnsupportedCapability):
            fs.is_directory("k")
        with pytest.raises(UnsupportedCapability) as info:
            fs.set_metadata("k", {"ContentType": "text/plain"})
        assert info.value.context == {"adapter": "MinimalAdapter", "capability": "metadata"}


class TestOverObjectStore:
    """Tests for the facade over the S3 adapter."""

    def test_metadata_passthrough(self, adapter):
        fs = Filesystem(adapter)
        fs.set_metadata("a.json", {"contentType": "application/json"})
        fs.write("a.json", b"{}").unwrap()

        assert fs.get_metadata("a.json") == {"ContentType": "application/json"}
        assert fs.mime_type("a.json") == Ok("application/json")
        assert fs.is_directory("a.json") is False
        assert adapter.bucket == BUCKET
