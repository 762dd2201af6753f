"""
Unit Tests: KeyPathMapper
"""

import pytest

from blobmesh.storage.keys import KeyPathMapper


class TestKeyPathMapper:
    """Tests for logical key <-> physical path mapping."""

    def test_no_directory_is_identity(self):
        mapper = KeyPathMapper()
        assert mapper.to_path("a/b.txt") == "a/b.txt"
        assert mapper.to_key("a/b.txt") == "a/b.txt"

    def test_directory_prefix(self):
        mapper = KeyPathMapper("uploads")
        assert mapper.to_path("a/b.txt") == "uploads/a/b.txt"
        assert mapper.to_key("uploads/a/b.txt") == "a/b.txt"

    @pytest.mark.parametrize("directory", ["", "uploads", "tenant/a"])
    @pytest.mark.parametrize("key", ["x", "a/b/c.bin", "with space.txt"])
    def test_round_trip(self, directory, key):
        mapper = KeyPathMapper(directory)
        assert mapper.to_key(mapper.to_path(key)) == key

    def test_list_prefix(self):
        assert KeyPathMapper().list_prefix() is None
        assert KeyPathMapper().list_prefix("logs/") == "logs/"
        assert KeyPathMapper("uploads").list_prefix() == "uploads"
        assert KeyPathMapper("uploads").list_prefix("logs/") == "uploads/logs/"

    def test_directory_prefix_strips_trailing_slashes(self):
        mapper = KeyPathMapper("uploads")
        assert mapper.directory_prefix("photos") == "uploads/photos/"
        assert mapper.directory_prefix("photos//") == "uploads/photos/"
        assert KeyPathMapper().directory_prefix("photos/") == "photos/"
