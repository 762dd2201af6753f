"""
In-process metadata store.

Maps each key to the metadata merged into every request that references it.
Last writer wins; entries are never invalidated by writes, renames or
deletes, so a value observed on one read stays until explicitly replaced.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, Mapping

# Legacy spellings accepted by set_metadata
_ALIASES: Dict[str, str] = {
    "contentType": "ContentType",
}


class MetadataStore:
    """
    Thread-safe key -> metadata mapping owned by one adapter instance.

    Values are S3 request parameters (ContentType, CacheControl,
    ContentEncoding, Metadata for user tags, ...).
    """

    __slots__ = ("_entries", "_lock")

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize(metadata: Mapping[str, Any]) -> Dict[str, Any]:
        """Rename legacy keys (contentType -> ContentType)."""
        normalized: Dict[str, Any] = {}
        for name, value in metadata.items():
            normalized[_ALIASES.get(name, name)] = value
        return normalized

    def set(self, key: str, metadata: Mapping[str, Any]) -> None:
        """Replace the metadata of key."""
        entry = self.normalize(metadata)
        with self._lock:
            self._entries[key] = entry

    def get(self, key: str) -> Dict[str, Any]:
        """Copy of the metadata of key; empty when none was set or observed."""
        with self._lock:
            return dict(self._entries.get(key, {}))

    def record(self, key: str, name: str, value: Any) -> None:
        """Merge one observed field (e.g. ContentType from a read) into key."""
        with self._lock:
            self._entries.setdefault(key, {})[name] = value

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries))
