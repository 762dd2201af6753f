"""
Key/path mapping between logical keys and backend object paths.

A configured directory prefix places every key of an adapter under
"<directory>/". Round trip: to_key(to_path(key)) == key, provided the key
does not itself begin with the directory string.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from blobmesh.core.constants import PATH_SEPARATOR


@dataclass(frozen=True, slots=True)
class KeyPathMapper:
    """
    Pure translation between logical keys and physical paths.

    Attributes:
        directory: Logical prefix; "" disables prefixing.
    """

    directory: str = ""

    def to_path(self, key: str) -> str:
        """Physical path of a logical key."""
        if not self.directory:
            return key
        return f"{self.directory}{PATH_SEPARATOR}{key}"

    def to_key(self, path: str) -> str:
        """
        Logical key of a physical path.

        Strips len(directory) characters from the front, then any leading
        separators. The prefix itself is not verified.
        """
        return path[len(self.directory):].lstrip(PATH_SEPARATOR)

    def list_prefix(self, prefix: str = "") -> Optional[str]:
        """Listing prefix for a logical key prefix (None lists everything)."""
        if prefix:
            return self.to_path(prefix)
        if self.directory:
            return self.directory
        return None

    def directory_prefix(self, key: str) -> str:
        """Prefix under which the children of an emulated directory live."""
        return self.to_path(key).rstrip(PATH_SEPARATOR) + PATH_SEPARATOR
