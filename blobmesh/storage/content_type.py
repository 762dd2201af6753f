"""
Best-effort content type detection.

Sniffs a MIME type from leading magic bytes, falling back to the stream's
file name and finally to a text/binary heuristic. Never fails: the worst
answer is application/octet-stream.
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Optional, Tuple, Union

from blobmesh.core.constants import DEFAULT_CONTENT_TYPE, SNIFF_BYTES
from blobmesh.storage.protocols import Content

logger = logging.getLogger(__name__)

EMPTY_CONTENT_TYPE = "application/x-empty"
TEXT_CONTENT_TYPE = "text/plain"

# (offset, signature, mime type), checked in order
_SIGNATURES: Tuple[Tuple[int, bytes, str], ...] = (
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"%PDF", "application/pdf"),
    (0, b"PK\x03\x04", "application/zip"),
    (0, b"\x1f\x8b", "application/gzip"),
    (8, b"WEBP", "image/webp"),
    (0, b"BM", "image/bmp"),
    (0, b"ID3", "audio/mpeg"),
    (0, b"OggS", "audio/ogg"),
    (0, b"\x00\x00\x01\x00", "image/x-icon"),
)

# Text prefixes, compared case-insensitively after leading whitespace
_TEXT_SIGNATURES: Tuple[Tuple[bytes, str], ...] = (
    (b"<?xml", "application/xml"),
    (b"<!doctype html", "text/html"),
    (b"<html", "text/html"),
    (b"{", "application/json"),
)


class ContentTypeSniffer:
    """
    Detects a content type from a buffer or a seekable stream.

    Streams are read for at most `sniff_bytes` bytes and rewound to the
    position they had before sniffing; non-seekable streams are not
    consumed and are sniffed by name only.
    """

    __slots__ = ("_sniff_bytes",)

    def __init__(self, sniff_bytes: int = SNIFF_BYTES) -> None:
        self._sniff_bytes = sniff_bytes

    def sniff(self, content: Content) -> str:
        if isinstance(content, str):
            return TEXT_CONTENT_TYPE if content else EMPTY_CONTENT_TYPE
        if isinstance(content, (bytes, bytearray, memoryview)):
            return self.sniff_bytes(bytes(content[: self._sniff_bytes]))

        head = self._peek(content)
        if head is None:
            return self._guess_from_name(content) or DEFAULT_CONTENT_TYPE
        if not head:
            return EMPTY_CONTENT_TYPE

        by_magic = self._match_magic(head)
        if by_magic:
            return by_magic
        by_name = self._guess_from_name(content)
        if by_name:
            return by_name
        return self._text_or_binary(head)

    def sniff_bytes(self, head: bytes) -> str:
        """Content type of a leading byte sample."""
        if not head:
            return EMPTY_CONTENT_TYPE
        return self._match_magic(head) or self._text_or_binary(head)

    def _peek(self, stream: object) -> Optional[bytes]:
        seekable = getattr(stream, "seekable", None)
        if seekable is None or not seekable():
            return None
        try:
            position = stream.tell()
            head = stream.read(self._sniff_bytes)
            stream.seek(position)
        except (OSError, ValueError) as e:
            logger.debug("Could not peek stream for content type: %s", e)
            return None
        if isinstance(head, str):
            head = head.encode("utf-8")
        return head

    @staticmethod
    def _match_magic(head: bytes) -> Optional[str]:
        for offset, signature, mime in _SIGNATURES:
            if head[offset:offset + len(signature)] == signature:
                return mime
        stripped = head.lstrip().lower()
        for prefix, mime in _TEXT_SIGNATURES:
            if stripped.startswith(prefix):
                return mime
        return None

    @staticmethod
    def _guess_from_name(stream: object) -> Optional[str]:
        name = getattr(stream, "name", None)
        if not isinstance(name, str):
            return None
        guessed, _ = mimetypes.guess_type(name)
        return guessed

    @staticmethod
    def _text_or_binary(head: bytes) -> str:
        if b"\x00" in head:
            return DEFAULT_CONTENT_TYPE
        try:
            head.decode("utf-8")
        except UnicodeDecodeError as e:
            # A multi-byte sequence cut at the sample boundary is still text
            if e.start < len(head) - 3:
                return DEFAULT_CONTENT_TYPE
        return TEXT_CONTENT_TYPE


def sniff_content_type(content: Union[bytes, bytearray, str]) -> str:
    """Module-level shortcut using a default sniffer."""
    return ContentTypeSniffer().sniff(content)
