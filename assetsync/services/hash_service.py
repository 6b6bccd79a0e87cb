"""Content fingerprints compatible with multi-part upload etags.

Content that fits in a single chunk hashes to its plain MD5 hex digest.
Larger content hashes to ``<md5 of the concatenated chunk digests>-<chunk count>``,
the format many file servers and object stores use for their etags.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, BinaryIO

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, Iterable
    from pathlib import Path

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024


class _MultipartDigest:
    """Incremental digest that splits input at fixed chunk boundaries."""

    def __init__(self, chunk_size: int) -> None:
        self._chunk_size = chunk_size
        self._current = hashlib.md5(usedforsecurity=False)
        self._current_size = 0
        self._parts: list[bytes] = []

    def update(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            if self._current_size == self._chunk_size:
                # A full chunk closes only when more data arrives: exact multiples
                # of the chunk size have no empty tail part.
                self._parts.append(self._current.digest())
                self._current = hashlib.md5(usedforsecurity=False)
                self._current_size = 0
            room = self._chunk_size - self._current_size
            piece = view[:room]
            self._current.update(piece)
            self._current_size += len(piece)
            view = view[room:]

    def hexdigest(self) -> str:
        if not self._parts:
            return self._current.hexdigest()
        parts = [*self._parts, self._current.digest()]
        combined = hashlib.md5(b"".join(parts), usedforsecurity=False)
        return f"{combined.hexdigest()}-{len(parts)}"


class ContentHasher:
    """Stateless content fingerprinting. Safe to share between concurrent tasks."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size < 1:
            msg = "chunk_size must be positive"
            raise ValueError(msg)
        self.chunk_size = chunk_size

    def hash_chunks(self, chunks: Iterable[bytes]) -> str:
        digest = _MultipartDigest(self.chunk_size)
        for chunk in chunks:
            digest.update(chunk)
        return digest.hexdigest()

    async def hash_async_chunks(self, chunks: AsyncIterable[bytes]) -> str:
        """Hash a streamed body (e.g. ``httpx.Response.aiter_bytes()``)."""
        digest = _MultipartDigest(self.chunk_size)
        async for chunk in chunks:
            digest.update(chunk)
        return digest.hexdigest()

    def hash_stream(self, stream: BinaryIO) -> str:
        return self.hash_chunks(iter(lambda: stream.read(self.chunk_size), b""))

    def hash_bytes(self, data: bytes) -> str:
        return self.hash_chunks([data])

    def hash_file(self, path: Path) -> str:
        with open(path, "rb") as f:
            return self.hash_stream(f)
