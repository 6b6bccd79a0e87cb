"""Local mirror stored directly in a directory on disk."""

from __future__ import annotations

import asyncio
import errno
import logging
import os
from pathlib import Path

from assetsync.exceptions import LocalErrorKind, LocalProviderError
from assetsync.providers.base import DirectoryListing, UploadResult
from assetsync.services.hash_service import ContentHasher

logger = logging.getLogger(__name__)

_INVALID = LocalErrorKind.INVALID_NAME
_NOT_FOUND = LocalErrorKind.NOT_FOUND
_INVALID_NAME_ERRNOS = frozenset({errno.EINVAL, errno.ENAMETOOLONG, errno.EILSEQ})


def _is_safe_local_path(root: Path, rel_path: str) -> Path | None:
    """Resolve a mirror-relative path within root, returning None on traversal."""
    local_path = (root / rel_path.strip("/")).resolve()
    if not local_path.is_relative_to(root.resolve()):
        return None
    return local_path


class DiskLocalFileServer:
    """Filesystem-backed mirror. Etags are content fingerprints of the stored bytes."""

    def __init__(self, root: Path, hasher: ContentHasher | None = None) -> None:
        self.root = root
        self.hasher = hasher or ContentHasher()

    def _resolve(self, path: str) -> Path:
        try:
            local_path = _is_safe_local_path(self.root, path)
        except ValueError as exc:
            # Embedded NUL bytes
            raise LocalProviderError(f"EINVAL: {path}: {exc}", _INVALID) from exc
        if local_path is None:
            raise LocalProviderError(f"EINVAL: path escapes the mirror root: {path}", _INVALID)
        return local_path

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root.resolve()).as_posix()

    def _browse(self, path: str) -> DirectoryListing:
        directory = self._resolve(path)
        if not directory.is_dir():
            raise LocalProviderError(f"Directory {path} does not exist", _NOT_FOUND)
        listing = DirectoryListing(target=path.strip("/"))
        for entry in sorted(directory.iterdir()):
            rel = self._relative(entry)
            if entry.is_dir():
                listing.dirs.append(rel)
            else:
                listing.files.append(rel)
        return listing

    async def browse(self, path: str) -> DirectoryListing:
        return await asyncio.to_thread(self._browse, path)

    def _create_directory(self, path: str) -> None:
        directory = self._resolve(path)
        try:
            directory.mkdir()
        except FileExistsError as exc:
            msg = f"EEXIST: {path} already exists"
            raise LocalProviderError(msg, LocalErrorKind.EXISTS) from exc
        except ValueError as exc:
            raise LocalProviderError(f"EINVAL: {path}: {exc}", _INVALID) from exc
        except OSError as exc:
            if exc.errno in _INVALID_NAME_ERRNOS:
                raise LocalProviderError(f"EINVAL: {path}: {exc}", _INVALID) from exc
            if exc.errno == errno.ENOENT:
                raise LocalProviderError(f"Parent of {path} does not exist", _NOT_FOUND) from exc
            raise LocalProviderError(f"Could not create {path}: {exc}") from exc

    async def create_directory(self, path: str) -> None:
        await asyncio.to_thread(self._create_directory, path)

    def _upload(self, directory: str, file_name: str, data: bytes) -> UploadResult:
        target = self._resolve(f"{directory.strip('/')}/{file_name}")
        if not target.parent.is_dir():
            raise LocalProviderError(f"Directory {directory} does not exist", _NOT_FOUND)
        tmp = target.with_name(target.name + ".tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise LocalProviderError(f"Could not write {target.name}: {exc}") from exc
        return UploadResult(path=self._relative(target), message="File uploaded successfully")

    async def upload(self, directory: str, file_name: str, data: bytes) -> UploadResult | None:
        return await asyncio.to_thread(self._upload, directory, file_name, data)

    def _etag(self, path: str) -> str | None:
        target = self._resolve(path)
        if not target.is_file():
            return None
        return self.hasher.hash_file(target)

    async def fetch_etag(self, path: str) -> str | None:
        return await asyncio.to_thread(self._etag, path)

    def _read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise LocalProviderError(f"Asset {path} not found", _NOT_FOUND)
        return target.read_bytes()

    async def fetch_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read, path)

    def _hash(self, path: str, hasher: ContentHasher) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise LocalProviderError(f"Asset {path} not found", _NOT_FOUND)
        return hasher.hash_file(target)

    async def fetch_hash(self, path: str, hasher: ContentHasher) -> str:
        return await asyncio.to_thread(self._hash, path, hasher)
