"""Shared test fixtures and in-memory collaborators for the asset sync engine."""

from __future__ import annotations

import base64
import json
import time
from typing import TYPE_CHECKING, Any

import pytest

from assetsync.exceptions import LocalErrorKind, LocalProviderError, TransferError
from assetsync.providers.base import DirectoryListing, UploadResult
from assetsync.services.hash_service import ContentHasher
from assetsync.services.inventory_service import normalize_path

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

ASSETS_PREFIX = "https://assets.forge-vtt.com/"
USER_ID = "user123"


def make_api_key(**payload: Any) -> str:
    """Build a token whose middle segment is the base64url JSON payload."""
    body = {"id": USER_ID, "exp": time.time() + 3600, **payload}
    encoded = base64.urlsafe_b64encode(json.dumps(body).encode()).decode().rstrip("=")
    return f"eyJhbGciOiJIUzI1NiJ9.{encoded}.signature"


def asset_url(name: str, user: str = USER_ID) -> str:
    return f"{ASSETS_PREFIX}{user}/{name}"


async def _chunked(data: bytes, size: int) -> AsyncIterator[bytes]:
    for start in range(0, len(data), size):
        yield data[start : start + size]


class FakeRemoteLibrary:
    """Remote library serving a fixed listing and blobs keyed by URL."""

    def __init__(self, assets: list[dict[str, Any]] | None = None) -> None:
        self.assets = assets or []
        self.blobs: dict[str, bytes] = {}
        self.fetched: list[str] = []
        self.list_error: Exception | None = None
        self.failing_urls: set[str] = set()

    def add_file(self, name: str, data: bytes, content_hash: str | None = None) -> dict[str, Any]:
        url = asset_url(name)
        content_hash = content_hash or ContentHasher().hash_bytes(data)
        record = {"name": name, "url": url, "hash": content_hash}
        self.assets.append(record)
        self.blobs[url] = data
        return record

    def add_dir(self, name: str) -> None:
        self.assets.append({"name": name, "url": asset_url(name), "hash": ""})

    async def list_assets(self) -> list[dict[str, Any]]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.assets)

    async def fetch_blob(self, url: str) -> bytes:
        self.fetched.append(url)
        if url in self.failing_urls or url not in self.blobs:
            msg = f"Download of {url} failed"
            raise TransferError(msg)
        return self.blobs[url]


class FakeLocalServer:
    """In-memory local file server.

    Etags default to the content fingerprint, like the disk provider;
    ``etag_overrides`` lets a test pin the etag reported for a path.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {""}
        self.invalid_names: set[str] = set()
        self.etag_overrides: dict[str, str] = {}
        self.uploads: list[str] = []
        self.created: list[str] = []
        self.browsed: list[str] = []
        self.hashed: list[str] = []
        self.hasher = ContentHasher()

    def put(self, path: str, data: bytes) -> None:
        path = normalize_path(path)
        parts = path.split("/")[:-1]
        for index in range(len(parts)):
            self.dirs.add("/".join(parts[: index + 1]))
        self.files[path] = data

    async def browse(self, path: str) -> DirectoryListing:
        target = normalize_path(path)
        self.browsed.append(target)
        if target not in self.dirs:
            msg = f"Directory {target} does not exist"
            raise LocalProviderError(msg, LocalErrorKind.NOT_FOUND)
        prefix = f"{target}/" if target else ""

        def _children(entries: set[str] | dict[str, bytes]) -> list[str]:
            return sorted(
                entry
                for entry in entries
                if entry
                and entry.startswith(prefix)
                and "/" not in entry[len(prefix) :]
            )

        return DirectoryListing(
            target=target, dirs=_children(self.dirs), files=_children(self.files)
        )

    async def create_directory(self, path: str) -> None:
        target = normalize_path(path)
        name = target.rpartition("/")[2]
        if name in self.invalid_names:
            msg = f"EINVAL: invalid argument, mkdir '{target}'"
            raise LocalProviderError.from_message(msg)
        if target in self.dirs:
            msg = f"EEXIST: file already exists, mkdir '{target}'"
            raise LocalProviderError.from_message(msg)
        parent = target.rpartition("/")[0]
        if parent not in self.dirs:
            msg = f"Parent of {target} does not exist"
            raise LocalProviderError(msg, LocalErrorKind.NOT_FOUND)
        self.dirs.add(target)
        self.created.append(target)

    async def upload(self, directory: str, file_name: str, data: bytes) -> UploadResult | None:
        parent = normalize_path(directory)
        if parent not in self.dirs:
            msg = f"Directory {parent} does not exist"
            raise LocalProviderError(msg, LocalErrorKind.NOT_FOUND)
        path = f"{parent}/{file_name}" if parent else file_name
        self.files[path] = data
        self.etag_overrides.pop(path, None)
        self.uploads.append(path)
        return UploadResult(path=path, message="File uploaded successfully")

    async def fetch_etag(self, path: str) -> str | None:
        path = normalize_path(path)
        if path in self.etag_overrides:
            return self.etag_overrides[path]
        if path not in self.files:
            return None
        return self.hasher.hash_bytes(self.files[path])

    async def fetch_bytes(self, path: str) -> bytes:
        path = normalize_path(path)
        if path not in self.files:
            msg = f"Asset {path} not found"
            raise LocalProviderError(msg, LocalErrorKind.NOT_FOUND)
        return self.files[path]

    async def fetch_hash(self, path: str, hasher: ContentHasher) -> str:
        data = await self.fetch_bytes(path)
        self.hashed.append(normalize_path(path))
        return await hasher.hash_async_chunks(_chunked(data, hasher.chunk_size))


@pytest.fixture
def api_key() -> str:
    return make_api_key()


@pytest.fixture
def remote() -> FakeRemoteLibrary:
    return FakeRemoteLibrary()


@pytest.fixture
def local() -> FakeLocalServer:
    return FakeLocalServer()
