"""Tests for the filesystem-backed local mirror."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from assetsync.exceptions import LocalErrorKind, LocalProviderError
from assetsync.providers.local_disk import DiskLocalFileServer
from assetsync.services.hash_service import ContentHasher

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def server(tmp_path: Path) -> DiskLocalFileServer:
    return DiskLocalFileServer(tmp_path)


class TestDiskLocalFileServer:
    async def test_browse_lists_relative_paths(
        self, server: DiskLocalFileServer, tmp_path: Path
    ) -> None:
        (tmp_path / "maps" / "sub").mkdir(parents=True)
        (tmp_path / "maps" / "a.png").write_bytes(b"a")

        listing = await server.browse("maps/")

        assert listing.target == "maps"
        assert listing.dirs == ["maps/sub"]
        assert listing.files == ["maps/a.png"]

    async def test_browse_missing(self, server: DiskLocalFileServer) -> None:
        with pytest.raises(LocalProviderError) as exc_info:
            await server.browse("nope/")
        assert exc_info.value.kind == LocalErrorKind.NOT_FOUND

    async def test_create_directory(self, server: DiskLocalFileServer, tmp_path: Path) -> None:
        await server.create_directory("maps/")
        assert (tmp_path / "maps").is_dir()

    async def test_create_existing_directory(
        self, server: DiskLocalFileServer, tmp_path: Path
    ) -> None:
        (tmp_path / "maps").mkdir()
        with pytest.raises(LocalProviderError) as exc_info:
            await server.create_directory("maps/")
        assert exc_info.value.kind == LocalErrorKind.EXISTS

    async def test_create_without_parent(self, server: DiskLocalFileServer) -> None:
        with pytest.raises(LocalProviderError) as exc_info:
            await server.create_directory("a/b/")
        assert exc_info.value.kind == LocalErrorKind.NOT_FOUND

    async def test_nul_byte_is_invalid_name(self, server: DiskLocalFileServer) -> None:
        with pytest.raises(LocalProviderError) as exc_info:
            await server.create_directory("bad\x00name/")
        assert exc_info.value.kind == LocalErrorKind.INVALID_NAME

    async def test_traversal_is_rejected(self, server: DiskLocalFileServer) -> None:
        with pytest.raises(LocalProviderError) as exc_info:
            await server.create_directory("../escape/")
        assert exc_info.value.kind == LocalErrorKind.INVALID_NAME

    async def test_upload_replaces_and_reports_path(
        self, server: DiskLocalFileServer, tmp_path: Path
    ) -> None:
        (tmp_path / "img").mkdir()
        (tmp_path / "img" / "a.png").write_bytes(b"old")

        result = await server.upload("img/", "a.png", b"new")

        assert result is not None
        assert result.path == "img/a.png"
        assert (tmp_path / "img" / "a.png").read_bytes() == b"new"
        assert not (tmp_path / "img" / "a.png.tmp").exists()

    async def test_upload_to_root(self, server: DiskLocalFileServer, tmp_path: Path) -> None:
        result = await server.upload("", "forge-assets.json", b"{}")
        assert result is not None
        assert result.path == "forge-assets.json"

    async def test_upload_into_missing_directory(self, server: DiskLocalFileServer) -> None:
        with pytest.raises(LocalProviderError) as exc_info:
            await server.upload("missing/", "a.png", b"x")
        assert exc_info.value.kind == LocalErrorKind.NOT_FOUND

    async def test_etag_is_content_fingerprint(
        self, server: DiskLocalFileServer, tmp_path: Path
    ) -> None:
        (tmp_path / "a.png").write_bytes(b"content")
        assert await server.fetch_etag("a.png") == ContentHasher().hash_bytes(b"content")
        assert await server.fetch_etag("missing.png") is None

    async def test_fetch_bytes(self, server: DiskLocalFileServer, tmp_path: Path) -> None:
        (tmp_path / "a.png").write_bytes(b"content")
        assert await server.fetch_bytes("a.png") == b"content"
        with pytest.raises(LocalProviderError) as exc_info:
            await server.fetch_bytes("missing.png")
        assert exc_info.value.kind == LocalErrorKind.NOT_FOUND

    async def test_fetch_hash(self, server: DiskLocalFileServer, tmp_path: Path) -> None:
        (tmp_path / "big.bin").write_bytes(b"abcdefghij")
        hasher = ContentHasher(chunk_size=4)
        assert await server.fetch_hash("big.bin", hasher) == hasher.hash_bytes(b"abcdefghij")
        with pytest.raises(LocalProviderError) as exc_info:
            await server.fetch_hash("missing.bin", hasher)
        assert exc_info.value.kind == LocalErrorKind.NOT_FOUND
