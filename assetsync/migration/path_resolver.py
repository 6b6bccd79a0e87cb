"""Resolution of remote asset URLs embedded in world documents to local paths."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING
from urllib.parse import unquote

from assetsync.exceptions import LocalErrorKind, LocalProviderError
from assetsync.providers.base import DirectoryListing
from assetsync.services.inventory_service import normalize_path, sanitize_path

if TYPE_CHECKING:
    from assetsync.models.asset import AssetRecord
    from assetsync.providers.base import LocalFileServer, RemoteLibrary

logger = logging.getLogger(__name__)

DEFAULT_ASSETS_PREFIX = "https://assets.forge-vtt.com/"


class AssetPathResolver:
    """Rewrites asset URLs to local mirror paths.

    URLs that cannot be rewritten are returned unchanged and, when they point
    at an asset, recorded in ``online_assets``. Package assets whose package
    is not installed locally are recorded in ``missing_packages``.
    """

    def __init__(
        self,
        files: dict[str, AssetRecord],
        *,
        local: LocalFileServer,
        remote: RemoteLibrary,
        assets_prefix: str = DEFAULT_ASSETS_PREFIX,
        case_insensitive: bool | None = None,
    ) -> None:
        self.files = files
        self.local = local
        self.remote = remote
        self.assets_prefix = assets_prefix
        if case_insensitive is None:
            case_insensitive = sys.platform in ("win32", "darwin")
        self.case_insensitive = case_insensitive
        self.online_assets: set[str] = set()
        self.missing_packages: set[str] = set()
        self._listings: dict[str, DirectoryListing] = {}

    async def __call__(
        self, path: str, *, is_asset: bool = True, supports_wildcard: bool = False
    ) -> str:
        if not path.startswith(self.assets_prefix):
            if is_asset and path.startswith(("http://", "https://")):
                self.online_assets.add(path)
            return path

        relative = path[len(self.assets_prefix) :]
        owner, _, rest = relative.partition("/")
        if owner == "bazaar":
            return await self._resolve_package_asset(path, rest, is_asset=is_asset)

        name, _, query = rest.partition("?")
        suffix = f"?{query}" if query else ""
        key = sanitize_path(unquote(name))
        asset = self.files.get(key)
        if asset is not None and f"{asset.url}{suffix}" == path:
            return f"{asset.name}{suffix}"
        if supports_wildcard and "*" in name:
            return f"{key}{suffix}"
        if is_asset:
            self.online_assets.add(path)
        return path

    async def _resolve_package_asset(self, path: str, rest: str, *, is_asset: bool) -> str:
        """Map ``bazaar/<type>/<package>/assets/<file>`` to ``<type>/<package>/<file>``."""
        parts = rest.partition("?")[0].split("/")
        package_type = parts[0]
        if package_type == "core":
            return "/".join(parts[1:])
        if len(parts) < 4 or parts[2] != "assets":
            if is_asset:
                self.online_assets.add(path)
            return path

        package_name = parts[1]
        local_path = "/".join([package_type, package_name, *parts[3:]])
        if package_type == "worlds":
            copied = await self._copy_world_asset(path, local_path)
            if copied is not None:
                return copied
            if is_asset:
                self.online_assets.add(path)
            return path

        if not await self.dir_exists(package_type, package_name):
            self.missing_packages.add(package_name)
            return path
        return local_path

    async def _copy_world_asset(self, url: str, local_path: str) -> str | None:
        """Mirror an asset of a hosted world into the local world folder."""
        try:
            target = await self.safe_mkdirp(local_path)
            directory, _, file_name = target.rpartition("/")
            if await self.file_exists(directory, file_name):
                return target
            data = await self.remote.fetch_blob(url)
            result = await self.local.upload(directory, file_name, data)
        except Exception:
            logger.exception("Failed to copy world asset %s", url)
            return None
        if result is None or not result.path:
            return None
        self._listings.pop(self._cache_key(directory), None)
        return result.path

    def _fold(self, value: str) -> str:
        return value.lower() if self.case_insensitive else value

    def _cache_key(self, path: str) -> str:
        return self._fold(normalize_path(path))

    async def get_listing(self, path: str) -> DirectoryListing:
        """Browse ``path``, caching the result. Missing directories list as empty."""
        key = self._cache_key(path)
        cached = self._listings.get(key)
        if cached is not None:
            return cached
        try:
            listing = await self.local.browse(normalize_path(path))
        except LocalProviderError as exc:
            if exc.kind != LocalErrorKind.NOT_FOUND:
                raise
            listing = DirectoryListing(target=normalize_path(path))
        if self._fold(normalize_path(listing.target)) != key:
            listing = DirectoryListing(target=normalize_path(path))
        self._listings[key] = listing
        return listing

    async def dir_exists(self, path: str, directory: str) -> bool:
        listing = await self.get_listing(path)
        target = self._fold(normalize_path(f"{path}/{directory}"))
        return any(self._fold(normalize_path(d)) == target for d in listing.dirs)

    async def file_exists(self, path: str, file_name: str) -> bool:
        listing = await self.get_listing(path)
        target = self._fold(normalize_path(f"{path}/{file_name}"))
        return any(self._fold(normalize_path(f)) == target for f in listing.files)

    async def _create_dir(self, path: str, directory: str) -> None:
        try:
            await self.local.create_directory(normalize_path(f"{path}/{directory}"))
        except LocalProviderError as exc:
            if exc.kind != LocalErrorKind.EXISTS:
                raise
        self._listings.pop(self._cache_key(path), None)

    async def safe_mkdirp(self, path: str, suffix: str = "_") -> str:
        """Create the folders leading to file ``path`` and return the path to write.

        A segment that exists as a file where a folder is needed (or as a
        folder where the file should go) is renamed by appending ``suffix``.
        """
        parts = normalize_path(path).split("/")
        file_name = parts.pop()
        parent = ""
        for segment in parts:
            while await self.file_exists(parent, segment):
                segment += suffix
            if not await self.dir_exists(parent, segment):
                await self._create_dir(parent, segment)
            parent = f"{parent}/{segment}" if parent else segment
        while await self.dir_exists(parent, file_name):
            file_name += suffix
        return f"{parent}/{file_name}" if parent else file_name
