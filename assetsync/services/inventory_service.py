"""Remote and local asset inventories, path sanitization and set reconciliation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from assetsync.exceptions import LocalErrorKind, LocalProviderError
from assetsync.models.asset import AssetRecord
from assetsync.models.sync import ProgressUpdate

if TYPE_CHECKING:
    from collections.abc import Iterable, Set

    from assetsync.providers.base import LocalFileServer, ProgressSink, RemoteLibrary

logger = logging.getLogger(__name__)

K = TypeVar("K")

# Characters Windows refuses in file names, each mapped to a distinct placeholder.
# Runs of the same character collapse to one placeholder. Placeholders match
# what earlier mirrors were written with, so existing mapping files stay valid.
_PATH_SUBSTITUTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r":+"), "_58_"),
    (re.compile(r"<+"), "_60_"),
    (re.compile(r">+"), "_62_"),
    (re.compile(r'"+'), "_34_"),
    (re.compile(r"\|+"), "_124_"),
    (re.compile(r"\?+"), "_63_"),
    (re.compile(r"\*+"), "_42_"),
    (re.compile("[\u0000-\u001f\u007f\ufffe\uffff]"), "\u00ef\u00bf\u00bd"),
)
_MULTI_SLASH_RE = re.compile(r"/+")


def sanitize_path(path: str) -> str:
    """Replace characters that cannot appear in local file names.

    Path separators are left untouched.
    """
    for pattern, placeholder in _PATH_SUBSTITUTIONS:
        path = pattern.sub(placeholder, path)
    return path


def normalize_path(path: str) -> str:
    """Collapse duplicate separators and strip leading and trailing ones."""
    return _MULTI_SLASH_RE.sub("/", path).strip("/")


def as_dir_key(path: str) -> str:
    """Directory key form: normalized with a trailing slash, ``""`` for the root."""
    normalized = normalize_path(path)
    return f"{normalized}/" if normalized else ""


def remote_asset_name(name: str, root_dir: str | None = None) -> str:
    """Local path for a remote asset name, prefixed with the key's root folder."""
    full = f"{root_dir or ''}{name}"
    full = _MULTI_SLASH_RE.sub("/", full).lstrip("/")
    return sanitize_path(full)


def missing_keys(source: Set[K] | None, target: Set[K] | None) -> set[K]:
    """Return every key of ``source`` absent from ``target``.

    Missing inputs yield an empty set.
    """
    if source is None or target is None:
        return set()
    return {key for key in source if key not in target}


@dataclass
class RemoteInventory:
    """Remote assets keyed by sanitized path."""

    dirs: dict[str, AssetRecord] = field(default_factory=dict)
    files: dict[str, AssetRecord] = field(default_factory=dict)


@dataclass
class LocalInventory:
    """Local directories (with trailing slash) and files found under them."""

    dirs: set[str] = field(default_factory=set)
    files: set[str] = field(default_factory=set)

    def exists(self, path: str) -> bool:
        return path in self.dirs or path in self.files


class InventoryBuilder:
    """Builds the remote and local views compared by a sync run."""

    def __init__(
        self,
        remote: RemoteLibrary,
        local: LocalFileServer,
        *,
        root_dir: str | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.remote = remote
        self.local = local
        self.root_dir = as_dir_key(sanitize_path(root_dir)) if root_dir else ""
        self.progress = progress

    def _report(self, **kwargs: object) -> None:
        if self.progress is not None:
            self.progress(ProgressUpdate(**kwargs))  # type: ignore[arg-type]

    async def build_remote_inventory(self) -> RemoteInventory:
        """Fetch and partition the remote listing. Listing errors propagate."""
        raw_assets = await self.remote.list_assets()
        if not raw_assets:
            logger.warning("You have no assets in your assets library")

        inventory = RemoteInventory()
        for raw in raw_assets:
            asset = AssetRecord.from_api(raw)
            if not asset.name:
                continue
            asset.name = remote_asset_name(asset.name, self.root_dir)
            if not asset.name:
                continue
            if asset.is_directory:
                inventory.dirs[asset.name] = asset
            else:
                inventory.files[asset.name] = asset
        logger.info(
            "Remote inventory: %d folder(s), %d file(s)", len(inventory.dirs), len(inventory.files)
        )
        return inventory

    async def build_local_inventory(self, reference_dirs: Iterable[str]) -> LocalInventory:
        """List every reference directory (plus the root) on the local server.

        Directories that do not exist locally are skipped; any other listing
        error aborts the build.
        """
        dirs = sorted({*reference_dirs, self.root_dir})
        inventory = LocalInventory()

        self._report(current=0, name="", total=len(dirs), step="Listing local files", type="Folder")
        for index, directory in enumerate(dirs, start=1):
            try:
                listing = await self.local.browse(directory)
            except LocalProviderError as exc:
                if exc.kind == LocalErrorKind.NOT_FOUND:
                    continue
                raise
            finally:
                self._report(current=index, name=directory)

            if as_dir_key(listing.target) != directory:
                continue
            inventory.dirs.add(directory)
            inventory.files.update(normalize_path(f) for f in listing.files)
        return inventory
