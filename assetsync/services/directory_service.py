"""Creation of missing local directories, one path segment at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from assetsync.exceptions import LocalErrorKind, LocalProviderError, TransferError
from assetsync.providers.retry import DEFAULT_RETRIES
from assetsync.services.inventory_service import normalize_path

if TYPE_CHECKING:
    from assetsync.providers.base import LocalFileServer
    from assetsync.services.inventory_service import LocalInventory

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Outcome of provisioning one directory path."""

    created: int = 0
    blacklisted: str | None = None
    error: str | None = None


class DirectoryProvisioner:
    """Creates directories on the local server, tracking segments that can never exist.

    ``failed_folders`` is shared with the caller: a segment rejected for an
    invalid name is added once and every later path below it is skipped.
    """

    def __init__(
        self,
        local: LocalFileServer,
        inventory: LocalInventory,
        *,
        retries: int = DEFAULT_RETRIES,
        failed_folders: list[str] | None = None,
    ) -> None:
        self.local = local
        self.inventory = inventory
        self.retries = retries
        self.failed_folders = failed_folders if failed_folders is not None else []

    def is_blacklisted(self, path: str) -> bool:
        return any(path.startswith(folder) for folder in self.failed_folders)

    async def ensure(self, path: str) -> int:
        """Create every missing segment of ``path``; return how many were created."""
        return (await self.provision(path)).created

    async def provision(self, path: str) -> ProvisionResult:
        normalized = normalize_path(path)
        result = ProvisionResult()
        if not normalized:
            return result

        segments = normalized.split("/")
        for attempt in range(self.retries + 1):
            error = await self._create_segments(segments, result)
            if error is None:
                result.error = None
                return result
            if attempt < self.retries:
                logger.warning("Creating %s failed (%s); retrying", path, error)
            result.error = error
        logger.warning("Could not create folder %s: %s", path, result.error)
        return result

    async def _create_segments(self, segments: list[str], result: ProvisionResult) -> str | None:
        """Walk segments left to right. Returns an error message for retryable failures."""
        for index in range(len(segments)):
            sub_path = "/".join(segments[: index + 1]) + "/"
            if sub_path in self.failed_folders:
                result.blacklisted = sub_path
                return None
            if self.inventory.exists(sub_path):
                continue
            try:
                await self.local.create_directory(sub_path)
            except LocalProviderError as exc:
                if exc.kind == LocalErrorKind.EXISTS:
                    # Case-insensitive filesystems report `Music/` as existing
                    # once `music/` was created.
                    self.inventory.dirs.add(sub_path)
                    continue
                if exc.kind == LocalErrorKind.INVALID_NAME:
                    logger.warning(
                        "Folder %s has a name the local system rejects: %s", sub_path, exc
                    )
                    self.failed_folders.append(sub_path)
                    result.blacklisted = sub_path
                    return None
                return str(exc)
            except (TransferError, httpx.HTTPError) as exc:
                return str(exc)
            self.inventory.dirs.add(sub_path)
            result.created += 1
        return None
