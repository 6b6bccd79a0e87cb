"""Protocols and data classes for the sync engine's external collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from assetsync.models.sync import ProgressUpdate
    from assetsync.services.hash_service import ContentHasher


@dataclass
class DirectoryListing:
    """Contents of one local directory.

    ``dirs`` and ``files`` hold paths relative to the mirror root, without
    trailing slashes.
    """

    target: str
    dirs: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)


@dataclass
class UploadResult:
    """Result of a successful upload."""

    path: str
    message: str = ""


@runtime_checkable
class RemoteLibrary(Protocol):
    """The remote assets library (source of truth)."""

    async def list_assets(self) -> list[dict[str, Any]]:
        """Return the flat ``{name, url, hash}`` listing of every asset.

        Raises ``UnauthorizedError`` or ``RemoteInventoryError``.
        """
        ...

    async def fetch_blob(self, url: str) -> bytes:
        """Download one asset. Raises ``TransferError``."""
        ...


@runtime_checkable
class LocalFileServer(Protocol):
    """The local mirror, addressed by paths relative to its root."""

    async def browse(self, path: str) -> DirectoryListing:
        """List a directory. Raises ``LocalProviderError`` (``NOT_FOUND`` when absent)."""
        ...

    async def create_directory(self, path: str) -> None:
        """Create one directory whose parent exists. Raises ``LocalProviderError``."""
        ...

    async def upload(self, directory: str, file_name: str, data: bytes) -> UploadResult | None:
        """Write ``data`` to ``directory/file_name``, replacing any existing file."""
        ...

    async def fetch_etag(self, path: str) -> str | None:
        """Return the etag currently served for ``path``, or None if unavailable."""
        ...

    async def fetch_bytes(self, path: str) -> bytes:
        """Read a served file. Raises ``LocalProviderError`` (``NOT_FOUND`` when absent)."""
        ...

    async def fetch_hash(self, path: str, hasher: ContentHasher) -> str:
        """Fingerprint a served file with ``hasher`` without holding it in memory."""
        ...


class ProgressSink(Protocol):
    """Receives progress events. Must not block the caller."""

    def __call__(self, update: ProgressUpdate) -> None: ...
