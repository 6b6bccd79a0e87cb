"""HTTP client for a local file server hosting the mirror.

Endpoints (paths relative to the server's data root):

- ``GET  /api/files/browse?path=<dir>`` -> ``{"target", "dirs", "files"}``
- ``POST /api/files/directories`` with ``{"path"}`` creates one directory
- ``POST /upload`` multipart (``target`` field + ``file``) -> ``{"path", "message"}``
- ``HEAD /<path>`` serves the file's ``ETag``; ``GET /<path>`` serves its bytes

Errors come back as ``{"error": "..."}``; messages carry the OS error code
(``EEXIST:``, ``EINVAL:``) or ``does not exist`` for missing directories.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

import httpx

from assetsync.exceptions import LocalErrorKind, LocalProviderError, TransferError
from assetsync.providers.base import DirectoryListing, UploadResult
from assetsync.providers.retry import DEFAULT_RETRIES, with_retries

if TYPE_CHECKING:
    from assetsync.services.hash_service import ContentHasher

logger = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {resp.status_code}"


class HttpLocalFileServer:
    """Local mirror reached through a file server's HTTP API."""

    def __init__(
        self,
        base_url: str,
        *,
        retries: int = DEFAULT_RETRIES,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> HttpLocalFileServer:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if not resp.is_error:
            return
        error = LocalProviderError.from_message(_error_message(resp))
        if resp.status_code == 404 and error.kind == LocalErrorKind.OTHER:
            error.kind = LocalErrorKind.NOT_FOUND
        raise error

    async def browse(self, path: str) -> DirectoryListing:
        try:
            resp = await self.client.get("/api/files/browse", params={"path": path})
        except httpx.HTTPError as exc:
            raise LocalProviderError(f"Could not browse {path}: {exc}") from exc
        self._raise_for_error(resp)
        body = resp.json()
        return DirectoryListing(
            target=unquote(str(body.get("target") or "")),
            dirs=[unquote(d) for d in body.get("dirs") or []],
            files=[unquote(f) for f in body.get("files") or []],
        )

    async def create_directory(self, path: str) -> None:
        try:
            resp = await self.client.post("/api/files/directories", json={"path": path})
        except httpx.HTTPError as exc:
            raise LocalProviderError(f"Could not create {path}: {exc}") from exc
        self._raise_for_error(resp)

    async def upload(self, directory: str, file_name: str, data: bytes) -> UploadResult | None:
        try:
            resp = await self.client.post(
                "/upload",
                data={"target": directory},
                files={"file": (file_name, data)},
            )
        except httpx.HTTPError as exc:
            raise TransferError(f"Upload of {directory}{file_name} failed: {exc}") from exc
        self._raise_for_error(resp)
        try:
            body = resp.json()
        except ValueError:
            return None
        if not isinstance(body, dict) or not body.get("path"):
            return None
        return UploadResult(path=str(body["path"]), message=str(body.get("message") or ""))

    async def fetch_etag(self, path: str) -> str | None:
        async def _head() -> str | None:
            resp = await self.client.head(f"/{quote(path)}")
            if resp.is_error:
                msg = f"HEAD {path} failed ({resp.status_code})"
                raise TransferError(msg)
            return resp.headers.get("etag")

        return await with_retries(_head, retries=self.retries, description=f"Etag of {path}")

    async def fetch_bytes(self, path: str) -> bytes:
        async def _get() -> bytes:
            resp = await self.client.get(f"/{quote(path)}")
            if resp.status_code == 404:
                raise LocalProviderError(f"Asset {path} not found", LocalErrorKind.NOT_FOUND)
            if resp.is_error:
                msg = f"An error occurred fetching {path} ({resp.status_code})"
                raise TransferError(msg)
            return resp.content

        return await with_retries(_get, retries=self.retries, description=f"Fetch of {path}")

    async def fetch_hash(self, path: str, hasher: ContentHasher) -> str:
        async def _hash() -> str:
            async with self.client.stream("GET", f"/{quote(path)}") as resp:
                if resp.status_code == 404:
                    raise LocalProviderError(f"Asset {path} not found", LocalErrorKind.NOT_FOUND)
                if resp.is_error:
                    msg = f"An error occurred fetching {path} ({resp.status_code})"
                    raise TransferError(msg)
                return await hasher.hash_async_chunks(resp.aiter_bytes(hasher.chunk_size))

        return await with_retries(_hash, retries=self.retries, description=f"Hash of {path}")
