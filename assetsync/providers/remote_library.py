"""HTTP client for the remote assets library, plus API key decoding.

API keys are JWT-shaped tokens (``header.payload.signature``). Only the
payload is inspected here: ``id`` identifies the owner, ``exp`` is the
expiry in epoch seconds and ``keyOptions.assets.rootDir`` optionally scopes
the key to a sub-folder of the library.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from assetsync.exceptions import RemoteInventoryError, TransferError, UnauthorizedError
from assetsync.providers.retry import DEFAULT_RETRIES, with_retries

logger = logging.getLogger(__name__)

# Keys expiring within this many seconds are treated as already expired, so a
# request never reaches the server with a key that lapsed in flight.
KEY_EXPIRY_MARGIN = 60

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {"apng", "avif", "bmp", "gif", "jpeg", "jpg", "png", "svg", "tiff", "webp"}
)


@dataclass(frozen=True)
class ApiKeyInfo:
    """Decoded API key payload."""

    user_id: str | None
    expires_at: float | None
    root_dir: str | None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return self.expires_at - KEY_EXPIRY_MARGIN < current


def decode_api_key(api_key: str | None) -> dict[str, Any]:
    """Return the key's JSON payload, or ``{}`` when it cannot be decoded."""
    if not api_key:
        return {}
    parts = api_key.strip().split(".")
    if len(parts) < 2:
        return {}
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def api_key_info(api_key: str | None) -> ApiKeyInfo:
    payload = decode_api_key(api_key)
    user_id = payload.get("id")
    exp = payload.get("exp")
    root_dir = ((payload.get("keyOptions") or {}).get("assets") or {}).get("rootDir")
    if root_dir == "/":
        root_dir = None
    return ApiKeyInfo(
        user_id=str(user_id) if user_id else None,
        expires_at=float(exp) if isinstance(exp, (int, float)) else None,
        root_dir=root_dir or None,
    )


def is_valid_api_key(api_key: str | None) -> bool:
    info = api_key_info(api_key)
    return info.user_id is not None and not info.is_expired()


def _is_image_url(url: str) -> bool:
    path = httpx.URL(url).path
    _, dot, ext = path.rpartition(".")
    return bool(dot) and ext.lower() in IMAGE_EXTENSIONS


class HttpRemoteLibrary:
    """Remote assets library reached over its HTTP API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        retries: int = DEFAULT_RETRIES,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.retries = retries
        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Access-Key": api_key.strip()},
            timeout=timeout,
            transport=transport,
        )
        # Asset downloads go to the CDN and must not carry the API key.
        self.download_client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.download_client.aclose()

    async def __aenter__(self) -> HttpRemoteLibrary:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def list_assets(self) -> list[dict[str, Any]]:
        assets: list[dict[str, Any]] = []
        params: dict[str, str] = {}
        while True:
            try:
                resp = await self.client.get("/assets", params=params)
            except httpx.HTTPError as exc:
                msg = f"Could not reach the assets library: {exc}"
                raise RemoteInventoryError(msg) from exc

            if resp.status_code in (401, 403):
                msg = "Unauthorized. Please check your API key."
                raise UnauthorizedError(msg)
            try:
                body = resp.json()
            except ValueError as exc:
                msg = f"Invalid assets listing response ({resp.status_code})"
                raise RemoteInventoryError(msg) from exc

            error = body.get("error") if isinstance(body, dict) else None
            if resp.is_error or error or not isinstance(body, dict):
                message = str(error or f"Assets listing failed ({resp.status_code})")
                if "Unauthorized" in message:
                    raise UnauthorizedError(message)
                raise RemoteInventoryError(message)

            assets.extend(body.get("assets") or [])
            cursor = body.get("next")
            if not cursor:
                return assets
            params = {"cursor": str(cursor)}

    async def fetch_blob(self, url: str) -> bytes:
        if not url:
            msg = "No URL provided for asset download"
            raise TransferError(msg)
        params = {"optimizer": "disabled"} if _is_image_url(url) else None

        async def _download() -> bytes:
            resp = await self.download_client.get(url, params=params)
            if resp.is_error:
                msg = f"Failed to download asset file ({resp.status_code}): {url}"
                raise TransferError(msg)
            return resp.content

        return await with_retries(
            _download, retries=self.retries, description=f"Download of {url}"
        )
