"""Persistent mapping between remote assets and their local copies.

The mapping file is a JSON document stored at the root of the local mirror::

    {
      "assets": [{"forgeName", "forgeHash", "localEtag", "localHash",
                  "firstSyncDate", "lastSyncDate"}, ...],
      "etags":  [{"hash": "...", "etags": ["...", ...]}, ...]
    }

It is the only state kept between runs, and it is always rewritten whole.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from assetsync.exceptions import (
    LocalErrorKind,
    LocalProviderError,
    MappingFileError,
    TransferError,
)
from assetsync.models.asset import MappingRow

if TYPE_CHECKING:
    from assetsync.providers.base import LocalFileServer

logger = logging.getLogger(__name__)

DEFAULT_MAPPING_FILE = "forge-assets.json"


@dataclass
class MappingState:
    """In-memory mapping: remote name -> row, and content hash -> observed etags."""

    assets: dict[str, MappingRow] = field(default_factory=dict)
    etags: dict[str, set[str]] = field(default_factory=dict)

    def record_etag(self, content_hash: str | None, etag: str | None) -> None:
        """Remember that ``etag`` was served for content hashing to ``content_hash``."""
        if not content_hash or not etag:
            return
        self.etags.setdefault(content_hash, set()).add(etag)

    def known_etags(self, content_hash: str) -> set[str]:
        return self.etags.get(content_hash, set())


def serialize(assets: dict[str, MappingRow], etags: dict[str, set[str]]) -> dict[str, Any]:
    """Array-ify both maps for persistence. Entries with falsy keys are skipped."""
    asset_rows = [row.to_dict() for key, row in assets.items() if key]
    etag_rows = [{"hash": key, "etags": sorted(values)} for key, values in etags.items() if key]
    return {"assets": asset_rows, "etags": etag_rows}


def deserialize(document: dict[str, Any]) -> MappingState:
    """Rebuild the maps from a mapping document, dropping malformed rows."""
    state = MappingState()
    for row in document.get("etags") or []:
        if not isinstance(row, dict) or not row.get("hash"):
            continue
        values = row.get("etags") or []
        if not isinstance(values, list):
            continue
        state.etags[row["hash"]] = {str(v) for v in values if v}
    for row in document.get("assets") or []:
        if not isinstance(row, dict) or not row.get("forgeName"):
            continue
        try:
            mapping = MappingRow.from_dict(row)
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed mapping row: %r", row)
            continue
        state.assets[mapping.remote_name] = mapping
    return state


class MappingStore:
    """Loads and saves the mapping file through the local file server.

    Transient fetch errors are retried by the server primitive itself; once
    its budget is exhausted the failure surfaces here as ``MappingFileError``.
    """

    def __init__(self, local: LocalFileServer, file_name: str = DEFAULT_MAPPING_FILE) -> None:
        self.local = local
        self.file_name = file_name

    async def load(self) -> MappingState:
        try:
            raw = await self.local.fetch_bytes(self.file_name)
        except LocalProviderError as exc:
            if exc.kind == LocalErrorKind.NOT_FOUND:
                logger.info(
                    "Asset mapping file not found, it will be created with a successful sync."
                )
                return MappingState()
            msg = f"Server error retrieving the asset mapping file: {exc}"
            raise MappingFileError(msg) from exc
        except (TransferError, httpx.HTTPError) as exc:
            msg = f"Server error retrieving the asset mapping file: {exc}"
            raise MappingFileError(msg) from exc

        try:
            document = json.loads(raw) if raw.strip() else None
        except ValueError:
            document = None
        if not isinstance(document, dict) or (
            "assets" not in document and "etags" not in document
        ):
            logger.info("Asset mapping file is empty.")
            return MappingState()

        state = deserialize(document)
        logger.info(
            "Loaded asset mapping: %d asset(s), %d hash(es)", len(state.assets), len(state.etags)
        )
        return state

    async def save(self, document: dict[str, Any] | None) -> bool:
        """Upload ``document``, replacing the previous file. Returns False on failure."""
        if not document:
            return False
        data = json.dumps(document, indent=2).encode("utf-8")
        try:
            result = await self.local.upload("", self.file_name, data)
        except Exception as exc:
            logger.warning("Asset mapping file upload failed (%s). Please try sync again.", exc)
            return False
        if result is None:
            logger.warning("Asset mapping file upload failed. Please try sync again.")
            return False
        logger.info("Asset mapping file upload succeeded.")
        return True

    async def persist(self, state: MappingState) -> bool:
        return await self.save(serialize(state.assets, state.etags))
