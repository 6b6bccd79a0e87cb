"""Asset records and persisted mapping rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from assetsync.services.datetime_service import format_iso, now_utc, parse_datetime


@dataclass
class AssetRecord:
    """A single entry of the remote assets library.

    Directories are distinguished by a trailing ``/`` on ``name``.
    """

    name: str
    url: str = ""
    hash: str = ""

    @property
    def is_directory(self) -> bool:
        return self.name.endswith("/")

    @property
    def parent_dir(self) -> str:
        """Directory the asset lives in, with a trailing slash (``""`` for the root)."""
        head, sep, _ = self.name.rpartition("/")
        return f"{head}/" if sep else ""

    @property
    def file_name(self) -> str:
        return self.name.rpartition("/")[2]

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> AssetRecord:
        return cls(
            name=str(data.get("name") or ""),
            url=str(data.get("url") or ""),
            hash=str(data.get("hash") or ""),
        )


@dataclass
class MappingRow:
    """Last known sync state linking a remote asset to its local copy."""

    remote_name: str
    remote_hash: str
    local_etag: str | None
    local_hash: str | None
    first_sync_date: datetime
    last_sync_date: datetime

    @classmethod
    def for_asset(
        cls,
        asset: AssetRecord,
        etag: str | None,
        *,
        previous: MappingRow | None = None,
    ) -> MappingRow:
        """Build a fresh row for ``asset``, keeping ``first_sync_date`` of ``previous``."""
        now = now_utc()
        return cls(
            remote_name=asset.name,
            remote_hash=asset.hash,
            local_etag=etag,
            local_hash=asset.hash,
            first_sync_date=previous.first_sync_date if previous else now,
            last_sync_date=now,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "forgeName": self.remote_name,
            "forgeHash": self.remote_hash,
            "localEtag": self.local_etag,
            "localHash": self.local_hash,
            "firstSyncDate": format_iso(self.first_sync_date),
            "lastSyncDate": format_iso(self.last_sync_date),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MappingRow:
        first = data.get("firstSyncDate")
        last = data.get("lastSyncDate")
        first_date = parse_datetime(str(first)) if first else now_utc()
        return cls(
            remote_name=data["forgeName"],
            remote_hash=data.get("forgeHash") or "",
            local_etag=data.get("localEtag"),
            local_hash=data.get("localHash"),
            first_sync_date=first_date,
            last_sync_date=parse_datetime(str(last)) if last else first_date,
        )
