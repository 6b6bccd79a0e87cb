"""A world stored on disk in the NeDB layout.

::

    <world>/world.json            metadata, including the compendium pack list
    <world>/data/<collection>.db  one JSON document per line
    <world>/packs/<pack>.db       world compendium packs, same format

NeDB appends a new line for every update and a ``{"$$deleted": true}`` line
for every removal; the last line for an ``_id`` wins. Updates written here
compact the file.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Collection file name -> document name, in migration order.
WORLD_COLLECTIONS: dict[str, str] = {
    "actors": "Actor",
    "messages": "ChatMessage",
    "items": "Item",
    "journal": "JournalEntry",
    "macros": "Macro",
    "playlists": "Playlist",
    "scenes": "Scene",
    "tables": "RollTable",
    "cards": "Cards",
    "users": "User",
}


def _atomic_write(path: Path, content: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


def _merge(target: dict[str, Any], changes: dict[str, Any]) -> None:
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


def read_nedb(path: Path) -> list[dict[str, Any]]:
    """Return the live documents of a NeDB file, in first-seen order."""
    if not path.is_file():
        return []
    documents: dict[str, dict[str, Any]] = {}
    for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            document = json.loads(line)
        except ValueError:
            logger.warning("Skipping corrupt line %d of %s", number, path)
            continue
        if not isinstance(document, dict) or "_id" not in document:
            continue
        if document.get("$$deleted"):
            documents.pop(document["_id"], None)
        else:
            documents[document["_id"]] = document
    return list(documents.values())


def write_nedb(path: Path, documents: list[dict[str, Any]]) -> None:
    content = "".join(json.dumps(doc, separators=(",", ":")) + "\n" for doc in documents)
    _atomic_write(path, content)


@dataclass
class NedbCollection:
    """One ``.db`` file."""

    name: str
    document_name: str
    path: Path
    package_type: str | None = None
    locked: bool = False
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def documents(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(read_nedb, self.path)

    def _apply(self, changes: list[dict[str, Any]]) -> None:
        if self.locked:
            msg = f"Compendium {self.name} is locked"
            raise PermissionError(msg)
        documents = read_nedb(self.path)
        by_id = {doc["_id"]: doc for doc in documents}
        unknown = [change.get("_id") for change in changes if change.get("_id") not in by_id]
        if unknown:
            msg = f"Unknown document id(s) in {self.name}: {', '.join(map(str, unknown))}"
            raise KeyError(msg)
        for change in changes:
            _merge(by_id[change["_id"]], change)
        write_nedb(self.path, documents)

    async def update_documents(self, changes: list[dict[str, Any]]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._apply, changes)

    async def configure(self, *, locked: bool) -> None:
        self.locked = locked


class NedbWorldDatabase:
    """A world directory on disk."""

    def __init__(self, world_dir: Path) -> None:
        self.world_dir = world_dir
        self.metadata_path = world_dir / "world.json"

    def _read_metadata(self) -> dict[str, Any]:
        if not self.metadata_path.is_file():
            msg = f"No world.json in {self.world_dir}"
            raise FileNotFoundError(msg)
        metadata = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        if not isinstance(metadata, dict):
            msg = f"{self.metadata_path} is not a JSON object"
            raise ValueError(msg)
        return metadata

    async def get_metadata(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._read_metadata)

    def _edit(self, changes: dict[str, Any]) -> None:
        metadata = self._read_metadata()
        metadata.update(changes)
        _atomic_write(self.metadata_path, json.dumps(metadata, indent=2) + "\n")

    async def edit_world(self, changes: dict[str, Any]) -> None:
        await asyncio.to_thread(self._edit, changes)

    async def world_collections(self) -> list[NedbCollection]:
        data_dir = self.world_dir / "data"
        return [
            NedbCollection(name=name, document_name=document_name, path=data_dir / f"{name}.db")
            for name, document_name in WORLD_COLLECTIONS.items()
            if (data_dir / f"{name}.db").is_file()
        ]

    async def compendium_packs(self) -> list[NedbCollection]:
        metadata = await self.get_metadata()
        packs = []
        for pack in metadata.get("packs") or []:
            if not isinstance(pack, dict) or not pack.get("name"):
                continue
            relative = pack.get("path") or f"packs/{pack['name']}.db"
            path = self.world_dir / relative.lstrip("/")
            if not path.is_file():
                logger.warning("Compendium %s has no data file at %s", pack["name"], path)
                continue
            packs.append(
                NedbCollection(
                    name=pack["name"],
                    document_name=pack.get("type") or pack.get("entity") or "",
                    path=path,
                    package_type="world",
                    locked=bool(pack.get("locked", False)),
                )
            )
        return packs
