"""Tests for the on-disk NeDB world store."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from assetsync.migration.world_store import NedbCollection, NedbWorldDatabase, read_nedb

if TYPE_CHECKING:
    from pathlib import Path


def _write_lines(path: Path, *documents: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(doc) + "\n" for doc in documents), encoding="utf-8")


@pytest.fixture
def world_dir(tmp_path: Path) -> Path:
    (tmp_path / "world.json").write_text(
        json.dumps(
            {
                "id": "keep",
                "background": "maps/bg.png",
                "packs": [
                    {"name": "monsters", "type": "Actor", "locked": True},
                    {"name": "loot", "entity": "Item", "path": "/packs/loot-items.db"},
                    {"name": "missing", "type": "Item"},
                ],
            }
        ),
        encoding="utf-8",
    )
    _write_lines(tmp_path / "data" / "actors.db", {"_id": "a1", "img": "x.png"})
    _write_lines(tmp_path / "data" / "scenes.db", {"_id": "s1"})
    _write_lines(tmp_path / "packs" / "monsters.db", {"_id": "m1"})
    _write_lines(tmp_path / "packs" / "loot-items.db", {"_id": "l1"})
    return tmp_path


class TestReadNedb:
    def test_last_line_wins_and_deletions_drop(self, tmp_path: Path) -> None:
        path = tmp_path / "actors.db"
        _write_lines(
            path,
            {"_id": "a", "v": 1},
            {"_id": "b", "v": 1},
            {"_id": "a", "v": 2},
            {"_id": "b", "$$deleted": True},
            {"_id": "c", "v": 1},
        )

        assert read_nedb(path) == [{"_id": "a", "v": 2}, {"_id": "c", "v": 1}]

    def test_skips_corrupt_and_blank_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "items.db"
        path.write_text('{"_id": "a"}\n\nnot json\n[1, 2]\n{"_id": "b"}\n', encoding="utf-8")

        assert read_nedb(path) == [{"_id": "a"}, {"_id": "b"}]

    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_nedb(tmp_path / "nope.db") == []


class TestNedbCollection:
    async def test_update_merges_and_compacts(self, tmp_path: Path) -> None:
        path = tmp_path / "actors.db"
        _write_lines(
            path,
            {"_id": "a", "img": "old.png", "system": {"hp": 5, "bio": "x"}},
            {"_id": "a", "img": "older.png", "system": {"hp": 5, "bio": "y"}},
            {"_id": "b", "img": "b.png"},
        )
        collection = NedbCollection(name="actors", document_name="Actor", path=path)

        await collection.update_documents([{"_id": "a", "img": "new.png", "system": {"bio": "z"}}])

        assert path.read_text(encoding="utf-8").count("\n") == 2
        assert await collection.documents() == [
            {"_id": "a", "img": "new.png", "system": {"hp": 5, "bio": "z"}},
            {"_id": "b", "img": "b.png"},
        ]

    async def test_unknown_id_rejects_whole_batch(self, tmp_path: Path) -> None:
        path = tmp_path / "actors.db"
        _write_lines(path, {"_id": "a", "img": "a.png"})
        collection = NedbCollection(name="actors", document_name="Actor", path=path)

        with pytest.raises(KeyError, match="ghost"):
            await collection.update_documents(
                [{"_id": "a", "img": "new.png"}, {"_id": "ghost", "img": "x.png"}]
            )
        assert await collection.documents() == [{"_id": "a", "img": "a.png"}]

    async def test_locked_collection_rejects_updates(self, tmp_path: Path) -> None:
        path = tmp_path / "monsters.db"
        _write_lines(path, {"_id": "m"})
        pack = NedbCollection(name="monsters", document_name="Actor", path=path, locked=True)

        with pytest.raises(PermissionError):
            await pack.update_documents([{"_id": "m", "img": "x.png"}])

        await pack.configure(locked=False)
        await pack.update_documents([{"_id": "m", "img": "x.png"}])
        assert await pack.documents() == [{"_id": "m", "img": "x.png"}]


class TestNedbWorldDatabase:
    async def test_world_collections_only_existing_files(self, world_dir: Path) -> None:
        collections = await NedbWorldDatabase(world_dir).world_collections()

        assert [(c.name, c.document_name) for c in collections] == [
            ("actors", "Actor"),
            ("scenes", "Scene"),
        ]

    async def test_compendium_packs(self, world_dir: Path) -> None:
        packs = await NedbWorldDatabase(world_dir).compendium_packs()

        assert [(p.name, p.document_name, p.locked) for p in packs] == [
            ("monsters", "Actor", True),
            ("loot", "Item", False),
        ]
        assert all(p.package_type == "world" for p in packs)
        assert packs[1].path == world_dir / "packs" / "loot-items.db"

    async def test_edit_world(self, world_dir: Path) -> None:
        world = NedbWorldDatabase(world_dir)

        await world.edit_world({"background": "local/bg.png"})

        metadata = await world.get_metadata()
        assert metadata["background"] == "local/bg.png"
        assert metadata["id"] == "keep"

    async def test_missing_metadata(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await NedbWorldDatabase(tmp_path).get_metadata()
