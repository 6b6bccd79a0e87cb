"""Rewriting a world's documents to use the local copies of its assets."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

from assetsync.migration.entity_walker import EntityMigration, map_async
from assetsync.models.sync import ProgressUpdate

if TYPE_CHECKING:
    from assetsync.migration.path_resolver import AssetPathResolver
    from assetsync.providers.base import ProgressSink

logger = logging.getLogger(__name__)

WORLD_PACKAGE_TYPE = "world"


class DocumentCollection(Protocol):
    """One collection of documents: a world collection or a compendium pack."""

    name: str
    document_name: str
    package_type: str | None
    locked: bool

    async def documents(self) -> list[dict[str, Any]]: ...

    async def update_documents(self, changes: list[dict[str, Any]]) -> None:
        """Apply sparse diffs keyed by ``_id``. All or nothing."""
        ...

    async def configure(self, *, locked: bool) -> None: ...


class WorldDatabase(Protocol):
    """The world whose documents are rewritten."""

    async def get_metadata(self) -> dict[str, Any]: ...

    async def edit_world(self, changes: dict[str, Any]) -> None: ...

    async def world_collections(self) -> list[DocumentCollection]: ...

    async def compendium_packs(self) -> list[DocumentCollection]: ...


def diff_object(original: dict[str, Any], other: dict[str, Any]) -> dict[str, Any]:
    """Return the keys of ``other`` whose values differ from ``original``.

    Nested mappings are diffed recursively; any other value (lists included)
    is compared whole.
    """
    diff: dict[str, Any] = {}
    for key, value in other.items():
        if key not in original:
            diff[key] = value
            continue
        before = original[key]
        if isinstance(before, dict) and isinstance(value, dict):
            inner = diff_object(before, value)
            if inner:
                diff[key] = inner
        elif before != value:
            diff[key] = value
    return diff


def _snapshot(document: dict[str, Any]) -> str:
    return json.dumps(document, sort_keys=True)


class WorldMigration:
    """Walks every world collection and world compendium through ``EntityMigration``."""

    def __init__(
        self,
        world: WorldDatabase,
        resolver: AssetPathResolver,
        *,
        progress: ProgressSink | None = None,
    ) -> None:
        self.world = world
        self.resolver = resolver
        self.walker = EntityMigration(resolver)
        self.progress = progress
        self.metadata_needs_update = False
        self.errors: list[str] = []

    def _report(self, **kwargs: Any) -> None:
        if self.progress is not None:
            self.progress(ProgressUpdate(**kwargs))

    async def migrate_world(self) -> bool:
        """Rewrite the world. Returns True when nothing was left pointing online."""
        self.metadata_needs_update = False
        self.errors = []

        await self._migrate_metadata()

        collections = await self.world.world_collections()
        self._report(current=0, total=len(collections), step="Migrating world", type="Collection")
        for index, collection in enumerate(collections, start=1):
            self._report(current=index, name=collection.name)
            try:
                await self.migrate_database(collection)
            except Exception as exc:
                logger.exception("Failed to migrate collection %s", collection.name)
                self.errors.append(f"Collection {collection.name}: {exc}")

        packs = [
            pack
            for pack in await self.world.compendium_packs()
            if pack.package_type in (None, WORLD_PACKAGE_TYPE)
        ]
        self._report(current=0, total=len(packs), step="Migrating compendiums", type="Pack")
        for index, pack in enumerate(packs, start=1):
            self._report(current=index, name=pack.name)
            await self._migrate_pack(pack)

        if self.resolver.online_assets:
            logger.warning(
                "%d asset(s) are still hosted online: %s",
                len(self.resolver.online_assets),
                ", ".join(sorted(self.resolver.online_assets)),
            )
        if self.resolver.missing_packages:
            logger.warning(
                "Install the following packages to use their local assets: %s",
                ", ".join(sorted(self.resolver.missing_packages)),
            )
        return (
            not self.metadata_needs_update
            and not self.resolver.online_assets
            and not self.resolver.missing_packages
        )

    async def _migrate_metadata(self) -> None:
        metadata = await self.world.get_metadata()
        background = await self.walker.migrate_path(metadata.get("background"))
        description = await self.walker.migrate_html(metadata.get("description"))
        changes: dict[str, Any] = {}
        if background != metadata.get("background"):
            changes["background"] = background
        if description != metadata.get("description"):
            changes["description"] = description
        if not changes:
            return
        try:
            await self.world.edit_world(changes)
        except Exception as exc:
            logger.exception("Failed to update the world metadata")
            self.metadata_needs_update = True
            self.errors.append(f"World metadata: {exc}")

    async def _migrate_pack(self, pack: DocumentCollection) -> None:
        was_locked = pack.locked
        try:
            if was_locked:
                await pack.configure(locked=False)
            await self.migrate_database(pack)
        except Exception as exc:
            logger.exception("Failed to migrate compendium %s", pack.name)
            self.errors.append(f"Compendium {pack.name}: {exc}")
        finally:
            if was_locked:
                await pack.configure(locked=True)

    async def _migrate_document(
        self, document_name: str, document: dict[str, Any]
    ) -> dict[str, Any] | None:
        baseline = _snapshot(document)
        try:
            migrated = await self.walker.migrate_entity(document_name, json.loads(baseline))
        except Exception as exc:
            logger.exception("Failed to migrate %s %s", document_name, document.get("_id"))
            self.errors.append(f"{document_name} {document.get('_id')}: {exc}")
            return None
        if _snapshot(migrated) == baseline:
            return None
        diff = diff_object(document, migrated)
        diff["_id"] = migrated.get("_id")
        return diff

    async def migrate_database(self, collection: DocumentCollection) -> int:
        """Rewrite every document of ``collection``; return how many changed.

        The changes are applied as one batch. If the batch is rejected each
        change is retried on its own so the valid ones still land, and the
        batch error is then re-raised.
        """
        documents = await collection.documents()
        results = await map_async(
            documents, lambda doc: self._migrate_document(collection.document_name, doc)
        )
        changes = [change for change in results if change is not None]
        if not changes:
            return 0

        try:
            await collection.update_documents(changes)
        except Exception:
            logger.warning(
                "Batch update of %s failed; applying %d change(s) one at a time",
                collection.name,
                len(changes),
            )
            for change in changes:
                try:
                    await collection.update_documents([change])
                except Exception as exc:
                    logger.warning(
                        "Could not update %s %s: %s", collection.name, change.get("_id"), exc
                    )
            raise
        logger.info("Updated %d document(s) in %s", len(changes), collection.name)
        return len(changes)

    def report_lines(self) -> list[str]:
        """Plain-text summary of everything the last migration left unresolved."""
        lines: list[str] = []
        if self.metadata_needs_update:
            lines.append(
                "The world background or description could not be updated. "
                "Edit the world to point them at the local copies."
            )
        if self.resolver.missing_packages:
            lines.append("The following packages are not installed locally:")
            lines.extend(f"  - {name}" for name in sorted(self.resolver.missing_packages))
        if self.resolver.online_assets:
            lines.append("The following assets are still used from their online location:")
            lines.extend(f"  - {url}" for url in sorted(self.resolver.online_assets))
        lines.extend(self.errors)
        return lines
