"""Sync orchestrator: brings the local mirror in line with the remote assets library.

Pipeline (each phase checks for cancellation before it starts)::

    PREPARING   credential check, mapping file load
                remote inventory, local inventory, directory provisioning
    SYNCING     per-asset reconcile / full sync
    POST_SYNC   mapping file persisted unconditionally
    REWRITING_DATABASE  optional world migration
    -> COMPLETE | COMPLETED_WITH_ERRORS | FAILED

The mapping file is the only state kept between runs. It is written after
the asset phase, and on cancellation with whatever progress was made.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from assetsync.exceptions import (
    MissingKeyError,
    SyncAlreadyStartedError,
    TransferError,
    UnauthorizedError,
)
from assetsync.migration.path_resolver import DEFAULT_ASSETS_PREFIX, AssetPathResolver
from assetsync.migration.world_service import WorldMigration
from assetsync.models.asset import MappingRow
from assetsync.models.sync import (
    AssetOutcome,
    ProgressUpdate,
    SyncOptions,
    SyncReport,
    SyncStatus,
)
from assetsync.providers.remote_library import api_key_info, is_valid_api_key
from assetsync.providers.retry import DEFAULT_RETRIES
from assetsync.services.directory_service import DirectoryProvisioner
from assetsync.services.hash_service import ContentHasher
from assetsync.services.inventory_service import InventoryBuilder, missing_keys
from assetsync.services.mapping_service import MappingState, MappingStore

if TYPE_CHECKING:
    from assetsync.migration.world_service import WorldDatabase
    from assetsync.models.asset import AssetRecord
    from assetsync.providers.base import LocalFileServer, ProgressSink, RemoteLibrary
    from assetsync.services.inventory_service import LocalInventory, RemoteInventory

logger = logging.getLogger(__name__)


class AssetSyncService:
    """Runs one sync of a local mirror. An instance can run ``sync()`` once."""

    def __init__(
        self,
        remote: RemoteLibrary,
        local: LocalFileServer,
        *,
        api_key: str | None,
        options: SyncOptions | None = None,
        mapping_store: MappingStore | None = None,
        hasher: ContentHasher | None = None,
        retries: int = DEFAULT_RETRIES,
        progress: ProgressSink | None = None,
        max_concurrency: int = 1,
        world: WorldDatabase | None = None,
        assets_prefix: str = DEFAULT_ASSETS_PREFIX,
    ) -> None:
        self.remote = remote
        self.local = local
        self.api_key = api_key
        self.options = options or SyncOptions()
        self.mapping_store = mapping_store or MappingStore(local)
        self.hasher = hasher or ContentHasher()
        self.retries = retries
        self.progress = progress
        self.max_concurrency = max(1, max_concurrency)
        self.world = world
        self.assets_prefix = assets_prefix

        self.report = SyncReport()
        self.mapping = MappingState()
        self.root_dir: str | None = None
        self.migration: WorldMigration | None = None
        self._status = SyncStatus.READY
        self._failed_folders: list[str] = []
        self._missing_dirs: set[str] = set()
        self._mapping_lock = asyncio.Lock()

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def cancelled(self) -> bool:
        return self._status == SyncStatus.CANCELLED

    def _set_status(self, status: SyncStatus) -> None:
        if self.cancelled:
            return
        logger.debug("Sync status: %s -> %s", self._status, status)
        self._status = status

    def cancel(self) -> None:
        """Request cooperative cancellation. Only affects a run in progress."""
        if self._status.in_progress:
            logger.info("Sync cancellation requested")
            self._status = SyncStatus.CANCELLED

    def _report(self, **kwargs: object) -> None:
        if self.progress is not None:
            self.progress(ProgressUpdate(**kwargs))  # type: ignore[arg-type]

    async def sync(self) -> SyncStatus:
        """Run the whole pipeline and return the final status.

        Fatal errors (credentials, remote listing, mapping file) set the
        matching terminal status and propagate.
        """
        if self._status != SyncStatus.READY:
            msg = f"Sync already started (status: {self._status})"
            raise SyncAlreadyStartedError(msg)

        self._set_status(SyncStatus.PREPARING)
        try:
            return await self._run()
        except MissingKeyError:
            self._set_status(SyncStatus.MISSING_KEY)
            raise
        except UnauthorizedError:
            self._set_status(SyncStatus.UNAUTHORIZED)
            raise
        except Exception:
            logger.exception("Asset sync failed")
            self._set_status(SyncStatus.FAILED)
            raise

    async def _run(self) -> SyncStatus:
        if not self.api_key or not is_valid_api_key(self.api_key):
            msg = "Please set a valid API key before attempting to sync"
            raise MissingKeyError(msg)
        self.root_dir = api_key_info(self.api_key).root_dir
        if self.root_dir:
            logger.info("API key references root folder %s", self.root_dir)

        logger.info("Starting asset sync")
        self.mapping = await self.mapping_store.load()
        if self.cancelled:
            return self._status

        inventory = InventoryBuilder(
            self.remote, self.local, root_dir=self.root_dir, progress=self.progress
        )
        remote = await inventory.build_remote_inventory()
        if self.cancelled:
            return await self._finish_cancelled()

        local = await inventory.build_local_inventory(remote.dirs.keys())
        if self.cancelled:
            return await self._finish_cancelled()

        if not await self._provision_directories(inventory, remote, local):
            return await self._finish_cancelled()

        self._set_status(SyncStatus.SYNCING)
        await self._sync_assets(remote, local)
        logger.info(
            "Asset sync processed %d asset(s): %d synced, %d failed, %d skipped",
            self.report.processed,
            len(self.report.synced),
            len(self.report.failed),
            len(self.report.skipped),
        )
        if self.cancelled:
            return await self._finish_cancelled()

        self._set_status(SyncStatus.POST_SYNC)
        await self.mapping_store.persist(self.mapping)
        if self.cancelled:
            return self._status

        migration_ok = True
        if self.options.update_world_db and self.world is not None:
            self._set_status(SyncStatus.REWRITING_DATABASE)
            migration_ok = await self._migrate_world(remote)
            if self.cancelled:
                return self._status

        return self._finalize(migration_ok)

    async def _finish_cancelled(self) -> SyncStatus:
        logger.info("Sync cancelled; saving progress")
        await self.mapping_store.persist(self.mapping)
        return self._status

    async def _provision_directories(
        self, inventory: InventoryBuilder, remote: RemoteInventory, local: LocalInventory
    ) -> bool:
        """Create missing folders, then settle the per-run folder blacklist.

        Returns False if the run was cancelled.
        """
        missing = sorted(missing_keys(remote.dirs.keys(), local.dirs))
        provisioner = DirectoryProvisioner(
            self.local, local, retries=self.retries, failed_folders=self._failed_folders
        )
        self._report(
            current=0, name="", total=len(missing), step="Creating missing folders", type="Folder"
        )
        for index, directory in enumerate(missing, start=1):
            self.report.created_dirs += await provisioner.ensure(directory)
            if self.cancelled:
                return False
            self._report(current=index, name=directory)

        if missing:
            refreshed = await inventory.build_local_inventory(remote.dirs.keys())
            self._missing_dirs = missing_keys(remote.dirs.keys(), refreshed.dirs)
        else:
            self._missing_dirs = set()
        self._failed_folders[:] = sorted(self._missing_dirs | set(self._failed_folders))
        self.report.failed_folders = list(self._failed_folders)
        if self._failed_folders:
            logger.warning("%d folder(s) could not be created", len(self._failed_folders))
        return not self.cancelled

    def _is_blacklisted(self, name: str) -> bool:
        return any(name.startswith(folder) for folder in self._failed_folders)

    async def _sync_assets(self, remote: RemoteInventory, local: LocalInventory) -> None:
        assets = list(remote.files.values())
        self._report(
            current=0, name="", total=len(assets), step="Synchronizing assets", type="Asset"
        )
        if self.max_concurrency == 1:
            for index, asset in enumerate(assets, start=1):
                if self.cancelled:
                    break
                await self._process_asset(asset, local)
                self._report(current=index, name=asset.name)
            return

        semaphore = asyncio.Semaphore(self.max_concurrency)
        done = 0

        async def _bounded(asset: AssetRecord) -> None:
            nonlocal done
            async with semaphore:
                if self.cancelled:
                    return
                await self._process_asset(asset, local)
                done += 1
                self._report(current=done, name=asset.name)

        await asyncio.gather(*(_bounded(asset) for asset in assets))

    async def _process_asset(self, asset: AssetRecord, local: LocalInventory) -> AssetOutcome:
        """Decide and perform the action for one remote file. Never raises."""
        try:
            if asset.name in local.files:
                outcome = await self.reconcile_local_match(asset)
            elif self._is_blacklisted(asset.name):
                logger.debug("Skipping %s: its folder could not be created", asset.name)
                outcome = AssetOutcome.BLACKLISTED
            else:
                outcome = await self.sync_asset(asset)
        except Exception:
            logger.warning("Failed to sync %s", asset.name, exc_info=True)
            outcome = AssetOutcome.FAILED

        if outcome.succeeded:
            self.report.synced.append(asset)
        elif outcome == AssetOutcome.SKIPPED:
            self.report.skipped.append(asset)
        else:
            self.report.failed.append(asset)
            if outcome == AssetOutcome.CONFLICT:
                self.report.conflicts.append(asset.name)
        return outcome

    async def _record_mapping(self, asset: AssetRecord, etag: str | None) -> None:
        async with self._mapping_lock:
            previous = self.mapping.assets.get(asset.name)
            self.mapping.assets[asset.name] = MappingRow.for_asset(asset, etag, previous=previous)
            self.mapping.record_etag(asset.hash, etag)

    async def sync_asset(self, asset: AssetRecord) -> AssetOutcome:
        """Download ``asset`` and upload it to the local mirror, replacing any local copy."""
        if self._is_blacklisted(asset.name):
            msg = f"Could not upload {asset.name}: its path contains invalid characters"
            raise TransferError(msg)

        data = await self.remote.fetch_blob(asset.url)
        upload = await self.local.upload(asset.parent_dir, asset.file_name, data)
        if upload is None or not upload.path:
            logger.warning("Upload of %s returned no result", asset.name)
            return AssetOutcome.FAILED

        etag = await self.local.fetch_etag(asset.name)
        await self._record_mapping(asset, etag)
        return AssetOutcome.SYNCED

    async def _verify_local_matches_remote(
        self, asset: AssetRecord, expected_etag: str | None, etag: str | None
    ) -> bool:
        """Return True when the local file already holds the remote content.

        Known etags are trusted. Without an expected etag the local file is
        hashed and the result remembered for the next run.
        """
        if etag is not None and (
            etag == expected_etag or etag in self.mapping.known_etags(asset.hash)
        ):
            return True
        if expected_etag:
            return False
        local_hash = await self.local.fetch_hash(asset.name, self.hasher)
        async with self._mapping_lock:
            self.mapping.record_etag(local_hash, etag)
        return local_hash == asset.hash

    async def reconcile_local_match(self, asset: AssetRecord) -> AssetOutcome:
        """Decide what to do with a remote file that already has a local namesake."""
        previous = self.mapping.assets.get(asset.name)
        expected_etag = (
            previous.local_etag if previous and previous.local_hash == asset.hash else None
        )

        if previous is not None and not self.options.force_local_rehash:
            if previous.remote_hash == asset.hash:
                return AssetOutcome.UNCHANGED
            etag = await self.local.fetch_etag(asset.name)
            if await self._verify_local_matches_remote(asset, expected_etag, etag):
                await self._record_mapping(asset, etag)
                return AssetOutcome.UNCHANGED
            if not self.options.overwrite_local_mismatches and etag != previous.local_etag:
                logger.info(
                    "Conflict detected: %s has been modified both locally and remotely", asset.name
                )
                return AssetOutcome.CONFLICT
            return await self.sync_asset(asset)

        if not self.options.force_local_rehash and not self.options.overwrite_local_mismatches:
            logger.debug("Leaving unmapped local file %s untouched", asset.name)
            return AssetOutcome.SKIPPED

        etag = await self.local.fetch_etag(asset.name)
        if await self._verify_local_matches_remote(asset, expected_etag, etag):
            await self._record_mapping(asset, etag)
            return AssetOutcome.UNCHANGED
        if self.options.overwrite_local_mismatches or (
            previous is not None and etag == previous.local_etag
        ):
            return await self.sync_asset(asset)
        logger.info(
            "Conflict detected: %s exists locally and differs from the remote asset", asset.name
        )
        return AssetOutcome.CONFLICT

    async def _migrate_world(self, remote: RemoteInventory) -> bool:
        assert self.world is not None
        resolver = AssetPathResolver(
            remote.files, local=self.local, remote=self.remote, assets_prefix=self.assets_prefix
        )
        self.migration = WorldMigration(self.world, resolver, progress=self.progress)
        try:
            success = await self.migration.migrate_world()
        except Exception as exc:
            logger.exception("World migration failed")
            self.report.migration_errors.append(str(exc))
            return False
        lines = self.migration.report_lines()
        if lines:
            self.report.migration_errors.extend(lines)
            logger.info(
                "World migration left %d item(s) unresolved", len(self.report.migration_errors)
            )
        return success

    def _finalize(self, migration_ok: bool) -> SyncStatus:
        if self.report.synced:
            has_errors = bool(self.report.failed) or not migration_ok
            status = SyncStatus.COMPLETED_WITH_ERRORS if has_errors else SyncStatus.COMPLETE
        elif self.report.failed:
            status = SyncStatus.FAILED
        else:
            status = SyncStatus.COMPLETE
        self._set_status(status)
        logger.info("Asset sync finished: %s", status.description)
        return self._status
